"""Infrastructure layer - mail servers, storage, LLM, webhooks and configuration."""

from onebox.infrastructure.settings import Settings, get_settings


# Wiring imports the application layer, which imports adapters from here
def build_services(*args, **kwargs):
    """Build the service graph (lazy import)."""
    from onebox.infrastructure.factory import build_services as _build
    return _build(*args, **kwargs)


__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Wiring
    "build_services",
]
