"""Outbound webhook notifications."""

from onebox.infrastructure.webhooks.notifier import (
    WebhookDestination,
    WebhookNotifier,
    create_notifier,
)

__all__ = ["WebhookDestination", "WebhookNotifier", "create_notifier"]
