"""Domain models and entities."""

from onebox.domain.entities.email_message import EmailMessage
from onebox.domain.models import (
    DEFAULT_CATEGORY,
    Category,
    CategoryStats,
    ConnectionStatus,
    EmailAccount,
    EmailRecord,
    SearchQuery,
    SuggestedReply,
)

__all__ = [
    "Category",
    "DEFAULT_CATEGORY",
    "CategoryStats",
    "ConnectionStatus",
    "EmailAccount",
    "EmailMessage",
    "EmailRecord",
    "SearchQuery",
    "SuggestedReply",
]
