"""Domain models for Onebox."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(str, Enum):
    """Fixed set of classification outcomes."""

    INTERESTED = "Interested"
    MEETING_BOOKED = "Meeting Booked"
    NOT_INTERESTED = "Not Interested"
    SPAM = "Spam"
    OUT_OF_OFFICE = "Out of Office"
    UNCATEGORIZED = "Uncategorized"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        """Map free-form text to a category; anything unknown is Uncategorized."""
        if isinstance(value, Category):
            return value
        if not isinstance(value, str):
            return cls.UNCATEGORIZED

        cleaned = value.strip().strip(".,!?\"'`").strip()
        lookup = {c.value.lower(): c for c in cls}
        lookup.update({c.name.lower(): c for c in cls})
        return lookup.get(cleaned.lower(), cls.UNCATEGORIZED)


DEFAULT_CATEGORY = Category.UNCATEGORIZED


class EmailAccount(BaseModel):
    """One configured mailbox. Immutable after load."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    password: SecretStr
    imap_host: str
    imap_port: int = 993
    folder: str = "INBOX"

    @field_validator("id", "imap_host")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("email")
    @classmethod
    def _looks_like_address(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError(f"invalid mailbox login: {v!r}")
        return v.strip()

    @field_validator("password")
    @classmethod
    def _password_present(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("password must not be empty")
        return v


class EmailRecord(BaseModel):
    """Canonical stored representation of one ingested message."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    account_id: str
    folder: str
    subject: str
    body: str
    html_body: str | None = None
    sender: str
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    date: datetime
    category: Category = DEFAULT_CATEGORY
    indexed_at: datetime = Field(default_factory=utcnow)
    message_id: str
    in_reply_to: str | None = None
    references: list[str] = Field(default_factory=list)


class ConnectionStatus(BaseModel):
    """Read-only snapshot of one account's connection."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    connected: bool = False
    last_sync: datetime = Field(default_factory=utcnow)
    error: str | None = None
    fatal: bool = False
    reconnect_attempts: int = 0
    generation: int = 0


class SearchQuery(BaseModel):
    """Filters accepted by the durable index."""

    q: str | None = None
    account: str | None = None
    folder: str | None = None
    category: Category | None = None
    offset: int = 0
    size: int = 50


class CategoryStats(BaseModel):
    """Record counts per category."""

    total: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)


class SuggestedReply(BaseModel):
    """A drafted reply to a stored email."""

    reply: str
    context: list[str] = Field(default_factory=list)
    confidence: float = 0.0
