"""Error taxonomy shared by every layer."""

from __future__ import annotations


class OneboxError(Exception):
    """Base class for all service errors."""


class ConfigurationError(OneboxError):
    """Invalid or missing startup configuration. Fatal."""


class TransportError(OneboxError):
    """Mailbox connection dropped, authentication failed or protocol error."""


class ConnectionClosedError(TransportError):
    """The server ended the connection cleanly."""


class MessageParseError(OneboxError):
    """A single raw message could not be normalized."""


class StorageError(OneboxError):
    """The durable index is unavailable or rejected an operation."""


class DuplicateRecordError(StorageError):
    """A record with the same message id already exists."""


class DedupCheckError(StorageError):
    """The duplicate lookup itself failed and the gate is configured to fail closed."""


class StaleSessionError(OneboxError):
    """A superseded session generation tried to mutate account state."""


class ReplyGenerationError(OneboxError):
    """The language model failed to draft a reply."""
