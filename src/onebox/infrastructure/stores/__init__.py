"""Store implementations."""

from onebox.infrastructure.stores.sqlite_email_index import SQLiteEmailIndex

__all__ = [
    "SQLiteEmailIndex",
]
