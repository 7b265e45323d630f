from __future__ import annotations
from typing import Any, Mapping, Optional, Protocol

from onebox.domain.models import Category, CategoryStats, EmailRecord, SearchQuery

class EmailIndex(Protocol):
    async def exists(self, message_id: str) -> bool: ...
    async def insert(self, record: EmailRecord) -> None: ...
    async def update_category(self, record_id: str, category: Category) -> None: ...
    async def update_fields(self, record_id: str, patch: Mapping[str, Any]) -> None: ...
    async def get(self, record_id: str) -> Optional[EmailRecord]: ...
    async def query(self, query: SearchQuery) -> list[EmailRecord]: ...
    async def aggregate_by_category(self) -> CategoryStats: ...
    async def find_uncategorized(self, limit: int = 50) -> list[EmailRecord]: ...
    async def ping(self) -> bool: ...
