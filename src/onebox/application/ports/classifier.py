from __future__ import annotations
from typing import Protocol

from onebox.domain.models import Category

class EmailClassifier(Protocol):
    # Must always return a member of Category, never raise
    async def classify(self, subject: str, body: str, sender: str) -> Category: ...
