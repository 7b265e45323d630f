from __future__ import annotations
from typing import Protocol, Sequence

from onebox.domain.models import EmailRecord, SuggestedReply

class ReplyGenerator(Protocol):
    # ConfigurationError when no model is configured, ReplyGenerationError on model failure
    async def suggest_reply(self, record: EmailRecord, contexts: Sequence[str] = ()) -> SuggestedReply: ...
