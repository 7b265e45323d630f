from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

@dataclass(frozen=True)
class EmailMessage:
    # Normalized message before it becomes a stored record
    account_id: str
    folder: str
    message_id: str
    subject: str
    body: str
    sender: str
    to: list[str]
    cc: list[str]
    date: datetime
    html_body: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: list[str] = field(default_factory=list)
    # True when the transport gave no Message-ID and one was generated
    message_id_generated: bool = False
