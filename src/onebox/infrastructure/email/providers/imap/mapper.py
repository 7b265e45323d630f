from __future__ import annotations
import uuid
from email import policy
from email.parser import BytesParser
from datetime import datetime, timezone

from onebox.domain.entities.email_message import EmailMessage
from onebox.domain.errors import MessageParseError
from onebox.infrastructure.email.rfc822 import extract_bodies, flatten_addresses, html_to_text

NO_SUBJECT = "(No Subject)"

def _header(em, name: str) -> str:
    try:
        value = em.get(name)
        return str(value).strip() if value is not None else ""
    except Exception:
        # Malformed header values are treated as absent
        return ""

def _addresses(em, name: str) -> list[str]:
    try:
        return flatten_addresses(em.get_all(name) or [])
    except Exception:
        return []

def rfc822_to_email_message(account_id: str, folder: str, rfc822_bytes: bytes) -> EmailMessage:
    try:
        em = BytesParser(policy=policy.default).parsebytes(rfc822_bytes)
        html, plain = extract_bodies(em)
    except Exception as e:
        raise MessageParseError(f"Unparseable message in {account_id}/{folder}: {e}") from e

    # Prefer HTML converted to text; fall back to the plain part, then nothing
    body = html_to_text(html) if html else (plain or "")

    message_id = _header(em, "Message-ID")
    generated = not message_id
    if generated:
        message_id = str(uuid.uuid4())

    # Date parsing can be messy; default to now if absent/unparseable
    try:
        dt = em.get("Date")
        date = dt.datetime if dt is not None and dt.datetime else datetime.now(timezone.utc)
    except Exception:
        date = datetime.now(timezone.utc)

    senders = _addresses(em, "From")
    in_reply_to = _header(em, "In-Reply-To") or None
    references = _header(em, "References").split()

    return EmailMessage(
        account_id=account_id,
        folder=folder,
        message_id=message_id,
        subject=_header(em, "Subject") or NO_SUBJECT,
        body=body,
        sender=senders[0] if senders else "",
        to=_addresses(em, "To"),
        cc=_addresses(em, "Cc"),
        date=date,
        html_body=html,
        in_reply_to=in_reply_to,
        references=references,
        message_id_generated=generated,
    )
