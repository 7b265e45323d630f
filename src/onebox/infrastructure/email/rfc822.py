from __future__ import annotations
import re
from email.message import EmailMessage as MimeMessage
from email.utils import getaddresses
from typing import Iterable, Optional

from bs4 import BeautifulSoup
from loguru import logger

_BLANK_LINES = re.compile(r"\n\s*\n+")
_SPACES = re.compile(r"[ \t\xa0]+")

def html_to_text(html: str) -> str:
    """Plain text from HTML. Links keep their label, images become a marker."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "head", "meta", "link"]):
        element.decompose()
    for img in soup.find_all("img"):
        alt = (img.get("alt") or "").strip()
        img.replace_with(f"[image: {alt}]" if alt else "[image]")
    for a in soup.find_all("a"):
        a.replace_with(a.get_text())
    for br in soup.find_all("br"):
        br.replace_with("\n")

    text = soup.get_text("\n")
    lines = [_SPACES.sub(" ", line).strip() for line in text.splitlines()]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()

def part_text(part: MimeMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError, AssertionError) as e:
        # Unknown charset or broken transfer encoding
        logger.debug(f"Falling back to lossy decode for {part.get_content_type()}: {e}")
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")

def extract_bodies(em: MimeMessage) -> tuple[Optional[str], Optional[str]]:
    """(html, plain) bodies, either may be None."""
    html_part = em.get_body(preferencelist=("html",))
    plain_part = em.get_body(preferencelist=("plain",))
    html = part_text(html_part) if html_part is not None else None
    plain = part_text(plain_part) if plain_part is not None else None
    return html, plain

def flatten_addresses(values: Iterable[object]) -> list[str]:
    """Bare addresses from header values. Display names and junk are dropped."""
    out: list[str] = []
    raw = []
    for value in values:
        try:
            raw.append(str(value))
        except Exception as e:
            logger.debug(f"Unreadable address header dropped: {e}")
    for _, addr in getaddresses(raw):
        addr = addr.strip()
        if addr and "@" in addr:
            out.append(addr)
    return out
