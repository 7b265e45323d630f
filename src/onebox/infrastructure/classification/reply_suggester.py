"""Drafts replies to stored emails with the configured chat model."""

from __future__ import annotations

import asyncio
from typing import Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from loguru import logger

from onebox.domain.errors import ConfigurationError, ReplyGenerationError
from onebox.domain.models import EmailRecord, SuggestedReply
from onebox.infrastructure.classification.llm_classifier import create_llm, message_text
from onebox.infrastructure.settings import Settings

REPLY_SYSTEM_PROMPT = "You are a helpful assistant that writes professional, relevant email replies. Be concise and professional."

# Fixed score reported with every draft; the model gives no calibrated value
REPLY_CONFIDENCE = 0.85


def build_reply_prompt(record: EmailRecord, contexts: Sequence[str] = ()) -> str:
    prompt = f"**Original Email:**\nSubject: {record.subject}\nFrom: {record.sender}\n\n{record.body}\n"
    if contexts:
        joined = "\n---\n".join(contexts)
        prompt += f"\n**Retrieved Context:**\n{joined}\n"
    prompt += "\n**Task:**\nDraft a professional and helpful reply to the above email."
    return prompt.strip()


class LLMReplySuggester:
    """Suggests a reply for one email, optionally grounded on retrieved snippets."""

    def __init__(self, llm: BaseChatModel | None, timeout: float = 60.0):
        self.llm = llm
        self.timeout = timeout

    async def suggest_reply(self, record: EmailRecord, contexts: Sequence[str] = ()) -> SuggestedReply:
        if self.llm is None:
            raise ConfigurationError("Reply generation is not configured")

        messages = [
            SystemMessage(content=REPLY_SYSTEM_PROMPT),
            HumanMessage(content=build_reply_prompt(record, contexts)),
        ]
        try:
            response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Reply generation timed out after {self.timeout}s for {record.id}")
            raise ReplyGenerationError(f"Reply generation timed out after {self.timeout}s") from e
        except Exception as e:
            logger.error(f"Reply generation failed for {record.id}: {e}")
            raise ReplyGenerationError(str(e)) from e

        reply = (message_text(getattr(response, "content", None)) or "").strip()
        if not reply:
            raise ReplyGenerationError("Model returned an empty reply")

        logger.info(f"Drafted reply for '{record.subject[:50]}' ({len(reply)} chars)")
        return SuggestedReply(reply=reply, context=list(contexts), confidence=REPLY_CONFIDENCE)


def create_reply_suggester(settings: Settings) -> LLMReplySuggester:
    try:
        llm = create_llm(settings, max_tokens=settings.reply_max_tokens, temperature=0.3)
    except Exception as e:
        logger.error(f"Could not initialize reply LLM ({settings.llm_provider}): {e}")
        llm = None
    return LLMReplySuggester(llm, timeout=settings.reply_timeout_seconds)
