"""LLM-backed email classifier."""

from __future__ import annotations

import asyncio
import json

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from loguru import logger

from onebox.domain.models import DEFAULT_CATEGORY, Category
from onebox.infrastructure.settings import Settings

CLASSIFICATION_SYSTEM_PROMPT = """You are an expert email classifier for a professional inbox.
Your ONLY job is to assign exactly one category to the email you are given.

Categories:
- **Interested**: job offers, interview invitations, career opportunities, recruitment emails,
  tech updates, product launches, technical newsletters and any other career or technology content.
- **Meeting Booked**: confirmations of scheduled meetings or calendar invitations.
- **Not Interested**: sales pitches, marketing, or content unrelated to jobs or tech.
- **Spam**: obvious promotional spam, phishing attempts, irrelevant bulk mail.
- **Out of Office**: auto-replies indicating absence.
- **Uncategorized**: everything else.

RULES:
- Respond with ONLY a JSON object: {"category": "<one of the categories above>"}
- Use the category names exactly as written above
"""


def create_llm(settings: Settings, *, max_tokens: int = 64, temperature: float = 0) -> BaseChatModel | None:
    """Create the configured chat model, or None when no model is available."""
    provider = settings.llm_provider

    if provider == "none":
        logger.warning("LLM provider disabled; every email will be Uncategorized")
        return None

    if provider == "local":
        from langchain_openai import ChatOpenAI

        model = settings.llm_model or settings.vllm_model_name
        logger.info(f"Initializing local vLLM at {settings.vllm_base_url} with model {model}")
        return ChatOpenAI(
            base_url=settings.vllm_base_url,
            api_key="not-needed",
            model_name=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    elif provider == "groq":
        from langchain_groq import ChatGroq

        if not settings.groq_api_key:
            logger.warning("GROQ_API_KEY not set; LLM features disabled")
            return None

        model = settings.llm_model or "llama-3.3-70b-versatile"
        logger.info(f"Initializing Groq LLM with model {model}")
        return ChatGroq(
            api_key=settings.groq_api_key.get_secret_value(),
            model_name=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set; LLM features disabled")
            return None

        model = settings.llm_model or "gpt-4o-mini"
        logger.info(f"Initializing OpenAI LLM with model {model}")
        return ChatOpenAI(
            api_key=settings.openai_api_key.get_secret_value(),
            model_name=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    elif provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        if not settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY not set; LLM features disabled")
            return None

        model = settings.llm_model or "claude-3-5-haiku-latest"
        logger.info(f"Initializing Anthropic LLM with model {model}")
        return ChatAnthropic(
            api_key=settings.anthropic_api_key.get_secret_value(),
            model_name=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    else:
        raise ValueError(f"Unknown LLM provider: {provider}")


def message_text(content: object) -> str | None:
    """Flatten a chat model answer to text."""
    if isinstance(content, str):
        return content
    # Some chat models return a list of content blocks
    if isinstance(content, list):
        return "".join(b.get("text", "") if isinstance(b, dict) else str(b) for b in content)
    return None


def parse_category(content: object) -> Category:
    """Read a category from a model answer, JSON or bare text."""
    content = message_text(content)
    if content is None:
        return DEFAULT_CATEGORY

    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`").removeprefix("json").strip()

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return Category.parse(text)

    if isinstance(payload, dict):
        return Category.parse(payload.get("category"))
    return Category.parse(payload)


class LLMEmailClassifier:
    """Classifies emails with a chat model; degrades to Uncategorized on any failure."""

    def __init__(
        self,
        llm: BaseChatModel | None,
        timeout: float = 30.0,
        body_limit: int = 4000,
    ):
        self.llm = llm
        self.timeout = timeout
        self.body_limit = body_limit

    async def classify(self, subject: str, body: str, sender: str) -> Category:
        if self.llm is None:
            logger.warning("AI classifier not configured, returning default category")
            return DEFAULT_CATEGORY

        prompt = f"From: {sender}\nSubject: {subject}\nBody: {(body or '')[: self.body_limit]}"
        messages = [
            SystemMessage(content=CLASSIFICATION_SYSTEM_PROMPT),
            HumanMessage(content=prompt),
        ]

        try:
            response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Classification timed out after {self.timeout}s: '{subject[:50]}'")
            return DEFAULT_CATEGORY
        except Exception as e:
            logger.error(f"Classification failed: {e}")
            return DEFAULT_CATEGORY

        category = parse_category(getattr(response, "content", None))
        logger.info(f"Classified '{subject[:50]}' → {category.value}")
        return category


def create_classifier(settings: Settings) -> LLMEmailClassifier:
    try:
        llm = create_llm(settings)
    except Exception as e:
        logger.error(f"Could not initialize LLM ({settings.llm_provider}): {e}")
        llm = None
    return LLMEmailClassifier(
        llm,
        timeout=settings.classification_timeout_seconds,
        body_limit=settings.classification_body_limit,
    )
