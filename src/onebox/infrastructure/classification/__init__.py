"""Email classification and reply drafting via LLM."""

from onebox.infrastructure.classification.llm_classifier import (
    LLMEmailClassifier,
    create_classifier,
    create_llm,
)
from onebox.infrastructure.classification.reply_suggester import (
    LLMReplySuggester,
    create_reply_suggester,
)

__all__ = [
    "LLMEmailClassifier",
    "LLMReplySuggester",
    "create_classifier",
    "create_llm",
    "create_reply_suggester",
]
