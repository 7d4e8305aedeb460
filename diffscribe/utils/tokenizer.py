"""
Token counting adapters used to keep diff chunks inside the model budget.
"""

import math
from typing import Any, Optional, Protocol

from loguru import logger


class Tokenizer(Protocol):
    """Protocol for model-specific token counting."""

    def count(self, text: str) -> int:
        """Count tokens in text."""
        ...

    def truncate(self, text: str, max_tokens: int) -> str:
        """Keep the head of text so that it counts at most max_tokens."""
        ...


class TiktokenTokenizer:
    """Exact token counts for OpenAI models through tiktoken."""

    FALLBACK_ENCODING = "cl100k_base"

    def __init__(self, model: str, encoding: Optional[Any] = None):
        self.model = model
        self._encoding = encoding or self._load_encoding(model)

    def _load_encoding(self, model: str):
        import tiktoken

        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            logger.debug(f"No tiktoken encoding registered for {model}, using {self.FALLBACK_ENCODING}")
            return tiktoken.get_encoding(self.FALLBACK_ENCODING)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    def truncate(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0:
            return ""
        tokens = self._encoding.encode(text, disallowed_special=())
        if len(tokens) <= max_tokens:
            return text

        # Decoding a token prefix can re-encode to a different length at the
        # cut point, so shrink until the result actually fits
        keep = max_tokens
        while keep > 0:
            candidate = self._encoding.decode(tokens[:keep])
            if self.count(candidate) <= max_tokens:
                return candidate
            keep -= 1
        return ""


class ApproximateTokenizer:
    """Character based estimate (1 token ~ 4 chars) for non-OpenAI models.

    Counts are approximate; budgets computed with it may be off by a few
    percent against the backend's real tokenizer.
    """

    def __init__(self, chars_per_token: int = 4):
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be at least 1")
        self.chars_per_token = chars_per_token

    def count(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)

    def truncate(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0:
            return ""
        return text[: max_tokens * self.chars_per_token]


def get_tokenizer(backend_type: str, model: str) -> Tokenizer:
    """Pick the tokenizer matching the configured backend."""
    if backend_type == "openai":
        return TiktokenTokenizer(model)
    logger.debug(f"Using approximate token counts for {backend_type} model {model}")
    return ApproximateTokenizer()
