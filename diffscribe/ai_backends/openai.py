"""
OpenAI (and OpenAI-compatible) AI backend implementation.
"""

import time
from typing import Dict, Optional

import aiohttp
from loguru import logger

from .base import AIBackend, AIResponse, AuthError, InvalidRequestError
from ..utils.tokenizer import Tokenizer

OPENAI_API_URL = "https://api.openai.com/v1"

# Completions need at least this many tokens of room after the prompt
COMPLETION_TOKEN_LIMIT = 100

CONTEXT_SIZES = [
    ("gpt-4o", 128_000),
    ("gpt-4.1", 1_047_576),
    ("gpt-4-turbo", 128_000),
    ("gpt-4-1106", 128_000),
    ("gpt-4-0125", 128_000),
    ("gpt-4-32k", 32_768),
    ("gpt-4", 8_192),
    ("gpt-3.5-turbo-instruct", 4_096),
    ("gpt-3.5-turbo", 16_385),
    ("o1", 200_000),
    ("o3", 200_000),
    ("o4", 200_000),
]
DEFAULT_CONTEXT_SIZE = 4_096


def context_size(model: str) -> int:
    """Context window for a model name, matched by longest known prefix."""
    name = model.lower()
    for prefix, size in sorted(CONTEXT_SIZES, key=lambda item: len(item[0]), reverse=True):
        if name.startswith(prefix):
            return size
    return DEFAULT_CONTEXT_SIZE


class OpenAIBackend(AIBackend):
    """OpenAI backend using chat or legacy completions depending on the model."""

    def __init__(
        self,
        api_url: str,
        model: str,
        timeout: int = 30,
        proxy: Optional[str] = None,
        api_key: Optional[str] = None,
        tokenizer: Optional[Tokenizer] = None,
    ):
        super().__init__(api_url or OPENAI_API_URL, model, timeout, proxy)
        self.backend_type = "openai"
        self.api_key = api_key or ""
        self.tokenizer = tokenizer

    @staticmethod
    def should_use_chat_completion(model: str) -> bool:
        name = model.lower()
        if "instruct" in name:
            return False
        return name.startswith(("gpt-4", "gpt-3.5-turbo", "o1", "o3", "o4", "chatgpt"))

    def _headers(self) -> Dict[str, str]:
        headers = {"User-Agent": "diffscribe"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _check_configuration(self) -> None:
        if not self.api_key and self.api_url == OPENAI_API_URL:
            raise AuthError("No OpenAI API key found. Set OPENAI_API_KEY or ai.api_key.")
        if not self.model:
            raise InvalidRequestError("No OpenAI model configured. Please choose a valid model to use.")

    def _check_prompt_size(self, prompt: str) -> None:
        if self.tokenizer is None:
            return
        room = context_size(self.model) - self.tokenizer.count(prompt)
        if room < COMPLETION_TOKEN_LIMIT:
            logger.warning("Skipping... the diff is too large for the current model.")
            raise InvalidRequestError(
                "The diff is too large for the current model. "
                "Consider using a model with a larger context window."
            )

    async def call_api(self, prompt: str) -> AIResponse:
        """Send the prompt and return the first completion."""
        self._log_request(prompt)
        self._check_configuration()
        self._check_prompt_size(prompt)

        start_time = time.time()
        if self.should_use_chat_completion(self.model):
            data = await self._post_json("/chat/completions", {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
            })
            choices = data.get("choices") or []
            content = choices[0].get("message", {}).get("content") if choices else None
        else:
            data = await self._post_json("/completions", {
                "model": self.model,
                "prompt": prompt,
                "max_tokens": COMPLETION_TOKEN_LIMIT * 5,
                "temperature": 0.5,
                "top_p": 1.0,
            })
            choices = data.get("choices") or []
            content = choices[0].get("text") if choices else None

        if content is None:
            raise InvalidRequestError("No completion results returned from OpenAI.")

        response = AIResponse(
            content=content.strip(),
            model=self.model,
            tokens_used=(data.get("usage") or {}).get("total_tokens"),
            response_time=time.time() - start_time,
            backend_type=self.backend_type,
            raw_response=data
        )
        self._log_response(response)
        return response

    async def health_check(self) -> bool:
        """Check that the models endpoint answers with our credentials."""
        try:
            async with aiohttp.ClientSession(headers=self._headers()) as session:
                async with session.get(
                    f"{self.api_url}/models",
                    proxy=self.proxy,
                    timeout=aiohttp.ClientTimeout(total=5)
                ) as response:
                    return response.status == 200
        except Exception as e:
            logger.debug(f"OpenAI health check failed: {e}")
            return False

    async def list_models(self) -> list[str]:
        """List models visible to the configured key."""
        try:
            async with aiohttp.ClientSession(headers=self._headers()) as session:
                async with session.get(
                    f"{self.api_url}/models",
                    proxy=self.proxy,
                    timeout=aiohttp.ClientTimeout(total=10)
                ) as response:
                    response.raise_for_status()
                    data = await response.json()
                    return sorted(m.get("id", "") for m in data.get("data", []) if m.get("id"))
        except Exception as e:
            logger.error(f"Failed to list OpenAI models: {e}")
            return []
