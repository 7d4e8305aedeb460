"""
Abstract base class for AI backends and the backend error taxonomy.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger


@dataclass
class AIResponse:
    """Structured AI response data."""

    content: str
    model: str
    tokens_used: Optional[int] = None
    response_time: Optional[float] = None
    backend_type: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


class BackendError(Exception):
    """Base class for failures reported by an AI backend."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientError(BackendError):
    """Network failure, timeout, rate limit or server error; worth retrying."""


class AuthError(BackendError):
    """Credentials missing or rejected; retrying cannot help."""


class InvalidRequestError(BackendError):
    """The request itself was rejected (bad model, prompt too large, ...)."""


def is_retriable(error: Exception) -> bool:
    """Only transient failures are retried."""
    return isinstance(error, TransientError)


def error_for_status(status: int, detail: str = "") -> BackendError:
    """Map an HTTP status code to the backend error taxonomy."""
    message = f"HTTP {status}" + (f": {detail}" if detail else "")
    if status in (401, 403):
        return AuthError(message, status)
    if status in (408, 409, 425, 429) or status >= 500:
        return TransientError(message, status)
    return InvalidRequestError(message, status)


class AIBackend(ABC):
    """Abstract base class for AI backends."""

    def __init__(self, api_url: str, model: str, timeout: int = 30, proxy: Optional[str] = None):
        """Initialize the AI backend."""
        self.api_url = api_url.rstrip('/')
        self.model = model
        self.timeout = timeout
        self.proxy = proxy or None
        self.backend_type = self.__class__.__name__.lower().replace('backend', '')

    @abstractmethod
    async def call_api(self, prompt: str) -> AIResponse:
        """Call the AI API with the given prompt.

        Raises TransientError, AuthError or InvalidRequestError on failure.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the AI backend is healthy and responsive."""
        pass

    @abstractmethod
    async def list_models(self) -> list[str]:
        """List available models from the backend."""
        pass

    def _headers(self) -> Dict[str, str]:
        return {}

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload and translate every failure into a BackendError."""
        async with aiohttp.ClientSession(headers=self._headers()) as session:
            try:
                async with session.post(
                    f"{self.api_url}{path}",
                    json=payload,
                    proxy=self.proxy,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status >= 400:
                        detail = (await response.text())[:200]
                        raise error_for_status(response.status, detail)
                    try:
                        return await response.json(content_type=None)
                    except ValueError as e:
                        raise InvalidRequestError(f"Malformed JSON from {self.backend_type}: {e}")

            except aiohttp.ClientError as e:
                logger.debug(f"{self.backend_type} API connection error: {e}")
                raise TransientError(f"{self.backend_type} connection error: {e}") from e
            except asyncio.TimeoutError as e:
                logger.debug(f"{self.backend_type} API timeout after {self.timeout}s")
                raise TransientError(f"{self.backend_type} request timed out after {self.timeout}s") from e

    def _log_request(self, prompt: str) -> None:
        """Log the API request details."""
        logger.debug(f"AI API request to {self.backend_type}")
        logger.debug(f"URL: {self.api_url}")
        logger.debug(f"Model: {self.model}")
        logger.debug(f"Prompt length: {len(prompt)} characters")

    def _log_response(self, response: AIResponse) -> None:
        """Log the API response details."""
        logger.debug(f"AI API response from {self.backend_type}")
        logger.debug(f"Response length: {len(response.content)} characters")
        if response.tokens_used:
            logger.debug(f"Tokens used: {response.tokens_used}")
        if response.response_time is not None:
            logger.debug(f"Response time: {response.response_time:.2f}s")
