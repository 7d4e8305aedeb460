"""
AI backend factory.
"""

from typing import Optional

from loguru import logger

from .base import AIBackend
from .ollama import OllamaBackend
from .openai import OpenAIBackend
from ..config.settings import Settings
from ..utils.tokenizer import Tokenizer


class BackendFactory:
    """Factory for creating AI backends from settings."""

    _backends = {
        "openai": OpenAIBackend,
        "ollama": OllamaBackend,
    }

    @classmethod
    def create_backend(
        cls,
        settings: Settings,
        backend_type: Optional[str] = None,
        tokenizer: Optional[Tokenizer] = None,
    ) -> AIBackend:
        """Create the configured backend, or the one named by backend_type."""
        backend_type = backend_type or settings.ai.backend_type
        if backend_type not in cls._backends:
            raise ValueError(f"Unknown backend type: {backend_type}")

        logger.debug(f"Creating {backend_type} backend for model {settings.ai.model}")
        if backend_type == "openai":
            return OpenAIBackend(
                api_url=settings.ai.api_url,
                model=settings.ai.model,
                timeout=settings.ai.timeout,
                proxy=settings.ai.proxy,
                api_key=settings.ai.api_key,
                tokenizer=tokenizer,
            )

        return cls._backends[backend_type](
            api_url=settings.ai.api_url,
            model=settings.ai.model,
            timeout=settings.ai.timeout,
            proxy=settings.ai.proxy,
        )

    @classmethod
    async def test_all_backends(cls, settings: Settings) -> dict[str, bool]:
        """Test all backend types and return their status."""
        results = {}

        for backend_type in cls._backends:
            try:
                backend = cls.create_backend(settings, backend_type)
                results[backend_type] = await backend.health_check()
            except Exception as e:
                logger.debug(f"Failed to test {backend_type}: {e}")
                results[backend_type] = False

        return results

    @classmethod
    def list_supported_backends(cls) -> list[str]:
        """List all supported backend types."""
        return list(cls._backends.keys())
