"""
Ollama AI backend implementation.
"""

import time

import aiohttp
from loguru import logger

from .base import AIBackend, AIResponse, InvalidRequestError


class OllamaBackend(AIBackend):
    """Ollama AI backend implementation."""

    async def call_api(self, prompt: str) -> AIResponse:
        """Call the Ollama generate API."""
        self._log_request(prompt)

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": 0.1,
                "top_p": 0.9,
            }
        }

        start_time = time.time()
        data = await self._post_json("/api/generate", payload)
        if "response" not in data:
            raise InvalidRequestError(f"Ollama response has no 'response' field: {str(data)[:200]}")

        response = AIResponse(
            content=data["response"].strip(),
            model=self.model,
            tokens_used=data.get("eval_count"),
            response_time=time.time() - start_time,
            backend_type=self.backend_type,
            raw_response=data
        )
        self._log_response(response)
        return response

    async def health_check(self) -> bool:
        """Check if Ollama is healthy."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self.api_url}/api/tags",
                    timeout=aiohttp.ClientTimeout(total=5)
                ) as response:
                    return response.status == 200
        except Exception as e:
            logger.debug(f"Ollama health check failed: {e}")
            return False

    async def list_models(self) -> list[str]:
        """List available Ollama models."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self.api_url}/api/tags",
                    timeout=aiohttp.ClientTimeout(total=10)
                ) as response:
                    response.raise_for_status()
                    data = await response.json()
                    models = [model.get("name", "") for model in data.get("models", [])]
                    return [m for m in models if m]

        except Exception as e:
            logger.error(f"Failed to list Ollama models: {e}")
            return []
