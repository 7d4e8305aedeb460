"""
Core diffscribe engine that runs the diff-to-commit-message pipeline.
"""

import asyncio
import random
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from loguru import logger

from .aggregator import Aggregator, CommitMessage
from .ai_backends.base import AIBackend
from .ai_backends.factory import BackendFactory
from .config.settings import PipelineConfig, Settings
from .diff.chunker import Chunk, Chunker
from .diff.splitter import DiffRecord, split_diff
from .summarizer import SummarizationClient
from .utils.prompts import PromptBuilder
from .utils.tokenizer import Tokenizer, get_tokenizer


class DiffScribe:
    """Turn a raw diff into a CommitMessage.

    Splitting and chunking run synchronously up front; summarization fans out
    over a bounded worker pool under the run deadline; the aggregator then
    renders whatever results are available. Only a malformed diff or a broken
    template raises.
    """

    def __init__(
        self,
        config: PipelineConfig,
        backend: AIBackend,
        tokenizer: Tokenizer,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.backend = backend
        self.prompt_builder = PromptBuilder(config)
        self.chunker = Chunker(tokenizer)
        self.client = SummarizationClient(backend, config, self.prompt_builder, sleep=sleep, rng=rng)
        self.aggregator = Aggregator(config, self.prompt_builder, self.client)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DiffScribe":
        """Wire the configured backend and tokenizer."""
        tokenizer = get_tokenizer(settings.ai.backend_type, settings.ai.model)
        try:
            backend = BackendFactory.create_backend(settings, tokenizer=tokenizer)
        except Exception as e:
            raise DiffScribeError(f"Failed to initialize AI backend: {e}") from e
        logger.info(f"Initialized {backend.backend_type} backend with model {backend.model}")
        return cls(settings.to_pipeline_config(), backend, tokenizer)

    def prepare(self, diff_text: str) -> Tuple[List[DiffRecord], List[Chunk]]:
        """Parse and chunk the diff; raises MalformedDiffError on unparsable input."""
        records = list(split_diff(diff_text))
        chunks = self.chunker.split_all(records, self.config.max_tokens_per_request)
        logger.debug(f"Parsed {len(records)} file(s) into {len(chunks)} chunk(s)")
        return records, chunks

    async def run(self, diff_text: str) -> CommitMessage:
        """Run the whole pipeline for one diff."""
        start_time = time.monotonic()
        records, chunks = self.prepare(diff_text)
        if not records:
            raise DiffScribeError("No changes to summarize")

        results = await self.client.summarize_all(chunks, timeout=self.config.run_deadline)

        remaining = self.config.run_deadline - (time.monotonic() - start_time)
        message = await self.aggregator.render(results.values(), records, timeout=remaining)

        failed = sum(1 for f in message.body if f.failed)
        logger.info(
            f"Generated commit message for {len(records)} file(s) in "
            f"{time.monotonic() - start_time:.2f}s ({failed} without summary)"
        )
        return message


class DiffScribeError(Exception):
    """Custom exception for diffscribe operations."""
