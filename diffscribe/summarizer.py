"""
Concurrent, failure-tolerant summarization of diff chunks through an AI backend.
"""

import asyncio
import fnmatch
import random
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .ai_backends.base import (
    AIBackend,
    AuthError,
    InvalidRequestError,
    TransientError,
    is_retriable,
)
from .config.settings import PipelineConfig
from .diff.chunker import Chunk
from .diff.splitter import ChangeKind, DiffRecord
from .utils.prompts import PromptBuilder
from .utils.retry import RetryOutcome, RetryPolicy, with_retry

BINARY_SUMMARY = "Binary file changed."
EMPTY_SUMMARY = "No content changes."
IGNORED_SUMMARY = "Generated file changed."
DEADLINE_EXCEEDED = "deadline exceeded"

ChunkKey = Tuple[int, int]


@dataclass(frozen=True)
class SummaryResult:
    """Outcome of summarizing one chunk."""

    chunk: Chunk
    text: str
    attempts: int
    succeeded: bool
    error: Optional[str] = None
    skipped: bool = False


def matches_ignore_pattern(path: str, patterns: Sequence[str]) -> bool:
    """Check a path, and its file name, against glob patterns."""
    name = PurePosixPath(path).name
    return any(fnmatch.fnmatch(path, p) or fnmatch.fnmatch(name, p) for p in patterns)


class SummarizationClient:
    """Issue one completion request per chunk with timeouts, retries and a bounded pool."""

    def __init__(
        self,
        backend: AIBackend,
        config: PipelineConfig,
        prompt_builder: Optional[PromptBuilder] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.backend = backend
        self.config = config
        self.prompt_builder = prompt_builder or PromptBuilder(config)
        self.policy = RetryPolicy(
            max_attempts=config.max_retry_attempts,
            base_delay=config.backoff_base,
            max_delay=config.backoff_max,
        )
        self._sleep = sleep
        self._rng = rng or random.Random()

    def short_circuit(self, chunk: Chunk) -> Optional[SummaryResult]:
        """Result for chunks that are never sent to the backend, if this is one."""
        record = chunk.record
        if record.is_binary:
            text = BINARY_SUMMARY
        elif matches_ignore_pattern(record.path, self.config.ignored_files):
            text = IGNORED_SUMMARY
        elif record.is_empty:
            text = self._empty_summary(record)
        else:
            return None
        logger.debug(f"{record.path}: no request needed ({text})")
        return SummaryResult(chunk=chunk, text=text, attempts=0, succeeded=True, skipped=True)

    @staticmethod
    def _empty_summary(record: DiffRecord) -> str:
        if record.change_kind == ChangeKind.RENAMED and record.old_path:
            return f"Renamed from {record.old_path}."
        return EMPTY_SUMMARY

    async def complete(
        self,
        prompt: str,
        label: str = "completion",
        on_attempt: Optional[Callable[[], None]] = None,
    ) -> RetryOutcome[str]:
        """Send one prompt with the per-call timeout and the retry policy."""

        async def attempt() -> str:
            if on_attempt is not None:
                on_attempt()
            try:
                response = await asyncio.wait_for(
                    self.backend.call_api(prompt),
                    timeout=self.config.request_timeout,
                )
            except asyncio.TimeoutError as e:
                raise TransientError(f"request timed out after {self.config.request_timeout}s") from e
            if not response.content.strip():
                raise TransientError("backend returned an empty completion")
            return response.content.strip()

        return await with_retry(
            attempt,
            self.policy,
            is_retriable,
            sleep=self._sleep,
            rng=self._rng,
            label=label,
        )

    async def summarize(self, chunk: Chunk) -> SummaryResult:
        """Summarize a single chunk; failures are returned, never raised."""
        skipped = self.short_circuit(chunk)
        if skipped is not None:
            return skipped
        return await self._summarize(chunk, self.prompt_builder.build_file_prompt(chunk), {})

    async def _summarize(self, chunk: Chunk, prompt: str, progress: Dict[ChunkKey, int]) -> SummaryResult:
        label = f"{chunk.source_file}#{chunk.sequence_index}"
        progress[chunk.key] = 0

        def count_attempt() -> None:
            progress[chunk.key] += 1

        start_time = time.time()
        outcome = await self.complete(prompt, label=label, on_attempt=count_attempt)
        duration = time.time() - start_time

        if outcome.succeeded:
            logger.debug(f"{label}: summarized in {duration:.2f}s ({outcome.attempts} attempt(s))")
            return SummaryResult(chunk=chunk, text=outcome.value, attempts=outcome.attempts, succeeded=True)

        error = outcome.error
        if isinstance(error, (AuthError, InvalidRequestError)):
            logger.error(
                f"{label}: {type(error).__name__} from {self.backend.backend_type} backend, "
                f"check your configuration: {error}"
            )
        else:
            logger.warning(f"{label}: giving up after {outcome.attempts} attempt(s): {error}")
        return SummaryResult(
            chunk=chunk,
            text="",
            attempts=outcome.attempts,
            succeeded=False,
            error=f"{type(error).__name__}: {error}",
        )

    async def summarize_all(
        self,
        chunks: Sequence[Chunk],
        timeout: Optional[float] = None,
    ) -> Dict[ChunkKey, SummaryResult]:
        """Summarize every chunk with at most worker_pool_size requests in flight.

        Results are keyed by chunk key, never by completion order. When timeout
        elapses, unfinished requests are cancelled and their chunks come back
        as failed results.
        """
        results: Dict[ChunkKey, SummaryResult] = {}
        jobs: List[Tuple[Chunk, str]] = []

        # Prompts are rendered before dispatch so template defects abort early
        for chunk in chunks:
            skipped = self.short_circuit(chunk)
            if skipped is not None:
                results[chunk.key] = skipped
            else:
                jobs.append((chunk, self.prompt_builder.build_file_prompt(chunk)))

        if not jobs:
            return results

        queue: "asyncio.Queue[Tuple[Chunk, str]]" = asyncio.Queue()
        for job in jobs:
            queue.put_nowait(job)
        progress: Dict[ChunkKey, int] = {}

        async def worker() -> None:
            while True:
                try:
                    chunk, prompt = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[chunk.key] = await self._summarize(chunk, prompt, progress)

        pool_size = min(self.config.worker_pool_size, len(jobs))
        logger.info(f"Summarizing {len(jobs)} chunk(s) with {pool_size} worker(s)")
        workers = [asyncio.create_task(worker()) for _ in range(pool_size)]

        try:
            done, pending = await asyncio.wait(workers, timeout=timeout)
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        for task in done:
            if task.exception() is not None:
                raise task.exception()

        missing = [chunk for chunk, _ in jobs if chunk.key not in results]
        if missing:
            logger.warning(f"Run deadline of {timeout}s exceeded, {len(missing)} chunk(s) left unsummarized")
        for chunk in missing:
            results[chunk.key] = SummaryResult(
                chunk=chunk,
                text="",
                attempts=progress.get(chunk.key, 0),
                succeeded=False,
                error=DEADLINE_EXCEEDED,
            )
        return results
