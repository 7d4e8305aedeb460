"""
Token-budget aware splitting of per-file diffs into ordered chunks.
"""

from dataclasses import dataclass, replace
from typing import List, Tuple

from loguru import logger

from .splitter import DiffRecord
from ..utils.tokenizer import Tokenizer


@dataclass(frozen=True)
class Chunk:
    """A slice of one file's hunk text that fits a single request."""

    record: DiffRecord
    sequence_index: int
    text: str
    token_count: int
    truncated: bool = False
    chunk_count: int = 1

    @property
    def source_file(self) -> str:
        return self.record.path

    @property
    def key(self) -> Tuple[int, int]:
        """Identity used to correlate results back to this chunk."""
        return (self.record.index, self.sequence_index)


class _ChunkBuilder:
    """Accumulates pieces against a running token estimate.

    Each piece is counted once on its own; the joined text is only counted
    again when the estimate leaves the budget and when a chunk is emitted,
    so chunking stays linear in the size of the diff.
    """

    def __init__(self, record: DiffRecord, tokenizer: Tokenizer, max_tokens: int):
        self.record = record
        self.tokenizer = tokenizer
        self.max_tokens = max_tokens
        self.chunks: List[Chunk] = []
        self._parts: List[str] = []
        self._count = 0
        self._truncated = False

    def try_add(self, piece: str) -> bool:
        """Append piece if the joined text still fits the budget."""
        estimate = self._count + self.tokenizer.count(piece)
        if estimate > self.max_tokens and self._parts:
            # Tokens can merge across the join
            estimate = self.tokenizer.count("".join(self._parts) + piece)
        if estimate > self.max_tokens:
            return False
        self._parts.append(piece)
        self._count = estimate
        return True

    def add_truncated(self, piece: str) -> None:
        self.flush()
        self._parts.append(piece)
        self._truncated = True
        self.flush()

    def flush(self) -> None:
        """Emit the pending pieces, each chunk with its exact token count."""
        while self._parts:
            parts = self._parts
            overflow: List[str] = []
            count = self.tokenizer.count("".join(parts))
            # The running estimate can undercount the joined text
            while count > self.max_tokens and len(parts) > 1:
                overflow.insert(0, parts.pop())
                count = self.tokenizer.count("".join(parts))

            self.chunks.append(Chunk(
                record=self.record,
                sequence_index=len(self.chunks),
                text="".join(parts),
                token_count=count,
                truncated=self._truncated,
            ))
            self._parts = overflow
            self._truncated = False
        self._count = 0


def split_hunks(hunk_text: str) -> List[str]:
    """Split hunk text at @@ markers, keeping any preamble with the first hunk."""
    hunks: List[str] = []
    current: List[str] = []
    seen_header = False
    for line in hunk_text.splitlines(keepends=True):
        if line.startswith("@@"):
            if seen_header:
                hunks.append("".join(current))
                current = []
            seen_header = True
        current.append(line)
    if current:
        hunks.append("".join(current))
    return hunks


class Chunker:
    """Split DiffRecords into Chunks that each respect the token budget.

    Boundaries only ever fall between lines. Whole @@ hunks are packed greedily;
    a hunk is cut between its own lines only when it does not fit a request on
    its own. A single line larger than the whole budget is head-truncated
    (its beginning is kept), placed in a chunk of its own and flagged with
    ``truncated=True``.
    """

    def __init__(self, tokenizer: Tokenizer):
        self.tokenizer = tokenizer

    def split(self, record: DiffRecord, max_tokens: int) -> List[Chunk]:
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be positive, got {max_tokens}")

        if record.is_binary or record.is_empty:
            return [Chunk(record=record, sequence_index=0, text="", token_count=0)]

        text = record.hunk_text
        total = self.tokenizer.count(text)
        if total <= max_tokens:
            return [Chunk(record=record, sequence_index=0, text=text, token_count=total)]

        logger.debug(f"{record.path}: {total} tokens exceeds budget of {max_tokens}, splitting")
        builder = _ChunkBuilder(record, self.tokenizer, max_tokens)

        for hunk in split_hunks(text):
            if builder.try_add(hunk):
                continue
            if self.tokenizer.count(hunk) <= max_tokens:
                builder.flush()
                builder.try_add(hunk)
                continue

            # Hunk alone is over budget: fall back to line boundaries
            for line in hunk.splitlines(keepends=True):
                if builder.try_add(line):
                    continue
                builder.flush()
                if builder.try_add(line):
                    continue
                kept = self.tokenizer.truncate(line, max_tokens)
                logger.warning(
                    f"{record.path}: line of {self.tokenizer.count(line)} tokens exceeds "
                    f"budget of {max_tokens}, keeping first {len(kept)} of {len(line)} characters"
                )
                builder.add_truncated(kept)

        builder.flush()
        count = len(builder.chunks)
        logger.debug(f"{record.path}: split into {count} chunks")
        return [replace(chunk, chunk_count=count) for chunk in builder.chunks]

    def split_all(self, records, max_tokens: int) -> List[Chunk]:
        """Chunk every record in order; each record yields at least one chunk."""
        chunks: List[Chunk] = []
        for record in records:
            chunks.extend(self.split(record, max_tokens))
        return chunks
