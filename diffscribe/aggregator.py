"""
Aggregation of chunk summaries into per-file summaries and the final commit message.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from .config.settings import PipelineConfig
from .diff.splitter import ChangeKind, DiffRecord
from .summarizer import SummarizationClient, SummaryResult
from .utils.prompts import MessageContext, PromptBuilder

PLACEHOLDER_SUMMARY = "[summary unavailable]"

_TITLE_VERBS = {
    ChangeKind.ADDED: "Add",
    ChangeKind.MODIFIED: "Update",
    ChangeKind.DELETED: "Remove",
    ChangeKind.RENAMED: "Rename",
}


@dataclass(frozen=True)
class FileSummary:
    """Merged summary of every chunk belonging to one file."""

    path: str
    change_kind: ChangeKind
    summary_text: str
    old_path: Optional[str] = None
    failed: bool = False


@dataclass(frozen=True)
class DiffStats:
    """Simple counts over the whole diff."""

    files_changed: int = 0
    added: int = 0
    modified: int = 0
    deleted: int = 0
    renamed: int = 0
    lines_added: int = 0
    lines_removed: int = 0

    @classmethod
    def from_records(cls, records: Sequence[DiffRecord]) -> "DiffStats":
        counts = {kind: 0 for kind in ChangeKind}
        for record in records:
            counts[record.change_kind] += 1
        return cls(
            files_changed=len(records),
            added=counts[ChangeKind.ADDED],
            modified=counts[ChangeKind.MODIFIED],
            deleted=counts[ChangeKind.DELETED],
            renamed=counts[ChangeKind.RENAMED],
            lines_added=sum(r.lines_added for r in records),
            lines_removed=sum(r.lines_removed for r in records),
        )

    def kind_breakdown(self) -> str:
        """E.g. '1 added, 2 modified'."""
        parts = [
            (self.added, "added"),
            (self.modified, "modified"),
            (self.deleted, "deleted"),
            (self.renamed, "renamed"),
        ]
        return ", ".join(f"{n} {label}" for n, label in parts if n)


@dataclass(frozen=True)
class CommitMessage:
    """The final rendered commit message."""

    title: str
    body: Tuple[FileSummary, ...]
    summary: str
    stats: DiffStats
    text: str

    def __str__(self) -> str:
        return self.text


def default_title(files: Sequence[FileSummary], stats: DiffStats) -> str:
    """Deterministic title used when no title could be generated."""
    if not files:
        return "Update files"
    if len(files) == 1:
        only = files[0]
        if only.change_kind == ChangeKind.RENAMED and only.old_path:
            return f"Rename {only.old_path} to {only.path}"
        return f"{_TITLE_VERBS[only.change_kind]} {only.path}"

    kinds = {f.change_kind for f in files}
    if len(kinds) == 1:
        return f"{_TITLE_VERBS[kinds.pop()]} {len(files)} files"
    return f"Update {len(files)} files ({stats.kind_breakdown()})"


def _clean_title(raw: str) -> str:
    for line in raw.splitlines():
        line = line.strip().strip('`"\'').strip()
        if line:
            return line
    return ""


class Aggregator:
    """Group chunk results per file in diff order and render the commit message."""

    def __init__(
        self,
        config: PipelineConfig,
        prompt_builder: Optional[PromptBuilder] = None,
        client: Optional[SummarizationClient] = None,
    ):
        self.config = config
        self.prompt_builder = prompt_builder or PromptBuilder(config)
        self.client = client

    def collect(
        self,
        results: Iterable[SummaryResult],
        records: Optional[Sequence[DiffRecord]] = None,
    ) -> List[FileSummary]:
        """Merge results into one FileSummary per record, in diff order.

        Without explicit records, the files seen in results are ordered by
        their position in the diff, never by completion order or name.
        """
        by_file: Dict[int, List[SummaryResult]] = defaultdict(list)
        seen: Dict[int, DiffRecord] = {}
        for result in results:
            record = result.chunk.record
            by_file[record.index].append(result)
            seen.setdefault(record.index, record)

        if records is None:
            records = [seen[index] for index in sorted(seen)]

        summaries: List[FileSummary] = []
        for record in records:
            group = sorted(by_file.get(record.index, []), key=lambda r: r.chunk.sequence_index)
            texts = [r.text for r in group if r.succeeded and r.text]
            failed_parts = sum(1 for r in group if not r.succeeded)

            if texts:
                if failed_parts:
                    logger.warning(f"{record.path}: {failed_parts} of {len(group)} part(s) could not be summarized")
                summary_text = self.config.chunk_separator.join(texts)
                failed = False
            else:
                logger.warning(f"{record.path}: no summary available, using placeholder")
                summary_text = PLACEHOLDER_SUMMARY
                failed = True

            summaries.append(FileSummary(
                path=record.path,
                change_kind=record.change_kind,
                summary_text=summary_text,
                old_path=record.old_path,
                failed=failed,
            ))
        return summaries

    async def _ask(self, prompt: str, label: str, timeout: Optional[float]) -> Optional[str]:
        """One extra completion; None on any failure or when out of time."""
        if self.client is None:
            return None
        if timeout is not None and timeout <= 0:
            logger.warning(f"No time left for {label} generation")
            return None
        try:
            outcome = await asyncio.wait_for(self.client.complete(prompt, label=label), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{label} generation ran past the run deadline")
            return None
        if not outcome.succeeded:
            logger.warning(f"{label} generation failed: {outcome.error}")
            return None
        return outcome.value

    async def render(
        self,
        results: Iterable[SummaryResult],
        records: Optional[Sequence[DiffRecord]] = None,
        timeout: Optional[float] = None,
    ) -> CommitMessage:
        """Build the CommitMessage; only template defects raise."""
        results = list(results)
        files = self.collect(results, records)
        if records is None:
            by_index = {r.chunk.record.index: r.chunk.record for r in results}
            records = [by_index[index] for index in sorted(by_index)]
        stats = DiffStats.from_records(records)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        def remaining() -> Optional[float]:
            return None if deadline is None else deadline - loop.time()

        summary = ""
        title = ""
        # Nothing worth summarizing when every file failed
        has_content = any(not f.failed for f in files)

        if has_content and self.config.generate_summary:
            prompt = self.prompt_builder.build_summary_prompt(files, stats)
            summary = (await self._ask(prompt, "summary", remaining()) or "").strip()

        if has_content and self.config.generate_title:
            prompt = self.prompt_builder.build_title_prompt(files, stats)
            title = _clean_title(await self._ask(prompt, "title", remaining()) or "")

        if not title:
            title = default_title(files, stats)
            logger.debug(f"Using default title: {title}")

        text = self.prompt_builder.render_message(MessageContext(
            title=title,
            summary=summary,
            files=files,
            stats=stats,
            show_per_file_summary=self.config.show_per_file_summary,
        ))

        return CommitMessage(
            title=title,
            body=tuple(files),
            summary=summary,
            stats=stats,
            text=text,
        )
