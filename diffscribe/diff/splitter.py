"""
Unified diff parsing into per-file records.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from loguru import logger


class ChangeKind(str, Enum):
    """How a file was changed by the diff."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class DiffRecord:
    """One logical file entry of a unified diff."""

    path: str
    change_kind: ChangeKind
    hunk_text: str
    old_path: Optional[str] = None
    is_binary: bool = False
    index: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.hunk_text.strip()

    @property
    def lines_added(self) -> int:
        return sum(1 for line in self.hunk_text.splitlines() if line.startswith("+"))

    @property
    def lines_removed(self) -> int:
        return sum(1 for line in self.hunk_text.splitlines() if line.startswith("-"))


class MalformedDiffError(Exception):
    """Raised when non-empty input contains no recognizable file header."""


DEV_NULL = "/dev/null"

_GIT_HEADER = re.compile(r'^diff --git (?P<old>"?a/.+?"?) (?P<new>"?b/.+?"?)$')
_OLD_FILE = re.compile(r'^--- (?P<path>[^\t]+)')
_NEW_FILE = re.compile(r'^\+\+\+ (?P<path>[^\t]+)')
_HUNK_HEADER = re.compile(r'^@@ -\d+(?:,(?P<old>\d+))? \+\d+(?:,(?P<new>\d+))? @@')
_BINARY = re.compile(r'^Binary files .+ and .+ differ$')
_HUNK_LINE_PREFIXES = ("+", "-", " ", "\\", "")


def _clean_path(path: str) -> str:
    """Remove quoting, trailing timestamps and the a/ or b/ prefix git adds."""
    path = path.strip()
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        path = path[1:-1]
    if path == DEV_NULL:
        return path
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


class _FileEntry:
    """Mutable accumulator for the file currently being parsed."""

    def __init__(self, old_path: Optional[str] = None, new_path: Optional[str] = None):
        self.old_path = old_path
        self.new_path = new_path
        self.kind: Optional[ChangeKind] = None
        self.is_binary = False
        self.seen_file_lines = False
        self.hunk_lines: List[str] = []
        # Lines still expected by the current @@ header (old side, new side)
        self.old_left = 0
        self.new_left = 0
        self.lenient_hunk = False

    @property
    def in_hunk(self) -> bool:
        return self.lenient_hunk or self.old_left > 0 or self.new_left > 0

    def add_hunk_line(self, line: str) -> None:
        self.hunk_lines.append(line + "\n")
        if self.lenient_hunk or line.startswith("\\"):
            return
        if line.startswith("+"):
            self.new_left -= 1
        elif line.startswith("-"):
            self.old_left -= 1
        else:
            self.old_left -= 1
            self.new_left -= 1

    def open_hunk(self, line: str) -> None:
        self.hunk_lines.append(line + "\n")
        match = _HUNK_HEADER.match(line)
        if match:
            self.lenient_hunk = False
            self.old_left = int(match.group("old")) if match.group("old") is not None else 1
            self.new_left = int(match.group("new")) if match.group("new") is not None else 1
        else:
            # Combined or hand-written headers: accept diff-looking lines
            self.lenient_hunk = True

    def close_hunk(self) -> None:
        self.old_left = self.new_left = 0
        self.lenient_hunk = False

    def to_record(self, index: int) -> DiffRecord:
        kind = self.kind
        if kind is None:
            if self.old_path == DEV_NULL:
                kind = ChangeKind.ADDED
            elif self.new_path == DEV_NULL:
                kind = ChangeKind.DELETED
            elif self.old_path and self.new_path and self.old_path != self.new_path:
                kind = ChangeKind.RENAMED
            else:
                kind = ChangeKind.MODIFIED

        if kind == ChangeKind.DELETED or self.new_path in (None, DEV_NULL):
            path = self.old_path
        else:
            path = self.new_path

        return DiffRecord(
            path=path or "",
            change_kind=kind,
            hunk_text="" if self.is_binary else "".join(self.hunk_lines),
            old_path=self.old_path if kind == ChangeKind.RENAMED else None,
            is_binary=self.is_binary,
            index=index,
        )


class DiffSplit:
    """Restartable, lazy sequence of DiffRecords parsed from raw diff text.

    Every iteration re-parses the input from the start, so the sequence can be
    consumed more than once and always yields equal records in diff order.
    Iteration raises MalformedDiffError when non-empty input has no file header.
    """

    def __init__(self, diff_text: str):
        self.diff_text = diff_text or ""

    def __iter__(self) -> Iterator[DiffRecord]:
        return self._parse()

    def __repr__(self) -> str:
        return f"DiffSplit({len(self.diff_text)} chars)"

    def _parse(self) -> Iterator[DiffRecord]:
        if not self.diff_text.strip():
            return

        lines = self.diff_text.splitlines()
        current: Optional[_FileEntry] = None
        index = 0
        saw_header = False

        for i, line in enumerate(lines):
            # Inside a hunk every line is content until its counts are used up
            if current is not None and current.in_hunk:
                if _GIT_HEADER.match(line) or (
                    current.lenient_hunk and line[:1] not in _HUNK_LINE_PREFIXES
                ):
                    current.close_hunk()
                else:
                    current.add_hunk_line(line)
                    continue

            git_header = _GIT_HEADER.match(line)
            if git_header:
                if current is not None:
                    yield current.to_record(index)
                    index += 1
                saw_header = True
                current = _FileEntry(
                    _clean_path(git_header.group("old")),
                    _clean_path(git_header.group("new")),
                )
                continue

            old_file = _OLD_FILE.match(line)
            if old_file and i + 1 < len(lines) and _NEW_FILE.match(lines[i + 1]):
                # A ---/+++ pair after a file already has its paths starts a
                # new entry (diffs produced without --git)
                if current is None or current.seen_file_lines or current.hunk_lines:
                    if current is not None:
                        yield current.to_record(index)
                        index += 1
                    saw_header = True
                    current = _FileEntry()
                current.old_path = _clean_path(old_file.group("path"))
                continue

            if current is None:
                # Preamble before the first header (commit headers, notes)
                continue

            new_file = _NEW_FILE.match(line)
            if new_file and not current.hunk_lines:
                current.new_path = _clean_path(new_file.group("path"))
                current.seen_file_lines = True
            elif line.startswith("@@"):
                current.open_hunk(line)
            elif line.startswith("\\") and current.hunk_lines:
                current.hunk_lines.append(line + "\n")
            elif line.startswith("new file mode"):
                current.kind = ChangeKind.ADDED
            elif line.startswith("deleted file mode"):
                current.kind = ChangeKind.DELETED
            elif line.startswith("rename from "):
                current.old_path = line[len("rename from "):]
                current.kind = ChangeKind.RENAMED
            elif line.startswith("rename to "):
                current.new_path = line[len("rename to "):]
                current.kind = ChangeKind.RENAMED
            elif line.startswith("GIT binary patch") or _BINARY.match(line):
                current.is_binary = True

        if current is not None:
            yield current.to_record(index)

        if not saw_header:
            first_line = self.diff_text.strip().splitlines()[0]
            logger.error("Diff input has no recognizable file header")
            raise MalformedDiffError(f"No file header found in diff input (starts with {first_line[:80]!r})")


def split_diff(diff_text: str) -> DiffSplit:
    """Split raw unified diff text into per-file records, in diff order."""
    return DiffSplit(diff_text)
