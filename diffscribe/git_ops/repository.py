"""
Git repository operations: staged diff, hook installation and message file writes.
"""

import os
import stat
import tempfile
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from loguru import logger

HOOK_NAME = "prepare-commit-msg"
HOOK_MARKER = "# installed by diffscribe"
HOOK_SCRIPT = f"""#!/bin/sh
{HOOK_MARKER}
exec diffscribe prepare-commit-msg "$@"
"""

# Commit sources passed by git for which no message should be generated
SKIPPED_COMMIT_SOURCES = ("message", "template", "merge", "squash")


class GitRepository:
    """Git repository interface used by the hook."""

    def __init__(self, repo_path: Optional[Path] = None):
        """Initialize Git repository."""
        self.repo_path = repo_path or Path.cwd()
        self.repo: Optional[Repo] = None
        self._initialize_repo()

    def _initialize_repo(self) -> None:
        """Initialize the Git repository object."""
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
            logger.debug(f"Initialized Git repository at {self.repo.working_dir}")
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitRepositoryError(f"Not a Git repository: {self.repo_path}")

    def get_staged_diff(self, amend: bool = False) -> str:
        """Unified diff of the staged changes (against HEAD~1 when amending)."""
        args = ["--staged", "--no-color", "--no-ext-diff", "--diff-algorithm=minimal"]
        if amend:
            args.insert(0, "HEAD~1")
        try:
            diff = self.repo.git.diff(*args)
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to read staged diff: {e}")
        logger.debug(f"Staged diff: {len(diff)} characters")
        return diff

    @property
    def hooks_dir(self) -> Path:
        """Hooks directory, honouring core.hooksPath."""
        with self.repo.config_reader() as config:
            hooks_path = config.get_value("core", "hooksPath", "")
        if hooks_path:
            path = Path(os.path.expanduser(str(hooks_path)))
            return path if path.is_absolute() else Path(self.repo.working_dir) / path
        return Path(self.repo.git_dir) / "hooks"

    @property
    def hook_path(self) -> Path:
        return self.hooks_dir / HOOK_NAME

    def install_hook(self, force: bool = False) -> Path:
        """Install the prepare-commit-msg hook, refusing to clobber foreign hooks."""
        path = self.hook_path
        if path.exists() and HOOK_MARKER not in path.read_text(errors="ignore") and not force:
            raise GitRepositoryError(f"A different {HOOK_NAME} hook already exists at {path}")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(HOOK_SCRIPT)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.info(f"Installed {HOOK_NAME} hook at {path}")
        return path

    def uninstall_hook(self) -> bool:
        """Remove our hook; returns False when there was nothing of ours to remove."""
        path = self.hook_path
        if not path.exists() or HOOK_MARKER not in path.read_text(errors="ignore"):
            return False
        path.unlink()
        logger.info(f"Removed {HOOK_NAME} hook at {path}")
        return True


def should_skip_commit_source(commit_source: Optional[str], allow_amend: bool = False) -> bool:
    """Whether git's commit source means the user already supplied a message."""
    if not commit_source:
        return False
    if commit_source == "commit":
        return not allow_amend
    return commit_source in SKIPPED_COMMIT_SOURCES


def write_commit_message(message_file: Path, message: str) -> None:
    """Prepend message to the commit message file, replacing it atomically.

    The existing content (git's comment template) is kept below the message.
    The file is either fully rewritten or left untouched.
    """
    existing = message_file.read_text() if message_file.exists() else ""
    content = message.rstrip() + "\n"
    if existing.strip():
        content += "\n" + existing

    fd, tmp_name = tempfile.mkstemp(dir=str(message_file.parent), prefix=".diffscribe-")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_name, message_file)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.debug(f"Wrote {len(content)} characters to {message_file}")


class GitRepositoryError(Exception):
    """Git repository operation error."""
