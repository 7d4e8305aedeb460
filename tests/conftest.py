"""
Shared fixtures: a scripted AI backend, a one-char-per-token tokenizer and
isolated configuration directories.
"""

import asyncio
import sys
from typing import Callable, List, Optional, Sequence, Union

import pytest
from git import Repo
from loguru import logger

from diffscribe.ai_backends.base import AIBackend, AIResponse
from diffscribe.config.settings import PipelineConfig
from diffscribe.utils.tokenizer import ApproximateTokenizer

Outcome = Union[str, Exception]


class FakeBackend(AIBackend):
    """In-memory backend returning scripted replies.

    Replies are consumed in order first; after that ``handler(prompt)`` is
    used, falling back to ``default``. Exceptions are raised instead of
    returned. ``delay`` may be a number or a callable taking the prompt.
    """

    def __init__(
        self,
        replies: Sequence[Outcome] = (),
        handler: Optional[Callable[[str], Outcome]] = None,
        default: str = "Summary.",
        delay: Union[float, Callable[[str], float]] = 0.0,
    ):
        super().__init__(api_url="http://fake.invalid", model="fake-model")
        self.replies: List[Outcome] = list(replies)
        self.handler = handler
        self.default = default
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def call_api(self, prompt: str) -> AIResponse:
        self.calls.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delay(prompt) if callable(self.delay) else self.delay
            if delay:
                await asyncio.sleep(delay)

            if self.replies:
                outcome = self.replies.pop(0)
            elif self.handler is not None:
                outcome = self.handler(prompt)
            else:
                outcome = self.default

            if isinstance(outcome, Exception):
                raise outcome
            return AIResponse(content=outcome, model=self.model, response_time=0.0, backend_type=self.backend_type)
        finally:
            self.in_flight -= 1

    async def health_check(self) -> bool:
        return True

    async def list_models(self) -> list[str]:
        return [self.model]


def build_file_diff(
    path: str,
    added: Sequence[str] = (),
    removed: Sequence[str] = (),
    context: Sequence[str] = (),
) -> str:
    """A single-hunk git diff modifying path."""
    old_count = len(context) + len(removed)
    new_count = len(context) + len(added)
    lines = [
        f"diff --git a/{path} b/{path}",
        "index 83db48f..bf269f4 100644",
        f"--- a/{path}",
        f"+++ b/{path}",
        f"@@ -1,{old_count} +1,{new_count} @@",
    ]
    lines += [f" {line}" for line in context]
    lines += [f"-{line}" for line in removed]
    lines += [f"+{line}" for line in added]
    return "\n".join(lines) + "\n"


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user config, cache and API keys out of the tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for name in ("OPENAI_API_KEY", "OPENAI_API_BASE", "OPENAI_MODEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    # The CLI replaces loguru sinks with streams that die with the test
    logger.remove()
    logger.add(sys.stderr, level="WARNING")


@pytest.fixture
def char_tokenizer():
    """One token per character, so budgets are easy to reason about."""
    return ApproximateTokenizer(chars_per_token=1)


@pytest.fixture
def make_config():
    """PipelineConfig factory with fast retries and no title or summary calls."""

    def _make(**overrides) -> PipelineConfig:
        values = dict(
            model="fake-model",
            max_tokens_per_request=1000,
            worker_pool_size=4,
            max_retry_attempts=3,
            request_timeout=2.0,
            run_deadline=10.0,
            backoff_base=0.0,
            backoff_max=0.0,
            generate_title=False,
            generate_summary=False,
        )
        values.update(overrides)
        return PipelineConfig(**values)

    return _make


@pytest.fixture
def fake_backend():
    """FakeBackend factory."""
    return FakeBackend


@pytest.fixture
def make_file_diff():
    return build_file_diff


@pytest.fixture
def git_repo(tmp_path):
    """A repository with one commit containing README.md."""
    path = tmp_path / "repo"
    repo = Repo.init(path)
    with repo.config_writer() as config:
        config.set_value("user", "name", "Test User")
        config.set_value("user", "email", "test@example.com")
    (path / "README.md").write_text("# Project\n")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")
    return repo
