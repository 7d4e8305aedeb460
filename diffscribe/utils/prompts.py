"""
Jinja2 prompt and commit message templates rendered from typed contexts.
"""

from dataclasses import dataclass, fields
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from jinja2 import Environment, StrictUndefined, Template, TemplateError
from loguru import logger

if TYPE_CHECKING:
    from ..aggregator import DiffStats, FileSummary
    from ..config.settings import PipelineConfig
    from ..diff.chunker import Chunk


_FILE_DIFF_FOOTER = """
{% if chunk_count > 1 %}
This is part {{ part }} of {{ chunk_count }} of the diff for this file; summarize only this part.
{% endif %}
{% if truncated %}
Some very long lines were cut short.
{% endif %}
Reply with one to three short sentences in the imperative mood. Do not repeat the file name.

THE GIT DIFF TO BE SUMMARIZED:
```
{{ hunk_text }}
```

THE SUMMARY:
"""

DEFAULT_FILE_DIFF_TEMPLATES: Dict[str, str] = {
    "added": (
        "You are an expert programmer summarizing a git diff.\n"
        "The file {{ path }} is a NEW file. Describe what it introduces.\n"
        + _FILE_DIFF_FOOTER
    ),
    "modified": (
        "You are an expert programmer summarizing a git diff.\n"
        "The file {{ path }} was modified. Describe what changed and why it matters.\n"
        + _FILE_DIFF_FOOTER
    ),
    "deleted": (
        "You are an expert programmer summarizing a git diff.\n"
        "The file {{ path }} was DELETED. Describe what functionality was removed.\n"
        + _FILE_DIFF_FOOTER
    ),
    "renamed": (
        "You are an expert programmer summarizing a git diff.\n"
        "The file {{ old_path }} was renamed to {{ path }}. Describe any content changes.\n"
        + _FILE_DIFF_FOOTER
    ),
}

DEFAULT_TITLE_TEMPLATE = """You are an expert programmer writing the title of a git commit.
{% if conventional_commit %}
Use the Conventional Commits format "type(scope): description" where type is one of
feat, fix, docs, style, refactor, perf, test, build, ci, chore.
{% endif %}
Write ONE line of at most 72 characters in the imperative mood that captures the
overall intent of the changes below. Reply with the title only.

{% for file in files %}
[{{ file.path }}] {{ file.summary_text }}
{% endfor %}

THE TITLE:
"""

DEFAULT_SUMMARY_TEMPLATE = """You are an expert programmer writing the body of a git commit.
Summarize the most important changes below as at most five bullet points, each
starting with "- ". Group related file changes together. Reply with the bullets only.

{% for file in files %}
[{{ file.path }}] {{ file.summary_text }}
{% endfor %}

THE BULLETS:
"""

DEFAULT_COMMIT_MESSAGE_TEMPLATE = """{{ title }}
{% if summary %}

{{ summary }}
{% endif %}
{% if show_per_file_summary and files %}

{% for file in files %}
[{{ file.path }}] {{ file.summary_text }}
{% endfor %}
{% endif %}
"""


class TemplateRenderError(Exception):
    """A template failed to compile or referenced an undefined variable."""


_environment = Environment(
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)


@lru_cache(maxsize=64)
def compile_template(source: str) -> Template:
    """Compile template source, raising TemplateRenderError on syntax errors."""
    try:
        return _environment.from_string(source)
    except TemplateError as e:
        raise TemplateRenderError(f"Invalid template: {e}") from e


def _as_mapping(context: Any) -> Dict[str, Any]:
    # Shallow on purpose: nested dataclasses stay objects for attribute access
    return {f.name: getattr(context, f.name) for f in fields(context)}


def render_template(source: str, context: Any) -> str:
    """Render template source against a dataclass context."""
    template = compile_template(source)
    try:
        return template.render(**_as_mapping(context))
    except TemplateError as e:
        raise TemplateRenderError(f"Template rendering failed: {e}") from e


@dataclass(frozen=True)
class FilePromptContext:
    """Variables available to per-file diff prompts."""

    path: str
    change_kind: str
    old_path: Optional[str]
    hunk_text: str
    part: int
    chunk_count: int
    truncated: bool


@dataclass(frozen=True)
class SummaryPromptContext:
    """Variables available to the title and overall summary prompts."""

    files: Sequence["FileSummary"]
    stats: "DiffStats"
    conventional_commit: bool


@dataclass(frozen=True)
class MessageContext:
    """Variables available to the final commit message template."""

    title: str
    summary: str
    files: Sequence["FileSummary"]
    stats: "DiffStats"
    show_per_file_summary: bool


class PromptBuilder:
    """Build prompts and the final message from the configured templates."""

    def __init__(self, config: "PipelineConfig"):
        """Compile every template up front so defects surface before any request."""
        self.config = config
        for kind, source in config.prompt_templates.items():
            compile_template(source)
        compile_template(config.title_template)
        compile_template(config.summary_template)
        compile_template(config.commit_message_template)

    def build_file_prompt(self, chunk: "Chunk") -> str:
        record = chunk.record
        context = FilePromptContext(
            path=record.path,
            change_kind=record.change_kind.value,
            old_path=record.old_path,
            hunk_text=chunk.text,
            part=chunk.sequence_index + 1,
            chunk_count=chunk.chunk_count,
            truncated=chunk.truncated,
        )
        prompt = render_template(self.config.prompt_templates[record.change_kind], context)
        logger.debug(f"Built prompt for {record.path} part {context.part}/{context.chunk_count}: {len(prompt)} characters")
        return prompt

    def build_title_prompt(self, files: Sequence["FileSummary"], stats: "DiffStats") -> str:
        context = SummaryPromptContext(files=files, stats=stats, conventional_commit=self.config.conventional_commit)
        return render_template(self.config.title_template, context)

    def build_summary_prompt(self, files: Sequence["FileSummary"], stats: "DiffStats") -> str:
        context = SummaryPromptContext(files=files, stats=stats, conventional_commit=self.config.conventional_commit)
        return render_template(self.config.summary_template, context)

    def render_message(self, context: MessageContext) -> str:
        return render_template(self.config.commit_message_template, context).strip()
