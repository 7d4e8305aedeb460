"""
Configuration management with Pydantic validation and environment variable support.
"""

import json
import os
import platform
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..diff.splitter import ChangeKind
from ..utils.prompts import (
    DEFAULT_COMMIT_MESSAGE_TEMPLATE,
    DEFAULT_FILE_DIFF_TEMPLATES,
    DEFAULT_SUMMARY_TEMPLATE,
    DEFAULT_TITLE_TEMPLATE,
)


DEFAULT_IGNORED_FILES = [
    "Cargo.lock",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "poetry.lock",
    "Pipfile.lock",
    "uv.lock",
    "composer.lock",
    "Gemfile.lock",
    "go.sum",
    "*.min.js",
    "*.min.css",
]


# Used only when neither DIFFSCRIBE_AI__* nor an explicit value sets the field
OPENAI_ENVIRONMENT = {
    "api_key": "OPENAI_API_KEY",
    "api_url": "OPENAI_API_BASE",
    "model": "OPENAI_MODEL",
}


class AISettings(BaseModel):
    """AI backend configuration."""

    backend_type: Literal["openai", "ollama"] = Field(
        default="openai",
        description="AI backend type"
    )
    api_url: str = Field(
        default="https://api.openai.com/v1",
        description="AI server endpoint"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key (OpenAI backend only)"
    )
    model: str = Field(
        default="gpt-4o-mini",
        description="AI model to use"
    )
    timeout: int = Field(
        default=30,
        ge=1,
        le=600,
        description="Per-request timeout in seconds"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of attempts per request"
    )
    proxy: Optional[str] = Field(
        default=None,
        description="HTTP proxy for backend requests"
    )


class PipelineSettings(BaseModel):
    """Chunking and concurrency configuration."""

    max_tokens_per_request: int = Field(
        default=3000,
        ge=16,
        le=200_000,
        description="Token budget for a single diff chunk"
    )
    worker_pool_size: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum number of in-flight backend requests"
    )
    run_deadline: float = Field(
        default=90.0,
        gt=0,
        le=3600,
        description="Overall time budget for one run in seconds"
    )
    backoff_base: float = Field(
        default=1.0,
        ge=0,
        description="Initial retry delay in seconds"
    )
    backoff_max: float = Field(
        default=20.0,
        ge=0,
        description="Upper bound for a single retry delay in seconds"
    )
    chunk_separator: str = Field(
        default="\n",
        description="Separator used to join chunk summaries of one file"
    )
    ignored_files: List[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORED_FILES),
        description="Glob patterns of files that are never sent to the backend"
    )


class OutputSettings(BaseModel):
    """Commit message output configuration."""

    generate_title: bool = Field(
        default=True,
        description="Ask the backend for a commit title"
    )
    generate_summary: bool = Field(
        default=True,
        description="Ask the backend for an overall summary"
    )
    conventional_commit: bool = Field(
        default=True,
        description="Request a conventional commit style title"
    )
    show_per_file_summary: bool = Field(
        default=True,
        description="Include the per-file bullet list in the message"
    )


class PromptSettings(BaseModel):
    """Jinja2 templates for prompts and the final message."""

    file_diff: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_FILE_DIFF_TEMPLATES),
        description="Per-file prompt template keyed by change kind"
    )
    title: str = Field(default=DEFAULT_TITLE_TEMPLATE)
    summary: str = Field(default=DEFAULT_SUMMARY_TEMPLATE)
    commit_message: str = Field(default=DEFAULT_COMMIT_MESSAGE_TEMPLATE)

    @field_validator("file_diff")
    @classmethod
    def fill_missing_kinds(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Reject unknown change kinds and fill the missing ones with defaults."""
        known = {kind.value for kind in ChangeKind}
        unknown = set(v) - known
        if unknown:
            raise ValueError(f"Unknown change kinds in file_diff templates: {sorted(unknown)}")
        merged = dict(DEFAULT_FILE_DIFF_TEMPLATES)
        merged.update(v)
        return merged


class HookSettings(BaseModel):
    """Git hook behaviour."""

    allow_amend: bool = Field(
        default=False,
        description="Regenerate the message when amending a commit"
    )


class UISettings(BaseModel):
    """User interface configuration."""

    use_colors: bool = Field(
        default=True,
        description="Use colored output"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging level"
    )


class PipelineConfig(BaseModel):
    """Immutable configuration bundle handed to the summarization pipeline."""

    model_config = ConfigDict(frozen=True)

    model: str
    max_tokens_per_request: int = Field(default=3000, ge=1)
    worker_pool_size: int = Field(default=4, ge=1)
    max_retry_attempts: int = Field(default=3, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    run_deadline: float = Field(default=90.0, gt=0)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_max: float = Field(default=20.0, ge=0)
    chunk_separator: str = "\n"
    ignored_files: Tuple[str, ...] = ()
    prompt_templates: Dict[ChangeKind, str] = Field(
        default_factory=lambda: {ChangeKind(k): v for k, v in DEFAULT_FILE_DIFF_TEMPLATES.items()}
    )
    title_template: str = DEFAULT_TITLE_TEMPLATE
    summary_template: str = DEFAULT_SUMMARY_TEMPLATE
    commit_message_template: str = DEFAULT_COMMIT_MESSAGE_TEMPLATE
    generate_title: bool = True
    generate_summary: bool = True
    conventional_commit: bool = True
    show_per_file_summary: bool = True

    @model_validator(mode="after")
    def check_templates_cover_kinds(self) -> "PipelineConfig":
        missing = [kind.value for kind in ChangeKind if kind not in self.prompt_templates]
        if missing:
            raise ValueError(f"Missing prompt templates for: {', '.join(missing)}")
        return self


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    ai: AISettings = Field(default_factory=AISettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    prompts: PromptSettings = Field(default_factory=PromptSettings)
    hook: HookSettings = Field(default_factory=HookSettings)
    ui: UISettings = Field(default_factory=UISettings)

    model_config = {
        "env_prefix": "DIFFSCRIBE_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "extra": "ignore",
    }

    def __init__(self, **kwargs):
        # Load the default config file unless values were passed explicitly
        if not kwargs:
            config_path = self._get_default_config_path()
            if config_path.exists():
                try:
                    with open(config_path) as f:
                        kwargs = json.load(f)
                except (json.JSONDecodeError, OSError):
                    pass  # Fall back to defaults

        super().__init__(**kwargs)

    @model_validator(mode="after")
    def apply_openai_environment(self) -> "Settings":
        """Fill OpenAI fields nobody set from the conventional OPENAI_* variables."""
        if self.ai.backend_type != "openai":
            return self
        for field, variable in OPENAI_ENVIRONMENT.items():
            value = os.getenv(variable)
            unset = field not in self.ai.model_fields_set or getattr(self.ai, field) is None
            if value and unset:
                setattr(self.ai, field, value)
        return self

    def to_pipeline_config(self) -> PipelineConfig:
        """Freeze the resolved settings into the value the pipeline consumes."""
        return PipelineConfig(
            model=self.ai.model,
            max_tokens_per_request=self.pipeline.max_tokens_per_request,
            worker_pool_size=self.pipeline.worker_pool_size,
            max_retry_attempts=self.ai.max_retries,
            request_timeout=float(self.ai.timeout),
            run_deadline=self.pipeline.run_deadline,
            backoff_base=self.pipeline.backoff_base,
            backoff_max=self.pipeline.backoff_max,
            chunk_separator=self.pipeline.chunk_separator,
            ignored_files=tuple(self.pipeline.ignored_files),
            prompt_templates={ChangeKind(k): v for k, v in self.prompts.file_diff.items()},
            title_template=self.prompts.title,
            summary_template=self.prompts.summary,
            commit_message_template=self.prompts.commit_message,
            generate_title=self.output.generate_title,
            generate_summary=self.output.generate_summary,
            conventional_commit=self.output.conventional_commit,
            show_per_file_summary=self.output.show_per_file_summary,
        )

    def _get_default_config_path(self) -> Path:
        """Get the default config file path."""
        return self.default_config_dir() / "config.json"

    @staticmethod
    def default_config_dir() -> Path:
        if platform.system() == "Windows":
            base = Path(os.environ.get("APPDATA", "~"))
        else:
            base = Path(os.environ.get("XDG_CONFIG_HOME", "~/.config"))

        return (base / "diffscribe").expanduser()

    @classmethod
    def from_file(cls, config_path: Path) -> "Settings":
        """Load settings from a configuration file."""
        if config_path.exists():
            with open(config_path) as f:
                config_data = json.load(f)
            return cls(**config_data)
        return cls()

    def save_to_file(self, config_path: Path) -> None:
        """Save current settings to a configuration file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump()
        # Never persist secrets picked up from the environment
        data["ai"]["api_key"] = None
        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory."""
        return self.default_config_dir()

    @property
    def cache_dir(self) -> Path:
        """Get the cache directory."""
        if platform.system() == "Windows":
            base = Path(os.environ.get("LOCALAPPDATA", "~"))
        else:
            base = Path(os.environ.get("XDG_CACHE_HOME", "~/.cache"))

        return (base / "diffscribe").expanduser()

    @property
    def log_file(self) -> Path:
        """Get the log file path."""
        return self.cache_dir / "diffscribe.log"
