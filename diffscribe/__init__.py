"""
diffscribe - LLM-powered commit message summaries for git hooks.

Splits a staged diff into token-sized chunks, summarizes every file through
an AI backend (OpenAI, Ollama) with bounded concurrency and retries, and
renders the partial summaries into one commit message.
"""

__version__ = "0.3.0"

from diffscribe.core import DiffScribe, DiffScribeError
from diffscribe.config.settings import Settings, PipelineConfig

__all__ = ["DiffScribe", "DiffScribeError", "Settings", "PipelineConfig"]
