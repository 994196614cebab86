"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for warden. Reads from .env automatically."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # LLM API keys (only required for the providers you actually use)
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # Ollama base URL — set this when using local Ollama models
    ollama_base_url: str = "http://localhost:11434"

    # Model identifiers — prefix determines the provider:
    #   "ollama:<model>"     → local Ollama  (e.g. "ollama:llama3.1:70b")
    #   "claude-*" / "claude" → Anthropic API
    #   anything else        → OpenAI API    (e.g. "gpt-4o", "gpt-4o-mini")
    # Recovery rotates programmer → planner → summarizer across attempts.
    programmer_model: str = "gpt-4o-mini"
    planner_model: str = "gpt-4o-mini"
    summarizer_model: str = "gpt-4o-mini"

    # Repository under audit. Falls back to CWD when empty.
    target_repo_path: str = ""

    @field_validator("target_repo_path")
    @classmethod
    def _resolve_repo(cls, value: str) -> str:
        if value:
            return str(Path(value).expanduser().resolve())
        return value

    # ── Source diff ───────────────────────────────────────────────────
    # Used when neither the caller nor `git config init.defaultBranch`
    # provides a base branch.
    default_base_branch: str = "main"
    git_timeout_seconds: int = 30
    git_diff_timeout_seconds: int = 60
    max_output_chars: int = 60_000

    # ── Error recovery ────────────────────────────────────────────────
    # Circuit breaker: attempt N > max_recovery_attempts asks for a human.
    max_recovery_attempts: int = 5
    # Idle recovery states are evicted after this many seconds. 0 = never.
    recovery_state_ttl_seconds: int = 3600
    # Upper bound on tracked threads (least recently used evicted). 0 = unbounded.
    recovery_state_max_threads: int = 256

    # ── Audit report ──────────────────────────────────────────────────
    report_summary_max_chars: int = 500
    report_max_recommendations: int = 10

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/warden.log"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Singleton accessor."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
