"""Environment-driven configuration.

Nothing is read at import time: each resolver looks at the environment when
called, so tests can `monkeypatch.setenv()` freely.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


DEFAULT_LLM_TIMEOUT_S = 60.0
DEFAULT_LLM_RETRIES = 2
DEFAULT_RETRY_BACKOFF_S = 0.5

# provider backend -> env vars holding its API key, in priority order
API_KEY_ENV_VARS = {
    "openai": ("OPENAI_API_KEY",),
    "groq": ("GROQ_API_KEY",),
    "anthropic": ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY"),
    "lmstudio": ("LMSTUDIO_API_KEY",),
}


def _env_str(*names: str) -> Optional[str]:
    for name in names:
        raw = os.getenv(name)
        if raw is not None and str(raw).strip():
            return str(raw).strip()
    return None


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def resolve_api_key(backend: str) -> Optional[str]:
    """API key for a provider backend, or None when not configured."""
    names = API_KEY_ENV_VARS.get(backend, ())
    return _env_str(*names) if names else None


def resolve_lmstudio_base_url() -> str:
    return (_env_str("LMSTUDIO_BASE_URL") or "http://localhost:1234/v1").rstrip("/")


def resolve_llm_timeout() -> float:
    """Per-call deadline (seconds) for model and sentiment requests."""
    return max(0.1, _env_float("BLOCKFLOW_LLM_TIMEOUT", DEFAULT_LLM_TIMEOUT_S))


def resolve_llm_retries() -> int:
    """Retries after the first attempt on transient provider failures."""
    return max(0, _env_int("BLOCKFLOW_LLM_RETRIES", DEFAULT_LLM_RETRIES))


def resolve_retry_backoff() -> float:
    return max(0.0, _env_float("BLOCKFLOW_LLM_RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF_S))


def resolve_flows_dir(*, create: bool = True) -> Path:
    """Directory holding saved flow JSON files (env override + optional mkdir)."""
    raw = _env_str("BLOCKFLOW_FLOWS_DIR") or "./flows"
    p = Path(raw).expanduser().resolve()
    if create:
        p.mkdir(parents=True, exist_ok=True)
    return p


def resolve_log_level() -> str:
    return (_env_str("LOG_LEVEL") or "info").lower()


def resolve_lmstudio_model() -> str:
    return _env_str("LMSTUDIO_MODEL") or "local-model"
