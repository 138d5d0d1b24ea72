from __future__ import annotations

"""Backend settings loader from environment variables."""

from dataclasses import dataclass
from typing import Tuple
import os


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


def _env_int(name: str, default: int) -> int:
    """Read an int env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer.") from exc


def _env_float(name: str, default: float) -> float:
    """Read a float env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number.") from exc


def _project_id() -> str | None:
    """Return the active GCP project ID if set."""
    for key in ("GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT", "PROJECT_ID"):
        value = os.getenv(key)
        if value:
            return value
    return None


def _app_env() -> str:
    """Return the application environment name."""
    return os.getenv("APP_ENV") or os.getenv("ENV") or "dev"


def _cors_origins() -> Tuple[str, ...]:
    cors_env = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if cors_env:
        return tuple(origin.strip() for origin in cors_env.split(",") if origin.strip())
    return (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    )


@dataclass(frozen=True)
class Settings:
    """Configuration values parsed from the environment."""
    app_env: str
    project_id: str | None
    genius_access_token: str
    genius_access_token_secret: str
    genius_access_token_secret_version: str
    genius_base_url: str
    genius_timeout_seconds: float
    mcp_server_url: str
    mcp_timeout_seconds: float
    mcp_port: int
    llm_provider: str
    gemini_api_key: str
    gemini_api_key_secret: str
    gemini_api_key_secret_version: str
    gemini_base_url: str
    gemini_model: str
    gemini_timeout_seconds: float
    llm_max_history_items: int
    chat_max_steps: int
    chat_max_duration_seconds: float
    chat_rate_limit: str
    cors_allow_origins: Tuple[str, ...]

    @property
    def is_dev(self) -> bool:
        return self.app_env.lower() in {"dev", "development", "local", "test"}

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from environment variables."""
        chat_max_steps = _env_int("CHAT_MAX_STEPS", 5)
        if chat_max_steps < 1:
            raise ConfigError("CHAT_MAX_STEPS must be at least 1.")
        return cls(
            app_env=_app_env(),
            project_id=_project_id(),
            genius_access_token=os.getenv("GENIUS_ACCESS_TOKEN", "").strip(),
            genius_access_token_secret=os.getenv("GENIUS_ACCESS_TOKEN_SECRET", "GENIUS_ACCESS_TOKEN"),
            genius_access_token_secret_version=os.getenv(
                "GENIUS_ACCESS_TOKEN_SECRET_VERSION", "latest"
            ),
            genius_base_url=os.getenv("GENIUS_BASE_URL", "https://api.genius.com"),
            genius_timeout_seconds=_env_float("GENIUS_TIMEOUT_SECONDS", 10.0),
            mcp_server_url=os.getenv("MCP_SERVER_URL", "").strip(),
            mcp_timeout_seconds=_env_float("MCP_TIMEOUT_SECONDS", 20.0),
            mcp_port=_env_int("PORT", 3001),
            llm_provider=os.getenv("LLM_PROVIDER", "gemini").strip().lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_api_key_secret=os.getenv("GEMINI_API_KEY_SECRET", "GEMINI_API_KEY"),
            gemini_api_key_secret_version=os.getenv("GEMINI_API_KEY_SECRET_VERSION", "latest"),
            gemini_base_url=os.getenv(
                "GEMINI_BASE_URL",
                "https://generativelanguage.googleapis.com/v1beta",
            ),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_timeout_seconds=_env_float("GEMINI_TIMEOUT_SECONDS", 30.0),
            llm_max_history_items=_env_int("LLM_MAX_HISTORY_ITEMS", 20),
            chat_max_steps=chat_max_steps,
            chat_max_duration_seconds=_env_float("CHAT_MAX_DURATION_SECONDS", 30.0),
            chat_rate_limit=os.getenv("CHAT_RATE_LIMIT", "20/minute").strip(),
            cors_allow_origins=_cors_origins(),
        )
