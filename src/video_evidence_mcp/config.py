"""Server configuration via environment variables."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_ENV_PATH = Path.home() / ".config" / "video-evidence-mcp" / ".env"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_ALLOWED_MODELS = ("gemini-2.5-flash", "gemini-2.5-pro")


def _read_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines, ignoring blanks, comments and ``export``."""
    values: dict[str, str] = {}
    if not path.is_file():
        return values
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        line = line.removeprefix("export ").strip()
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        if key.strip():
            values[key.strip()] = value
    return values


def load_env_file(path: Path | None = None) -> dict[str, str]:
    """Inject vars from the shared env file where the process leaves them unset.

    Returns:
        Dict of vars that were actually injected.
    """
    injected: dict[str, str] = {}
    for key, value in _read_env_file(path or DEFAULT_ENV_PATH).items():
        if not os.environ.get(key, "").strip():
            os.environ[key] = value
            injected[key] = value
    return injected


def _split_models(raw: str) -> list[str]:
    return [m.strip() for m in raw.split(",") if m.strip()]


class ServerConfig(BaseModel):
    """Runtime configuration resolved from environment."""

    gemini_api_key: str = Field(default="")
    default_model: str = Field(default=DEFAULT_MODEL)
    allowed_models: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MODELS))
    thinking_budget: int = Field(default=-1)
    default_temperature: float = Field(default=0.2)
    cache_dir: str = Field(default="")
    db_path: str = Field(default="")
    user_id: str = Field(default="")
    hash_chunk_bytes: int = Field(default=4 * 1024 * 1024)
    bookmark_tolerance: float = Field(default=0.1)
    fallback_confidence: float = Field(default=1.0)
    max_sessions: int = Field(default=20)
    session_timeout_hours: int = Field(default=8)
    upload_timeout_seconds: float = Field(default=300.0)
    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=1.0)
    retry_max_delay: float = Field(default=60.0)

    @field_validator("hash_chunk_bytes", "max_sessions", "session_timeout_hours", "retry_max_attempts")
    @classmethod
    def validate_positive_ints(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Configuration values must be >= 1")
        return value

    @field_validator("bookmark_tolerance", "upload_timeout_seconds", "retry_base_delay", "retry_max_delay")
    @classmethod
    def validate_positive_floats(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Configuration values must be > 0")
        return value

    @field_validator("fallback_confidence")
    @classmethod
    def validate_fallback_confidence(cls, value: float) -> float:
        if not 0.9 <= value <= 1.0:
            raise ValueError("fallback_confidence must be within [0.9, 1.0]")
        return value

    @field_validator("allowed_models")
    @classmethod
    def validate_allowed_models(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_models must name at least one model")
        return value

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Build config from environment variables."""
        cache_default = str(Path.home() / ".cache" / "video-evidence-mcp")
        cache_dir = os.getenv("EVIDENCE_CACHE_DIR", cache_default)
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            default_model=os.getenv("EVIDENCE_MODEL", DEFAULT_MODEL),
            allowed_models=_split_models(
                os.getenv("EVIDENCE_ALLOWED_MODELS", ",".join(DEFAULT_ALLOWED_MODELS))
            ),
            thinking_budget=int(os.getenv("EVIDENCE_THINKING_BUDGET", "-1")),
            default_temperature=float(os.getenv("EVIDENCE_TEMPERATURE", "0.2")),
            cache_dir=cache_dir,
            db_path=os.getenv("EVIDENCE_DB_PATH", str(Path(cache_dir) / "evidence.db")),
            user_id=os.getenv("EVIDENCE_USER_ID", ""),
            hash_chunk_bytes=int(os.getenv("EVIDENCE_HASH_CHUNK_BYTES", str(4 * 1024 * 1024))),
            bookmark_tolerance=float(os.getenv("EVIDENCE_BOOKMARK_TOLERANCE", "0.1")),
            fallback_confidence=float(os.getenv("EVIDENCE_FALLBACK_CONFIDENCE", "1.0")),
            max_sessions=int(os.getenv("EVIDENCE_MAX_SESSIONS", "20")),
            session_timeout_hours=int(os.getenv("EVIDENCE_SESSION_TIMEOUT_HOURS", "8")),
            upload_timeout_seconds=float(os.getenv("EVIDENCE_UPLOAD_TIMEOUT", "300")),
            retry_max_attempts=int(os.getenv("EVIDENCE_RETRY_MAX_ATTEMPTS", "3")),
            retry_base_delay=float(os.getenv("EVIDENCE_RETRY_BASE_DELAY", "1.0")),
            retry_max_delay=float(os.getenv("EVIDENCE_RETRY_MAX_DELAY", "60.0")),
        )


_config: ServerConfig | None = None


def get_config() -> ServerConfig:
    """Return the global config singleton, creating it on first access.

    Loads ``~/.config/video-evidence-mcp/.env`` before reading env vars.
    Process environment always takes precedence over the config file.
    """
    global _config
    if _config is None:
        injected = load_env_file()
        if injected:
            logger.info(
                "Loaded %d var(s) from config: %s",
                len(injected),
                ", ".join(injected.keys()),
            )
        _config = ServerConfig.from_env()
    return _config


def update_config(**overrides: object) -> ServerConfig:
    """Patch the live config, ignoring ``None`` overrides."""
    global _config
    data = get_config().model_dump()
    data.update({k: v for k, v in overrides.items() if v is not None})
    _config = ServerConfig(**data)
    return _config
