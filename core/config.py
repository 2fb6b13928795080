import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

log = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float, *, low: float, high: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("ignoring non-numeric %s=%r", name, raw)
        return default
    return max(low, min(high, value))


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    if not raw.isdigit():
        log.warning("ignoring non-integer %s=%r", name, raw)
        return default
    return int(raw)


def _env_usernames(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    names = []
    for item in raw.split(","):
        cleaned = item.strip().lstrip("@").lower()
        if cleaned and cleaned not in names:
            names.append(cleaned)
    return tuple(names)


@dataclass
class Settings:
    telegram_token: str
    openai_api_key: str
    model: str = DEFAULT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    data_dir: Path = Path("data")
    log_level: str = "INFO"
    llm_timeout: float = 45.0
    context_timeout: float = 5.0
    capture_timeout: float = 5.0
    history_limit: Optional[int] = None
    personality_users: Tuple[str, ...] = field(default_factory=tuple)
    knowledge_enabled: bool = True
    web_server_enabled: bool = True
    web_server_host: str = "127.0.0.1"
    web_server_port: int = 3000

    @property
    def knowledge_db_path(self) -> Path:
        return self.data_dir / "knowledge.db"

    @property
    def persona_override_path(self) -> Path:
        return self.data_dir / "persona.yaml"

    @property
    def dashboard_url(self) -> Optional[str]:
        if not self.web_server_enabled:
            return None
        return f"http://{self.web_server_host}:{self.web_server_port}"

    @classmethod
    def from_env(cls) -> "Settings":
        telegram_token = os.getenv("TELEGRAM_TOKEN", "").strip()
        openai_key = os.getenv("OPENAI_API_KEY", "").strip()
        missing = [
            key
            for key, value in (("TELEGRAM_TOKEN", telegram_token), ("OPENAI_API_KEY", openai_key))
            if not value
        ]
        if missing:
            raise SystemExit(f"Missing required environment variables: {', '.join(missing)}")
        port = _env_int("WEB_SERVER_PORT", 3000) or 3000
        return cls(
            telegram_token=telegram_token,
            openai_api_key=openai_key,
            model=os.getenv("MODEL", DEFAULT_MODEL),
            embedding_model=os.getenv("EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            data_dir=Path(os.getenv("DATA_DIR", "data")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            llm_timeout=_env_float("LLM_TIMEOUT_SECONDS", 45.0, low=5.0, high=120.0),
            context_timeout=_env_float("CONTEXT_TIMEOUT_SECONDS", 5.0, low=0.5, high=60.0),
            capture_timeout=_env_float("CAPTURE_TIMEOUT_SECONDS", 5.0, low=0.5, high=60.0),
            history_limit=_env_int("HISTORY_LIMIT", None),
            personality_users=_env_usernames("PERSONALITY_USERS"),
            knowledge_enabled=_env_bool("KNOWLEDGE_ENABLED", True),
            web_server_enabled=_env_bool("WEB_SERVER_ENABLED", True),
            web_server_host=os.getenv("WEB_SERVER_HOST", "127.0.0.1"),
            web_server_port=port,
        )
