import os
from dataclasses import dataclass

CF_API = "https://codeforces.com/api"

# Pre-roll window advertised to clients as a countdown before a duel goes live
PREROLL_SECONDS = 10

MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 300
DEFAULT_DURATION_MINUTES = 60

DEFAULT_MIN_RATING = 800
DEFAULT_MAX_RATING = 3500
DEFAULT_PROBLEM_COUNT = 3
MAX_PROBLEM_COUNT = 10

MAX_NAME_LENGTH = 100


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


@dataclass
class Settings:
    api_base: str = CF_API
    request_timeout_s: float = 30.0
    retry_attempts: int = 4
    retry_backoff_s: float = 2.0
    judge_workers: int = 8
    preroll_seconds: int = PREROLL_SECONDS
    catalog_path: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from DUELS_* environment variables, falling back to defaults."""
        return cls(
            api_base=os.environ.get("DUELS_API_BASE", CF_API).rstrip("/"),
            request_timeout_s=_env_float("DUELS_REQUEST_TIMEOUT", 30.0),
            retry_attempts=max(1, _env_int("DUELS_RETRY_ATTEMPTS", 4)),
            retry_backoff_s=_env_float("DUELS_RETRY_BACKOFF", 2.0),
            judge_workers=max(1, _env_int("DUELS_JUDGE_WORKERS", 8)),
            preroll_seconds=_env_int("DUELS_PREROLL_SECONDS", PREROLL_SECONDS),
            catalog_path=os.environ.get("DUELS_CATALOG_PATH") or None,
            log_level=os.environ.get("DUELS_LOG_LEVEL", "INFO").upper(),
        )
