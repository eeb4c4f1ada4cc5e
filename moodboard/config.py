import os
from dataclasses import dataclass

DEFAULT_NOTIFICATION_LIMIT = 50


@dataclass(frozen=True)
class Settings:
    firebase_api_key: str
    data_path: str = "moodboard_data.json"
    # Newest notifications kept in memory per fetch
    notification_limit: int = DEFAULT_NOTIFICATION_LIMIT
    log_level: str = "INFO"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def load_settings() -> Settings:
    api_key = os.getenv("MOODBOARD_FIREBASE_API_KEY", "").strip()
    return Settings(
        firebase_api_key=api_key or "",
        data_path=os.getenv("MOODBOARD_DATA_PATH", "").strip() or "moodboard_data.json",
        notification_limit=_int_env("MOODBOARD_NOTIFICATION_LIMIT", DEFAULT_NOTIFICATION_LIMIT),
        log_level=os.getenv("MOODBOARD_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
