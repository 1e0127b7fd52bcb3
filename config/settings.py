import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_DEERAPI_BASE_URL = "https://api.deerapi.com/v1"


@dataclass
class Settings:
    """
    Runtime settings that are not secrets. API keys live in the APIKeyVault.
    """
    deerapi_base_url: str
    request_timeout_s: float
    download_timeout_s: float
    video_poll_interval_s: float
    video_poll_max_attempts: int
    binary_data_mode: str
    binary_data_dir: str
    log_level: str


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


def load_settings() -> Settings:
    """
    Loads settings from environment variables (and a .env file if present).
    """
    load_dotenv()

    binary_data_mode = (os.getenv("BINARY_DATA_MODE") or "default").strip().lower()
    if binary_data_mode not in ("default", "filesystem"):
        binary_data_mode = "default"

    return Settings(
        deerapi_base_url=os.getenv("DEERAPI_BASE_URL") or DEFAULT_DEERAPI_BASE_URL,
        request_timeout_s=_env_float("DEERAPI_TIMEOUT_S", 120.0),
        download_timeout_s=_env_float("DEERAPI_DOWNLOAD_TIMEOUT_S", 300.0),
        video_poll_interval_s=_env_float("DEERAPI_POLL_INTERVAL_S", 15.0),
        video_poll_max_attempts=_env_int("DEERAPI_POLL_MAX_ATTEMPTS", 40),
        binary_data_mode=binary_data_mode,
        binary_data_dir=os.getenv("BINARY_DATA_DIR") or os.path.join("data", "binary"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
