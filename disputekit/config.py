import os
from pathlib import Path
from dotenv import load_dotenv

from disputekit.errors import ConfigurationError

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

DEFAULT_APP_URL = "http://localhost:3000"
DEFAULT_LLM_API_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_LLM_MODEL = "openai/gpt-4o-mini"


def require(name: str) -> str:
    """Return a mandatory setting, failing fast when it is missing."""
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"{name} is not set. Check your .env file.")
    return value


def app_url() -> str:
    return os.getenv("APP_URL", DEFAULT_APP_URL).rstrip("/")


def llm_api_url() -> str:
    return os.getenv("LLM_API_URL", DEFAULT_LLM_API_URL)


def llm_model() -> str:
    return os.getenv("LLM_MODEL", DEFAULT_LLM_MODEL)


def jwt_expire_hours() -> int:
    return int(os.getenv("JWT_EXPIRE_HOURS", "24"))


def remote_submit_enabled() -> bool:
    return os.getenv("REMOTE_SUBMIT_ENABLED", "true").strip().lower() not in ("0", "false", "no", "off")


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
