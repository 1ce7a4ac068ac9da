import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from config/.env
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Remote generation provider (ModelScope inference API)
    PROVIDER_BASE_URL: str = os.getenv("PROVIDER_BASE_URL", "https://api-inference.modelscope.cn")
    MODEL_ID: str = os.getenv("MODEL_ID", "Tongyi-MAI/Z-Image-Turbo")
    MODELSCOPE_API_TOKEN: str | None = os.getenv("MODELSCOPE_API_TOKEN")

    # Route provider calls through the CORS relay instead of the provider host
    RELAY_MODE: bool = _env_bool("RELAY_MODE", False)
    RELAY_BASE: str = os.getenv("RELAY_BASE", "http://127.0.0.1:8787/api")
    RELAY_PREFIX: str = "/api"

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")

    REQUEST_TIMEOUT: float = 60.0
    TASK_POLL_INTERVAL: float = 2.0  # seconds between task status queries
    TASK_MAX_ATTEMPTS: int = 120
    MAX_PROMPT_LENGTH: int = 1800  # provider hard limit is 2000

    POLL_INTERVAL: float = 0.5  # seconds, cancel-flag watcher

    HISTORY_LIMIT: int = 100
    NUM_WORKERS: int = int(os.getenv("NUM_WORKERS", "4"))

    # Generation defaults
    DEFAULT_STEPS: int = 8
    DEFAULT_TIME_SHIFT: float = 3.0
    DEFAULT_GUIDANCE_SCALE: float = 7.5
    DEFAULT_SAMPLER: str = "euler_a"
    DEFAULT_SCHEDULER: str = "karras"

    # Optional OpenAI-compatible endpoint for prompt enhancement
    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str | None = os.getenv("OPENAI_MODEL")

settings = Settings()
