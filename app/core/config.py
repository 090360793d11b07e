from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: app/core/config.py -> app/core -> app -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

# A key only counts as valid with this prefix (catches stray whitespace / bad copies)
OPENAI_KEY_PREFIX = "sk-"


class Settings(BaseSettings):
    openai_api_key: str = ""
    # Several keys, comma separated. Empty -> OPENAI_API_KEY. On auth/limit errors the next key is tried.
    openai_api_keys: str = ""
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./greeneye.db"
    # CORS: comma separated origins; in production e.g. https://dashboard.example.com
    cors_origins: str = "*"
    # Max requests per IP per minute (rate limit)
    rate_limit_per_minute: int = 60
    # Separate limit for batch submissions (each one fans out to 5 model calls per image)
    rate_limit_submit_per_minute: int = 10
    # Vision model (OpenAI chat completions with image input)
    vision_model: str = "gpt-4o"
    vision_max_tokens: int = 800
    vision_timeout_s: float = 30.0
    vision_retry_attempts: int = 0     # TransientFailure retries per dimension call; 0 = no automatic retry
    vision_retry_wait_s: float = 1.5
    vision_max_concurrency: int = 8    # Concurrent inference calls across all jobs
    # Batch limits
    batch_max_images: int = 10
    batch_max_workers: int = 4         # Images analyzed concurrently within one job
    # Client poller defaults
    poll_interval_s: float = 3.0
    poll_timeout_s: float = 600.0
    admin_secret: str = ""             # /admin/jobs via X-Admin-Secret
    environment: str = "development"
    log_level: str = "INFO"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def strip_openai_key(cls, v: str | None) -> str:
        """Trims whitespace picked up from copy/paste."""
        return (v or "").strip()

    @field_validator("openai_api_keys", mode="before")
    @classmethod
    def strip_openai_keys(cls, v: str | None) -> str:
        return (v or "").strip()


settings = Settings()


def get_openai_keys() -> list[str]:
    """
    Valid OpenAI keys (sk- prefix, no whitespace).
    OPENAI_API_KEYS as a comma separated list if set; otherwise OPENAI_API_KEY alone.
    """
    keys_raw = (settings.openai_api_keys or "").strip()
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip() and k.strip().startswith(OPENAI_KEY_PREFIX)]
        if keys:
            return keys
    single = (settings.openai_api_key or "").strip()
    if single and single.startswith(OPENAI_KEY_PREFIX):
        return [single]
    return []


def is_openai_configured() -> bool:
    """At least one usable OpenAI key?"""
    return len(get_openai_keys()) > 0
