import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv


load_dotenv()

DEFAULT_WEB_ORIGIN = "http://localhost:5173"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class Config:
    """Settings for the directory API, read once from the environment.

    The Supabase project (URL, keys, bucket, tables) is required; the
    browsing tunables fall back to the web client's defaults.
    """

    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")
    SUPABASE_BUCKET: str = os.getenv("SUPABASE_BUCKET", "service-images")
    LISTINGS_TABLE: str = os.getenv("LISTINGS_TABLE", "listings")
    PROFILES_TABLE: str = os.getenv("PROFILES_TABLE", "profiles")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "production")

    PAGE_SIZE: int = _int_env("PAGE_SIZE", 9)
    SEARCH_DEBOUNCE_MS: int = _int_env("SEARCH_DEBOUNCE_MS", 300)
    MAX_IMAGE_SIZE: int = _int_env("MAX_IMAGE_SIZE", 5 * 1024 * 1024)

    CORS_ALLOWED_ORIGINS_ENV: str = os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_WEB_ORIGIN)

    @staticmethod
    def allowed_origins(extra_origins: List[str] | None = None) -> List[str]:
        configured = os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_WEB_ORIGIN).split(",")
        # Local dev servers for the web client
        local = ["http://localhost:3000", "http://127.0.0.1:5173"]
        candidates = [o.strip() for o in configured if o.strip()] + local + list(extra_origins or [])
        return list(dict.fromkeys(candidates))

    @classmethod
    def debounce_seconds(cls) -> float:
        return cls.SEARCH_DEBOUNCE_MS / 1000

    @classmethod
    def validate(cls) -> None:
        required = {
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_ANON_KEY": cls.SUPABASE_ANON_KEY,
            "SUPABASE_SERVICE_KEY": cls.SUPABASE_SERVICE_KEY,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
