import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_INFERENCE_URLS = "http://node2.gonka.ai:8000"

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "https://tracker.gonka.top",
    "http://tracker.gonka.top",
]


def _to_int(value: Optional[str], default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_urls(value: Optional[str]) -> List[str]:
    raw = value if value else DEFAULT_INFERENCE_URLS
    return [url.strip() for url in raw.split(",") if url.strip()]


def parse_cors_origins(value: Optional[str]) -> List[str]:
    if value is None or value.strip() == "":
        return list(DEFAULT_CORS_ORIGINS)
    if value.strip() == "*":
        return ["*"]
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def resolve_db_path(value: Optional[str]) -> str:
    path = Path((value or "").strip() or "cache.db")
    if not path.is_absolute():
        path = Path.cwd() / path
    return str(path)


class Settings(BaseModel):
    inference_urls: List[str]
    db_path: str
    http_timeout: float = 30.0
    cors_origins: List[str] = DEFAULT_CORS_ORIGINS
    port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        return cls(
            inference_urls=parse_urls(os.getenv("INFERENCE_URLS")),
            db_path=resolve_db_path(os.getenv("CACHE_DB_PATH")),
            http_timeout=_to_int(os.getenv("HTTP_TIMEOUT_MS"), 30000) / 1000,
            cors_origins=parse_cors_origins(os.getenv("CORS_ORIGIN")),
            port=_to_int(os.getenv("PORT"), 8080),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
