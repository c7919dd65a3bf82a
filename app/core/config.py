# app/core/config.py
import os
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_files() -> tuple[str, ...]:
    # APP_ENV picks the environment-specific file; it is read after .env so it wins
    env = os.environ.get("APP_ENV", "local")
    return (".env", f".env.{env}")


class Settings(BaseSettings):
    app_env: str = "local"

    upload_path: Path = Path("uploads")
    max_file_size: int = 10 * 1024 * 1024  # bytes, per file
    max_files: int = 5  # per request
    hash_uploads: bool = True

    database_url: str = "sqlite:///./data/filehost.db"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",  # ignore any extra stuff in .env
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
