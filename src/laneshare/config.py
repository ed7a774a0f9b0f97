from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./laneshare.db"
    encryption_key: str = ""  # Fernet key; generate with `python -m laneshare keygen`
    adapter_timeout_seconds: float = 30.0
    asset_batch_size: int = 100
    stale_run_minutes: int = 30
    startup_stale_run_minutes: Optional[int] = None  # defaults to stale_run_minutes; 0 for a single worker
    stale_sweep_interval_minutes: int = 5
    scheduler_enabled: bool = True
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_prefix="LANESHARE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
