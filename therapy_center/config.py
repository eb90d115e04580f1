# therapy_center/config.py

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./therapy_center.db"
    sql_echo: bool = False

    # Tokens are issued by the external auth service; we only decode them.
    secret_key: str = "change-me-later"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    log_level: str = "INFO"
    default_page_size: int = 20
    max_page_size: int = 100

    model_config = SettingsConfigDict(
        env_prefix="THERAPY_CENTER_",
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
