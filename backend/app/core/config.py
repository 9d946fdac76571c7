from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Discussion Board API"
    debug: bool = True
    api_prefix: str = "/api"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    database_url: str = "sqlite:///./discussion.db"
    redis_url: str = "redis://localhost:6379/0"
    presence_backend: str = "redis"

    secret_key: str = "change-this-secret-key"
    access_token_expire_minutes: int = 30
    access_token_cookie_name: str = "accessToken"
    access_token_cookie_secure: bool = False

    websocket_allow_query_token: bool = False
    chat_message_max_length: int = 1000

    password_reset_code_length: int = 6
    password_reset_code_ttl_seconds: int = 600

    posts_page_size: int = 10
    posts_max_page_size: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
