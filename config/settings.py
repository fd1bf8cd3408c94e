from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")
    log_retention_days: int = Field(default=30, alias="LOG_RETENTION_DAYS")

    supabase_url: str = Field(alias="SUPABASE_URL")
    supabase_key: str = Field(alias="SUPABASE_KEY")
    supabase_schema: str = Field(default="public", alias="SUPABASE_SCHEMA")

    realtime_max_retries: int = Field(default=5, alias="REALTIME_MAX_RETRIES")
    realtime_base_delay_ms: int = Field(default=2000, alias="REALTIME_BASE_DELAY_MS")
    realtime_handshake_timeout_s: float = Field(default=10.0, alias="REALTIME_HANDSHAKE_TIMEOUT_S")
    realtime_queue_size: int = Field(default=0, alias="REALTIME_QUEUE_SIZE")

    default_page_size: int = Field(default=10, alias="DEFAULT_PAGE_SIZE")
    notification_history: int = Field(default=50, alias="NOTIFICATION_HISTORY")

    jwt_secret_key: str = Field(alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expire_minutes: int = Field(default=60, alias="JWT_EXPIRE_MINUTES")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
