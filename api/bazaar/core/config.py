from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "krishi-bazaar-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    listing_ttl_days: int = 30
    expire_batch_limit: int = 100
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "krishi-bazaar-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="KB_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
