from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """Process-wide engine configuration, overridable via WORLD_INFO_* env vars"""

    service_name: str = "world-info-engine"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"

    # Hard ceiling on how many recent messages any scan window may cover
    max_scan_depth: int = 100

    # Lifetime of cached token counts (seconds)
    tokenizer_cache_ttl: int = 3600

    model_config = SettingsConfigDict(env_prefix="WORLD_INFO_", env_file=".env", extra="ignore")


@lru_cache
def get_config() -> EngineConfig:
    return EngineConfig()
