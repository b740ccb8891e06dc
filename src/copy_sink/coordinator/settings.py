from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class CoordinatorRuntimeSettings(BaseSettings):
    """Process-level tuning that is not part of a job definition.

    Read from COPY_SINK_* environment variables (or a .env file).
    """

    model_config = SettingsConfigDict(env_prefix="COPY_SINK_", env_file=".env", extra="ignore")

    queue_capacity: int = 8  # batches buffered per worker
    high_watermark: Optional[int] = None
    low_watermark: Optional[int] = None
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> CoordinatorRuntimeSettings:
    return CoordinatorRuntimeSettings()
