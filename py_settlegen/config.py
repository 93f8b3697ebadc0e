"""Configuration management."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Process-level settings, read from the environment or ``.env``."""

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log renderer"
    )

    # Generation
    workers: int = Field(
        default=1, ge=1, description="Default worker pool size for per-cell stages"
    )
    default_seed: Optional[int] = Field(
        default=None, ge=0, description="Random seed used when a run does not pass one"
    )

    class Config:
        env_file = ".env"
        env_prefix = "SETTLEGEN_"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
