"""Service configuration, read from the environment via pydantic-settings.

Every variable carries the ``MOSAIC_`` prefix except the listening port,
which keeps the plain ``PORT`` name container platforms hand out.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/103.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Settings for the mosaic service."""

    model_config = SettingsConfigDict(
        env_prefix="MOSAIC_", env_file=".env", case_sensitive=False,
        populate_by_name=True, extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=3030, validation_alias="PORT")
    log_level: str = "INFO"

    # Upstream image host
    source_url_template: str = (
        "https://pbs.twimg.com/media/{image_ref}?format=png&name=large"
    )
    user_agent: str = DEFAULT_USER_AGENT
    fetch_timeout_seconds: float = 5.0
    fetch_retries: int = 1
    max_source_bytes: int = 20 * 1024 * 1024
    max_source_dimension: int = 8192

    # Output
    jpeg_quality: int = 85
    webp_quality: int = 80
    webp_method: int = 4

    # Layout
    gutter_px: int = 0
    grid_downscale_threshold: int = 2000
    max_canvas_dimension: int = 4000
    compositor_workers: int = 4

    # Backpressure
    max_concurrent_requests: int = 16
    queue_timeout_seconds: float | None = 10.0

    @field_validator("jpeg_quality", "webp_quality")
    @classmethod
    def check_quality(cls, v: int) -> int:
        if not (1 <= v <= 100):
            raise ValueError("quality must be between 1 and 100")
        return v

    @field_validator("webp_method")
    @classmethod
    def check_webp_method(cls, v: int) -> int:
        if not (0 <= v <= 6):
            raise ValueError("webp_method must be between 0 and 6")
        return v

    @field_validator("fetch_retries")
    @classmethod
    def check_retries(cls, v: int) -> int:
        if not (0 <= v <= 1):
            raise ValueError("fetch_retries must be 0 or 1")
        return v

    @field_validator("gutter_px")
    @classmethod
    def check_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator(
        "max_source_bytes", "max_source_dimension", "grid_downscale_threshold",
        "max_canvas_dimension", "compositor_workers", "max_concurrent_requests",
    )
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
