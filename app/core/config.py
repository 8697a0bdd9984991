from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Promotion batch processing
    promotion_throttle_every: int = Field(10, alias="PROMOTION_THROTTLE_EVERY", ge=1)
    promotion_throttle_seconds: float = Field(0.1, alias="PROMOTION_THROTTLE_SECONDS", ge=0)
    promotion_job_retention_hours: int = Field(24, alias="PROMOTION_JOB_RETENTION_HOURS", ge=0)
    promotion_final_grade: int = Field(12, alias="PROMOTION_FINAL_GRADE")
    promotion_duplicate_start: Literal["overwrite", "reject"] = Field(
        "overwrite", alias="PROMOTION_DUPLICATE_START"
    )
    promotion_stuck_batch_minutes: int = Field(60, alias="PROMOTION_STUCK_BATCH_MINUTES", ge=1)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


settings = Settings()
