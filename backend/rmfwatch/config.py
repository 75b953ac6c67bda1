"""
RMFWatch Application Configuration
Environment-driven settings for the ingestion and compliance core
"""

from functools import lru_cache

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "RMFWatch"
    app_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./rmfwatch.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Upload limits
    max_upload_size: int = 100 * 1024 * 1024  # 100MB

    # Nessus bulk persistence
    nessus_host_batch_size: int = Field(default=100, description="Hosts persisted per transaction")
    nessus_vulnerability_batch_size: int = Field(
        default=500, description="Vulnerabilities persisted per transaction"
    )
    import_chunk_retries: int = Field(default=1, description="Retries for a failed import chunk")

    # Compliance scoring
    partial_compliance_threshold: int = 70
    assessment_progress_threshold: int = 80

    # Logging
    log_level: str = "INFO"

    @validator("nessus_host_batch_size", "nessus_vulnerability_batch_size")
    def batch_size_must_be_positive(cls, v):
        if v < 1:
            raise ValueError("Batch size must be at least 1")
        return v

    @validator("import_chunk_retries")
    def retries_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError("Chunk retries cannot be negative")
        return v

    @validator("partial_compliance_threshold", "assessment_progress_threshold")
    def threshold_must_be_percentage(cls, v):
        if not 0 <= v <= 100:
            raise ValueError("Thresholds must be between 0 and 100")
        return v

    @validator("log_level")
    def log_level_must_be_known(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    class Config:
        env_file = ".env"
        env_prefix = "RMFWATCH_"
        extra = "allow"  # Allow extra fields from environment


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()
