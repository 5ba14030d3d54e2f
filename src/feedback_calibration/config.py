"""Configuration management for the feedback calibration engine."""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.database import MissingMetricPolicy, ScoringParameter


DEFAULT_PARAMETERS = [
    "clarity_pace",
    "product_knowledge",
    "empathy",
    "customer_understanding",
    "handling_pressure",
    "confidence",
    "process_accuracy",
    "closure_quality",
]


class StoreConfig(BaseSettings):
    """Persistent store settings."""

    model_config = SettingsConfigDict(
        env_prefix="CALIBRATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: str = Field("data/calibration.sqlite", description="SQLite file path or ':memory:'")
    timeout: float = Field(30.0, description="Seconds to wait for a locked database")

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v):
        """Reject blank database paths."""
        if not v or not v.strip():
            raise ValueError("CALIBRATION_DB_PATH must not be empty")
        return v.strip()


class CalibrationSettings(BaseSettings):
    """Tuning knobs for the calibration analyzer and override applier."""

    model_config = SettingsConfigDict(
        env_prefix="CALIBRATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    parameters: List[str] = Field(default_factory=lambda: list(DEFAULT_PARAMETERS))
    default_period_days: int = 7
    guidance_threshold: float = 0.3
    aligned_min_feedback: int = 3
    previous_weight: float = 0.3
    history_change_threshold: float = 0.1
    max_comment_samples: int = 5
    auto_calibration_threshold: int = 10
    voice_missing_metric_policy: MissingMetricPolicy = MissingMetricPolicy.ZERO

    @field_validator("parameters")
    @classmethod
    def validate_parameters(cls, v):
        """Catalog must be non-empty and free of duplicates."""
        if not v:
            raise ValueError("parameter catalog must not be empty")
        if len(set(v)) != len(v):
            raise ValueError("parameter catalog contains duplicate ids")
        return v

    @field_validator("default_period_days", "aligned_min_feedback", "max_comment_samples")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("value must be a positive integer")
        return v

    @field_validator("previous_weight")
    @classmethod
    def validate_weight(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("previous_weight must be between 0 and 1")
        return v

    @field_validator("guidance_threshold", "history_change_threshold")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("auto_calibration_threshold")
    @classmethod
    def validate_auto_threshold(cls, v):
        """Zero disables auto-calibration."""
        if v < 0:
            raise ValueError("auto_calibration_threshold must be 0 (disabled) or positive")
        return v

    @property
    def new_weight(self) -> float:
        return 1.0 - self.previous_weight

    def catalog(self) -> List[ScoringParameter]:
        """Build the scoring-parameter catalog passed to the analyzer."""
        return [ScoringParameter(id=parameter_id) for parameter_id in self.parameters]


class AppConfig(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    name: str = Field("feedback-calibration", validation_alias="APP_NAME")
    version: str = Field("0.1.0", validation_alias="APP_VERSION")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    debug: bool = Field(False, validation_alias="DEBUG")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    store: StoreConfig = Field(default_factory=StoreConfig)
    calibration: CalibrationSettings = Field(default_factory=CalibrationSettings)
    app: AppConfig = Field(default_factory=AppConfig)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment."""
        return cls()
