"""Configuration utilities for the object detection harness."""
from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Application configuration sourced from environment variables or defaults."""

    model_config = SettingsConfigDict(env_prefix="DETECT_", case_sensitive=False)

    score_threshold: float = Field(default=0.5, ge=0.0, le=1.0, description="Minimum score to report a slot")
    serving_tag: str = Field(default="serve", description="SavedModel tag to load")
    signature_name: str = Field(default="serving_default")
    input_name: Optional[str] = Field(default=None, description="Input binding; defaults to the signature's input")
    scores_output: str = Field(default="detection_scores")
    classes_output: str = Field(default="detection_classes")
    boxes_output: str = Field(default="detection_boxes")
    keep_going: bool = Field(default=False, description="Continue with the next image after a per-image failure.")
    placeholder_labels: bool = Field(default=False, description="Ignore the label map and use the fixed flower list.")
    log_format: str = Field(default="text")
    log_level: str = Field(default="INFO")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"text", "json"}:
            raise ValueError(f"Unsupported log format: {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Unsupported log level: {value}")
        return value

    @property
    def output_names(self) -> list[str]:
        """Outputs fetched from the model, in fetch order."""

        return [self.scores_output, self.classes_output, self.boxes_output]


def load_settings(**overrides: object) -> AppSettings:
    """Return application settings, applying optional overrides."""

    return AppSettings(**overrides)
