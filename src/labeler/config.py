"""Labeler configuration using pydantic-settings.

This module defines the LabelerSettings class that reads configuration from
environment variables with the LABELER_ prefix. Command-line options
override individual fields. Invalid values fail validation before any
request is made.
"""

import math
from typing import Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.labeler.paging.retry import DEFAULT_RETRY_SCHEDULE, RetryPolicy


class LabelerSettings(BaseSettings):
    """Labeler configuration from environment variables.

    All environment variables are prefixed with LABELER_ (e.g.,
    LABELER_GITHUB_TOKEN).

    Required fields:
    - github_token: GitHub API token for reading items and managing labels
    """

    model_config = SettingsConfigDict(
        env_prefix="LABELER_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # GraphQL endpoint; derived from github_base_url when unset
    github_graphql_url: Optional[str] = None

    # Timeout in seconds for a single API request
    request_timeout: float = 120.0

    # -------------------------------------------------------------------------
    # Paging Configuration
    # -------------------------------------------------------------------------
    page_size: int = 100

    page_limit: int = 1000

    # Comma-separated wait durations in seconds, one per allowed retry
    retries: str = ",".join(str(d) for d in DEFAULT_RETRY_SCHEDULE)

    # -------------------------------------------------------------------------
    # Labeling Configuration
    # -------------------------------------------------------------------------
    label_prefix: str = "area-"

    threshold: float = 0.4

    # Placeholder label applied when no prediction meets the threshold
    default_label: Optional[str] = None

    max_concurrency: int = 8

    # Decide and log, but never add or remove labels
    dry_run: bool = False

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    llm_url: Optional[str] = None

    llm_model: str = "Qwen/Qwen2.5-Coder-14B-Instruct-GPTQ-Int4"

    llm_api_key: Optional[str] = None

    # Comma-separated labels the classifier may choose from
    candidate_labels: str = ""

    # -------------------------------------------------------------------------
    # Observability Configuration
    # -------------------------------------------------------------------------
    metrics_pushgateway_url: Optional[str] = None

    log_json: bool = False

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate that GitHub token is not empty."""
        if not v or not v.strip():
            raise ValueError("github_token cannot be empty")
        return v

    @field_validator("github_base_url")
    @classmethod
    def validate_github_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("request_timeout")
    @classmethod
    def validate_request_timeout(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("request_timeout must be a positive number")
        return v

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Validate that page size is within the GitHub GraphQL limit."""
        if not 1 <= v <= 100:
            raise ValueError("page_size must be between 1 and 100")
        return v

    @field_validator("page_limit")
    @classmethod
    def validate_page_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError("page_limit cannot be negative")
        return v

    @field_validator("retries")
    @classmethod
    def validate_retries(cls, v: str) -> str:
        """Validate that retries parse as non-negative seconds."""
        try:
            RetryPolicy.parse(v)
        except ValueError as e:
            raise ValueError(f"retries must be comma-separated seconds: {e}")
        return v

    @field_validator("label_prefix")
    @classmethod
    def validate_label_prefix(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("label_prefix cannot be empty")
        return v

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Validate that threshold is a finite number."""
        if not math.isfinite(v):
            raise ValueError("threshold must be a finite number")
        return v

    @field_validator("default_label")
    @classmethod
    def validate_default_label(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v

    @field_validator("llm_url")
    @classmethod
    def validate_llm_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that LLM URL is a valid URL format."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("llm_url must start with http:// or https://")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log_level: {v}")
        return level

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.parse(self.retries)

    @property
    def candidate_label_list(self) -> List[str]:
        return [label.strip() for label in self.candidate_labels.split(",") if label.strip()]


def get_settings(**overrides: Any) -> LabelerSettings:
    """Create and return a LabelerSettings instance.

    Reads configuration from environment variables; keyword arguments whose
    value is not None take precedence.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return LabelerSettings(**{k: v for k, v in overrides.items() if v is not None})
