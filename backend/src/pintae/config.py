"""
Application configuration loaded from environment variables.

All configuration is validated at startup to fail fast on misconfiguration.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pintae.domain.conformance import (
    MANDATORY_MAPPING_COVERAGE_THRESHOLD,
    MANDATORY_POPULATION_THRESHOLD,
    MONETARY_TOLERANCE,
    POPULATION_WARNING_THRESHOLD,
    REGISTRY_VERSION,
)
from pintae.domain.models import Direction


class Settings(BaseSettings):
    """
    Application settings with validation.

    All settings are loaded from environment variables with the same name.
    Use .env file for local development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Rule evaluation
    monetary_tolerance: Decimal = Field(
        default=MONETARY_TOLERANCE,
        ge=0,
        description="Default tolerance for monetary reconciliation checks",
    )
    default_direction: Literal["AR", "AP"] = Field(
        default="AR",
        description="Direction used when a request does not name one",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Thread pool size for rule evaluation (1 runs sequentially)",
    )

    # Registry and readiness
    registry_version: str = Field(
        default=REGISTRY_VERSION,
        description="Reported DR registry version",
    )
    mandatory_mapping_threshold: float = Field(
        default=MANDATORY_MAPPING_COVERAGE_THRESHOLD,
        ge=0.0,
        le=100.0,
        description="Required mandatory DR mapping coverage (percent)",
    )
    mandatory_population_threshold: float = Field(
        default=MANDATORY_POPULATION_THRESHOLD,
        ge=0.0,
        le=100.0,
        description="Required mandatory DR population (percent)",
    )
    population_warning_threshold: float = Field(
        default=POPULATION_WARNING_THRESHOLD,
        ge=0.0,
        le=100.0,
        description="Population below which a mandatory DR is flagged (percent)",
    )

    # Organization profile
    our_entity_trns: list[str] = Field(
        default_factory=list,
        description="Our own entity TRNs, used when a request carries none",
    )

    # Server
    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with /docs and detailed error messages",
    )

    @property
    def direction(self) -> Direction:
        return Direction(self.default_direction)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once at startup and cached for subsequent calls.
    """
    return Settings()
