"""
Render Service Configuration Module

Centralized configuration management with Pydantic validation.
All environment variables are validated at startup to catch misconfigurations early.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

SAMPLES_DIR = Path(__file__).resolve().parent / "samples"


class RenderSettings(BaseSettings):
    """
    Render service configuration with validation.

    All settings can be overridden via environment variables
    (e.g. MAX_CONCURRENT_PDFS=8) or a local .env file.
    """

    # === Concurrency ===
    max_concurrent_pdfs: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum concurrent renders against the shared browser (1-50)"
    )
    slot_wait_timeout_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=600.0,
        description="How long a request may wait for a free render slot before being rejected"
    )

    # === Engine ===
    playwright_headless: bool = Field(default=True, description="Run Chromium headless")
    engine_launch_timeout_ms: int = Field(
        default=60000,
        ge=1000,
        description="Chromium startup timeout in milliseconds"
    )
    engine_relaunch_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts to relaunch Chromium after it died"
    )
    engine_relaunch_backoff_max: float = Field(
        default=10.0,
        ge=0.0,
        description="Upper bound in seconds of the exponential backoff between relaunch attempts"
    )
    prelaunch_engine: bool = Field(
        default=False,
        description="Launch Chromium at startup instead of on the first request"
    )
    health_probe_timeout_ms: int = Field(
        default=5000,
        ge=100,
        description="Timeout for the health check's engine responsiveness probe"
    )

    # === Timeouts ===
    navigation_timeout_ms: int = Field(
        default=60000,
        ge=100,
        description="Bound on loading a document (fatal when exceeded)"
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        ge=1.0,
        le=3600.0,
        description="Overall deadline for one conversion"
    )
    shutdown_grace_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Time in-flight conversions get to drain on shutdown"
    )

    # === Readiness ===
    wait_for_charts: bool = Field(default=True, description="Poll chart canvases before export")
    chart_timeout_ms: int = Field(
        default=10000,
        ge=100,
        description="Bound on chart canvas polling (non-fatal when exceeded)"
    )
    chart_poll_interval_ms: Optional[int] = Field(
        default=None,
        ge=10,
        description="Canvas poll interval; unset polls on every animation frame"
    )
    settle_time_ms: int = Field(
        default=2000,
        ge=0,
        description="Fixed delay after readiness checks before export"
    )

    # === Documents ===
    documents_dir: Path = Field(
        default=Path("documents"),
        description="Directory that conversion-by-reference paths are resolved in"
    )
    test_document_path: Path = Field(
        default=SAMPLES_DIR / "sample_report.html",
        description="Document converted by POST /convert/test"
    )

    # === Service ===
    host: str = Field(default="0.0.0.0", description="Bind address for the HTTP server")
    port: int = Field(default=3000, ge=1, le=65535, description="HTTP port")
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    log_format: str = Field(default="simple", description="simple or json")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of: {', '.join(sorted(allowed))}")
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(allowed))}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v.lower() not in ("simple", "json"):
            raise ValueError("log_format must be 'simple' or 'json'")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate_runtime_config(self) -> List[str]:
        """
        Check combinations of settings that are valid individually but
        unlikely to behave as intended.

        Returns list of warning messages.
        """
        issues = []

        worst_case_ms = self.navigation_timeout_ms + self.chart_timeout_ms + self.settle_time_ms
        if worst_case_ms > self.request_timeout_seconds * 1000:
            issues.append(
                f"WARNING: navigation + chart + settle bounds ({worst_case_ms}ms) exceed "
                f"request_timeout_seconds ({self.request_timeout_seconds:g}s)"
            )
        if not Path(self.test_document_path).is_file():
            issues.append(f"WARNING: test document not found at {self.test_document_path}")
        if self.is_production and not self.playwright_headless:
            issues.append("WARNING: headed Chromium in production")

        return issues

    class Config:
        env_prefix = ""  # No prefix, use exact env var names
        case_sensitive = False  # MAX_CONCURRENT_PDFS = max_concurrent_pdfs
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> RenderSettings:
    """
    Get cached settings instance.

    Settings are loaded once and cached for performance.
    """
    return RenderSettings()


def validate_config_on_startup(settings: Optional[RenderSettings] = None) -> RenderSettings:
    """
    Validate configuration at application startup.

    Raises ValueError with details if config is invalid.
    Logs warnings for non-critical issues.
    """
    logger = logging.getLogger(__name__)

    if settings is None:
        try:
            settings = get_settings()
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

    for issue in settings.validate_runtime_config():
        logger.warning(issue)

    logger.info(f"Configuration loaded: environment={settings.environment}")
    logger.info(f"  max_concurrent_pdfs={settings.max_concurrent_pdfs}")
    logger.info(f"  navigation_timeout={settings.navigation_timeout_ms}ms")
    logger.info(f"  chart_timeout={settings.chart_timeout_ms}ms settle={settings.settle_time_ms}ms")
    logger.info(f"  request_timeout={settings.request_timeout_seconds:g}s")
    logger.info(f"  headless={settings.playwright_headless} prelaunch={settings.prelaunch_engine}")

    return settings
