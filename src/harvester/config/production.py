"""Configuration management for the results harvester.

- Environment-based configuration loading
- Stability, session-cap and deduplication tuning
- Logging and monitoring settings
"""

from __future__ import annotations

import logging
import os
import pathlib
import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DeploymentEnvironment(str, Enum):
    """Deployment environment types."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class StabilityConfig:
    """Readiness detection tuning."""
    poll_interval_ms: int = 1000
    required_stable_ticks: int = 3
    network_idle_ms: int = 1000       # 800-1200 is the useful band
    hard_ceiling_ms: int = 15000


@dataclass
class SessionConfig:
    """Pagination session caps. Any breach completes the session."""
    max_pages: int = 5
    max_records: int = 250
    max_wall_clock_seconds: float = 60.0


@dataclass
class DedupConfig:
    """Fingerprint matching tuning."""
    similarity_threshold: float = 0.92  # Jaro-Winkler, tune per deployment


@dataclass
class MediaConfig:
    max_image_width: int = 1600
    max_images_per_record: int = 10


@dataclass
class CaptureConfig:
    """Passive network capture bounds."""
    result_url_pattern: str = r"api|search|result|hotel|property|availability|booking|services|graphql|trams"
    max_body_bytes: int = 2_000_000
    max_responses: int = 200


@dataclass
class MonitoringConfig:
    """Monitoring and observability configuration."""
    prometheus_enabled: bool = True
    log_structured: bool = False
    log_level: LogLevel = LogLevel.INFO


@dataclass
class SystemConfig:
    """System configuration for paths and basic settings."""
    log_root: Optional[str] = None
    service_port: int = 8004


@dataclass
class BrowserConfig:
    """Attachment to the operator-driven browser."""
    cdp_url: str = "http://localhost:9222"
    page_url_contains: Optional[str] = None
    connect_timeout_seconds: int = 10


class HarvesterConfig:
    """Configuration manager."""

    def __init__(self, environment: DeploymentEnvironment = DeploymentEnvironment.PRODUCTION):
        self.environment = environment
        self._load_configuration()

    def _load_configuration(self) -> None:
        """Load configuration based on environment and environment variables."""
        self.stability = StabilityConfig()
        self.session = SessionConfig()
        self.dedup = DedupConfig()
        self.media = MediaConfig()
        self.capture = CaptureConfig()
        self.monitoring = MonitoringConfig()
        self.system = SystemConfig()
        self.browser = BrowserConfig()

        if self.environment == DeploymentEnvironment.DEVELOPMENT:
            self.monitoring.log_level = LogLevel.DEBUG

        self._load_from_environment()
        self._validate_configuration()

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        # Stability
        self.stability.poll_interval_ms = self._env("HARVEST_POLL_INTERVAL_MS", self.stability.poll_interval_ms)
        self.stability.required_stable_ticks = self._env("HARVEST_STABLE_TICKS", self.stability.required_stable_ticks)
        self.stability.network_idle_ms = self._env("HARVEST_NETWORK_IDLE_MS", self.stability.network_idle_ms)
        self.stability.hard_ceiling_ms = self._env("HARVEST_STABILITY_CEILING_MS", self.stability.hard_ceiling_ms)

        # Session caps
        self.session.max_pages = self._env("HARVEST_MAX_PAGES", self.session.max_pages)
        self.session.max_records = self._env("HARVEST_MAX_RECORDS", self.session.max_records)
        self.session.max_wall_clock_seconds = self._env(
            "HARVEST_MAX_SESSION_SECONDS", self.session.max_wall_clock_seconds
        )

        # Dedup and media
        self.dedup.similarity_threshold = self._env(
            "HARVEST_SIMILARITY_THRESHOLD", self.dedup.similarity_threshold
        )
        self.media.max_image_width = self._env("HARVEST_MAX_IMAGE_WIDTH", self.media.max_image_width)

        # Capture
        self.capture.result_url_pattern = os.getenv("HARVEST_RESULT_URL_PATTERN", self.capture.result_url_pattern)
        self.capture.max_body_bytes = self._env("HARVEST_MAX_BODY_BYTES", self.capture.max_body_bytes)

        # Monitoring and system
        self.monitoring.prometheus_enabled = self._env("PROMETHEUS_ENABLED", self.monitoring.prometheus_enabled)
        self.monitoring.log_structured = self._env("LOG_STRUCTURED", self.monitoring.log_structured)
        try:
            self.monitoring.log_level = LogLevel(os.getenv("LOG_LEVEL", self.monitoring.log_level.value).upper())
        except ValueError:
            pass
        self.system.log_root = os.getenv("LOG_ROOT", self.system.log_root)
        self.system.service_port = self._env("SERVICE_PORT", self.system.service_port)

        # Browser
        self.browser.cdp_url = os.getenv("BROWSER_CDP_URL", self.browser.cdp_url)
        self.browser.page_url_contains = os.getenv("BROWSER_PAGE_URL_CONTAINS", self.browser.page_url_contains)

    @staticmethod
    def _env(key: str, default: Any) -> Any:
        """Read an override cast to the type of its default; malformed values keep the default."""
        raw = os.getenv(key)
        if raw is None or raw.strip() == "":
            return default
        if isinstance(default, bool):
            flag = raw.strip().lower()
            if flag in ("1", "true", "yes", "on"):
                return True
            if flag in ("0", "false", "no", "off"):
                return False
            return default
        try:
            return type(default)(raw)
        except ValueError:
            return default

    def _validate_configuration(self) -> None:
        """Validate configuration values."""
        if self.stability.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")

        if self.stability.required_stable_ticks < 1:
            raise ValueError("required_stable_ticks must be at least 1")

        if self.stability.hard_ceiling_ms < self.stability.poll_interval_ms * self.stability.required_stable_ticks:
            raise ValueError("hard_ceiling_ms cannot be shorter than one full stable window")

        if not 0.0 < self.dedup.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be in (0, 1]")

        if self.session.max_pages < 1 or self.session.max_records < 1:
            raise ValueError("session caps must be at least 1")

    def get_configuration_summary(self) -> Dict[str, Any]:
        """Get configuration summary for logging/debugging."""
        return {
            "environment": self.environment.value,
            "stability": {
                "poll_interval_ms": self.stability.poll_interval_ms,
                "required_stable_ticks": self.stability.required_stable_ticks,
                "network_idle_ms": self.stability.network_idle_ms,
                "hard_ceiling_ms": self.stability.hard_ceiling_ms
            },
            "session": {
                "max_pages": self.session.max_pages,
                "max_records": self.session.max_records,
                "max_wall_clock_seconds": self.session.max_wall_clock_seconds
            },
            "dedup": {"similarity_threshold": self.dedup.similarity_threshold},
            "monitoring": {
                "prometheus_enabled": self.monitoring.prometheus_enabled,
                "log_level": self.monitoring.log_level.value
            },
            "browser": {"cdp_url": self.browser.cdp_url}
        }

    def setup_logging(self) -> logging.Logger:
        """Setup service logging configuration."""
        logger = logging.getLogger("harvester")
        logger.setLevel(getattr(logging, self.monitoring.log_level.value))

        for handler in logger.handlers[:]:
            logger.removeHandler(handler)

        if self.monitoring.log_structured:
            formatter = logging.Formatter(
                '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
                '"logger": "%(name)s", "message": "%(message)s", '
                '"environment": "' + self.environment.value + '"}'
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
            )

        handlers: list[logging.Handler] = [logging.StreamHandler()]
        if self.system.log_root:
            log_dir = pathlib.Path(self.system.log_root) / "harvester"
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_dir / f"{datetime.date.today().isoformat()}.log"))

        for handler in handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        return logger


# Global configuration instance
_config_instance: Optional[HarvesterConfig] = None


def get_config(environment: Optional[DeploymentEnvironment] = None) -> HarvesterConfig:
    """Get or create global configuration instance."""
    global _config_instance

    if _config_instance is None or (environment and environment != _config_instance.environment):
        if environment is None:
            env_str = os.getenv("DEPLOYMENT_ENVIRONMENT", "production").lower()
            try:
                environment = DeploymentEnvironment(env_str)
            except ValueError:
                environment = DeploymentEnvironment.PRODUCTION

        _config_instance = HarvesterConfig(environment)

    return _config_instance


def reset_config() -> None:
    """Reset global configuration instance (useful for testing)."""
    global _config_instance
    _config_instance = None
