"""Configuration management for the results harvester."""

from .production import (
    HarvesterConfig, DeploymentEnvironment, LogLevel,
    StabilityConfig, SessionConfig, DedupConfig, MediaConfig,
    CaptureConfig, MonitoringConfig, SystemConfig, BrowserConfig,
    get_config, reset_config
)

__all__ = [
    'HarvesterConfig', 'DeploymentEnvironment', 'LogLevel',
    'StabilityConfig', 'SessionConfig', 'DedupConfig', 'MediaConfig',
    'CaptureConfig', 'MonitoringConfig', 'SystemConfig', 'BrowserConfig',
    'get_config', 'reset_config'
]
