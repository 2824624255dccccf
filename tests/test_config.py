"""Tests for environment-driven configuration and error handling."""

import logging

import pytest

from harvester.config.production import DeploymentEnvironment, HarvesterConfig, get_config, reset_config
from harvester.reliability.errors import (
    BindingUnavailable, EnhancedError, ErrorHandler, MalformedCapture, classify_binding_error,
)


class TestHarvesterConfig:
    """Defaults, overrides and validation."""

    def test_defaults(self, config):
        assert config.stability.poll_interval_ms == 1000
        assert config.stability.required_stable_ticks == 3
        assert config.stability.hard_ceiling_ms == 15000
        assert config.session.max_pages == 5
        assert config.session.max_records == 250
        assert config.dedup.similarity_threshold == 0.92
        assert config.media.max_image_width == 1600

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("HARVEST_MAX_PAGES", "9")
        monkeypatch.setenv("HARVEST_SIMILARITY_THRESHOLD", "0.95")
        monkeypatch.setenv("BROWSER_CDP_URL", "http://127.0.0.1:9333")
        config = HarvesterConfig(DeploymentEnvironment.STAGING)
        assert config.session.max_pages == 9
        assert config.dedup.similarity_threshold == 0.95
        assert config.browser.cdp_url == "http://127.0.0.1:9333"

    def test_invalid_values_are_rejected(self, monkeypatch):
        monkeypatch.setenv("HARVEST_STABILITY_CEILING_MS", "500")
        with pytest.raises(ValueError):
            HarvesterConfig()

    def test_global_instance(self, monkeypatch):
        monkeypatch.setenv("DEPLOYMENT_ENVIRONMENT", "development")
        reset_config()
        first = get_config()
        assert first is get_config()
        assert first.environment == DeploymentEnvironment.DEVELOPMENT
        reset_config()

    def test_setup_logging_returns_service_logger(self, config):
        logger = config.setup_logging()
        assert logger.name == "harvester"
        assert logger.level == logging.DEBUG


class TestErrorClassification:
    """Binding failures become BindingUnavailable, everything else is recorded."""

    @pytest.mark.parametrize("message", [
        "Target page, context or browser has been closed",
        "Browser has been disconnected",
        "Target crashed",
    ])
    def test_binding_failures(self, message):
        assert isinstance(classify_binding_error(Exception(message)), BindingUnavailable)

    def test_connection_errors(self):
        assert isinstance(classify_binding_error(ConnectionRefusedError("refused")), BindingUnavailable)

    def test_json_errors(self):
        assert isinstance(classify_binding_error(ValueError("Invalid JSON input")), MalformedCapture)

    def test_handler_counts_by_category(self):
        handler = ErrorHandler()
        handler.handle(RuntimeError("something odd"))
        handler.handle(MalformedCapture("bad body"))
        stats = handler.get_error_stats()
        assert stats["error_counts"] == {"unknown:medium": 1, "parsing:low": 1}

    def test_to_dict(self):
        error = EnhancedError("boom")
        payload = error.to_dict()
        assert payload["message"] == "boom"
        assert payload["category"] == "unknown"
        assert payload["severity"] == "medium"
