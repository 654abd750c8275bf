"""Unit tests for structlog configuration."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from bedrock_accelerator.observability.logging import configure_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_lines(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.INFO)
        configure_logging(json=True)
        structlog.get_logger().info("executor.resource_ready", resource_id="vpc")

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["event"] == "executor.resource_ready"
        assert payload["resource_id"] == "vpc"
        assert payload["level"] == "info"
        assert "timestamp" in payload

    def test_debug_filtered_unless_verbose(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.DEBUG)
        configure_logging(json=True)
        structlog.get_logger().debug("resolver.plan_built")
        assert not caplog.records

        configure_logging(json=True, verbose=True)
        structlog.get_logger().debug("resolver.plan_built")
        assert json.loads(caplog.records[-1].getMessage())["event"] == (
            "resolver.plan_built"
        )
