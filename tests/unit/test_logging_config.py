"""Tests for feedbacker/utils/logging_config.py."""

import json

import structlog

from feedbacker.utils.logging_config import configure_logging, redact_secrets


class TestRedactSecrets:
    """Tests for the redaction processor."""

    def test_masks_secret_keys(self):
        event = {"event": "provider_configured", "api_key": "sk-live", "provider": "openai"}

        assert redact_secrets(None, "info", event) == {
            "event": "provider_configured",
            "api_key": "***",
            "provider": "openai",
        }

    def test_leaves_empty_values(self):
        """Should keep empty values visible so missing secrets stay diagnosable."""
        assert redact_secrets(None, "info", {"event": "x", "token": None})["token"] is None


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_output(self, capsys):
        """Should emit one JSON object per event with bound context merged in."""
        configure_logging("debug", "json")
        try:
            with structlog.contextvars.bound_contextvars(job_id="abc"):
                structlog.get_logger("test").info("job_started", token="ghp_secret")
            line = capsys.readouterr().out.strip().splitlines()[-1]
        finally:
            structlog.reset_defaults()

        data = json.loads(line)
        assert data["event"] == "job_started"
        assert data["job_id"] == "abc"
        assert data["level"] == "info"
        assert data["token"] == "***"

    def test_level_filter(self, capsys):
        configure_logging("warning", "json")
        try:
            structlog.get_logger("test").info("hidden")
            out = capsys.readouterr().out
        finally:
            structlog.reset_defaults()

        assert "hidden" not in out
