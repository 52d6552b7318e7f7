"""
Application-level tests: config, logging formatters and CLI commands.
"""

import json
import logging

import pytest

from thesis_flow.config import ProductionConfig, TestingConfig
from thesis_flow.middleware.logging_config import JSONFormatter, ReadableFormatter
from thesis_flow.models import db
from thesis_flow.models.phase import Phase
from thesis_flow.models.thesis import Process


def _record(**extra):
    record = logging.LogRecord("thesis_flow.services.transition_engine", logging.INFO,
                               __file__, 10, "Phase %s advanced %d", (6, 3), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestConfig:

    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["PHASE_SCHEDULER_AUTOSTART"] is False
        assert app.config["PHASE_TIMEZONE"] == TestingConfig.PHASE_TIMEZONE
        assert "phase_scheduler" in app.extensions

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError):
            ProductionConfig()

    def test_production_requires_secret_key(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://db/thesis")
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(RuntimeError):
            ProductionConfig()


class TestLogFormatters:

    def test_json_includes_phase_fields(self):
        line = JSONFormatter().format(_record(phase_id=6, phase_title="Main final review",
                                              advanced=3, event_type="phase_transition"))
        entry = json.loads(line)
        assert entry["message"] == "Phase 6 advanced 3"
        assert entry["phase_id"] == 6
        assert entry["phase_title"] == "Main final review"
        assert entry["advanced"] == 3
        assert entry["event_type"] == "phase_transition"

    def test_json_omits_missing_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert "phase_id" not in entry

    def test_readable_shows_phase(self):
        line = ReadableFormatter().format(_record(phase_id=6))
        assert "[phase 6]" in line
        assert "Phase 6 advanced 3" in line


class TestCli:

    def test_seed_phases(self, app):
        result = app.test_cli_runner().invoke(args=["seed-phases"])
        assert result.exit_code == 0
        assert db.session.query(Phase).count() == 10

    def test_apply_phase(self, app, make_process):
        process = make_process(9)
        result = app.test_cli_runner().invoke(args=["apply-phase", "9"])
        assert result.exit_code == 0
        assert "phase 9: success, advanced 1" in result.output
        assert db.session.get(Process, process.id).phase_id == 10
