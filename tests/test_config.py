"""Tests for configuration helpers and production environment validation"""

import pytest

from config.base import DEFAULT_SPECIAL_SHIFT_NAMES, _coerce_bool, _coerce_float, _parse_name_list
from config.validation import validate_environment
from timesheet_app.utils.reconcile import is_reconciler_enabled


class TestCoercion:
    @pytest.mark.parametrize("raw, expected", [("1", True), ("Yes", True), ("off", False), ("FALSE", False)])
    def test_coerce_bool(self, raw, expected):
        assert _coerce_bool(raw) is expected

    def test_coerce_bool_falls_back_to_default(self):
        assert _coerce_bool(None, default=True) is True
        assert _coerce_bool("maybe", default=False) is False

    def test_coerce_float(self):
        assert _coerce_float("0.85", 0.7) == 0.85
        assert _coerce_float("", 0.7) == 0.7
        assert _coerce_float("high", 0.7) == 0.7

    def test_parse_name_list_normalizes_and_deduplicates(self):
        assert _parse_name_list(" QC , Job  Delivery,qc ,") == ("qc", "job delivery")

    def test_parse_name_list_default(self):
        assert _parse_name_list("", DEFAULT_SPECIAL_SHIFT_NAMES) == DEFAULT_SPECIAL_SHIFT_NAMES


class TestEnvironmentValidation:
    def test_non_production_is_always_valid(self, monkeypatch):
        monkeypatch.delenv("SECRET_KEY", raising=False)
        assert validate_environment("development") == (True, [])

    def test_production_requires_secret_database_and_broker(self, monkeypatch):
        for name in ("SECRET_KEY", "DATABASE_URL", "CELERY_BROKER_URL", "RECON_FUZZY_THRESHOLD"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv("CELERY_TASK_ALWAYS_EAGER", raising=False)

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert any("SECRET_KEY" in error for error in errors)
        assert any("DATABASE_URL" in error for error in errors)
        assert any("CELERY_BROKER_URL" in error for error in errors)

    def test_production_threshold_must_be_a_ratio(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", "a" * 64)
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/timesheets")
        monkeypatch.setenv("CELERY_TASK_ALWAYS_EAGER", "true")
        monkeypatch.setenv("RECON_FUZZY_THRESHOLD", "1.5")

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert errors == ["RECON_FUZZY_THRESHOLD must be a number between 0 and 1"]

    def test_valid_production_environment(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", "a" * 64)
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/timesheets")
        monkeypatch.setenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
        monkeypatch.setenv("RECON_FUZZY_THRESHOLD", "0.75")
        monkeypatch.delenv("CELERY_TASK_ALWAYS_EAGER", raising=False)

        assert validate_environment("production") == (True, [])


class TestReconcilerFlag:
    def test_flag_reads_explicit_app(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "RECON_ENABLED", False)
        assert is_reconciler_enabled(app) is False

    def test_flag_reads_current_app(self, app):
        assert is_reconciler_enabled() is True
