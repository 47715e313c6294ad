"""
Tests for context-aware logging.
"""

from __future__ import annotations

import logging

import orjson
import pytest

from rp.logging import JSONFormatter, current_context, get_revision, get_run_id, get_stage, log_context


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("rp.test", logging.INFO, __file__, 1, message, None, None)
    if extra:
        record.extra = extra
    return record


class TestLogContext:
    """Tests for scoped run / stage / revision context."""

    def test_nested_scopes_restore(self) -> None:
        assert current_context() == {}

        with log_context(run_id="run_abc"):
            with log_context(stage="reviewer", revision=1):
                assert current_context() == {"run_id": "run_abc", "stage": "reviewer", "revision": 1}
            assert get_stage() is None
            assert get_revision() == 0
            assert get_run_id() == "run_abc"

        assert get_run_id() is None

    def test_restores_after_error(self) -> None:
        with pytest.raises(RuntimeError):
            with log_context(run_id="run_abc", stage="lead_manager"):
                raise RuntimeError("boom")

        assert current_context() == {}

    def test_revision_zero_is_omitted(self) -> None:
        with log_context(stage="data_analyzer", revision=0):
            assert current_context() == {"stage": "data_analyzer"}


class TestJSONFormatter:
    def test_includes_context_and_extra(self) -> None:
        with log_context(run_id="run_abc", stage="data_searcher"):
            line = JSONFormatter().format(_record("Probe executed", rows=3))

        payload = orjson.loads(line)
        assert payload["message"] == "Probe executed"
        assert payload["level"] == "INFO"
        assert payload["run_id"] == "run_abc"
        assert payload["stage"] == "data_searcher"
        assert payload["extra"] == {"rows": 3}
        assert "revision" not in payload
