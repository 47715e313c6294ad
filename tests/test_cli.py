"""
Tests for the rp command line interface.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Generator

import orjson
import pytest
from typer.testing import CliRunner

from rp import __version__
from rp.cli.main import app

runner = CliRunner()


@pytest.fixture
def offline_env(mock_env_vars: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Environment with no external capability configured."""
    monkeypatch.setenv("OPENAI_API_KEY", "")
    return mock_env_vars


@pytest.fixture(autouse=True)
def reset_rp_logger() -> Generator[None, None, None]:
    """Drop handlers installed by `rp run`."""
    yield
    logger = logging.getLogger("rp")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class TestCli:
    """Tests for the rp commands."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"research-pipeline version {__version__}" in result.output

    def test_config_redacts_keys(self, mock_env_vars: dict[str, str]) -> None:
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert mock_env_vars["OPENAI_API_KEY"] not in result.output
        assert "sk-test-" in result.output

    def test_sources(self, mock_env_vars: dict[str, str]) -> None:
        result = runner.invoke(app, ["sources"])

        assert result.exit_code == 0
        assert "Source catalog" in result.output

    def test_run_rejects_blank_question(self, offline_env: dict[str, str]) -> None:
        result = runner.invoke(app, ["run", "   "])

        assert result.exit_code == 2

    def test_run_offline_writes_report(self, offline_env: dict[str, str], temp_dir: Path) -> None:
        """Without capabilities a run still writes a report and a result file."""
        output_dir = temp_dir / "runs"

        result = runner.invoke(
            app,
            ["run", "SWOT of the European heat pump market", "--output-dir", str(output_dir)],
        )

        assert result.exit_code == 0, result.output
        run_dirs = list(output_dir.iterdir())
        assert len(run_dirs) == 1
        report = (run_dirs[0] / "report.md").read_text(encoding="utf-8")
        payload = orjson.loads((run_dirs[0] / "result.json").read_bytes())
        assert report.startswith("#")
        assert payload["errors"] == []
