"""
Pytest configuration and fixtures for research pipeline tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import patch

import pytest

from rp.capabilities import Capabilities
from rp.config import Settings, clear_settings_cache
from rp.retrieval import SourceCatalog
from rp.stages import StageContext
from rp.state import RunState
from rp.types import RunInput, UserProfile


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing.

    Blank keys override any value from the developer's shell or .env.
    """
    env_vars = {
        "OPENAI_API_KEY": "sk-test-fake-openai-key-1234567890",
        "SEARCH_API_KEY": "",
        "WAREHOUSE_PATH": "",
        "MAX_WAREHOUSE_PROBES": "4",
        "MAX_CONCURRENT_PROBES": "2",
        "OUTPUT_DIR": str(temp_dir / "output"),
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def make_settings(temp_dir: Path) -> Callable[..., Settings]:
    """Factory for Settings isolated from the environment and .env."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "OPENAI_API_KEY": None,
            "SEARCH_API_KEY": None,
            "WAREHOUSE_PATH": None,
            "OUTPUT_DIR": temp_dir / "output",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    """Default isolated settings."""
    return make_settings()


@pytest.fixture(scope="session")
def catalog() -> SourceCatalog:
    """The bundled source catalog."""
    return SourceCatalog()


@pytest.fixture
def unavailable() -> Capabilities:
    """Capabilities with every client unavailable."""
    return Capabilities.unavailable()


@pytest.fixture
def stage_context(settings: Settings, unavailable: Capabilities, catalog: SourceCatalog) -> StageContext:
    """Stage context for a run without external capabilities."""
    return StageContext.for_run(settings, unavailable, catalog)


@pytest.fixture
def run_state() -> RunState:
    """Provide a fresh RunState for an EV battery question."""
    return RunState.create(
        RunInput(
            question="Porter's Five Forces for EV batteries in Europe, 2026 launch",
            profile=UserProfile(role="Strategy lead", company="Acme", locale="en-US"),
        )
    )


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
