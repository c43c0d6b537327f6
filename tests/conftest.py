"""Shared pytest fixtures for targetflow tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from targetflow.config import ENV_PREFIX, EngineConfig
from targetflow.execution import ExecutionEngine, set_execution_engine
from targetflow.execution_strategy import create_strategy
from targetflow.registry import FunctionRegistry
from targetflow.storage import StorageBackend, set_storage


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests of a single module")
    config.addinivalue_line("markers", "integration: tests that run plans end to end")


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for suffix in ("STORE", "STRATEGY", "DASK_SCHEDULER", "WORKERS", "NO_CACHE"):
        monkeypatch.delenv(ENV_PREFIX + suffix, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    yield
    set_execution_engine(None)
    set_storage(None)


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "store.db"


@pytest.fixture
def store(store_path: Path):
    backend = StorageBackend(store_path)
    yield backend
    backend.close()


@pytest.fixture(params=["sequential", "dask"])
def strategy_name(request):
    return request.param


@pytest.fixture
def engine(store: StorageBackend, strategy_name: str) -> ExecutionEngine:
    return ExecutionEngine(
        storage_backend=store,
        registry=FunctionRegistry(),
        strategy=create_strategy(strategy_name),
        config=EngineConfig(strategy=strategy_name),
    )


@pytest.fixture
def reduce_from_text():
    from targetflow.reducer import reduce_program_content

    return reduce_program_content
