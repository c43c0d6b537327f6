from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from targetflow.config import EngineConfig, load_config


@pytest.mark.unit
def test_defaults(tmp_path):
    config = load_config(environ={})
    assert config.strategy == "sequential"
    assert config.no_cache is False
    assert config.num_workers is None
    assert config.resolved_store_path() == Path.home() / ".targetflow" / "store.db"


@pytest.mark.unit
def test_environment_values_are_coerced():
    config = load_config(
        environ={
            "TARGETFLOW_STORE": "/tmp/elsewhere.db",
            "TARGETFLOW_STRATEGY": "dask",
            "TARGETFLOW_WORKERS": "4",
            "TARGETFLOW_NO_CACHE": "true",
        }
    )
    assert config.store_path == Path("/tmp/elsewhere.db")
    assert config.strategy == "dask"
    assert config.num_workers == 4
    assert config.no_cache is True


@pytest.mark.unit
def test_overrides_win_unless_none():
    environ = {"TARGETFLOW_STRATEGY": "dask"}
    assert load_config(environ=environ, strategy="sequential").strategy == "sequential"
    assert load_config(environ=environ, strategy=None).strategy == "dask"


@pytest.mark.unit
def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        load_config(environ={"TARGETFLOW_STRATEGY": "cluster"})
    with pytest.raises(ValidationError):
        EngineConfig(num_workers=0)
