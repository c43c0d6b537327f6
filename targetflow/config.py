"""Engine configuration loaded from the environment and CLI overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "TARGETFLOW_"

_ENV_FIELDS = {
    "store_path": "STORE",
    "strategy": "STRATEGY",
    "dask_scheduler": "DASK_SCHEDULER",
    "num_workers": "WORKERS",
    "no_cache": "NO_CACHE",
}


class EngineConfig(BaseModel):
    """Settings for an ExecutionEngine."""

    store_path: Optional[Path] = None
    strategy: Literal["sequential", "dask"] = "sequential"
    dask_scheduler: Literal["threads", "synchronous"] = "threads"
    num_workers: Optional[int] = Field(default=None, ge=1)
    no_cache: bool = False

    def resolved_store_path(self) -> Path:
        if self.store_path is not None:
            return self.store_path
        return Path.home() / ".targetflow" / "store.db"


def _read_env(environ: dict[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field_name, suffix in _ENV_FIELDS.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        values[field_name] = raw
    return values


def load_config(environ: Optional[dict[str, str]] = None, **overrides: Any) -> EngineConfig:
    """Build an EngineConfig from environment variables, then explicit overrides.

    Overrides whose value is None are ignored so CLI options left unset do not
    mask environment settings.
    """
    values = _read_env(dict(os.environ) if environ is None else environ)
    values.update({key: value for key, value in overrides.items() if value is not None})
    return EngineConfig.model_validate(values)
