"""Dask execution strategy: a wave's units become delayed tasks computed together."""

from __future__ import annotations

from typing import Optional, Sequence
import logging

import dask
from dask import delayed

from targetflow.execution_strategy.base import ExecutionStrategy
from targetflow.execution_strategy.results import UnitOutcome, WorkUnit, run_unit

logger = logging.getLogger("targetflow.execution_strategy.dask")


class DaskExecutionStrategy(ExecutionStrategy):
    """Run independent units concurrently with ``dask.delayed``.

    Outcomes come back in submission order regardless of completion order.
    """

    name = "dask"

    def __init__(self, scheduler: str = "threads", num_workers: Optional[int] = None):
        self.scheduler = scheduler
        self.num_workers = num_workers

    def execute(self, units: Sequence[WorkUnit]) -> list[UnitOutcome]:
        if not units:
            return []
        tasks = [delayed(run_unit, pure=False)(unit, dask_key_name=f"unit-{i}-{unit.key}") for i, unit in enumerate(units)]
        options = {"scheduler": self.scheduler}
        if self.num_workers is not None and self.scheduler == "threads":
            options["num_workers"] = self.num_workers
        logger.debug(f"Computing {len(tasks)} units with dask ({self.scheduler})")
        (outcomes,) = dask.compute(tasks, **options)
        return list(outcomes)
