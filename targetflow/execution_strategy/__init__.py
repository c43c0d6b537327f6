"""Execution strategy implementations."""

from typing import Optional

from targetflow.execution_strategy.base import ExecutionStrategy
from targetflow.execution_strategy.dask import DaskExecutionStrategy
from targetflow.execution_strategy.results import (
    LEGAL_TRANSITIONS,
    NodeState,
    NodeStatus,
    RunReport,
    UnitOutcome,
    WorkUnit,
)
from targetflow.execution_strategy.sequential import SequentialExecutionStrategy


def create_strategy(name: str, scheduler: str = "threads", num_workers: Optional[int] = None) -> ExecutionStrategy:
    if name == "sequential":
        return SequentialExecutionStrategy()
    if name == "dask":
        return DaskExecutionStrategy(scheduler=scheduler, num_workers=num_workers)
    raise ValueError(f"Unknown execution strategy: {name}")


__all__ = [
    "DaskExecutionStrategy",
    "ExecutionStrategy",
    "LEGAL_TRANSITIONS",
    "NodeState",
    "NodeStatus",
    "RunReport",
    "SequentialExecutionStrategy",
    "UnitOutcome",
    "WorkUnit",
    "create_strategy",
]
