"""Sequential execution strategy: units run one after another in order."""

from __future__ import annotations

from typing import Sequence

from targetflow.execution_strategy.base import ExecutionStrategy
from targetflow.execution_strategy.results import UnitOutcome, WorkUnit, run_unit


class SequentialExecutionStrategy(ExecutionStrategy):
    name = "sequential"

    def execute(self, units: Sequence[WorkUnit]) -> list[UnitOutcome]:
        return [run_unit(unit) for unit in units]
