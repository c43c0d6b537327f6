"""Execution strategy interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from targetflow.execution_strategy.results import UnitOutcome, WorkUnit


class ExecutionStrategy(ABC):
    """Strategy contract for evaluating a wave of independent work units."""

    name: str = "abstract"

    @abstractmethod
    def execute(self, units: Sequence[WorkUnit]) -> list[UnitOutcome]:
        """Evaluate every unit and return outcomes in the order of ``units``.

        Unit failures are reported in the outcomes, never raised.
        """
