"""Helpers to build plans."""

from __future__ import annotations

from typing import Any, Optional

from targetflow.errors import DuplicateTargetError
from targetflow.plan.ir import Cue, Plan, Target, Transform


class PlanBuilder:
    """Mutable builder exporting an immutable-by-convention Plan."""

    def __init__(self) -> None:
        self._targets: list[Target] = []
        self._names: set[str] = set()
        self._imported_modules: list[str] = []

    def add(self, target: Target) -> "PlanBuilder":
        if target.name in self._names:
            raise DuplicateTargetError(target.name)
        self._names.add(target.name)
        self._targets.append(target)
        return self

    def target(
        self,
        name: str,
        command: Any,
        pattern: Optional[Transform] = None,
        format: str = "vector",
        cue: Cue = "thorough",
    ) -> "PlanBuilder":
        """Declare a target; ``command`` may be an expression string, a callable or a Command."""
        from targetflow.commands import as_command

        return self.add(
            Target(
                name=name,
                command=as_command(command),
                format=format,
                transform=pattern,
                cue=cue,
            )
        )

    def import_module(self, module: str) -> "PlanBuilder":
        if module not in self._imported_modules:
            self._imported_modules.append(module)
        return self

    def to_plan(self) -> Plan:
        return Plan(
            targets=list(self._targets),
            imported_modules=tuple(self._imported_modules),
        )
