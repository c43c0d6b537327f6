"""
targetflow Reducer: turns a parsed plan file into a Plan.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

from targetflow.commands import ExpressionCommand
from targetflow.errors import InvalidTransformError
from targetflow.parser import (
    ImportStatement,
    PlanProgram,
    TargetStatement,
    parse_program,
    parse_program_content,
)
from targetflow.plan.builder import PlanBuilder
from targetflow.plan.ir import Cross, Group, Map, Plan, Transform

logger = logging.getLogger("targetflow.reducer")


def _transform(statement: TargetStatement) -> Optional[Transform]:
    modifiers: Dict[str, Any] = statement.modifiers
    kinds = [kind for kind in ("map", "cross", "group") if kind in modifiers]
    if len(kinds) > 1:
        raise InvalidTransformError(
            f"Target '{statement.name}' combines {' and '.join(kinds)}; use exactly one transform"
        )
    trace = modifiers.get("trace")

    if not kinds:
        if trace is not None:
            raise InvalidTransformError(f"Target '{statement.name}' has trace({trace}) but no map or cross")
        return None

    kind = kinds[0]
    if kind == "map":
        return Map(*modifiers["map"], trace=trace)
    if kind == "cross":
        return Cross(*modifiers["cross"], trace=trace)

    dims, by = modifiers["group"]
    if trace is not None and trace != by:
        raise InvalidTransformError(f"Target '{statement.name}' groups by '{by}' and cannot trace '{trace}'")
    return Group(*dims, by=by)


def reduce_program(program: PlanProgram) -> Plan:
    """Reduce parsed statements to a Plan, in declaration order."""
    builder = PlanBuilder()
    for statement in program.statements:
        if isinstance(statement, ImportStatement):
            builder.import_module(statement.module)
        elif isinstance(statement, TargetStatement):
            builder.target(
                statement.name,
                ExpressionCommand(statement.expression),
                pattern=_transform(statement),
                format=statement.modifiers.get("format", "vector"),
                cue=statement.modifiers.get("cue", "thorough"),
            )
        else:
            raise ValueError(f"Unknown statement type: {type(statement).__name__}")
    plan = builder.to_plan()
    logger.debug(f"Reduced program to a plan with {len(plan)} targets")
    return plan


def reduce_program_content(content: str) -> Plan:
    return reduce_program(parse_program_content(content))


def load_plan(filename: Union[str, Path]) -> Plan:
    """Parse and reduce a plan file."""
    return reduce_program(parse_program(filename))
