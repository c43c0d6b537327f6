"""
targetflow: a build engine for plans of targets with dynamic branching.
"""

from targetflow.commands import CallableCommand, ExpressionCommand
from targetflow.execution import (
    ExecutionEngine,
    get_execution_engine,
    read_one,
    read_subtarget,
    read_trace,
    run,
    set_execution_engine,
)
from targetflow.execution_strategy import NodeState, RunReport
from targetflow.formats import register_format
from targetflow.plan import Cross, Group, Map, Plan, PlanBuilder, Target
from targetflow.reducer import load_plan
from targetflow.version import __version__

__all__ = [
    "CallableCommand",
    "Cross",
    "ExecutionEngine",
    "ExpressionCommand",
    "Group",
    "Map",
    "NodeState",
    "Plan",
    "PlanBuilder",
    "RunReport",
    "Target",
    "__version__",
    "get_execution_engine",
    "load_plan",
    "read_one",
    "read_subtarget",
    "read_trace",
    "register_format",
    "run",
    "set_execution_engine",
]
