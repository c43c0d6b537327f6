"""Shared work-unit, status and report contracts for execution strategies."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
import time

from targetflow.errors import IllegalTransitionError
from targetflow.plan.hash import subtarget_key


class NodeState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({NodeState.DONE, NodeState.FAILED, NodeState.SKIPPED})

LEGAL_TRANSITIONS: dict[NodeState, frozenset[NodeState]] = {
    NodeState.PENDING: frozenset({NodeState.READY, NodeState.SKIPPED}),
    # Ready -> Done is cached reuse, Ready -> Failed an expansion failure
    NodeState.READY: frozenset({NodeState.RUNNING, NodeState.DONE, NodeState.FAILED}),
    NodeState.RUNNING: frozenset({NodeState.DONE, NodeState.FAILED}),
    NodeState.DONE: frozenset(),
    NodeState.FAILED: frozenset(),
    NodeState.SKIPPED: frozenset(),
}


@dataclass
class NodeStatus:
    """State of one target or sub-target during a run."""

    name: str
    index: Optional[int] = None
    state: NodeState = NodeState.PENDING
    cached: bool = False
    error: Optional[str] = None
    reason: Optional[str] = None
    label: Any = None
    started_at: Optional[float] = None
    duration: float = 0.0
    subtargets: int = 0

    @property
    def key(self) -> str:
        return self.name if self.index is None else subtarget_key(self.name, self.index)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, requested: NodeState) -> None:
        if requested not in LEGAL_TRANSITIONS[self.state]:
            raise IllegalTransitionError(self.key, self.state.value, requested.value)
        self.state = requested

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "index": self.index,
            "state": self.state.value,
            "cached": self.cached,
            "error": self.error,
            "reason": self.reason,
            "label": self.label,
            "duration_s": round(self.duration, 6),
            "subtargets": self.subtargets,
        }


@dataclass
class WorkUnit:
    """One independent computation dispatched to an execution strategy."""

    key: str
    func: Callable[[], Any]


@dataclass
class UnitOutcome:
    """Result of one work unit; exactly one of value/error is meaningful."""

    key: str
    value: Any = None
    error: Optional[BaseException] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


def run_unit(unit: WorkUnit) -> UnitOutcome:
    """Evaluate a unit, capturing its exception instead of raising it."""
    start = time.perf_counter()
    try:
        value = unit.func()
    except Exception as exc:  # recorded as a Failed status by the scheduler
        return UnitOutcome(key=unit.key, error=exc, duration=time.perf_counter() - start)
    return UnitOutcome(key=unit.key, value=value, duration=time.perf_counter() - start)


@dataclass
class RunReport:
    """Execution outcome payload shared by the engine and features."""

    statuses: dict[str, NodeStatus] = field(default_factory=dict)
    execution_time: float = 0.0
    strategy: str = "sequential"
    node_events: list[dict[str, Any]] = field(default_factory=list)

    def add(self, status: NodeStatus) -> NodeStatus:
        self.statuses[status.key] = status
        return status

    def status(self, name: str, index: Optional[int] = None) -> NodeStatus:
        key = name if index is None else subtarget_key(name, index)
        return self.statuses[key]

    def state(self, name: str, index: Optional[int] = None) -> NodeState:
        return self.status(name, index).state

    def subtarget_statuses(self, name: str) -> list[NodeStatus]:
        found = [status for status in self.statuses.values() if status.name == name and status.index is not None]
        return sorted(found, key=lambda status: status.index)

    def targets(self) -> list[NodeStatus]:
        return [status for status in self.statuses.values() if status.index is None]

    def _names_in(self, state: NodeState) -> list[str]:
        return [status.key for status in self.targets() if status.state == state]

    @property
    def done(self) -> list[str]:
        return self._names_in(NodeState.DONE)

    @property
    def failed(self) -> dict[str, str]:
        return {status.key: status.error or "" for status in self.statuses.values() if status.state == NodeState.FAILED}

    @property
    def skipped(self) -> list[str]:
        return self._names_in(NodeState.SKIPPED)

    @property
    def success(self) -> bool:
        return all(status.state == NodeState.DONE for status in self.statuses.values())

    @property
    def cache_summary(self) -> dict[str, int]:
        done = [status for status in self.statuses.values() if status.state == NodeState.DONE]
        return {
            "computed": sum(1 for status in done if not status.cached),
            "cached": sum(1 for status in done if status.cached),
            "failed": sum(1 for status in self.statuses.values() if status.state == NodeState.FAILED),
            "skipped": sum(1 for status in self.statuses.values() if status.state == NodeState.SKIPPED),
        }

    def record_event(self, status: NodeStatus, **extra: Any) -> None:
        event = {"node": status.key, "state": status.state.value, "time": time.time()}
        event.update(extra)
        self.node_events.append(event)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "strategy": self.strategy,
            "execution_time_s": round(self.execution_time, 6),
            "cache_summary": self.cache_summary,
            "statuses": [status.to_dict() for status in self.statuses.values()],
        }
