"""
Invalidation tracker.

Decides whether a target (or one sub-target) can reuse its stored value.
A target is fresh when its last successful build was recorded with the same
command fingerprint, the same dependency value fingerprints and the same
format, and its entries are still in the store. Sub-targets compare a single
input fingerprint covering the command and every value they consumed.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Mapping, Optional
import logging

from targetflow.graph import DependencyGraph, build_graph
from targetflow.plan.hash import combine_fingerprints
from targetflow.plan.ir import Plan, Target, TargetName
from targetflow.storage import StorageBackend, TargetRecord

logger = logging.getLogger("targetflow.invalidation")

NEVER_BUILT = "never-built"
COMMAND_CHANGED = "command-changed"
DEPENDENCY_CHANGED = "dependency-changed"
MISSING_ENTRY = "missing-entry"
FORMAT_CHANGED = "format-changed"
EXPANSION_CHANGED = "expansion-changed"
CUE_ALWAYS = "cue-always"
CUE_NEVER = "cue-never"
UP_TO_DATE = "up-to-date"


@dataclass(frozen=True)
class Freshness:
    """Outcome of a freshness check with the reason behind it."""

    fresh: bool
    reason: str

    @classmethod
    def stale(cls, reason: str) -> "Freshness":
        return cls(False, reason)

    @classmethod
    def up_to_date(cls, reason: str = UP_TO_DATE) -> "Freshness":
        return cls(True, reason)

    def __bool__(self) -> bool:
        return self.fresh


def _entries_complete(target: Target, record: TargetRecord, store: StorageBackend) -> bool:
    if not target.is_dynamic:
        return store.exists(target.name)
    if not record.dynamic:
        return False
    return all(store.exists(target.name, index) for index in range(record.subtarget_count))


def check_target(
    target: Target,
    record: Optional[TargetRecord],
    command_fingerprint: str,
    dependency_fingerprints: Mapping[TargetName, str],
    store: StorageBackend,
) -> Freshness:
    """Check a whole target against its last successful build.

    For dynamic targets a stale result does not mean every sub-target reruns:
    the scheduler expands the target and checks each sub-target separately.
    """
    if target.cue == "always":
        return Freshness.stale(CUE_ALWAYS)

    if target.cue == "never" and record is not None and _entries_complete(target, record, store):
        return Freshness.up_to_date(CUE_NEVER)

    if record is None:
        return Freshness.stale(NEVER_BUILT)
    if record.format != target.format:
        return Freshness.stale(FORMAT_CHANGED)
    if record.command_fingerprint != command_fingerprint:
        return Freshness.stale(COMMAND_CHANGED)
    if dict(record.dependency_fingerprints) != dict(dependency_fingerprints):
        return Freshness.stale(DEPENDENCY_CHANGED)
    if record.dynamic != target.is_dynamic:
        return Freshness.stale(EXPANSION_CHANGED)
    if not _entries_complete(target, record, store):
        return Freshness.stale(MISSING_ENTRY)
    return Freshness.up_to_date()


def check_expansion(record: Optional[TargetRecord], expansion_fingerprint: str) -> Freshness:
    """Compare the structure of a new expansion with the recorded one."""
    if record is None or not record.dynamic:
        return Freshness.stale(NEVER_BUILT)
    if record.expansion_fingerprint != expansion_fingerprint:
        return Freshness.stale(EXPANSION_CHANGED)
    return Freshness.up_to_date()


def subtarget_input_fingerprint(
    command_fingerprint: str,
    element_fingerprints: Mapping[TargetName, str],
    full_fingerprints: Mapping[TargetName, str],
    format_name: str,
) -> str:
    """Fingerprint of everything one sub-target's value depends on."""
    return combine_fingerprints(
        "subtarget-input",
        [
            command_fingerprint,
            format_name,
            sorted(element_fingerprints.items()),
            sorted(full_fingerprints.items()),
        ],
    )


def check_subtarget(
    target: Target,
    index: int,
    input_fingerprint: str,
    store: StorageBackend,
) -> Freshness:
    """A sub-target is fresh when its entry was produced from the same inputs."""
    if target.cue == "always":
        return Freshness.stale(CUE_ALWAYS)
    if not store.exists(target.name, index):
        return Freshness.stale(MISSING_ENTRY)
    if target.cue == "never":
        return Freshness.up_to_date(CUE_NEVER)
    entry = store.entry(target.name, index)
    if entry.input_fingerprint is None:
        return Freshness.stale(NEVER_BUILT)
    if entry.input_fingerprint != input_fingerprint:
        return Freshness.stale(DEPENDENCY_CHANGED)
    return Freshness.up_to_date()


def aggregate_fingerprint(subtarget_fingerprints: list[str], format_name: str) -> str:
    """Value fingerprint of a dynamic target as seen by downstream targets."""
    return combine_fingerprints("aggregate", [format_name, list(subtarget_fingerprints)])


class InvalidationTracker:
    """Freshness checks bound to one store."""

    def __init__(self, store: StorageBackend):
        self.store = store

    def record(self, name: TargetName) -> Optional[TargetRecord]:
        return self.store.get_record(name)

    def value_fingerprint(self, name: TargetName) -> Optional[str]:
        record = self.store.get_record(name)
        return record.value_fingerprint if record is not None else None

    def dependency_fingerprints(self, target: Target) -> dict[TargetName, Any]:
        return {dep: self.value_fingerprint(dep) for dep in target.dependencies()}

    def check(self, target: Target) -> Freshness:
        return check_target(
            target,
            self.store.get_record(target.name),
            target.command.fingerprint(),
            self.dependency_fingerprints(target),
            self.store,
        )

    def invalidate(self, name: TargetName) -> bool:
        """Forget the last build of a target so the next run recomputes it.

        Stored values stay readable until they are overwritten. Sub-target
        entries lose their input fingerprints, so every sub-target reruns too.
        """
        removed = self.store.clear_record(name)
        cleared = self.store.clear_input_fingerprints(name)
        if removed or cleared:
            logger.debug(f"Invalidated {name} ({cleared} entries)")
        return removed or cleared > 0

    def outdated(self, plan: Plan, graph: Optional[DependencyGraph] = None) -> "OrderedDict[TargetName, str]":
        """Targets that the next run would recompute, in execution order.

        Staleness propagates downstream: a target whose dependency reruns is
        reported outdated even if the rerun ends up producing an identical
        value, so the prediction is a superset of what actually reruns.
        """
        graph = graph or build_graph(plan)
        result: OrderedDict[TargetName, str] = OrderedDict()
        for name in graph.topological_order():
            target = plan.get(name)
            record = self.store.get_record(name)
            if target.cue == "never" and record is not None and _entries_complete(target, record, self.store):
                continue
            if any(dep in result for dep in target.dependencies()):
                result[name] = DEPENDENCY_CHANGED
                continue
            freshness = self.check(target)
            if not freshness.fresh:
                result[name] = freshness.reason
        logger.debug(f"{len(result)} of {len(plan)} targets outdated")
        return result


def outdated(plan: Plan, store: StorageBackend) -> "OrderedDict[TargetName, str]":
    """Predict, without running anything, which targets would rerun."""
    return InvalidationTracker(store).outdated(plan)
