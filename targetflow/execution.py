"""
targetflow Execution Engine

Runs a plan wave by wave over its static dependency graph. Dynamic targets
are expanded once their dimension targets are Done, and their sub-targets are
dispatched together with the static targets of the same wave. Units never
touch the store: the engine writes results after each wave, in expansion
order, so aggregation order never depends on completion order.
"""

import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Iterable, List, Optional

from targetflow.config import EngineConfig, load_config
from targetflow.errors import (
    CommandError,
    ExpansionError,
    NotFoundError,
    UnknownFormatError,
    UnknownReferenceError,
)
from targetflow.execution_strategy import (
    ExecutionStrategy,
    NodeState,
    NodeStatus,
    RunReport,
    UnitOutcome,
    WorkUnit,
    create_strategy,
)
from targetflow.expansion import Dimension, Expansion, expand
from targetflow.formats import get_format, has_format
from targetflow.graph import DependencyGraph, build_graph
from targetflow.invalidation import (
    EXPANSION_CHANGED,
    InvalidationTracker,
    aggregate_fingerprint,
    check_expansion,
    check_subtarget,
    check_target,
    subtarget_input_fingerprint,
)
from targetflow.log import VERBOSE_LEVEL
from targetflow.plan.hash import combine_fingerprints
from targetflow.plan.ir import Plan, Target
from targetflow.registry import FunctionRegistry
from targetflow.storage import NoCacheStorageBackend, StorageBackend, TargetRecord, get_storage

logger = logging.getLogger("targetflow.execution")


@dataclass
class _PendingUnit:
    """A dispatched unit and what is needed to store its result."""

    status: NodeStatus
    unit: WorkUnit
    target: Target
    command_fingerprint: str
    input_fingerprint: str
    dependency_fingerprints: Dict[str, Any] = field(default_factory=dict)
    labels: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _DynamicRun:
    """A dynamic target whose sub-targets were created in the current wave."""

    target: Target
    status: NodeStatus
    expansion: Expansion
    command_fingerprint: str
    dependency_fingerprints: Dict[str, Any]
    substatuses: List[NodeStatus] = field(default_factory=list)
    dispatched: int = 0


class ExecutionEngine:
    """
    Scheduler for plans with dynamic branching.

    Every target and sub-target moves through the states of NodeState. Plan
    errors are raised before anything runs; expansion and command failures
    are recorded in the returned RunReport and propagate as Skipped.
    """

    def __init__(
        self,
        storage_backend: Optional[StorageBackend] = None,
        registry: Optional[FunctionRegistry] = None,
        strategy: Optional[ExecutionStrategy] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize execution engine.

        Args:
            storage_backend: Result store. Derived from the configuration if None.
            registry: Functions available to expression commands.
            strategy: Execution strategy. Derived from the configuration if None.
            config: Engine configuration. Loaded from the environment if None.
        """
        self.config = config or load_config()
        if storage_backend is None:
            if self.config.no_cache:
                storage_backend = NoCacheStorageBackend()
            else:
                storage_backend = get_storage(self.config.resolved_store_path())
        self.storage = storage_backend
        self.registry = registry or FunctionRegistry()
        self.strategy = strategy or create_strategy(
            self.config.strategy,
            scheduler=self.config.dask_scheduler,
            num_workers=self.config.num_workers,
        )
        self.tracker = InvalidationTracker(self.storage)
        # Expansions computed by the latest run, used for graph export
        self.expansions: Dict[str, Expansion] = {}

    # ----------------- Running -----------------

    def validate(self, plan: Plan) -> DependencyGraph:
        """Check formats and build the dependency graph; raises PlanError subclasses."""
        for target in plan:
            if not has_format(target.format):
                raise UnknownFormatError(target.name, target.format)
        return build_graph(plan)

    def run(self, plan: Plan, targets: Optional[Iterable[str]] = None) -> RunReport:
        """
        Run a plan and return the per-node report.

        Args:
            plan: The plan to run
            targets: Restrict the run to these targets and their upstream closure

        Returns:
            RunReport with a terminal status for every considered (sub-)target
        """
        graph = self.validate(plan)
        selected = None
        if targets is not None:
            requested = list(targets)
            for name in requested:
                if name not in plan:
                    raise UnknownReferenceError("<run>", name)
            selected = graph.upstream(requested)

        for module in plan.imported_modules:
            self.registry.import_module(module)
            logger.debug(f"Imported module '{module}' for execution")

        waves = graph.generations(selected)
        report = RunReport(strategy=self.strategy.name)
        for wave in waves:
            for name in wave:
                report.add(NodeStatus(name=name))

        total = sum(len(wave) for wave in waves)
        logger.log(VERBOSE_LEVEL, f"Running {total} targets in {len(waves)} waves ({self.strategy.name})")
        start_time = time.time()
        for number, wave in enumerate(waves):
            self._run_wave(plan, wave, report, number)
        report.execution_time = time.time() - start_time

        summary = report.cache_summary
        logger.info(
            f"Run finished in {report.execution_time:.2f}s: "
            f"{summary['computed']} computed, {summary['cached']} cached, "
            f"{summary['failed']} failed, {summary['skipped']} skipped"
        )
        return report

    def _transition(self, report: RunReport, status: NodeStatus, state: NodeState) -> None:
        previous = status.state
        status.transition(state)
        report.record_event(status, previous=previous.value, cached=status.cached)
        logger.debug(f"{status.key}: {previous.value} -> {state.value}")

    def _blocking_dependency(self, target: Target, report: RunReport) -> Optional[NodeStatus]:
        for dep in target.dependencies():
            dep_status = report.statuses.get(dep)
            if dep_status is not None and dep_status.state in (NodeState.FAILED, NodeState.SKIPPED):
                return dep_status
        return None

    def _run_wave(self, plan: Plan, wave: List[str], report: RunReport, number: int) -> None:
        pending: List[_PendingUnit] = []
        dynamic: List[_DynamicRun] = []

        for name in wave:
            target = plan.get(name)
            status = report.status(name)
            blocked = self._blocking_dependency(target, report)
            if blocked is not None:
                status.reason = f"dependency '{blocked.key}' {blocked.state.value}"
                self._transition(report, status, NodeState.SKIPPED)
                logger.warning(f"Skipping {name}: {status.reason}")
                continue
            self._transition(report, status, NodeState.READY)
            if target.is_dynamic:
                dynamic_run = self._prepare_dynamic(plan, target, status, report, pending)
                if dynamic_run is not None:
                    dynamic.append(dynamic_run)
            else:
                self._prepare_static(target, status, report, pending)

        if pending:
            logger.log(VERBOSE_LEVEL, f"Wave {number}: dispatching {len(pending)} units")
            for item in pending:
                item.status.started_at = time.time()
                self._transition(report, item.status, NodeState.RUNNING)
            for dynamic_run in dynamic:
                if dynamic_run.dispatched:
                    self._transition(report, dynamic_run.status, NodeState.RUNNING)

            outcomes = self.strategy.execute([item.unit for item in pending])
            for item, outcome in zip(pending, outcomes):
                self._finish_unit(item, outcome, report)

        for dynamic_run in dynamic:
            self._finish_dynamic(dynamic_run, report)

    def _evaluate(self, target: Target, env: Dict[str, Any]) -> Any:
        return target.command.evaluate(env, self.registry)

    def _prepare_static(
        self,
        target: Target,
        status: NodeStatus,
        report: RunReport,
        pending: List[_PendingUnit],
    ) -> None:
        command_fp = target.command.fingerprint()
        dep_fps = self.tracker.dependency_fingerprints(target)
        freshness = check_target(target, self.storage.get_record(target.name), command_fp, dep_fps, self.storage)
        status.reason = freshness.reason
        if freshness.fresh:
            status.cached = True
            self._transition(report, status, NodeState.DONE)
            return

        logger.log(VERBOSE_LEVEL, f"{target.name} is stale ({freshness.reason})")
        env = {dep: self.storage.read_aggregate(dep) for dep in target.command.references()}
        pending.append(
            _PendingUnit(
                status=status,
                unit=WorkUnit(status.key, partial(self._evaluate, target, env)),
                target=target,
                command_fingerprint=command_fp,
                input_fingerprint=combine_fingerprints("target-input", [command_fp, sorted(dep_fps.items())]),
                dependency_fingerprints=dep_fps,
            )
        )

    def _materialize_dimensions(self, plan: Plan, target: Target) -> Dict[str, Dimension]:
        dimensions: Dict[str, Dimension] = {}
        for name in target.transform.dependencies():
            if plan.get(name).is_dynamic:
                indices = self.storage.indices(name)
                values = [self.storage.read(name, index) for index in indices]
                fingerprints = [self.storage.entry(name, index).fingerprint for index in indices]
                dimensions[name] = Dimension.from_branches(name, values, fingerprints)
            else:
                dimensions[name] = Dimension.from_value(name, self.storage.read(name), target.name)
        return dimensions

    def _prepare_dynamic(
        self,
        plan: Plan,
        target: Target,
        status: NodeStatus,
        report: RunReport,
        pending: List[_PendingUnit],
    ) -> Optional[_DynamicRun]:
        record = self.storage.get_record(target.name)
        command_fp = target.command.fingerprint()
        dep_fps = self.tracker.dependency_fingerprints(target)
        freshness = check_target(target, record, command_fp, dep_fps, self.storage)
        trace = target.transform.trace

        if freshness.fresh:
            status.cached = True
            status.reason = freshness.reason
            status.subtargets = record.subtarget_count
            # Re-expand without dispatching so graph exports see the sub-targets
            try:
                self.expansions[target.name] = expand(target, self._materialize_dimensions(plan, target))
            except ExpansionError as e:
                logger.debug(f"Could not re-expand cached {target.name}: {e}")
            for index in range(record.subtarget_count):
                entry = self.storage.entry(target.name, index)
                sub = report.add(
                    NodeStatus(
                        name=target.name,
                        index=index,
                        cached=True,
                        reason=freshness.reason,
                        label=entry.labels.get(trace) if trace is not None else None,
                    )
                )
                self._transition(report, sub, NodeState.READY)
                self._transition(report, sub, NodeState.DONE)
            self._transition(report, status, NodeState.DONE)
            return None

        try:
            expansion = expand(target, self._materialize_dimensions(plan, target))
        except ExpansionError as e:
            status.error = str(e)
            logger.error(str(e))
            self._transition(report, status, NodeState.FAILED)
            self.storage.clear_record(target.name)
            return None

        self.expansions[target.name] = expansion
        status.subtargets = len(expansion)
        structure = check_expansion(record, expansion.fingerprint)
        status.reason = EXPANSION_CHANGED if structure.reason == EXPANSION_CHANGED else freshness.reason
        logger.log(VERBOSE_LEVEL, f"Expanded {target.name} ({expansion.kind}) into {len(expansion)} sub-targets")

        # Entries of a previous static definition or of indices that no longer exist
        self.storage.remove(target.name, None)
        self.storage.prune(target.name, range(len(expansion)))

        dims = set(target.transform.dependencies())
        full_refs = [dep for dep in target.command.references() if dep not in dims]
        full_env = {dep: self.storage.read_aggregate(dep) for dep in full_refs}
        full_fps = {dep: dep_fps[dep] for dep in full_refs}

        dynamic_run = _DynamicRun(
            target=target,
            status=status,
            expansion=expansion,
            command_fingerprint=command_fp,
            dependency_fingerprints=dep_fps,
        )
        for spec in expansion:
            input_fp = subtarget_input_fingerprint(command_fp, spec.input_fingerprints, full_fps, target.format)
            sub = report.add(NodeStatus(name=target.name, index=spec.index, label=spec.label))
            dynamic_run.substatuses.append(sub)
            self._transition(report, sub, NodeState.READY)

            sub_freshness = check_subtarget(target, spec.index, input_fp, self.storage)
            sub.reason = sub_freshness.reason
            if sub_freshness.fresh:
                sub.cached = True
                self._transition(report, sub, NodeState.DONE)
                continue

            env = dict(full_env)
            env.update(spec.bindings)
            pending.append(
                _PendingUnit(
                    status=sub,
                    unit=WorkUnit(sub.key, partial(self._evaluate, target, env)),
                    target=target,
                    command_fingerprint=command_fp,
                    input_fingerprint=input_fp,
                    labels=spec.dim_labels,
                )
            )
            dynamic_run.dispatched += 1
        return dynamic_run

    def _finish_unit(self, item: _PendingUnit, outcome: UnitOutcome, report: RunReport) -> None:
        status = item.status
        target = item.target
        status.duration = outcome.duration

        if not outcome.ok:
            error = CommandError(target.name, outcome.error, status.index)
            error.__cause__ = outcome.error
            status.error = str(error)
            logger.error(str(error))
            self._transition(report, status, NodeState.FAILED)
            if status.index is None:
                self.storage.clear_record(target.name)
            return

        entry = self.storage.write(
            target.name,
            status.index,
            outcome.value,
            format=target.format,
            input_fingerprint=item.input_fingerprint,
            labels=item.labels,
        )
        if status.index is None:
            # Sub-target entries of a previous dynamic definition
            self.storage.prune(target.name, [])
            self.storage.set_record(
                TargetRecord(
                    name=target.name,
                    command_fingerprint=item.command_fingerprint,
                    dependency_fingerprints=item.dependency_fingerprints,
                    value_fingerprint=entry.fingerprint,
                    format=target.format,
                )
            )
        self._transition(report, status, NodeState.DONE)

    def _finish_dynamic(self, dynamic_run: _DynamicRun, report: RunReport) -> None:
        target = dynamic_run.target
        status = dynamic_run.status
        failed = [sub for sub in dynamic_run.substatuses if sub.state == NodeState.FAILED]
        if failed:
            status.error = f"{len(failed)} of {len(dynamic_run.substatuses)} sub-targets failed"
            logger.error(f"{target.name}: {status.error}")
            self._transition(report, status, NodeState.FAILED)
            self.storage.clear_record(target.name)
            return

        fingerprints = [self.storage.entry(target.name, sub.index).fingerprint for sub in dynamic_run.substatuses]
        self.storage.set_record(
            TargetRecord(
                name=target.name,
                command_fingerprint=dynamic_run.command_fingerprint,
                dependency_fingerprints=dynamic_run.dependency_fingerprints,
                value_fingerprint=aggregate_fingerprint(fingerprints, target.format),
                format=target.format,
                dynamic=True,
                expansion_fingerprint=dynamic_run.expansion.fingerprint,
                subtarget_count=len(dynamic_run.substatuses),
                trace=target.transform.trace,
            )
        )
        if status.state == NodeState.READY:
            status.cached = bool(dynamic_run.substatuses) and all(sub.cached for sub in dynamic_run.substatuses)
        self._transition(report, status, NodeState.DONE)

    # ----------------- Reading -----------------

    def read_one(self, name: str) -> Any:
        """Value of a target; dynamic targets return their aggregate."""
        return self.storage.read_aggregate(name)

    def read_subtarget(self, name: str, index: int) -> Any:
        return self.storage.read(name, index)

    def read_aggregate(self, name: str) -> Any:
        return self.storage.read_aggregate(name)

    def read_trace(self, dim: str, name: str, per_element: bool = False) -> List[Any]:
        """
        Labels of dimension ``dim`` for every sub-target of ``name``.

        With ``per_element`` each label is repeated once per element its
        sub-target contributes, so the result aligns with ``read_aggregate``.
        """
        indices = self.storage.indices(name)
        if not indices:
            record = self.storage.get_record(name)
            if record is not None and record.dynamic:
                return []
            raise NotFoundError(name)

        labels: List[Any] = []
        for index in indices:
            entry = self.storage.entry(name, index)
            if dim not in entry.labels:
                raise KeyError(f"'{dim}' is not a dimension of '{name}'")
            label = entry.labels[dim]
            if per_element and has_format(entry.format):
                count = get_format(entry.format).contributes(self.storage.read(name, index))
                labels.extend([label] * count)
            else:
                labels.append(label)
        return labels

    def read_label(self, name: str, index: int) -> Any:
        """Trace label of one sub-target, or None when the target has no trace."""
        entry = self.storage.entry(name, index)
        record = self.storage.get_record(name)
        if record is None or record.trace is None:
            return None
        return entry.labels.get(record.trace)

    # ----------------- Maintenance -----------------

    def outdated(self, plan: Plan) -> Dict[str, str]:
        """Targets the next run would recompute, with the reason."""
        graph = self.validate(plan)
        return dict(self.tracker.outdated(plan, graph))

    def invalidate(self, names: Iterable[str]) -> List[str]:
        """Force the given targets to rerun on the next run."""
        return [name for name in names if self.tracker.invalidate(name)]

    def delete(self, names: Iterable[str]) -> Dict[str, int]:
        """Remove stored values and records of the given targets."""
        removed = {}
        for name in names:
            removed[name] = self.storage.delete(name)
            self.expansions.pop(name, None)
        return removed

    def meta(self, name: str) -> TargetRecord:
        record = self.storage.get_record(name)
        if record is None:
            raise NotFoundError(name)
        return record


# Global execution engine instance
_execution_engine: Optional[ExecutionEngine] = None


def get_execution_engine() -> ExecutionEngine:
    """Get the global execution engine, creating one from the environment configuration."""
    global _execution_engine
    if _execution_engine is None:
        _execution_engine = ExecutionEngine()
    return _execution_engine


def set_execution_engine(engine: Optional[ExecutionEngine]) -> None:
    """Set the global execution engine instance (for testing or configuration)."""
    global _execution_engine
    _execution_engine = engine


# Convenience functions
def run(plan: Plan, targets: Optional[Iterable[str]] = None) -> RunReport:
    return get_execution_engine().run(plan, targets)


def read_one(name: str) -> Any:
    return get_execution_engine().read_one(name)


def read_subtarget(name: str, index: int) -> Any:
    return get_execution_engine().read_subtarget(name, index)


def read_trace(dim: str, name: str, per_element: bool = False) -> List[Any]:
    return get_execution_engine().read_trace(dim, name, per_element)
