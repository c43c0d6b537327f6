"""
This module defines all targetflow features using a unified registry system.
This module serves as the single source of truth for all features.
"""

from typing import (
    Dict,
    Any,
    Callable,
    Iterator,
    List,
    Optional,
    TypeVar,
    Generic,
)
from contextlib import contextmanager
from dataclasses import asdict, dataclass
import json
import logging

from pydantic import ValidationError

from targetflow.config import load_config
from targetflow.converters import to_json, to_dot
from targetflow.converters.json_converter import PlanJSONEncoder
from targetflow.errors import TargetflowError
from targetflow.execution import ExecutionEngine
from targetflow.parser import parse_program, parse_program_content
from targetflow.reducer import reduce_program
from targetflow.registry import FunctionRegistry
from targetflow.storage import NoCacheStorageBackend, StorageBackend

logger = logging.getLogger("targetflow.features")

T = TypeVar("T")


class OperationResult(Generic[T]):
    """Wrapper for operation results with success/error handling"""

    def __init__(
        self, success: bool, data: Optional[T] = None, error: Optional[str] = None
    ):
        self.success = success
        self.data = data
        self.error = error


@dataclass
class Feature:
    """Base class for all targetflow features"""

    name: str
    description: str
    handler: Callable
    cli_options: Optional[Dict[str, Any]] = None


class FeatureRegistry:
    """Registry for all targetflow features"""

    _features: Dict[str, Feature] = {}

    @classmethod
    def register(cls, feature: Feature) -> Feature:
        """Register a new feature"""
        cls._features[feature.name] = feature
        return feature

    @classmethod
    def get_feature(cls, name: str) -> Optional[Feature]:
        """Get a feature by name"""
        return cls._features.get(name)

    @classmethod
    def get_all_features(cls) -> Dict[str, Feature]:
        """Get all registered features"""
        return cls._features.copy()


# ----------------- Helpers -----------------


@contextmanager
def _engine(
    store: Optional[str] = None,
    strategy: Optional[str] = None,
    workers: Optional[int] = None,
    no_cache: Optional[bool] = None,
) -> Iterator[ExecutionEngine]:
    """Engine over a dedicated store connection, closed on exit."""
    config = load_config(
        store_path=store,
        strategy=strategy,
        num_workers=workers,
        no_cache=no_cache or None,
    )
    if config.no_cache:
        logger.info("No-cache mode enabled - all results will be recomputed")
        storage: StorageBackend = NoCacheStorageBackend()
    else:
        storage = StorageBackend(config.resolved_store_path())
    try:
        yield ExecutionEngine(storage_backend=storage, config=config)
    finally:
        storage.close()


def _load(program: Optional[str], filename: Optional[str]):
    if program:
        syntax = parse_program_content(program)
    elif filename:
        syntax = parse_program(filename)
    else:
        raise ValueError("Either program content or filename must be provided")
    return syntax, reduce_program(syntax)


def _jsonable(data: Any) -> Any:
    return json.loads(json.dumps(data, cls=PlanJSONEncoder))


# ----------------- Feature Handlers -----------------


def handle_version(**kwargs) -> OperationResult[Dict[str, str]]:
    """Handle version request"""
    from targetflow.version import get_version

    return OperationResult[Dict[str, str]](
        success=True, data={"version": get_version()}
    )


def handle_run(
    program: Optional[str] = None,
    filename: Optional[str] = None,
    targets: Optional[List[str]] = None,
    store: Optional[str] = None,
    strategy: Optional[str] = None,
    workers: Optional[int] = None,
    no_cache: bool = False,
    save_task_graph: Optional[str] = None,
    save_task_graph_as_json: Optional[str] = None,
    save_syntax: Optional[str] = None,
    execute: bool = True,
    **kwargs,
) -> OperationResult[Dict[str, Any]]:
    """Handle the run command with all options"""
    try:
        syntax, plan = _load(program, filename)
        logger.info(f"Plan loaded: {len(plan)} targets")

        result: Dict[str, Any] = {"targets": len(plan), "syntax": str(syntax)}
        messages = []
        report = None
        expansions = None

        with _engine(store, strategy, workers, no_cache) as engine:
            if execute:
                report = engine.run(plan, targets=targets or None)
                expansions = engine.expansions
                result["execution"] = report.to_dict()
            else:
                engine.validate(plan)

        if save_task_graph:
            with open(save_task_graph, "w") as f:
                f.write(to_dot(plan, expansions))
            messages.append(f"Task graph saved as DOT to {save_task_graph}")

        if save_task_graph_as_json:
            with open(save_task_graph_as_json, "w") as f:
                json.dump(to_json(plan, expansions), f, indent=2, cls=PlanJSONEncoder)
            messages.append(f"Task graph saved as JSON to {save_task_graph_as_json}")

        if save_syntax:
            with open(save_syntax, "w") as f:
                f.write(plan.to_syntax())
            messages.append(f"Syntax saved to {save_syntax}")

        if messages:
            result["messages"] = messages
        result = _jsonable(result)

        if report is not None and not report.success:
            summary = report.cache_summary
            return OperationResult[Dict[str, Any]](
                success=False,
                data=result,
                error=f"Execution failed: {summary['failed']} failed, {summary['skipped']} skipped",
            )
        return OperationResult[Dict[str, Any]](success=True, data=result)

    except (TargetflowError, ValidationError, OSError, ValueError, ImportError) as e:
        return OperationResult[Dict[str, Any]](success=False, error=str(e))


def handle_outdated(
    program: Optional[str] = None,
    filename: Optional[str] = None,
    store: Optional[str] = None,
    **kwargs,
) -> OperationResult[Dict[str, Any]]:
    """Predict which targets the next run would recompute"""
    try:
        _, plan = _load(program, filename)
        with _engine(store) as engine:
            outdated = engine.outdated(plan)
        return OperationResult[Dict[str, Any]](success=True, data={"outdated": outdated})
    except (TargetflowError, ValidationError, OSError, ValueError) as e:
        return OperationResult[Dict[str, Any]](success=False, error=str(e))


def handle_read(
    name: str,
    index: Optional[int] = None,
    trace: Optional[str] = None,
    per_element: bool = False,
    store: Optional[str] = None,
    **kwargs,
) -> OperationResult[Dict[str, Any]]:
    """Read a stored value, one sub-target or the trace labels of a dimension"""
    try:
        with _engine(store) as engine:
            data: Dict[str, Any] = {"name": name}
            if trace is not None:
                data["trace"] = trace
                data["labels"] = engine.read_trace(trace, name, per_element=per_element)
            elif index is not None:
                data["index"] = index
                data["value"] = engine.read_subtarget(name, index)
                data["label"] = engine.read_label(name, index)
            else:
                data["value"] = engine.read_one(name)
        return OperationResult[Dict[str, Any]](success=True, data=_jsonable(data))
    except (TargetflowError, KeyError, ValidationError) as e:
        return OperationResult[Dict[str, Any]](success=False, error=str(e))


def handle_invalidate(
    names: List[str],
    store: Optional[str] = None,
    **kwargs,
) -> OperationResult[Dict[str, Any]]:
    """Force targets to rerun on the next run"""
    try:
        with _engine(store) as engine:
            invalidated = engine.invalidate(names)
        return OperationResult[Dict[str, Any]](success=True, data={"invalidated": invalidated})
    except (TargetflowError, ValidationError) as e:
        return OperationResult[Dict[str, Any]](success=False, error=str(e))


def handle_delete(
    names: List[str],
    store: Optional[str] = None,
    **kwargs,
) -> OperationResult[Dict[str, Any]]:
    """Delete stored values of targets"""
    try:
        with _engine(store) as engine:
            deleted = engine.delete(names)
        return OperationResult[Dict[str, Any]](success=True, data={"deleted": deleted})
    except (TargetflowError, ValidationError) as e:
        return OperationResult[Dict[str, Any]](success=False, error=str(e))


def handle_meta(
    name: str,
    store: Optional[str] = None,
    **kwargs,
) -> OperationResult[Dict[str, Any]]:
    """Read the invalidation record of a target"""
    try:
        with _engine(store) as engine:
            record = engine.meta(name)
        return OperationResult[Dict[str, Any]](success=True, data=asdict(record))
    except (TargetflowError, ValidationError) as e:
        return OperationResult[Dict[str, Any]](success=False, error=str(e))


def handle_list_functions(
    namespace: Optional[str] = None,
    modules: Optional[List[str]] = None,
    **kwargs
) -> OperationResult[Dict[str, Any]]:
    """Handle listing available functions"""
    try:
        registry = FunctionRegistry()
        for module in modules or []:
            registry.import_module(module)

        result = {
            "functions": registry.list_functions(namespace),
            "namespaces": list(registry.imported_namespaces),
            "namespace_filter": namespace,
        }
        return OperationResult[Dict[str, Any]](success=True, data=result)

    except ImportError as e:
        return OperationResult[Dict[str, Any]](
            success=False,
            error=f"Failed to list functions: {str(e)}"
        )


# Register all features
version_feature = FeatureRegistry.register(
    Feature(
        name="version",
        description="Get the targetflow version",
        handler=handle_version,
    )
)

run_feature = FeatureRegistry.register(
    Feature(
        name="run",
        description="Run a plan file with various output options",
        handler=handle_run,
        cli_options={
            "filename": {"type": str, "required": True, "help": "Plan file"},
            "targets": {"type": list, "required": False, "help": "Only run these targets and their dependencies"},
            "save_task_graph": {"type": str, "required": False, "help": "Save the task graph in DOT format"},
            "save_task_graph_as_json": {"type": str, "required": False, "help": "Save the task graph as JSON"},
            "save_syntax": {"type": str, "required": False, "help": "Save the normalized plan text"},
            "execute": {"type": bool, "required": False, "default": True, "help": "Execute the plan (default: true)"},
        },
    )
)

outdated_feature = FeatureRegistry.register(
    Feature(
        name="outdated",
        description="List targets the next run would recompute",
        handler=handle_outdated,
        cli_options={"filename": {"type": str, "required": True, "help": "Plan file"}},
    )
)

read_feature = FeatureRegistry.register(
    Feature(
        name="read",
        description="Read stored values",
        handler=handle_read,
        cli_options={
            "name": {"type": str, "required": True, "help": "Target name"},
            "index": {"type": int, "required": False, "help": "Sub-target index"},
            "trace": {"type": str, "required": False, "help": "Dimension whose labels to read"},
        },
    )
)

invalidate_feature = FeatureRegistry.register(
    Feature(
        name="invalidate",
        description="Force targets to rerun",
        handler=handle_invalidate,
        cli_options={"names": {"type": list, "required": True, "help": "Target names"}},
    )
)

delete_feature = FeatureRegistry.register(
    Feature(
        name="delete",
        description="Delete stored values of targets",
        handler=handle_delete,
        cli_options={"names": {"type": list, "required": True, "help": "Target names"}},
    )
)

meta_feature = FeatureRegistry.register(
    Feature(
        name="meta",
        description="Show the invalidation record of a target",
        handler=handle_meta,
        cli_options={"name": {"type": str, "required": True, "help": "Target name"}},
    )
)

list_functions_feature = FeatureRegistry.register(
    Feature(
        name="list_functions",
        description="List functions available to plan expressions",
        handler=handle_list_functions,
    )
)
