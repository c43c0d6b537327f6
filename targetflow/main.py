"""
targetflow Main module - command line interface
"""

import json
import logging
from typing import Any, List, Optional

import typer

from targetflow.converters.json_converter import PlanJSONEncoder
from targetflow.features import FeatureRegistry, OperationResult
from targetflow.log import setup_logging
from targetflow.version import get_version

# Module-level logger
logger = logging.getLogger("targetflow.main")

# Create CLI app with Typer
app = typer.Typer(
    name="targetflow",
    help="targetflow - build plans of targets with dynamic branching",
    add_completion=False,
)


# ----------------- Helper Functions -----------------


def handle_cli_feature(feature_name: str, **kwargs: Any) -> OperationResult:
    """Run a feature handler, exiting with status 1 on failure"""
    feature = FeatureRegistry.get_feature(feature_name)
    if not feature:
        logger.error("Unknown feature: %s", feature_name)
        raise typer.Exit(code=1)

    try:
        result = feature.handler(**kwargs)
    except Exception:
        logger.exception("Unexpected error")
        raise typer.Exit(code=1)

    if not result.success:
        if result.data:
            logger.debug(json.dumps(result.data, indent=2, cls=PlanJSONEncoder))
        logger.error("Operation failed: %s", result.error or "Unknown error")
        raise typer.Exit(code=1)
    return result


def _echo_json(data: Any) -> None:
    print(json.dumps(data, indent=2, cls=PlanJSONEncoder))


# ----------------- CLI Commands -----------------


@app.command()
def version() -> None:
    """Show the targetflow version"""
    setup_logging(False)
    result = handle_cli_feature("version")
    logger.info("targetflow version: %s", result.data.get("version", "unknown"))


@app.command()
def run(
    filename: str = typer.Argument(..., help="Plan file"),
    target: Optional[List[str]] = typer.Option(
        None, "--target", "-t", help="Only run this target and its dependencies (repeatable)"
    ),
    store: Optional[str] = typer.Option(None, help="Path of the result store database"),
    strategy: Optional[str] = typer.Option(None, help="Execution strategy: sequential or dask"),
    workers: Optional[int] = typer.Option(None, help="Number of dask worker threads"),
    save_task_graph: Optional[str] = typer.Option(None, help="Save the task graph in .dot format"),
    save_task_graph_as_json: Optional[str] = typer.Option(None, help="Save the task graph as JSON"),
    save_syntax: Optional[str] = typer.Option(None, help="Save the normalized plan text"),
    execute: bool = typer.Option(
        True,
        "--execute/--no-execute",
        help="Execute the plan (default: --execute)",
    ),
    no_cache: bool = typer.Option(
        False,
        "--no-cache",
        help="Force recomputation without reading or writing the store",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging (between info and debug)"),
) -> None:
    """Run a plan file"""
    setup_logging(debug, verbose)
    logger.info(f"targetflow version: {get_version()}")

    result = handle_cli_feature(
        "run",
        filename=filename,
        targets=target,
        store=store,
        strategy=strategy,
        workers=workers,
        no_cache=no_cache,
        save_task_graph=save_task_graph,
        save_task_graph_as_json=save_task_graph_as_json,
        save_syntax=save_syntax,
        execute=execute,
    )

    data = result.data
    execution = data.get("execution")
    if execution:
        summary = execution["cache_summary"]
        logger.info(
            "Execution completed: %d computed, %d cached in %.2fs",
            summary["computed"],
            summary["cached"],
            execution["execution_time_s"],
        )
    for message in data.get("messages", []):
        logger.info("  %s", message)
    logger.debug(json.dumps(data, indent=2, cls=PlanJSONEncoder))


@app.command()
def outdated(
    filename: str = typer.Argument(..., help="Plan file"),
    store: Optional[str] = typer.Option(None, help="Path of the result store database"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode"),
) -> None:
    """List targets the next run would recompute"""
    setup_logging(debug)
    result = handle_cli_feature("outdated", filename=filename, store=store)
    stale = result.data["outdated"]
    if not stale:
        print("All targets are up to date.")
        return
    for name, reason in stale.items():
        print(f"  {name:<30} {reason}")


@app.command()
def read(
    name: str = typer.Argument(..., help="Target name"),
    index: Optional[int] = typer.Option(None, "--index", "-i", help="Sub-target index"),
    trace: Optional[str] = typer.Option(None, "--trace", help="Read the labels of this dimension instead"),
    per_element: bool = typer.Option(
        False, "--per-element", help="Align trace labels with aggregate elements"
    ),
    store: Optional[str] = typer.Option(None, help="Path of the result store database"),
) -> None:
    """Print a stored value as JSON"""
    setup_logging(False)
    result = handle_cli_feature(
        "read", name=name, index=index, trace=trace, per_element=per_element, store=store
    )
    data = result.data
    _echo_json(data["labels"] if trace is not None else data["value"])


@app.command()
def invalidate(
    names: List[str] = typer.Argument(..., help="Target names"),
    store: Optional[str] = typer.Option(None, help="Path of the result store database"),
) -> None:
    """Force targets to rerun on the next run"""
    setup_logging(False)
    result = handle_cli_feature("invalidate", names=names, store=store)
    for name in names:
        state = "invalidated" if name in result.data["invalidated"] else "not built"
        print(f"  {name:<30} {state}")


@app.command()
def delete(
    names: List[str] = typer.Argument(..., help="Target names"),
    store: Optional[str] = typer.Option(None, help="Path of the result store database"),
) -> None:
    """Delete stored values of targets"""
    setup_logging(False)
    result = handle_cli_feature("delete", names=names, store=store)
    for name, removed in result.data["deleted"].items():
        print(f"  {name:<30} {removed} entries removed")


@app.command()
def meta(
    name: str = typer.Argument(..., help="Target name"),
    store: Optional[str] = typer.Option(None, help="Path of the result store database"),
) -> None:
    """Show the invalidation record of a target"""
    setup_logging(False)
    result = handle_cli_feature("meta", name=name, store=store)
    _echo_json(result.data)


@app.command("list-functions")
def list_functions(
    namespace: Optional[str] = typer.Argument(None, help="Namespace to filter functions (optional)"),
    module: Optional[List[str]] = typer.Option(None, "--import", help="Also import this Python module"),
) -> None:
    """List functions available to plan expressions"""
    setup_logging(False)
    result = handle_cli_feature("list_functions", namespace=namespace, modules=module)
    data = result.data

    if data.get("namespace_filter"):
        print(f"Functions in namespace '{data['namespace_filter']}':")
    else:
        print("All available functions:")

    functions = data.get("functions", {})
    if not functions:
        print("  No functions found.")
    else:
        for name, description in sorted(functions.items()):
            print(f"  {name:<30} {description}")

    if not data.get("namespace_filter"):
        namespaces = data.get("namespaces", [])
        if namespaces:
            print(f"\nAvailable namespaces: {', '.join(namespaces)}")
            print("Use 'targetflow list-functions <namespace>' to filter by namespace.")


if __name__ == "__main__":
    app()
