"""Shared converter helpers for plan rendering."""

from __future__ import annotations

from typing import Any, Iterator, Mapping, Optional

from targetflow.expansion import Expansion, SubTargetSpec
from targetflow.plan.ir import Plan


def iter_expanded(
    plan: Plan,
    expansions: Optional[Mapping[str, Expansion]],
) -> Iterator[tuple[str, SubTargetSpec]]:
    """Yield (target, sub-target) pairs in declaration then expansion order."""
    if not expansions:
        return
    for name in plan.names:
        expansion = expansions.get(name)
        if expansion is None:
            continue
        for spec in expansion:
            yield name, spec


def element_source(plan: Plan, target: str, index: int) -> str:
    """Graph node an element comes from: a sub-target for dynamic targets, else the target."""
    if target in plan and plan.get(target).is_dynamic:
        return f"{target}[{index}]"
    return target


def transform_summary(plan: Plan, name: str) -> Optional[dict[str, Any]]:
    transform = plan.get(name).transform
    if transform is None:
        return None
    summary: dict[str, Any] = {"kind": transform.kind, "dims": list(transform.dims)}
    if transform.kind == "group":
        summary["by"] = transform.by
    elif transform.trace is not None:
        summary["trace"] = transform.trace
    return summary
