"""
JSON converter for plans
"""

from typing import Any, Dict, Mapping, Optional
import dataclasses
import json
from enum import Enum
from pathlib import Path

from targetflow.converters.common import element_source, iter_expanded, transform_summary
from targetflow.expansion import Expansion
from targetflow.plan.ir import Plan


class PlanJSONEncoder(json.JSONEncoder):
    def default(self, o):
        # Always return a fully unwrapped, JSON-serializable object
        return self._unwrap(o)

    def _unwrap(self, v):
        if dataclasses.is_dataclass(v) and not isinstance(v, type):
            return {k: self._unwrap(getattr(v, k)) for k in v.__dataclass_fields__}
        if isinstance(v, dict):
            return {str(k): self._unwrap(val) for k, val in v.items()}
        if isinstance(v, (list, tuple, set, frozenset, range)):
            return [self._unwrap(i) for i in v]
        if isinstance(v, Enum):
            return v.value
        if isinstance(v, Path):
            return str(v)
        if isinstance(v, (str, int, float, bool)) or v is None:
            return v
        return repr(v)


def to_json(plan: Plan, expansions: Optional[Mapping[str, Expansion]] = None) -> Dict[str, Any]:
    """Convert a plan to JSON format

    Args:
        plan: The plan to convert
        expansions: Optional expansions of dynamic targets, adding sub-target nodes

    Returns:
        Dictionary representation suitable for JSON serialization
    """
    nodes = []
    edges = []
    for target in plan:
        nodes.append({
            "id": target.name,
            "type": "dynamic" if target.is_dynamic else "static",
            "command": target.command.describe(),
            "format": target.format,
            "cue": target.cue,
            "transform": transform_summary(plan, target.name),
        })
        for dep in target.dependencies():
            edges.append({"source": dep, "target": target.name})

    subtargets = []
    for name, spec in iter_expanded(plan, expansions):
        subtargets.append({
            "id": spec.key,
            "target": name,
            "index": spec.index,
            "label": PlanJSONEncoder()._unwrap(spec.label),
            "consumes": [element_source(plan, ref.target, ref.index) for ref in spec.consumes],
        })

    return {
        "imports": list(plan.imported_modules),
        "nodes": nodes,
        "edges": edges,
        "subtargets": subtargets,
    }
