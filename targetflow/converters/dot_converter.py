"""
DOT (Graphviz) converter for plans
"""

from typing import Mapping, Optional

from targetflow.converters.common import element_source, iter_expanded
from targetflow.expansion import Expansion
from targetflow.plan.ir import Plan


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def to_dot(plan: Plan, expansions: Optional[Mapping[str, Expansion]] = None) -> str:
    """Convert a plan to DOT (Graphviz) format

    Args:
        plan: The plan to convert
        expansions: Optional expansions of dynamic targets, adding sub-target nodes
            and their fine-grained edges

    Returns:
        DOT format string representation of the plan
    """
    dot_str = "digraph {\n"
    for target in plan:
        label = _escape(target.name)
        if target.transform is not None:
            label += "\\n" + _escape(target.transform.to_syntax())
        shape = "box3d" if target.is_dynamic else "box"
        dot_str += f'  "{target.name}" [label="{label}", shape={shape}]\n'
        for dep in target.dependencies():
            dot_str += f'  "{dep}" -> "{target.name}";\n'

    for name, spec in iter_expanded(plan, expansions):
        label = spec.key if spec.label is None else spec.key + "\\n" + _escape(repr(spec.label))
        dot_str += f'  "{spec.key}" [label="{label}", shape=ellipse]\n'
        dot_str += f'  "{spec.key}" -> "{name}" [style=dashed];\n'
        for source in dict.fromkeys(element_source(plan, ref.target, ref.index) for ref in spec.consumes):
            dot_str += f'  "{source}" -> "{spec.key}";\n'
    dot_str += "}\n"
    return dot_str
