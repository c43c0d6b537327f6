"""
Dynamic expansion of targets into sub-targets.

Expansion turns a target's transform plus the materialized values of its
dimension targets into an ordered list of sub-target specifications. The
enumeration order defined here is the aggregation order of the target:

- map: element-wise zip, in dimension order
- cross: Cartesian product, first listed dimension varies slowest
- group: one sub-target per distinct ``by`` value, in first-occurrence order
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Sequence
import itertools
import logging

from targetflow.errors import ExpansionError, LengthMismatchError
from targetflow.formats import is_sequence
from targetflow.plan.hash import combine_fingerprints, fingerprint_value, subtarget_key
from targetflow.plan.ir import Cross, Group, Map, Target, TargetName

logger = logging.getLogger("targetflow.expansion")


@dataclass(frozen=True)
class ElementRef:
    """One element of a dimension: an item of a static value or a branch of a dynamic target."""

    target: TargetName
    index: int

    def key(self) -> str:
        return subtarget_key(self.target, self.index)


@dataclass
class Dimension:
    """Materialized elements of a dimension target."""

    name: TargetName
    elements: list[Any]
    fingerprints: list[str]
    dynamic: bool = False

    @classmethod
    def from_value(cls, name: TargetName, value: Any, owner: TargetName) -> "Dimension":
        """Split a static target's value into elements."""
        if not is_sequence(value):
            raise ExpansionError(
                owner,
                f"dimension '{name}' must be a sequence, got {type(value).__name__}",
            )
        elements = list(value)
        return cls(name=name, elements=elements, fingerprints=[fingerprint_value(item) for item in elements])

    @classmethod
    def from_branches(cls, name: TargetName, values: Sequence[Any], fingerprints: Sequence[str]) -> "Dimension":
        """Use the sub-targets of a dynamic target as elements."""
        return cls(name=name, elements=list(values), fingerprints=list(fingerprints), dynamic=True)

    def __len__(self) -> int:
        return len(self.elements)

    def ref(self, index: int) -> ElementRef:
        return ElementRef(self.name, index)


@dataclass
class SubTargetSpec:
    """An independent unit of work produced by expansion."""

    target: TargetName
    index: int
    bindings: dict[TargetName, Any]
    input_fingerprints: dict[TargetName, str]
    consumes: tuple[ElementRef, ...]
    dim_labels: dict[TargetName, Any] = field(default_factory=dict)
    trace: TargetName | None = None

    @property
    def key(self) -> str:
        return subtarget_key(self.target, self.index)

    @property
    def label(self) -> Any:
        """Trace label: the element of the trace dimension, or the group key."""
        if self.trace is None:
            return None
        return self.dim_labels.get(self.trace)


@dataclass
class Expansion:
    """Ordered sub-targets of one dynamic target."""

    target: TargetName
    kind: str
    subtargets: list[SubTargetSpec]
    fingerprint: str

    def __len__(self) -> int:
        return len(self.subtargets)

    def __iter__(self) -> Iterator[SubTargetSpec]:
        return iter(self.subtargets)

    def labels(self, dim: TargetName) -> list[Any]:
        return [sub.dim_labels.get(dim) for sub in self.subtargets]


def _check_lengths(owner: TargetName, dims: Sequence[Dimension]) -> int:
    lengths = {dim.name: len(dim) for dim in dims}
    if len(set(lengths.values())) > 1:
        raise LengthMismatchError(owner, lengths)
    return next(iter(lengths.values()), 0)


def _expand_map(target: Target, transform: Map, dims: list[Dimension]) -> tuple[list[SubTargetSpec], dict]:
    length = _check_lengths(target.name, dims)
    subtargets = []
    for index in range(length):
        subtargets.append(
            SubTargetSpec(
                target=target.name,
                index=index,
                bindings={dim.name: dim.elements[index] for dim in dims},
                input_fingerprints={dim.name: dim.fingerprints[index] for dim in dims},
                consumes=tuple(dim.ref(index) for dim in dims),
                dim_labels={dim.name: dim.elements[index] for dim in dims},
                trace=transform.trace,
            )
        )
    return subtargets, {"length": length}


def _expand_cross(target: Target, transform: Cross, dims: list[Dimension]) -> tuple[list[SubTargetSpec], dict]:
    subtargets = []
    # itertools.product advances the last iterable fastest
    for index, combination in enumerate(itertools.product(*[range(len(dim)) for dim in dims])):
        picks = list(zip(dims, combination))
        subtargets.append(
            SubTargetSpec(
                target=target.name,
                index=index,
                bindings={dim.name: dim.elements[i] for dim, i in picks},
                input_fingerprints={dim.name: dim.fingerprints[i] for dim, i in picks},
                consumes=tuple(dim.ref(i) for dim, i in picks),
                dim_labels={dim.name: dim.elements[i] for dim, i in picks},
                trace=transform.trace,
            )
        )
    return subtargets, {"shape": [len(dim) for dim in dims]}


def _expand_group(
    target: Target,
    transform: Group,
    dims: list[Dimension],
    by: Dimension,
) -> tuple[list[SubTargetSpec], dict]:
    _check_lengths(target.name, dims + [by])

    groups: OrderedDict[str, list[int]] = OrderedDict()
    for position, key_fp in enumerate(by.fingerprints):
        groups.setdefault(key_fp, []).append(position)

    subtargets = []
    for index, (key_fp, positions) in enumerate(groups.items()):
        key = by.elements[positions[0]]
        bindings: dict[TargetName, Any] = {}
        fingerprints: dict[TargetName, str] = {}
        consumes: list[ElementRef] = []
        for dim in dims:
            bindings[dim.name] = [dim.elements[i] for i in positions]
            fingerprints[dim.name] = combine_fingerprints(
                "group-subset", [dim.fingerprints[i] for i in positions]
            )
            consumes.extend(dim.ref(i) for i in positions)
        bindings[by.name] = key
        fingerprints[by.name] = key_fp
        consumes.extend(by.ref(i) for i in positions)
        labels = {name: value for name, value in bindings.items()}
        subtargets.append(
            SubTargetSpec(
                target=target.name,
                index=index,
                bindings=bindings,
                input_fingerprints=fingerprints,
                consumes=tuple(consumes),
                dim_labels=labels,
                trace=transform.by,
            )
        )
    shape = [[key_fp, len(positions)] for key_fp, positions in groups.items()]
    return subtargets, {"groups": shape}


def expand(target: Target, dimensions: Mapping[TargetName, Dimension]) -> Expansion:
    """Expand a dynamic target given the materialized values of its dimensions.

    Raises:
        LengthMismatchError: map or group dimensions of different lengths
        ExpansionError: the target is static or a dimension is missing
    """
    transform = target.transform
    if transform is None:
        raise ExpansionError(target.name, "target has no dynamic transform")

    missing = [name for name in transform.dependencies() if name not in dimensions]
    if missing:
        raise ExpansionError(target.name, f"dimensions not materialized: {missing}")

    dims = [dimensions[name] for name in transform.dims]
    if isinstance(transform, Map):
        subtargets, structure = _expand_map(target, transform, dims)
    elif isinstance(transform, Cross):
        subtargets, structure = _expand_cross(target, transform, dims)
    elif isinstance(transform, Group):
        subtargets, structure = _expand_group(target, transform, dims, dimensions[transform.by])
    else:
        raise ExpansionError(target.name, f"unsupported transform {type(transform).__name__}")

    fingerprint = combine_fingerprints(
        "expansion",
        [transform.kind, list(transform.dependencies()), len(subtargets), structure],
    )
    logger.debug("Expanded %s (%s) into %d sub-targets", target.name, transform.kind, len(subtargets))
    return Expansion(target=target.name, kind=transform.kind, subtargets=subtargets, fingerprint=fingerprint)
