"""Plan representation: targets and dynamic-branching transforms."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Iterator, Literal, Optional, Union

from targetflow.errors import DuplicateTargetError, InvalidTransformError

if TYPE_CHECKING:
    from targetflow.commands import Command

TargetName = str
Cue = Literal["thorough", "always", "never"]
CUES: tuple[str, ...] = ("thorough", "always", "never")


def _dims_tuple(kind: str, dims: tuple) -> tuple[TargetName, ...]:
    if len(dims) == 1 and isinstance(dims[0], (list, tuple)):
        dims = tuple(dims[0])
    names = tuple(str(dim) for dim in dims)
    if not names:
        raise InvalidTransformError(f"{kind} requires at least one dimension")
    if len(set(names)) != len(names):
        raise InvalidTransformError(f"{kind} dimensions must be distinct: {list(names)}")
    return names


@dataclass(frozen=True, init=False)
class Map:
    """One sub-target per aligned element of ``dims`` (element-wise zip)."""

    kind: ClassVar[str] = "map"
    dims: tuple[TargetName, ...]
    trace: Optional[TargetName] = None

    def __init__(self, *dims: TargetName, trace: Optional[TargetName] = None):
        names = _dims_tuple(self.kind, dims)
        if trace is not None and trace not in names:
            raise InvalidTransformError(f"trace dimension '{trace}' is not mapped over")
        object.__setattr__(self, "dims", names)
        object.__setattr__(self, "trace", trace)

    def dependencies(self) -> tuple[TargetName, ...]:
        return self.dims

    def to_syntax(self) -> str:
        text = f"map({', '.join(self.dims)})"
        if self.trace is not None:
            text += f" trace({self.trace})"
        return text


@dataclass(frozen=True, init=False)
class Cross:
    """One sub-target per element of the Cartesian product of ``dims``.

    The first listed dimension varies slowest and the last listed varies
    fastest.
    """

    kind: ClassVar[str] = "cross"
    dims: tuple[TargetName, ...]
    trace: Optional[TargetName] = None

    def __init__(self, *dims: TargetName, trace: Optional[TargetName] = None):
        names = _dims_tuple(self.kind, dims)
        if trace is not None and trace not in names:
            raise InvalidTransformError(f"trace dimension '{trace}' is not crossed")
        object.__setattr__(self, "dims", names)
        object.__setattr__(self, "trace", trace)

    def dependencies(self) -> tuple[TargetName, ...]:
        return self.dims

    def to_syntax(self) -> str:
        text = f"cross({', '.join(self.dims)})"
        if self.trace is not None:
            text += f" trace({self.trace})"
        return text


@dataclass(frozen=True, init=False)
class Group:
    """One sub-target per distinct value of ``by``, in first-occurrence order."""

    kind: ClassVar[str] = "group"
    dims: tuple[TargetName, ...]
    by: TargetName

    def __init__(self, *dims: TargetName, by: TargetName):
        names = _dims_tuple(self.kind, dims)
        if by in names:
            raise InvalidTransformError(f"group key '{by}' cannot also be a grouped dimension")
        object.__setattr__(self, "dims", names)
        object.__setattr__(self, "by", str(by))

    @property
    def trace(self) -> TargetName:
        return self.by

    def dependencies(self) -> tuple[TargetName, ...]:
        return self.dims + (self.by,)

    def to_syntax(self) -> str:
        return f"group({', '.join(self.dims)}, by = {self.by})"


Transform = Union[Map, Cross, Group]


@dataclass(frozen=True)
class Target:
    """A named unit of work in a plan."""

    name: TargetName
    command: "Command"
    format: str = "vector"
    transform: Optional[Transform] = None
    cue: Cue = "thorough"

    def __post_init__(self) -> None:
        if self.cue not in CUES:
            raise InvalidTransformError(f"Unknown cue '{self.cue}' for target '{self.name}'")

    @property
    def is_dynamic(self) -> bool:
        return self.transform is not None

    def dependencies(self) -> tuple[TargetName, ...]:
        """Referenced names, command references first, without duplicates."""
        ordered: list[TargetName] = []
        for name in self.command.references():
            if name not in ordered:
                ordered.append(name)
        if self.transform is not None:
            for name in self.transform.dependencies():
                if name not in ordered:
                    ordered.append(name)
        return tuple(ordered)

    def to_syntax(self) -> str:
        text = f"target {self.name} = {self.command.describe()}"
        if self.transform is not None:
            text += f" {self.transform.to_syntax()}"
        if self.format != "vector":
            text += f' format "{self.format}"'
        if self.cue != "thorough":
            text += f' cue "{self.cue}"'
        return text


@dataclass
class Plan:
    """Ordered collection of target declarations."""

    targets: list[Target] = field(default_factory=list)
    imported_modules: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self._by_name: dict[TargetName, Target] = {}
        for target in self.targets:
            if target.name in self._by_name:
                raise DuplicateTargetError(target.name)
            self._by_name[target.name] = target

    def __iter__(self) -> Iterator[Target]:
        return iter(self.targets)

    def __len__(self) -> int:
        return len(self.targets)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: TargetName) -> Target:
        return self._by_name[name]

    @property
    def names(self) -> list[TargetName]:
        return [target.name for target in self.targets]

    def to_syntax(self) -> str:
        lines = [f'import "{module}"' for module in self.imported_modules]
        lines.extend(target.to_syntax() for target in self.targets)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.to_syntax()
