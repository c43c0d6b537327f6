"""
Result formats and their aggregation rules.

A dynamic target's value, as read by downstream targets, is the
aggregation of its sub-target values in sub-target order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional


def is_sequence(value: Any) -> bool:
    """True for ordered, sized collections other than text, bytes and mappings."""
    if isinstance(value, (str, bytes, bytearray, dict)):
        return False
    return hasattr(value, "__len__") and hasattr(value, "__iter__")


def _vector_aggregate(values: list[Any]) -> list[Any]:
    combined: list[Any] = []
    for value in values:
        if is_sequence(value):
            combined.extend(value)
        else:
            combined.append(value)
    return combined


def _vector_contributes(value: Any) -> int:
    return len(value) if is_sequence(value) else 1


@dataclass(frozen=True)
class Format:
    """How sub-target values combine into one aggregate value."""

    name: str
    aggregate: Callable[[list[Any]], Any]
    contributes: Callable[[Any], int] = lambda value: 1


_FORMATS: dict[str, Format] = {}


def register_format(
    name: str,
    aggregate: Callable[[list[Any]], Any],
    contributes: Optional[Callable[[Any], int]] = None,
) -> Format:
    """Register a user-defined aggregable format.

    ``contributes`` returns how many aggregate elements one sub-target value
    produces; it keeps trace labels aligned with aggregate elements.
    """
    fmt = Format(name=name, aggregate=aggregate, contributes=contributes or (lambda value: 1))
    _FORMATS[name] = fmt
    return fmt


def get_format(name: str) -> Format:
    return _FORMATS[name]


def has_format(name: str) -> bool:
    return name in _FORMATS


def list_formats() -> list[str]:
    return sorted(_FORMATS)


register_format("vector", _vector_aggregate, _vector_contributes)
register_format("list", list)
