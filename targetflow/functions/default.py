"""
Default namespace for expression commands

Small helpers that are always resolvable by unqualified name.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable


def seq(*items: Any) -> list[Any]:
    """Collect the arguments into a list"""
    return list(items)


def range_(start: int, stop: int | None = None, step: int = 1) -> list[int]:
    """Integers from start (default 0) up to stop, exclusive"""
    if stop is None:
        start, stop = 0, start
    return list(range(int(start), int(stop), int(step)))


def repeat(value: Any, times: int) -> list[Any]:
    """The value repeated a number of times"""
    if int(times) < 0:
        raise ValueError(f"repeat requires a non-negative count, got {times}")
    return [value] * int(times)


def concat(*sequences: Iterable[Any]) -> list[Any]:
    """Concatenate sequences into one list"""
    combined: list[Any] = []
    for sequence in sequences:
        combined.extend(sequence)
    return combined


def pair(left: Any, right: Any) -> list[Any]:
    """Two values as a two-element list"""
    return [left, right]


def identity(value: Any) -> Any:
    """Return the value unchanged"""
    return value


def add(left: Any, right: Any) -> Any:
    """Sum of two values"""
    return left + right


def sub(left: Any, right: Any) -> Any:
    """Difference of two values"""
    return left - right


def mul(left: Any, right: Any) -> Any:
    """Product of two values"""
    return left * right


def div(left: Any, right: Any) -> Any:
    """True division of two values"""
    return left / right


def mean(values: Iterable[Any]) -> float:
    """Arithmetic mean of a non-empty sequence"""
    items = list(values)
    if not items:
        raise ValueError("mean of an empty sequence")
    return sum(items) / len(items)


def fail(message: str = "failure requested") -> Any:
    """Raise a RuntimeError, useful to exercise failure handling in plans"""
    raise RuntimeError(message)


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "seq": seq,
    "range": range_,
    "repeat": repeat,
    "concat": concat,
    "pair": pair,
    "identity": identity,
    "add": add,
    "sub": sub,
    "mul": mul,
    "div": div,
    "mean": mean,
    "fail": fail,
    "len": len,
    "sum": sum,
    "min": min,
    "max": max,
    "sorted": sorted,
    "list": list,
    "str": str,
    "int": int,
    "float": float,
}
