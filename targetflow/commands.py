"""
Target commands: the opaque computations attached to targets.

A command knows which target names it references (the dependency
extractor), how to evaluate itself against an environment of resolved
values, and how to fingerprint its own definition for invalidation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional
import inspect

from targetflow.parser import ECall, EList, ELiteral, ERef, Expression, parse_expression_content
from targetflow.plan.hash import hash_payload

if TYPE_CHECKING:
    from targetflow.registry import FunctionRegistry


class Command(ABC):
    """Contract shared by every command kind."""

    @abstractmethod
    def references(self) -> tuple[str, ...]:
        """Target names this command reads, in first-use order."""

    @abstractmethod
    def evaluate(self, env: Mapping[str, Any], registry: Optional["FunctionRegistry"] = None) -> Any:
        """Compute the command's value from resolved references."""

    @abstractmethod
    def fingerprint(self) -> str:
        """Stable hash of the command definition."""

    @abstractmethod
    def describe(self) -> str:
        """Human readable rendering used in plan exports."""


class ExpressionCommand(Command):
    """Command written in the call-expression language.

    Bare identifiers are target references, ``name(...)`` are function
    calls resolved through a FunctionRegistry.
    """

    def __init__(self, expression: Expression | str):
        if isinstance(expression, str):
            expression = parse_expression_content(expression)
        self.expression = expression

    def references(self) -> tuple[str, ...]:
        return tuple(self.expression.references())

    def function_names(self) -> tuple[str, ...]:
        return tuple(self.expression.function_names())

    def evaluate(self, env: Mapping[str, Any], registry: Optional["FunctionRegistry"] = None) -> Any:
        if registry is None:
            from targetflow.registry import FunctionRegistry

            registry = FunctionRegistry()
        return _evaluate_expression(self.expression, env, registry)

    def fingerprint(self) -> str:
        return hash_payload({"kind": "expression", "text": self.expression.to_syntax()})

    def describe(self) -> str:
        return self.expression.to_syntax()

    def __repr__(self) -> str:
        return f"ExpressionCommand({self.describe()!r})"


def _evaluate_expression(expression: Expression, env: Mapping[str, Any], registry: "FunctionRegistry") -> Any:
    if isinstance(expression, ELiteral):
        return expression.value

    if isinstance(expression, ERef):
        return env[expression.name]

    if isinstance(expression, EList):
        return [_evaluate_expression(item, env, registry) for item in expression.items]

    if isinstance(expression, ECall):
        func = registry.resolve(expression.identifier)
        args = [_evaluate_expression(arg, env, registry) for arg in expression.arguments]
        kwargs = {key: _evaluate_expression(value, env, registry) for key, value in expression.keywords}
        return func(*args, **kwargs)

    raise ValueError(f"Unsupported expression: {type(expression).__name__}")


class CallableCommand(Command):
    """Command wrapping a Python callable.

    Unless ``references`` is given explicitly, the callable's parameters
    without default values are taken as the referenced target names and
    are passed by keyword.
    """

    def __init__(self, func: Callable[..., Any], references: Optional[Iterable[str]] = None):
        if not callable(func):
            raise TypeError(f"Command must be callable, got {type(func).__name__}")
        self.func = func
        if references is None:
            self._references = _parameter_references(func)
            self._pass_by_keyword = True
        else:
            self._references = tuple(references)
            self._pass_by_keyword = False

    def references(self) -> tuple[str, ...]:
        return self._references

    def evaluate(self, env: Mapping[str, Any], registry: Optional["FunctionRegistry"] = None) -> Any:
        if self._pass_by_keyword:
            return self.func(**{name: env[name] for name in self._references})
        return self.func(*[env[name] for name in self._references])

    def fingerprint(self) -> str:
        return hash_payload(
            {
                "kind": "callable",
                "name": _qualified_name(self.func),
                "source": _source_text(self.func),
                "references": list(self._references),
            }
        )

    def describe(self) -> str:
        return f"{_qualified_name(self.func)}({', '.join(self._references)})"

    def __repr__(self) -> str:
        return f"CallableCommand({self.describe()!r})"


def _parameter_references(func: Callable[..., Any]) -> tuple[str, ...]:
    signature = inspect.signature(func)
    names = []
    for param in signature.parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        if param.default is not inspect.Parameter.empty:
            continue
        names.append(param.name)
    return tuple(names)


def _qualified_name(func: Callable[..., Any]) -> str:
    module = getattr(func, "__module__", None) or ""
    name = getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or type(func).__name__
    return f"{module}.{name}" if module else name


def _source_text(func: Callable[..., Any]) -> str:
    try:
        return inspect.getsource(func)
    except (OSError, TypeError):
        code = getattr(func, "__code__", None)
        if code is not None:
            return code.co_code.hex()
        return repr(func)


def as_command(command: Any) -> Command:
    """Coerce strings and callables into Command objects."""
    if isinstance(command, Command):
        return command
    if isinstance(command, (str, Expression)):
        return ExpressionCommand(command)
    if callable(command):
        return CallableCommand(command)
    raise TypeError(f"Cannot use {type(command).__name__} as a target command")
