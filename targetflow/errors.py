"""
targetflow error taxonomy

Plan errors are raised before any target executes. Expansion and command
errors are recorded as Failed statuses in the run report.
"""

from typing import List, Optional, Sequence


class TargetflowError(Exception):
    """Base class for all targetflow errors"""

    def __init__(self, msg: str):
        self.msg = msg
        super().__init__(msg)


# ----------------- Plan errors -----------------


class PlanError(TargetflowError):
    """The plan is malformed and cannot be executed"""


class DuplicateTargetError(PlanError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate target name: {name}")


class UnknownReferenceError(PlanError):
    """A command or transform references a name that is not a target"""

    def __init__(self, target: str, reference: str):
        self.target = target
        self.reference = reference
        super().__init__(
            f"Target '{target}' references unknown target '{reference}'"
        )


class CycleError(PlanError):
    """The static dependency graph contains a cycle"""

    def __init__(self, members: Sequence[str]):
        self.members: List[str] = list(members)
        super().__init__(
            "Dependency cycle detected: " + " -> ".join(self.members)
        )


class InvalidTransformError(PlanError):
    pass


class UnknownFormatError(PlanError):
    def __init__(self, target: str, format_name: str):
        self.target = target
        self.format_name = format_name
        super().__init__(f"Target '{target}' declares unknown format '{format_name}'")


class PlanSyntaxError(PlanError):
    """A plan file or command expression could not be parsed"""

    def __init__(self, msg: str, line: Optional[int] = None, column: Optional[int] = None):
        self.line = line
        self.column = column
        if line is not None:
            msg = f"{msg} (line {line}, column {column})"
        super().__init__(msg)


# ----------------- Runtime errors -----------------


class ExpansionError(TargetflowError):
    """A dynamic target could not be expanded into sub-targets"""

    def __init__(self, target: str, msg: str):
        self.target = target
        super().__init__(f"Cannot expand '{target}': {msg}")


class LengthMismatchError(ExpansionError):
    def __init__(self, target: str, lengths: dict):
        self.lengths = dict(lengths)
        rendered = ", ".join(f"{name}={size}" for name, size in self.lengths.items())
        super().__init__(target, f"dimension lengths differ ({rendered})")


class CommandError(TargetflowError):
    """A target command raised while being evaluated"""

    def __init__(self, target: str, error: BaseException, index: Optional[int] = None):
        self.target = target
        self.index = index
        self.error = error
        where = target if index is None else f"{target}[{index}]"
        super().__init__(f"Command of '{where}' failed: {type(error).__name__}: {error}")


class NotFoundError(TargetflowError, KeyError):
    """No store entry exists for the requested key"""

    def __init__(self, name: str, index: Optional[int] = None):
        self.name = name
        self.index = index
        where = name if index is None else f"{name}[{index}]"
        TargetflowError.__init__(self, f"No stored value for '{where}'")

    def __str__(self) -> str:
        return self.msg


class IllegalTransitionError(TargetflowError):
    def __init__(self, node: str, current: str, requested: str):
        self.node = node
        super().__init__(f"Illegal state transition for '{node}': {current} -> {requested}")


class FunctionNotFoundError(TargetflowError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown function: {name}")
