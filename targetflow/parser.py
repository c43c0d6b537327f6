"""
targetflow plan parser - command expressions and plan files, using Lark
"""

import ast
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from pathlib import Path

from lark import Lark, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError

from targetflow.errors import PlanSyntaxError


@dataclass
class Expression:
    """Base class for command expressions"""

    def to_syntax(self) -> str:
        """Convert the expression to syntax form"""
        raise NotImplementedError("Must be implemented by subclasses")

    def references(self) -> List[str]:
        """Target names referenced by the expression, in order of appearance"""
        return []

    def function_names(self) -> List[str]:
        return []


@dataclass
class ECall(Expression):
    """Function call expression"""

    identifier: str
    arguments: List[Expression] = field(default_factory=list)
    keywords: List[Tuple[str, Expression]] = field(default_factory=list)

    def to_syntax(self) -> str:
        parts = [arg.to_syntax() for arg in self.arguments]
        parts.extend(f"{key} = {value.to_syntax()}" for key, value in self.keywords)
        return f"{self.identifier}({', '.join(parts)})"

    def references(self) -> List[str]:
        found: List[str] = []
        for expr in list(self.arguments) + [value for _, value in self.keywords]:
            for name in expr.references():
                if name not in found:
                    found.append(name)
        return found

    def function_names(self) -> List[str]:
        found = [self.identifier]
        for expr in list(self.arguments) + [value for _, value in self.keywords]:
            for name in expr.function_names():
                if name not in found:
                    found.append(name)
        return found


@dataclass
class ERef(Expression):
    """Reference to another target by name"""

    name: str

    def to_syntax(self) -> str:
        return self.name

    def references(self) -> List[str]:
        return [self.name]


@dataclass
class EList(Expression):
    """List literal"""

    items: List[Expression] = field(default_factory=list)

    def to_syntax(self) -> str:
        return "[" + ", ".join(item.to_syntax() for item in self.items) + "]"

    def references(self) -> List[str]:
        found: List[str] = []
        for item in self.items:
            for name in item.references():
                if name not in found:
                    found.append(name)
        return found

    def function_names(self) -> List[str]:
        found: List[str] = []
        for item in self.items:
            for name in item.function_names():
                if name not in found:
                    found.append(name)
        return found


@dataclass
class ELiteral(Expression):
    """Number, string, boolean or none literal"""

    value: Any

    def to_syntax(self) -> str:
        if self.value is None:
            return "none"
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        if isinstance(self.value, str):
            return json.dumps(self.value, ensure_ascii=False)
        return repr(self.value)


@dataclass
class Statement:
    """Base class for plan file statements"""

    def to_syntax(self) -> str:
        raise NotImplementedError("Must be implemented by subclasses")


@dataclass
class TargetStatement(Statement):
    """``target name = expression modifiers...``"""

    name: str
    expression: Expression
    modifiers: Dict[str, Any] = field(default_factory=dict)
    line: Optional[int] = None

    def to_syntax(self) -> str:
        text = f"target {self.name} = {self.expression.to_syntax()}"
        for key, value in self.modifiers.items():
            if key in ("map", "cross"):
                text += f" {key}({', '.join(value)})"
            elif key == "group":
                dims, by = value
                text += f" group({', '.join(dims)}, by = {by})"
            elif key == "trace":
                text += f" trace({value})"
            else:
                text += f' {key} "{value}"'
        return text


@dataclass
class ImportStatement(Statement):
    """``import "module"``"""

    module: str

    def to_syntax(self) -> str:
        return f'import "{self.module}"'


@dataclass
class PlanProgram:
    """A parsed plan file"""

    statements: List[Statement]

    def to_syntax(self) -> str:
        return "\n".join(stmt.to_syntax() for stmt in self.statements)

    def __str__(self) -> str:
        return self.to_syntax()


grammar = r"""
    program: statement*

    ?statement: target_stmt | import_stmt

    import_stmt: "import" string
    target_stmt: "target" NAME "=" expression modifier*

    ?modifier: map_mod | cross_mod | group_mod | trace_mod | format_mod | cue_mod
    map_mod: "map" "(" name_list ")"
    cross_mod: "cross" "(" name_list ")"
    group_mod: "group" "(" group_item ("," group_item)* ")"
    group_item: NAME -> group_dim
              | "by" "=" NAME -> group_by
    trace_mod: "trace" "(" NAME ")"
    format_mod: "format" string
    cue_mod: "cue" string
    name_list: NAME ("," NAME)*

    ?expression: call_expr | ref_expr | list_expr | literal

    call_expr: function_name "(" [argument ("," argument)*] ")"
    ?argument: expression | keyword_arg
    keyword_arg: NAME "=" expression
    ref_expr: NAME
    list_expr: "[" [expression ("," expression)*] "]"
    function_name: NAME ("." NAME)*

    ?literal: number | string | boolean | none
    number: SIGNED_NUMBER
    string: ESCAPED_STRING
    boolean: "true" -> true
           | "false" -> false
    none: "none"

    NAME: /[a-zA-Z_][a-zA-Z0-9_]*/
    COMMENT: "//" /[^\n]*/

    %import common.ESCAPED_STRING
    %import common.SIGNED_NUMBER
    %import common.WS
    %ignore WS
    %ignore COMMENT
"""


class PlanTransformer(Transformer):
    """Transform the parse tree into the AST"""

    def program(self, statements):
        return PlanProgram(list(statements))

    @v_args(inline=True)
    def import_stmt(self, module):
        return ImportStatement(module.value)

    @v_args(meta=True)
    def target_stmt(self, meta, children):
        name, expression, *modifiers = children
        collected: Dict[str, Any] = {}
        for key, value in modifiers:
            if key in collected:
                raise PlanSyntaxError(f"Target '{name}' declares '{key}' more than once")
            collected[key] = value
        line = getattr(meta, "line", None)
        return TargetStatement(str(name), expression, collected, line)

    @v_args(inline=True)
    def map_mod(self, names):
        return ("map", names)

    @v_args(inline=True)
    def cross_mod(self, names):
        return ("cross", names)

    def group_mod(self, items):
        dims = [value for kind, value in items if kind == "dim"]
        keys = [value for kind, value in items if kind == "by"]
        if len(keys) != 1:
            raise PlanSyntaxError("group(...) requires exactly one 'by = name' entry")
        return ("group", (dims, keys[0]))

    @v_args(inline=True)
    def group_dim(self, name):
        return ("dim", str(name))

    @v_args(inline=True)
    def group_by(self, name):
        return ("by", str(name))

    @v_args(inline=True)
    def trace_mod(self, name):
        return ("trace", str(name))

    @v_args(inline=True)
    def format_mod(self, value):
        return ("format", value.value)

    @v_args(inline=True)
    def cue_mod(self, value):
        return ("cue", value.value)

    def name_list(self, names):
        return [str(name) for name in names]

    def call_expr(self, children):
        identifier, *args = children
        arguments: List[Expression] = []
        keywords: List[Tuple[str, Expression]] = []
        for arg in args:
            if arg is None:
                continue
            if isinstance(arg, tuple):
                keywords.append(arg)
            elif keywords:
                raise PlanSyntaxError(f"Positional argument after keyword argument in call to '{identifier}'")
            else:
                arguments.append(arg)
        return ECall(identifier, arguments, keywords)

    @v_args(inline=True)
    def keyword_arg(self, name, value):
        return (str(name), value)

    @v_args(inline=True)
    def ref_expr(self, name):
        return ERef(str(name))

    def list_expr(self, items):
        return EList([item for item in items if item is not None])

    def function_name(self, parts):
        return ".".join(str(part) for part in parts)

    @v_args(inline=True)
    def number(self, token):
        text = str(token)
        if any(marker in text for marker in (".", "e", "E")):
            return ELiteral(float(text))
        return ELiteral(int(text))

    @v_args(inline=True)
    def string(self, token):
        return ELiteral(_unescape(token[1:-1]))

    def true(self, _):
        return ELiteral(True)

    def false(self, _):
        return ELiteral(False)

    def none(self, _):
        return ELiteral(None)


def _unescape(text: str) -> str:
    # ESCAPED_STRING admits backslash escapes of any character
    return ast.literal_eval(f'"{text}"')


parser = Lark(
    grammar,
    start=["program", "expression"],
    parser="lalr",
    propagate_positions=True,
    maybe_placeholders=True,
)

_transformer = PlanTransformer()


def _parse(content: str, start: str):
    try:
        tree = parser.parse(content, start=start)
        return _transformer.transform(tree)
    except UnexpectedInput as exc:
        raise PlanSyntaxError(
            f"Unexpected input: {str(exc).splitlines()[0]}",
            line=getattr(exc, "line", None),
            column=getattr(exc, "column", None),
        ) from exc
    except VisitError as exc:
        if isinstance(exc.orig_exc, PlanSyntaxError):
            raise exc.orig_exc from None
        raise


def parse_expression_content(content: str) -> Expression:
    """Parse a single command expression"""
    result = _parse(content, "expression")
    if not isinstance(result, Expression):
        raise PlanSyntaxError(f"Expected an expression, got {type(result).__name__}")
    return result


def parse_program_content(content: str) -> PlanProgram:
    """
    Parse a plan program from content string

    Args:
        content: String containing the plan text

    Returns:
        A PlanProgram object representing the parsed plan
    """
    result = _parse(content, "program")
    if not isinstance(result, PlanProgram):
        raise ValueError(f"Expected PlanProgram object, got {type(result).__name__}")
    return result


def parse_program(filename: Union[str, Path]) -> PlanProgram:
    """
    Parse a plan program from a file

    Args:
        filename: Path to the file containing the plan

    Returns:
        A PlanProgram object representing the parsed plan
    """
    with open(filename, "r", encoding="utf-8") as f:
        program_text = f.read()
    return parse_program_content(program_text)

