"""Rule expression language: parse, validate, and evaluate predicates and fixes.

Expressions use a Dynamic-LINQ flavoured surface syntax (``&&``, ``||``,
``!``, ``=``, ``<>``, ``true``/``false``/``null``).  The text is rewritten to
Python syntax, parsed with :mod:`ast`, checked against a whitelist of node
types, and evaluated by a small tree walker.  Nothing is passed to ``eval``.

Bare names are members of the implicit candidate object; ``it`` is the
candidate itself and ``outerIt`` the enclosing candidate inside collection
predicates such as ``Columns.Any(IsHidden)``.
"""

from __future__ import annotations

import ast
import math
import re
from collections.abc import Mapping, Sequence, Set
from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ExpressionError(Exception):
    """Raised when an expression cannot be parsed or evaluated."""


# ---------------------------------------------------------------------------
# Surface syntax rewrite
# ---------------------------------------------------------------------------

_STRING_LITERAL = re.compile(r"\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*'")

_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"<>"), "!="),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"(?<![=!<>])=(?!=)"), "=="),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\bnull\b"), "None"),
)

_FIX_ASSIGNMENT = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_.]*)\s*=(?!=)(.+)$", re.DOTALL)


def _rewrite_code(segment: str) -> str:
    for pattern, replacement in _REWRITES:
        segment = pattern.sub(replacement, segment)
    return segment


def to_python_source(text: str) -> str:
    """Rewrite expression text to an equivalent parenthesized Python expression.

    String literals are copied unchanged. The parentheses let multi-line
    expressions parse in ``eval`` mode.
    """
    parts: list[str] = []
    pos = 0
    for match in _STRING_LITERAL.finditer(text):
        parts.append(_rewrite_code(text[pos : match.start()]))
        parts.append(match.group(0))
        pos = match.end()
    parts.append(_rewrite_code(text[pos:]))
    return "(" + "".join(parts) + "\n)"


def _split_statements(text: str) -> list[str]:
    """Split on ``;`` outside string literals."""
    statements: list[str] = []
    current: list[str] = []
    quote: str | None = None
    escaped = False
    for ch in text:
        if quote is not None:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch == ";":
            statements.append("".join(current))
            current = []
        else:
            current.append(ch)
    statements.append("".join(current))
    return [s for s in statements if s.strip()]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.Mod,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.IfExp,
    ast.Call,
    ast.Attribute,
    ast.Subscript,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.Tuple,
    ast.List,
)

_STATIC_NAMES: frozenset[str] = frozenset({"string", "String", "RegEx", "Regex"})
# Read-only methods of model objects callable from expressions.
_MEMBER_METHODS: frozenset[str] = frozenset({"GetAnnotation", "HasAnnotation"})
_FUNCTION_NAMES: frozenset[str] = frozenset({"iif"})


def _validate(tree: ast.Expression) -> None:
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            msg = f"Unsupported syntax in expression: {type(node).__name__}"
            raise ExpressionError(msg)
        if isinstance(node, ast.Name) and node.id.startswith("_"):
            msg = f"Invalid identifier '{node.id}'"
            raise ExpressionError(msg)
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            msg = f"Invalid member '{node.attr}'"
            raise ExpressionError(msg)
        if isinstance(node, ast.Call):
            if node.keywords:
                msg = "Named arguments are not supported"
                raise ExpressionError(msg)
            if isinstance(node.func, ast.Name) and node.func.id not in _FUNCTION_NAMES:
                msg = f"Unknown function '{node.func.id}'"
                raise ExpressionError(msg)
            if not isinstance(node.func, (ast.Name, ast.Attribute)):
                msg = "Only method calls are supported"
                raise ExpressionError(msg)


# ---------------------------------------------------------------------------
# Member access
# ---------------------------------------------------------------------------

_MISSING = object()
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")


def snake_case(name: str) -> str:
    """Convert ``PascalCase`` member names to ``snake_case``."""
    return _WORD_BOUNDARY.sub(r"\1_\2", _ACRONYM_BOUNDARY.sub(r"\1_\2", name)).lower()


def _type_name(target: object) -> str:
    return str(getattr(target, "object_type", type(target).__name__))


def _is_collection(value: object) -> bool:
    return isinstance(value, (Sequence, Set)) and not isinstance(value, (str, bytes))


def resolve_member(target: object, name: str) -> Any:
    """Read member *name* of *target*, trying the name as written and in snake_case."""
    if target is None:
        msg = f"Cannot read member '{name}' of null"
        raise ExpressionError(msg)
    if name in ("Length", "Count") and (isinstance(target, str) or _is_collection(target)):
        return len(target)  # type: ignore[arg-type]
    if isinstance(target, Mapping) and name in target:
        return target[name]
    for attr in (name, snake_case(name)):
        value = getattr(target, attr, _MISSING)
        if value is not _MISSING:
            return value
    msg = f"No property or field '{name}' exists in type '{_type_name(target)}'"
    raise ExpressionError(msg)


def assign_member(target: object, name: str, value: object) -> None:
    """Set member *name* of *target*; the member must already exist."""
    for attr in (name, snake_case(name)):
        if hasattr(target, attr):
            setattr(target, attr, value)
            return
    msg = f"No property or field '{name}' exists in type '{_type_name(target)}'"
    raise ExpressionError(msg)


def _substring(text: str, start: int, length: int | None = None) -> str:
    return text[start:] if length is None else text[start : start + length]


_STRING_METHODS: dict[str, Any] = {
    "StartsWith": lambda s, prefix: s.startswith(prefix),
    "EndsWith": lambda s, suffix: s.endswith(suffix),
    "Contains": lambda s, part: part in s,
    "IndexOf": lambda s, part: s.find(part),
    "ToUpper": lambda s: s.upper(),
    "ToLower": lambda s: s.lower(),
    "Trim": lambda s: s.strip(),
    "Replace": lambda s, old, new: s.replace(old, new),
    "Substring": _substring,
    "Equals": lambda s, other: s == other,
}

_STATIC_METHODS: dict[str, Any] = {
    "IsNullOrEmpty": lambda value: value is None or value == "",
    "IsNullOrWhiteSpace": lambda value: value is None or not str(value).strip(),
    "IsMatch": lambda value, pattern: re.search(pattern, value or "") is not None,
}


def _divide(left: Any, right: Any) -> Any:
    if isinstance(left, int) and isinstance(right, int):
        if right == 0:
            msg = "Attempted to divide by zero."
            raise ExpressionError(msg)
        quotient = abs(left) // abs(right)
        return quotient if (left >= 0) == (right >= 0) else -quotient
    return left / right


def _remainder(left: Any, right: Any) -> Any:
    if isinstance(left, int) and isinstance(right, int):
        if right == 0:
            msg = "Attempted to divide by zero."
            raise ExpressionError(msg)
        return int(math.fmod(left, right))
    return math.fmod(left, right)


def _add(left: Any, right: Any) -> Any:
    if isinstance(left, str) or isinstance(right, str):
        return f"{'' if left is None else left}{'' if right is None else right}"
    return left + right


_BINARY_OPS: dict[type[ast.operator], Any] = {
    ast.Add: _add,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: _divide,
    ast.Mod: _remainder,
}

_COMPARE_OPS: dict[type[ast.cmpop], Any] = {
    ast.Eq: lambda a, b: a == b,
    ast.NotEq: lambda a, b: a != b,
    ast.Lt: lambda a, b: a < b,
    ast.LtE: lambda a, b: a <= b,
    ast.Gt: lambda a, b: a > b,
    ast.GtE: lambda a, b: a >= b,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------


class _Interpreter:
    """Evaluates a validated expression tree against one candidate."""

    def __init__(self, it: object, outer: object = None) -> None:
        self.it = it
        self.outer = outer

    def eval(self, node: ast.AST) -> Any:
        handler = getattr(self, f"_eval_{type(node).__name__}", None)
        if handler is None:
            msg = f"Unsupported syntax in expression: {type(node).__name__}"
            raise ExpressionError(msg)
        return handler(node)

    def _eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def _eval_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.eval(elt) for elt in node.elts)

    def _eval_List(self, node: ast.List) -> Any:
        return [self.eval(elt) for elt in node.elts]

    def _eval_Name(self, node: ast.Name) -> Any:
        if node.id == "it":
            return self.it
        if node.id == "outerIt":
            return self.outer
        if node.id in _STATIC_NAMES:
            msg = f"'{node.id}' can only be used to call a method"
            raise ExpressionError(msg)
        return resolve_member(self.it, node.id)

    def _eval_Attribute(self, node: ast.Attribute) -> Any:
        return resolve_member(self.eval(node.value), node.attr)

    def _eval_Subscript(self, node: ast.Subscript) -> Any:
        return self.eval(node.value)[self.eval(node.slice)]

    def _eval_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            return all(self.eval(value) for value in node.values)
        return any(self.eval(value) for value in node.values)

    def _eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.eval(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        return +operand

    def _eval_BinOp(self, node: ast.BinOp) -> Any:
        op = _BINARY_OPS[type(node.op)]
        return op(self.eval(node.left), self.eval(node.right))

    def _eval_Compare(self, node: ast.Compare) -> Any:
        left = self.eval(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator)
            if not _COMPARE_OPS[type(op_node)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp) -> Any:
        return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

    def _eval_Call(self, node: ast.Call) -> Any:
        func = node.func
        if isinstance(func, ast.Name):
            # iif(condition, when_true, when_false)
            if len(node.args) != 3:
                msg = "iif() takes exactly 3 arguments"
                raise ExpressionError(msg)
            cond, when_true, when_false = node.args
            return self.eval(when_true) if self.eval(cond) else self.eval(when_false)

        if not isinstance(func, ast.Attribute):
            msg = "Only method calls are supported"
            raise ExpressionError(msg)
        method = func.attr
        if isinstance(func.value, ast.Name) and func.value.id in _STATIC_NAMES:
            static = _STATIC_METHODS.get(method)
            if static is None:
                msg = f"Unknown method '{func.value.id}.{method}'"
                raise ExpressionError(msg)
            return static(*(self.eval(arg) for arg in node.args))

        target = self.eval(func.value)
        if isinstance(target, str):
            string_method = _STRING_METHODS.get(method)
            if string_method is None:
                msg = f"Unknown string method '{method}'"
                raise ExpressionError(msg)
            return string_method(target, *(self.eval(arg) for arg in node.args))
        if _is_collection(target):
            return self._call_collection(target, method, node.args)

        if method not in _MEMBER_METHODS:
            msg = f"Method '{method}' cannot be called on type '{_type_name(target)}'"
            raise ExpressionError(msg)
        member = resolve_member(target, method)
        if not callable(member):
            msg = f"'{method}' is not a method of type '{_type_name(target)}'"
            raise ExpressionError(msg)
        return member(*(self.eval(arg) for arg in node.args))

    def _call_collection(self, items: Any, method: str, args: list[ast.expr]) -> Any:
        if method == "Contains":
            if len(args) != 1:
                msg = "Contains() takes exactly 1 argument"
                raise ExpressionError(msg)
            return self.eval(args[0]) in items
        if len(args) > 1:
            msg = f"{method}() takes at most 1 argument"
            raise ExpressionError(msg)

        predicate = args[0] if args else None

        def matches(item: object) -> bool:
            if predicate is None:
                return True
            return bool(_Interpreter(item, outer=self.it).eval(predicate))

        if method == "Any":
            return any(matches(item) for item in items)
        if method == "All":
            return all(matches(item) for item in items)
        if method == "Count":
            return sum(1 for item in items if matches(item))
        if method == "Where":
            return [item for item in items if matches(item)]
        msg = f"Unknown collection method '{method}'"
        raise ExpressionError(msg)


# ---------------------------------------------------------------------------
# Compiled forms
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompiledExpression:
    """A parsed and validated expression, reusable across candidates."""

    text: str
    tree: ast.Expression = field(repr=False, compare=False)

    def evaluate(self, candidate: object) -> Any:
        """Evaluate against *candidate*; every failure surfaces as ExpressionError."""
        try:
            return _Interpreter(candidate).eval(self.tree.body)
        except ExpressionError:
            raise
        except RecursionError as exc:
            msg = "Error evaluating expression: expression is nested too deeply"
            raise ExpressionError(msg) from exc
        except Exception as exc:
            msg = f"Error evaluating expression: {exc}"
            raise ExpressionError(msg) from exc

    def test(self, candidate: object) -> bool:
        return bool(self.evaluate(candidate))


@dataclass(frozen=True)
class FixAssignment:
    """One ``Member = value`` statement of a fix expression."""

    target: tuple[str, ...]  # member path, last element is assigned
    value: CompiledExpression


@dataclass(frozen=True)
class CompiledFix:
    """A parsed fix expression: assignments applied to a candidate in order."""

    text: str
    assignments: tuple[FixAssignment, ...]

    def apply(self, candidate: object) -> None:
        for assignment in self.assignments:
            value = assignment.value.evaluate(candidate)
            owner = candidate
            for member in assignment.target[:-1]:
                owner = resolve_member(owner, member)
            assign_member(owner, assignment.target[-1], value)


def compile_expression(text: str) -> CompiledExpression:
    """Parse and validate *text*.

    Raises
    ------
    ExpressionError
        If the text is empty, not valid syntax, or uses unsupported constructs.
    """
    if not text or not text.strip():
        msg = "Expression is empty"
        raise ExpressionError(msg)
    try:
        tree = ast.parse(to_python_source(text), mode="eval")
    except SyntaxError as exc:
        msg = f"Syntax error in expression: {exc.msg}"
        raise ExpressionError(msg) from exc
    except (RecursionError, MemoryError) as exc:
        msg = "Syntax error in expression: expression is nested too deeply"
        raise ExpressionError(msg) from exc
    _validate(tree)
    return CompiledExpression(text=text, tree=tree)


def compile_fix(text: str) -> CompiledFix:
    """Parse a fix expression of ``;``-separated ``Member = value`` assignments."""
    assignments: list[FixAssignment] = []
    for statement in _split_statements(text):
        match = _FIX_ASSIGNMENT.match(statement)
        if match is None:
            msg = f"Fix expression statement must be an assignment: {statement.strip()!r}"
            raise ExpressionError(msg)
        target = tuple(match.group(1).split("."))
        assignments.append(FixAssignment(target=target, value=compile_expression(match.group(2))))
    if not assignments:
        msg = "Fix expression is empty"
        raise ExpressionError(msg)
    return CompiledFix(text=text, assignments=tuple(assignments))
