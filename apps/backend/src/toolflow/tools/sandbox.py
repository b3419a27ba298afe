"""Restricted expression interpreter for custom tool implementations.

Custom tools persist their body as text. Nothing here hands that text to
``eval``/``exec``: the source is parsed with ``ast``, every node is checked
against an allowlist at load time, and the tree is then walked by a small
interpreter that can only reach the tool's parameters and the helper
functions in ``FUNCTIONS``.

An implementation is a single expression, e.g.::

    round(params["amount"] * (1 + rate / 100), 2)
    f"Hello, {upper(name)}!" if name else "Hello!"
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Iterable
from typing import Any, Callable, Optional

from ..errors import SandboxViolation

MAX_EXPRESSION_CHARS = 2_000
MAX_POWER_EXPONENT = 128
MAX_INT_BITS = 4_096
MAX_SEQUENCE_LENGTH = 100_000


def _split(value: str, sep: Optional[str] = None, maxsplit: int = -1) -> list[str]:
    return value.split(sep, maxsplit)


def _join(sep: str, items: Iterable[Any]) -> str:
    parts = [str(item) for item in items]
    size = sum(len(part) for part in parts) + len(sep) * max(len(parts) - 1, 0)
    if size > MAX_SEQUENCE_LENGTH:
        raise SandboxViolation("Result too large")
    return sep.join(parts)


def _replace(value: str, old: str, new: str, count: int = -1) -> str:
    # sized before building: "" matches between every character
    hits = len(value) + 1 if old == "" else value.count(old)
    if count >= 0:
        hits = min(hits, count)
    if len(value) + hits * (len(new) - len(old)) > MAX_SEQUENCE_LENGTH:
        raise SandboxViolation("Result too large")
    return value.replace(old, new, count)


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "float": float,
    "int": int,
    "len": len,
    "list": list,
    "max": max,
    "min": min,
    "round": round,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "upper": str.upper,
    "lower": str.lower,
    "strip": str.strip,
    "split": _split,
    "join": _join,
    "replace": _replace,
}

_BIN_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_ALLOWED_NODES: tuple[type, ...] = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.Compare,
    ast.IfExp,
    ast.Subscript,
    ast.Slice,
    ast.Call,
    ast.keyword,
    ast.JoinedStr,
    ast.FormattedValue,
    *_BIN_OPS,
    *_UNARY_OPS,
    *_COMPARE_OPS,
)


class CompiledExpression:
    """A checked expression ready to be evaluated against parameters."""

    def __init__(self, source: str, tree: ast.Expression):
        self.source = source
        self._tree = tree

    def evaluate(self, params: dict[str, Any]) -> Any:
        env: dict[str, Any] = {"params": params}
        for key, value in params.items():
            if isinstance(key, str) and key.isidentifier() and not key.startswith("_"):
                env.setdefault(key, value)
        return _Interpreter(env).visit(self._tree.body)


def compile_expression(source: str, allowed_names: Optional[Iterable[str]] = None) -> CompiledExpression:
    """Parse and check ``source``. Raises ``SandboxViolation`` when rejected.

    When ``allowed_names`` is given (the tool's parameter names), references
    to any other variable are rejected up front instead of at call time.
    """
    if not isinstance(source, str) or not source.strip():
        raise SandboxViolation("Implementation is empty")
    if len(source) > MAX_EXPRESSION_CHARS:
        raise SandboxViolation(
            f"Implementation too long ({len(source)} > {MAX_EXPRESSION_CHARS} chars)"
        )

    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as e:
        raise SandboxViolation(f"SyntaxError at offset {e.offset}: {e.msg}") from e

    known = {"params", *FUNCTIONS}
    if allowed_names is not None:
        known |= set(allowed_names)

    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise SandboxViolation(f"Construct not allowed: {type(node).__name__}")
        if isinstance(node, ast.Name):
            if node.id.startswith("_"):
                raise SandboxViolation(f"Name not allowed: {node.id}")
            if allowed_names is not None and node.id not in known:
                raise SandboxViolation(f"Unknown name: {node.id}")
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                raise SandboxViolation("Only allowlisted functions may be called")
            if any(kw.arg is None for kw in node.keywords):
                raise SandboxViolation("Keyword unpacking is not allowed")
        elif isinstance(node, ast.FormattedValue) and node.format_spec is not None:
            raise SandboxViolation("Format specs are not allowed")
        elif isinstance(node, ast.Dict) and any(k is None for k in node.keys):
            raise SandboxViolation("Dict unpacking is not allowed")

    return CompiledExpression(source, tree)


class _Interpreter:
    def __init__(self, env: dict[str, Any]):
        self.env = env

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise SandboxViolation(f"Construct not allowed: {type(node).__name__}")
        return method(node)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.env:
            return self.env[node.id]
        if node.id in FUNCTIONS:
            return FUNCTIONS[node.id]
        raise SandboxViolation(f"Unknown name: {node.id}")

    def visit_List(self, node: ast.List) -> list:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Dict(self, node: ast.Dict) -> dict:
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values)}

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_POWER_EXPONENT:
            raise SandboxViolation(f"Exponent too large: {right}")
        if isinstance(node.op, ast.Mult):
            _check_repeat(left, right)
        result = _BIN_OPS[type(node.op)](left, right)
        _check_size(result)
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return _UNARY_OPS[type(node.op)](self.visit(node.operand))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        value: Any = None
        for expr in node.values:
            value = self.visit(expr)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return self.visit(node.value)[self.visit(node.slice)]

    def visit_Slice(self, node: ast.Slice) -> slice:
        return slice(
            self.visit(node.lower) if node.lower else None,
            self.visit(node.upper) if node.upper else None,
            self.visit(node.step) if node.step else None,
        )

    def visit_Call(self, node: ast.Call) -> Any:
        func = FUNCTIONS[node.func.id]  # type: ignore[attr-defined]
        args = [self.visit(arg) for arg in node.args]
        kwargs = {kw.arg: self.visit(kw.value) for kw in node.keywords}
        result = func(*args, **kwargs)
        _check_size(result)
        return result

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        return "".join(str(self.visit(value)) for value in node.values)

    def visit_FormattedValue(self, node: ast.FormattedValue) -> str:
        value = self.visit(node.value)
        if node.conversion == ord("r"):
            return repr(value)
        return str(value)


def _check_repeat(left: Any, right: Any) -> None:
    for seq, count in ((left, right), (right, left)):
        if isinstance(seq, (str, list, tuple)) and isinstance(count, int):
            if len(seq) * count > MAX_SEQUENCE_LENGTH:
                raise SandboxViolation("Sequence repetition too large")


def _check_size(value: Any) -> None:
    if isinstance(value, int) and not isinstance(value, bool) and value.bit_length() > MAX_INT_BITS:
        raise SandboxViolation("Integer result too large")
    if isinstance(value, (str, list, tuple)) and len(value) > MAX_SEQUENCE_LENGTH:
        raise SandboxViolation("Result too large")
