"""Condition expressions and parameter placeholders.

Workflow steps carry conditions as strings (``"retries < 3 and status ==
'ok'"``). They are parsed with :mod:`ast` and evaluated by walking a
whitelisted subset of node types against a namespace built from the
execution's inputs and variables. Nothing is ever passed to ``eval``.

Allowed
───────
::

    literals       1, 2.5, 'text', True, None, [..], (..), {..}
    names          variables / inputs (``true``/``false``/``null`` aliases)
    subscripts     items[0], report['status']
    arithmetic     + - * / // % and unary -, +
    comparisons    == != < <= > >= in, not in, is, is not
    boolean        and, or, not, x if cond else y
    calls          len, int, float, str, bool, abs, min, max, round

Guardrails:
    ❌ DON'T: Fall back to ``eval`` for "advanced" expressions
    ✅ DO: Raise ExpressionError and let the step fail

    ❌ DON'T: Treat an unknown name as None
    ✅ DO: Report it; a typo should fail loudly, not take the false branch
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from jobspine.core.errors import ExpressionError

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
}

_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_FUNCTIONS = {
    "len": len,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}

_ALIASES = {"true": True, "false": False, "null": None, "none": None}

_PLACEHOLDER_RE = re.compile(r"\$\{\s*([A-Za-z_][\w.]*)\s*\}")


@lru_cache(maxsize=512)
def compile_expression(expression: str) -> ast.Expression:
    """Parse *expression* and reject unsupported syntax.

    Raises:
        ExpressionError: On syntax errors or disallowed constructs.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError(str(expression), "empty expression")
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(expression, f"syntax error: {exc.msg}") from exc
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
                raise ExpressionError(expression, "only builtin helper calls are allowed")
            if node.keywords:
                raise ExpressionError(expression, "keyword arguments are not allowed")
        elif isinstance(node, ast.Attribute):
            raise ExpressionError(expression, "attribute access is not allowed")
        elif isinstance(node, (ast.Lambda, ast.NamedExpr, ast.ListComp, ast.SetComp,
                               ast.DictComp, ast.GeneratorExp, ast.Await, ast.Yield,
                               ast.YieldFrom, ast.Starred)):
            raise ExpressionError(expression, f"{type(node).__name__} is not allowed")
    return tree


def evaluate(expression: str, namespace: Mapping[str, Any]) -> Any:
    """Evaluate *expression* against *namespace*.

    Raises:
        ExpressionError: If the expression is invalid, names an unknown
            variable, or fails while evaluating (type errors, zero division).
    """
    tree = compile_expression(expression)
    try:
        return _Evaluator(expression, namespace).visit(tree.body)
    except ExpressionError:
        raise
    except Exception as exc:
        raise ExpressionError(expression, f"{type(exc).__name__}: {exc}", cause=exc) from exc


def evaluate_condition(expression: str, namespace: Mapping[str, Any]) -> bool:
    """Evaluate *expression* and coerce the result to bool."""
    return bool(evaluate(expression, namespace))


class _Evaluator:
    def __init__(self, expression: str, namespace: Mapping[str, Any]) -> None:
        self.expression = expression
        self.namespace = namespace

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ExpressionError(self.expression, f"{type(node).__name__} is not supported")
        return method(node)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.namespace:
            return self.namespace[node.id]
        lowered = node.id.lower()
        if lowered in _ALIASES:
            return _ALIASES[lowered]
        raise ExpressionError(self.expression, f"unknown name {node.id!r}")

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(e) for e in node.elts)

    def visit_Set(self, node: ast.Set) -> set[Any]:
        return {self.visit(e) for e in node.elts}

    def visit_Dict(self, node: ast.Dict) -> dict[Any, Any]:
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values, strict=True)}

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return self.visit(node.value)[self.visit(node.slice)]

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(self.expression, f"operator {type(node.op).__name__} is not supported")
        return op(self.visit(node.left), self.visit(node.right))

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(self.expression, f"operator {type(node.op).__name__} is not supported")
        return op(self.visit(node.operand))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.visit(comparator)
            if not _CMP_OPS[type(op_node)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        func = _FUNCTIONS[node.func.id]  # type: ignore[attr-defined]
        return func(*(self.visit(a) for a in node.args))


# =============================================================================
# Placeholders
# =============================================================================


def _lookup(path: str, namespace: Mapping[str, Any]) -> tuple[bool, Any]:
    current: Any = namespace
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return False, None
    return True, current


def resolve_placeholders(value: Any, namespace: Mapping[str, Any]) -> Any:
    """Substitute ``${name}`` placeholders in *value* (recursively).

    A string that is exactly one placeholder takes the referenced value
    with its type intact; placeholders embedded in longer text are
    formatted with ``str``. Dotted paths (``${report.status}``) walk into
    nested mappings. Unresolvable placeholders are left untouched.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER_RE.fullmatch(value.strip())
        if whole:
            found, resolved = _lookup(whole.group(1), namespace)
            return resolved if found else value

        def _sub(match: re.Match[str]) -> str:
            found, resolved = _lookup(match.group(1), namespace)
            return str(resolved) if found else match.group(0)

        return _PLACEHOLDER_RE.sub(_sub, value)
    if isinstance(value, Mapping):
        return {k: resolve_placeholders(v, namespace) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_placeholders(v, namespace) for v in value]
    if isinstance(value, tuple):
        return tuple(resolve_placeholders(v, namespace) for v in value)
    return value


__all__ = [
    "compile_expression",
    "evaluate",
    "evaluate_condition",
    "resolve_placeholders",
]
