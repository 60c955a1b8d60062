"""Restricted evaluator for per-row transform expressions.

Expressions use Python syntax but are checked against a whitelist of AST
nodes when parsed and evaluated by walking the tree, never with ``eval``.
Available names are ``row`` (the current record) and ``index`` (its position
in the source). ``row['x']`` and ``row.get('x', default)`` read fields, and a
handful of pure helpers can be called by name::

    upper(row['name']) if row.get('name') else 'UNKNOWN'
    round(float(row['price']) * 1.2, 2)
"""

import ast
import operator
from typing import Any, Callable

from .data_contract import Record

MAX_EXPRESSION_LENGTH = 1000
# items in any string, list or tuple an expression builds
MAX_RESULT_SIZE = 1_000_000


class ExpressionSecurityError(ValueError):
    """Expression uses a construct that is not allowed."""


class ExpressionSyntaxError(ValueError):
    """Expression is not valid Python expression syntax."""


class ExpressionEvaluationError(ValueError):
    """Expression failed while being evaluated against a record."""


def _to_text(value: Any) -> str:
    return "" if value is None else str(value)


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "str": _to_text,
    "int": int,
    "float": float,
    "len": len,
    "abs": abs,
    "round": round,
    "lower": lambda value: _to_text(value).lower(),
    "upper": lambda value: _to_text(value).upper(),
    "strip": lambda value: _to_text(value).strip(),
}

_NAMES = {"row", "index"}

_BINARY_OPERATORS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_SEQUENCES = (str, bytes, list, tuple)


def _checked_size(size: int) -> None:
    if size > MAX_RESULT_SIZE:
        raise ExpressionEvaluationError(f"Expression result would exceed {MAX_RESULT_SIZE} items")


def _binary_operation(op: ast.operator, left: Any, right: Any) -> Any:
    """Apply ``op``, refusing sequence growth past ``MAX_RESULT_SIZE``."""
    if isinstance(op, ast.Mult):
        if isinstance(left, _SEQUENCES) and isinstance(right, int):
            _checked_size(len(left) * right)
        elif isinstance(right, _SEQUENCES) and isinstance(left, int):
            _checked_size(len(right) * left)
    elif isinstance(op, ast.Add):
        if isinstance(left, _SEQUENCES) and isinstance(right, _SEQUENCES):
            _checked_size(len(left) + len(right))
    elif isinstance(op, ast.Mod) and isinstance(left, (str, bytes)):
        raise ExpressionEvaluationError("String formatting with % is not allowed")
    return _BINARY_OPERATORS[type(op)](left, right)


_UNARY_OPERATORS: dict[type, Callable[[Any], Any]] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
}

_COMPARISONS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Subscript,
    ast.Call,
    ast.Attribute,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.Compare,
    ast.IfExp,
    ast.List,
    ast.Tuple,
    ast.Set,
    ast.Dict,
    *_BINARY_OPERATORS,
    *_UNARY_OPERATORS,
    *_COMPARISONS,
)


class _Validator(ast.NodeVisitor):
    def generic_visit(self, node: ast.AST) -> None:
        if not isinstance(node, _ALLOWED_NODES):
            raise ExpressionSecurityError(f"Forbidden construct: {type(node).__name__}")
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id not in _NAMES:
            raise ExpressionSecurityError(f"Forbidden name: {node.id}")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        raise ExpressionSecurityError(f"Forbidden attribute access: {node.attr}")

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if isinstance(node.slice, ast.Slice):
            raise ExpressionSecurityError("Slicing is not allowed")
        self.generic_visit(node)

    def visit_Dict(self, node: ast.Dict) -> None:
        if any(key is None for key in node.keys):
            raise ExpressionSecurityError("Dict unpacking is not allowed")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        if node.keywords:
            raise ExpressionSecurityError("Keyword arguments are not allowed")
        if any(isinstance(arg, ast.Starred) for arg in node.args):
            raise ExpressionSecurityError("Star arguments are not allowed")

        func = node.func
        if isinstance(func, ast.Attribute):
            if not (isinstance(func.value, ast.Name) and func.value.id == "row" and func.attr == "get"):
                raise ExpressionSecurityError(f"Forbidden method call: {func.attr}")
            if not 1 <= len(node.args) <= 2:
                raise ExpressionSecurityError("row.get() takes a key and an optional default")
        elif isinstance(func, ast.Name):
            if func.id not in FUNCTIONS:
                raise ExpressionSecurityError(f"Forbidden function: {func.id}")
        else:
            raise ExpressionSecurityError("Only named helper functions may be called")

        for arg in node.args:
            self.visit(arg)


class RowExpression:
    """Compiled, validated expression that can be evaluated per record."""

    def __init__(self, source: str):
        if not isinstance(source, str) or not source.strip():
            raise ExpressionSyntaxError("Expression must be a non-empty string")
        if len(source) > MAX_EXPRESSION_LENGTH:
            raise ExpressionSecurityError(f"Expression longer than {MAX_EXPRESSION_LENGTH} characters")

        try:
            tree = ast.parse(source.strip(), mode="eval")
        except SyntaxError as exc:
            raise ExpressionSyntaxError(f"Invalid expression syntax: {exc.msg}") from exc

        _Validator().visit(tree)
        self.source = source
        self._tree = tree

    def evaluate(self, row: Record, index: int = 0) -> Any:
        try:
            return self._eval(self._tree.body, row, index)
        except ExpressionEvaluationError:
            raise
        except Exception as exc:
            raise ExpressionEvaluationError(f"Failed to evaluate '{self.source}': {exc}") from exc

    def _eval(self, node: ast.AST, row: Record, index: int) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return row if node.id == "row" else index
        if isinstance(node, ast.Subscript):
            return self._eval(node.value, row, index)[self._eval(node.slice, row, index)]
        if isinstance(node, ast.Call):
            args = [self._eval(arg, row, index) for arg in node.args]
            if isinstance(node.func, ast.Attribute):
                return row.get(*args)
            return FUNCTIONS[node.func.id](*args)
        if isinstance(node, ast.BinOp):
            return _binary_operation(node.op, self._eval(node.left, row, index), self._eval(node.right, row, index))
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPERATORS[type(node.op)](self._eval(node.operand, row, index))
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval(value, row, index)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, row, index)
                if result:
                    return result
            return result
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, row, index)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, row, index)
                if not _COMPARISONS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            branch = node.body if self._eval(node.test, row, index) else node.orelse
            return self._eval(branch, row, index)
        if isinstance(node, ast.List):
            return [self._eval(item, row, index) for item in node.elts]
        if isinstance(node, ast.Tuple):
            return tuple(self._eval(item, row, index) for item in node.elts)
        if isinstance(node, ast.Set):
            return {self._eval(item, row, index) for item in node.elts}
        if isinstance(node, ast.Dict):
            return {
                self._eval(key, row, index): self._eval(value, row, index)
                for key, value in zip(node.keys, node.values)
            }
        raise ExpressionSecurityError(f"Forbidden construct: {type(node).__name__}")


def compile_transform(mapping: dict[str, str]) -> dict[str, RowExpression]:
    """Compile a ``{column: expression}`` mapping, raising on the first bad expression."""
    return {column: RowExpression(source) for column, source in mapping.items()}


def apply_transform(record: Record, expressions: dict[str, RowExpression], index: int = 0) -> Record:
    """Return a copy of ``record`` with each column set to its evaluated expression.

    Expressions read the original record, so column order in the mapping does
    not matter.
    """
    transformed = dict(record)
    for column, expression in expressions.items():
        transformed[column] = expression.evaluate(record, index)
    return transformed


__all__ = [
    "RowExpression",
    "ExpressionSecurityError",
    "ExpressionSyntaxError",
    "ExpressionEvaluationError",
    "compile_transform",
    "apply_transform",
    "FUNCTIONS",
]
