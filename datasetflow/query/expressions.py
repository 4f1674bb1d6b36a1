"""Sandboxed evaluator for computed-column expressions.

Expressions are parsed with ``ast`` and walked against a whitelist, so only
arithmetic, string, comparison and boolean operations over row values and a
fixed table of pure functions can run. Nothing is passed to ``eval``.

Columns are referenced either by bare name (``price * quantity``) or in
braces (``{unit price} * 2``) when the name is not a valid identifier.
"""

import ast
import re
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from datasetflow.exceptions import ExpressionError
from datasetflow.logging import get_logger

logger = get_logger(__name__)

MAX_EXPRESSION_LENGTH = 2000
MAX_EXPONENT = 100
MAX_INTEGER_BITS = 4096
MAX_STRING_LENGTH = 100_000

_LITERAL_NAMES = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
}

# Quoted strings are matched first so braces inside literals are left alone.
_BRACE_REFERENCE = re.compile(
    r"('(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\")|\{([^{}]+)\}|\bif\("
)


def _to_str(value: Any) -> str:
    return "" if value is None else str(value)


def _substr(value: Any, start: int, length: Optional[int] = None) -> str:
    # 1-based like SQL SUBSTR
    text = _to_str(value)
    begin = max(int(start) - 1, 0)
    if length is None:
        return text[begin:]
    return text[begin : begin + int(length)]


def _round(value: Any, digits: int = 0) -> Any:
    result = round(value, int(digits))
    return int(result) if digits == 0 and isinstance(result, float) else result


def _coalesce(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _iif(condition: Any, when_true: Any, when_false: Any = None) -> Any:
    return when_true if condition else when_false


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "upper": lambda s: _to_str(s).upper(),
    "lower": lambda s: _to_str(s).lower(),
    "length": lambda s: len(_to_str(s)),
    "len": lambda s: len(_to_str(s)),
    "trim": lambda s: _to_str(s).strip(),
    "concat": lambda *args: "".join(_to_str(a) for a in args),
    "substr": _substr,
    "replace": lambda s, old, new: _to_str(s).replace(_to_str(old), _to_str(new)),
    "round": _round,
    "abs": abs,
    "coalesce": _coalesce,
    "iif": _iif,
    "str": _to_str,
    "int": int,
    "float": float,
    "min": min,
    "max": max,
}

_BINARY_OPERATORS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: _bounded_multiply(a, b),
    ast.Div: lambda a, b: a / b,
    ast.FloorDiv: lambda a, b: a // b,
    ast.Mod: lambda a, b: _numeric_modulo(a, b),
    ast.Pow: lambda a, b: _bounded_power(a, b),
}

_UNARY_OPERATORS: Dict[type, Callable[[Any], Any]] = {
    ast.USub: lambda a: -a,
    ast.UAdd: lambda a: +a,
    ast.Not: lambda a: not a,
}

_COMPARE_OPERATORS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: lambda a, b: a == b,
    ast.NotEq: lambda a, b: a != b,
    ast.Lt: lambda a, b: a < b,
    ast.LtE: lambda a, b: a <= b,
    ast.Gt: lambda a, b: a > b,
    ast.GtE: lambda a, b: a >= b,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


def _bounded_power(base: Any, exponent: Any) -> Any:
    if isinstance(exponent, (int, float)) and abs(exponent) > MAX_EXPONENT:
        raise OverflowError(f"exponent {exponent} exceeds {MAX_EXPONENT}")
    if isinstance(base, int) and isinstance(exponent, int) and exponent > 1:
        if abs(base) > 1 and abs(base).bit_length() * exponent > MAX_INTEGER_BITS:
            raise OverflowError(f"integer power exceeds {MAX_INTEGER_BITS} bits")
    return base**exponent


def _numeric_modulo(left: Any, right: Any) -> Any:
    # no printf-style string formatting
    if isinstance(left, (str, bytes)):
        raise TypeError("modulo is only defined for numbers")
    return left % right


def _bounded_multiply(left: Any, right: Any) -> Any:
    for text, count in ((left, right), (right, left)):
        if isinstance(text, (str, tuple)) and isinstance(count, int):
            if len(text) * count > MAX_STRING_LENGTH:
                raise OverflowError("string repetition result is too long")
    if isinstance(left, int) and isinstance(right, int):
        if left.bit_length() + right.bit_length() > MAX_INTEGER_BITS:
            raise OverflowError(f"integer product exceeds {MAX_INTEGER_BITS} bits")
    return left * right


class CompiledExpression:
    """A validated expression ready to be evaluated against rows."""

    def __init__(self, source: str, tree: ast.Expression, references: Dict[str, str]):
        self.source = source
        self._tree = tree
        # placeholder identifier -> column name for brace references
        self._references = references

    def evaluate(self, row: Mapping[str, Any]) -> Any:
        """Evaluate against one row.

        Runtime failures such as division by zero or mismatched operand
        types yield None for the row.
        """
        try:
            return self._eval(self._tree.body, row)
        except (ArithmeticError, TypeError, ValueError, KeyError) as e:
            logger.debug(f"Expression {self.source!r} failed for row: {e}")
            return None

    def _eval(self, node: ast.AST, row: Mapping[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in self._references:
                return row[self._references[node.id]]
            if node.id in row:
                return row[node.id]
            return _LITERAL_NAMES[node.id.lower()]
        if isinstance(node, ast.BinOp):
            return _BINARY_OPERATORS[type(node.op)](
                self._eval(node.left, row), self._eval(node.right, row)
            )
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPERATORS[type(node.op)](self._eval(node.operand, row))
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result = True
                for value in node.values:
                    result = self._eval(value, row)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, row)
                if result:
                    return result
            return result
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, row)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, row)
                if not _COMPARE_OPERATORS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            if self._eval(node.test, row):
                return self._eval(node.body, row)
            return self._eval(node.orelse, row)
        if isinstance(node, (ast.Tuple, ast.List)):
            return tuple(self._eval(e, row) for e in node.elts)
        if isinstance(node, ast.Call):
            args = [self._eval(a, row) for a in node.args]
            return FUNCTIONS[node.func.id](*args)
        # unreachable for validated trees
        raise TypeError(f"Unsupported node {type(node).__name__}")


def _rewrite_references(expression: str) -> Tuple[str, Dict[str, str]]:
    references: Dict[str, str] = {}

    def replace(match: "re.Match") -> str:
        if match.group(1) is not None:
            return match.group(1)
        if match.group(2) is None:
            return "iif("
        placeholder = f"__col_{len(references)}"
        references[placeholder] = match.group(2).strip()
        return placeholder

    return _BRACE_REFERENCE.sub(replace, expression), references


class _Validator(ast.NodeVisitor):
    """Rejects every node outside the whitelist."""

    def __init__(self, expression: str, columns: Optional[frozenset], references):
        self.expression = expression
        self.columns = columns
        self.references = references

    def reject(self, message: str):
        raise ExpressionError(message, expression=self.expression)

    def generic_visit(self, node: ast.AST):
        self.reject(f"'{type(node).__name__}' is not allowed in expressions")

    def visit_Expression(self, node: ast.Expression):
        self.visit(node.body)

    def visit_Constant(self, node: ast.Constant):
        if not isinstance(node.value, (str, int, float, bool, type(None))):
            self.reject(f"Literal {node.value!r} is not allowed")

    def visit_Name(self, node: ast.Name):
        if node.id in self.references:
            column = self.references[node.id]
            if self.columns is not None and column not in self.columns:
                self.reject(f"Unknown column '{column}'")
            return
        if node.id.startswith("__"):
            self.reject(f"Name '{node.id}' is not allowed")
        if self.columns is None or node.id in self.columns:
            return
        if node.id.lower() in _LITERAL_NAMES:
            return
        self.reject(f"Unknown column '{node.id}'")

    def visit_BinOp(self, node: ast.BinOp):
        if type(node.op) not in _BINARY_OPERATORS:
            self.reject(f"Operator '{type(node.op).__name__}' is not allowed")
        if isinstance(node.op, ast.Pow) and isinstance(node.right, ast.Constant):
            exponent = node.right.value
            if isinstance(exponent, (int, float)) and abs(exponent) > MAX_EXPONENT:
                self.reject(f"Exponent {exponent} exceeds {MAX_EXPONENT}")
        self.visit(node.left)
        self.visit(node.right)

    def visit_UnaryOp(self, node: ast.UnaryOp):
        if type(node.op) not in _UNARY_OPERATORS:
            self.reject(f"Operator '{type(node.op).__name__}' is not allowed")
        self.visit(node.operand)

    def visit_BoolOp(self, node: ast.BoolOp):
        for value in node.values:
            self.visit(value)

    def visit_Compare(self, node: ast.Compare):
        for op in node.ops:
            if type(op) not in _COMPARE_OPERATORS:
                self.reject(f"Comparison '{type(op).__name__}' is not allowed")
        self.visit(node.left)
        for comparator in node.comparators:
            self.visit(comparator)

    def visit_IfExp(self, node: ast.IfExp):
        self.visit(node.test)
        self.visit(node.body)
        self.visit(node.orelse)

    def visit_Tuple(self, node: ast.Tuple):
        for element in node.elts:
            self.visit(element)

    visit_List = visit_Tuple

    def visit_Call(self, node: ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
            name = getattr(node.func, "id", type(node.func).__name__)
            self.reject(f"Function '{name}' is not allowed")
        if node.keywords:
            self.reject("Keyword arguments are not allowed")
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                self.reject("Star arguments are not allowed")
            self.visit(arg)


@lru_cache(maxsize=512)
def _compile(expression: str, columns: Optional[frozenset]) -> CompiledExpression:
    rewritten, references = _rewrite_references(expression)
    try:
        tree = ast.parse(rewritten.strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(
            f"Invalid expression syntax: {e.msg}", expression=expression
        )
    _Validator(expression, columns, references).visit(tree)
    return CompiledExpression(expression, tree, references)


def compile_expression(
    expression: str, columns: Optional[Iterable[str]] = None
) -> CompiledExpression:
    """Parse and validate an expression.

    Args:
        expression: Expression text
        columns: Column names the expression may reference; any name is
            accepted when omitted

    Raises:
        ExpressionError: If the expression is malformed or not allowed
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("Expression must be a non-empty string", expression=expression)
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(
            f"Expression longer than {MAX_EXPRESSION_LENGTH} characters",
            expression=expression[:100],
        )
    return _compile(expression, frozenset(columns) if columns is not None else None)


def evaluate_expression(expression: str, row: Mapping[str, Any]) -> Any:
    """Compile against the row's columns and evaluate in one step."""
    return compile_expression(expression, row.keys()).evaluate(row)
