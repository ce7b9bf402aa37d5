"""
Restricted arithmetic for melting scrap-weight entries.

Furnace operators record scrap charged in several weighings and type them
as one expression, e.g. ``"100+200+250"`` or ``"(120.5 + 80) * 2"``.  This
module validates and evaluates such expressions without ``eval``.

Allowed:
  - Plain decimal literals (no exponents, no hex)
  - Binary ``+ - * /``
  - Unary ``+`` and ``-``
  - Parentheses

Rejected:
  - Names, calls, attribute access, strings, comparisons, ``**``, ``//``,
    ``%`` and everything else

Evaluation is done in Decimal (literals are read through their source text,
never through float) and the result is rounded to 3 places, half up.
"""

import ast
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation

from stock_kernel.db.types import ZERO, round_quantity
from stock_kernel.exceptions import ScrapExpressionError

_ALLOWED_BINOPS = (ast.Add, ast.Sub, ast.Mult, ast.Div)
_ALLOWED_UNARYOPS = (ast.UAdd, ast.USub)
_MAX_EXPRESSION_LENGTH = 500
_LITERAL_CHARS = frozenset("0123456789._")


@dataclass(frozen=True)
class ScrapExpressionIssue:
    """A validation problem found in a scrap-weight expression."""

    expression: str
    message: str
    node_type: str = ""
    col_offset: int = 0


def validate_scrap_expression(expression: str) -> list[ScrapExpressionIssue]:
    """Empty list means the expression may be evaluated."""
    if not expression or not expression.strip():
        return [ScrapExpressionIssue(expression or "", "expression is empty")]
    if len(expression) > _MAX_EXPRESSION_LENGTH:
        return [ScrapExpressionIssue(expression, "expression is too long")]

    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        return [ScrapExpressionIssue(expression, f"syntax error: {exc.msg}")]

    issues: list[ScrapExpressionIssue] = []
    _validate_node(tree.body, expression, issues)
    return issues


def _validate_node(node: ast.AST, expression: str, issues: list[ScrapExpressionIssue]) -> None:
    if isinstance(node, ast.BinOp):
        if not isinstance(node.op, _ALLOWED_BINOPS):
            issues.append(_issue(expression, node, f"operator {type(node.op).__name__} not allowed"))
        _validate_node(node.left, expression, issues)
        _validate_node(node.right, expression, issues)
    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, _ALLOWED_UNARYOPS):
            issues.append(_issue(expression, node, f"operator {type(node.op).__name__} not allowed"))
        _validate_node(node.operand, expression, issues)
    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            issues.append(_issue(expression, node, f"literal {node.value!r} is not a number"))
        else:
            text = ast.get_source_segment(expression.strip(), node) or ""
            if not text or any(ch not in _LITERAL_CHARS for ch in text):
                issues.append(_issue(expression, node, f"literal {text!r} not allowed"))
    else:
        issues.append(_issue(expression, node, f"{type(node).__name__} not allowed"))


def _issue(expression: str, node: ast.AST, message: str) -> ScrapExpressionIssue:
    return ScrapExpressionIssue(
        expression=expression,
        message=message,
        node_type=type(node).__name__,
        col_offset=getattr(node, "col_offset", 0),
    )


def evaluate_scrap_expression(expression: str) -> Decimal:
    """
    Evaluate a scrap-weight expression to a quantity.

    Raises:
        ScrapExpressionError: Disallowed syntax, division by zero, or a
            negative result.
    """
    issues = validate_scrap_expression(expression)
    if issues:
        raise ScrapExpressionError(expression, "; ".join(i.message for i in issues))

    source = expression.strip()
    tree = ast.parse(source, mode="eval")
    try:
        value = _evaluate(tree.body, source)
    except (DivisionByZero, ZeroDivisionError):
        raise ScrapExpressionError(expression, "division by zero") from None
    except InvalidOperation:
        raise ScrapExpressionError(expression, "could not be evaluated") from None

    result = round_quantity(value)
    if result < ZERO:
        raise ScrapExpressionError(expression, "scrap weight cannot be negative")
    return result


def _evaluate(node: ast.AST, source: str) -> Decimal:
    if isinstance(node, ast.Constant):
        return Decimal(ast.get_source_segment(source, node))
    if isinstance(node, ast.UnaryOp):
        operand = _evaluate(node.operand, source)
        return -operand if isinstance(node.op, ast.USub) else operand

    left = _evaluate(node.left, source)
    right = _evaluate(node.right, source)
    if isinstance(node.op, ast.Add):
        return left + right
    if isinstance(node.op, ast.Sub):
        return left - right
    if isinstance(node.op, ast.Mult):
        return left * right
    if right == ZERO:
        raise ZeroDivisionError
    return left / right
