"""Calculator tool evaluating arithmetic expressions without eval()."""

import ast
import asyncio
import math
import operator
from typing import Any, Callable

from helmsman.exceptions import ToolError
from helmsman.tools.registry import Tool
from helmsman.tools.schema import ParamField, ToolParams

_BINARY_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
    ast.Mod: operator.mod,
}

_UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: dict[str, Callable[[float], float]] = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log10,
    "ln": math.log,
    "abs": abs,
}

_CONSTANTS = {"pi": math.pi, "e": math.e}

MAX_EXPONENT = 1000


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        raise ValueError(f"unknown name '{node.id}'")
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError("exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
        func = _FUNCTIONS.get(node.func.id)
        if func is None:
            raise ValueError(f"unknown function '{node.func.id}'")
        if len(node.args) != 1:
            raise ValueError(f"{node.func.id}() takes exactly one argument")
        return func(_evaluate(node.args[0]))
    raise ValueError(f"unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> float:
    """Evaluate ``expression``; ``^`` means power."""
    tree = ast.parse(expression.replace("^", "**"), mode="eval")
    return _evaluate(tree)


def format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return str(value)


class CalculateParams(ToolParams):
    expression: str = ParamField(description="Mathematical expression to evaluate", min_length=1)


class CalculateTool(Tool):
    """Evaluate mathematical expressions."""

    name = "calculate"
    description = (
        "Evaluate a mathematical expression. Supports + - * / ^ %, parentheses, "
        "sqrt, sin, cos, tan, log (base 10), ln, abs and the constants pi and e."
    )
    params_model = CalculateParams
    timeout_seconds = 10.0

    async def execute(self, params: CalculateParams, abort_event: asyncio.Event) -> str:
        expression = params.expression.strip()
        if not expression:
            raise ToolError("EMPTY_EXPRESSION", "Expression cannot be empty")
        try:
            result = evaluate_expression(expression)
        except (SyntaxError, ValueError, ZeroDivisionError, OverflowError, TypeError) as e:
            raise ToolError(
                "EVALUATION_ERROR",
                "Failed to evaluate expression",
                {"error": str(e) or type(e).__name__, "expression": expression},
            ) from e
        return f"{expression} = {format_number(result)}"
