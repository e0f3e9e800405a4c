import asyncio

import pytest

from helmsman.exceptions import ToolError
from helmsman.tools.calculate import CalculateParams, CalculateTool, evaluate_expression, format_number


async def _run(expression: str) -> str:
    return await CalculateTool().execute(CalculateParams(expression=expression), asyncio.Event())


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("2+3", "2+3 = 5"),
        ("2 ^ 10", "2 ^ 10 = 1024"),
        ("(1 + 2) * 4 - 6 / 3", "(1 + 2) * 4 - 6 / 3 = 10"),
        ("sqrt(16)", "sqrt(16) = 4"),
        ("-7 % 3", "-7 % 3 = 2"),
        ("log(1000)", "log(1000) = 3"),
    ],
)
@pytest.mark.asyncio
async def test_calculate_formats_expression_and_result(expression, expected):
    assert await _run(expression) == expected


@pytest.mark.asyncio
async def test_calculate_keeps_fractional_results():
    assert await _run("1 / 4") == "1 / 4 = 0.25"


def test_constants_are_available():
    assert evaluate_expression("pi") == pytest.approx(3.141592653589793)
    assert format_number(evaluate_expression("2 * e")) == str(2 * 2.718281828459045)


@pytest.mark.parametrize(
    "expression",
    ["1 / 0", "2 +", "__import__('os')", "unknown(3)", "2 ^ 100000", "sqrt(1, 2)"],
)
@pytest.mark.asyncio
async def test_calculate_rejects_bad_expressions(expression):
    with pytest.raises(ToolError) as exc_info:
        await _run(expression)

    assert exc_info.value.code == "EVALUATION_ERROR"
    assert exc_info.value.details["expression"] == expression


@pytest.mark.asyncio
async def test_calculate_rejects_blank_expression():
    with pytest.raises(ToolError) as exc_info:
        await _run("   ")

    assert exc_info.value.code == "EMPTY_EXPRESSION"
