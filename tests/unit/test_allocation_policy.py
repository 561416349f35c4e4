"""
Unit tests for trading_api/services/allocation_policy.py

Both strategies on the same two-line invoice: 10 @ 5 and 20 @ 2.5
(line values 50 / 50) with 20 of expenses.
"""

from decimal import Decimal

import pytest

from trading_api.exceptions import ValidationError
from trading_api.services.allocation_policy import (
    UNIFORM_PER_UNIT,
    VALUE_WEIGHTED,
    AllocationLine,
    UniformPerUnitPolicy,
    ValueWeightedPolicy,
    get_policy,
)


def _invoice():
    return [
        AllocationLine(qty=Decimal("10"), unit_price=Decimal("5"), line_value=Decimal("50")),
        AllocationLine(qty=Decimal("20"), unit_price=Decimal("2.5"), line_value=Decimal("50")),
    ]


def test_uniform_spreads_expenses_per_unit():
    allocations = UniformPerUnitPolicy().allocate(_invoice(), Decimal("20"))

    assert round(allocations[0].expense_per_unit, 3) == Decimal("0.667")
    assert allocations[0].expense_per_unit == allocations[1].expense_per_unit
    assert round(allocations[0].cost_per_unit, 3) == Decimal("5.667")
    assert round(allocations[1].cost_per_unit, 3) == Decimal("3.167")


def test_uniform_shares_add_up_to_total_expenses():
    allocations = UniformPerUnitPolicy().allocate(_invoice(), Decimal("20"))
    total = sum(a.expense_share for a in allocations)
    assert round(total, 10) == Decimal("20")


def test_uniform_zero_quantity_gives_zero_expense_per_unit():
    lines = [AllocationLine(qty=Decimal("0"), unit_price=Decimal("4"), line_value=Decimal("0"))]
    allocations = UniformPerUnitPolicy().allocate(lines, Decimal("20"))

    assert allocations[0].expense_per_unit == Decimal("0")
    assert allocations[0].cost_per_unit == Decimal("4")


def test_uniform_without_expenses_keeps_unit_price():
    allocations = UniformPerUnitPolicy().allocate(_invoice(), Decimal("0"))
    assert [a.cost_per_unit for a in allocations] == [Decimal("5"), Decimal("2.5")]


def test_value_weighted_splits_by_line_value():
    allocations = ValueWeightedPolicy().allocate(_invoice(), Decimal("20"))

    assert allocations[0].value_percentage == Decimal("50")
    assert allocations[0].expense_share == Decimal("10")
    assert allocations[1].expense_share == Decimal("10")
    assert allocations[0].cost_per_unit == Decimal("6")
    assert allocations[1].cost_per_unit == Decimal("3")


def test_strategies_disagree_on_the_same_invoice():
    uniform = UniformPerUnitPolicy().allocate(_invoice(), Decimal("20"))
    weighted = ValueWeightedPolicy().allocate(_invoice(), Decimal("20"))

    assert uniform[0].cost_per_unit != weighted[0].cost_per_unit
    assert uniform[1].cost_per_unit != weighted[1].cost_per_unit


def test_value_weighted_uneven_values():
    lines = [
        AllocationLine(qty=Decimal("1"), unit_price=Decimal("300"), line_value=Decimal("300")),
        AllocationLine(qty=Decimal("10"), unit_price=Decimal("10"), line_value=Decimal("100")),
    ]
    allocations = ValueWeightedPolicy().allocate(lines, Decimal("40"))

    assert allocations[0].value_percentage == Decimal("75")
    assert allocations[0].expense_share == Decimal("30")
    assert allocations[0].cost_per_unit == Decimal("330")
    assert allocations[1].cost_per_unit == Decimal("11")


def test_value_weighted_zero_value_invoice():
    lines = [AllocationLine(qty=Decimal("5"), unit_price=Decimal("0"), line_value=Decimal("0"))]
    allocations = ValueWeightedPolicy().allocate(lines, Decimal("10"))

    assert allocations[0].expense_share == Decimal("0")
    assert allocations[0].cost_per_unit == Decimal("0")


def test_get_policy_by_name():
    assert isinstance(get_policy(UNIFORM_PER_UNIT), UniformPerUnitPolicy)
    assert isinstance(get_policy(VALUE_WEIGHTED), ValueWeightedPolicy)


def test_get_policy_unknown_name():
    with pytest.raises(ValidationError):
        get_policy("FIFO")
