"""
Landed-cost allocation strategies.

Two formulas coexist and are deliberately kept apart:

- UNIFORM_PER_UNIT spreads the expense total evenly over every unit on the
  invoice. Used by purchase approval and persisted in cost history.
- VALUE_WEIGHTED spreads the expense total by each line's share of invoice
  value. Used only by the advisory cost preview.

For the same invoice they generally give different costs per unit.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from trading_api.exceptions import ValidationError

UNIFORM_PER_UNIT = "UNIFORM_PER_UNIT"
VALUE_WEIGHTED = "VALUE_WEIGHTED"

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass
class AllocationLine:
    qty: Decimal
    unit_price: Decimal
    line_value: Decimal
    product_id: Optional[str] = None
    line_id: Optional[str] = None


@dataclass
class LineAllocation:
    line: AllocationLine
    expense_per_unit: Decimal
    expense_share: Decimal
    value_percentage: Decimal
    cost_per_unit: Decimal


class AllocationPolicy(ABC):
    name: str = ""

    @abstractmethod
    def allocate(
        self, lines: Sequence[AllocationLine], total_expenses: Decimal
    ) -> list[LineAllocation]:
        ...


class UniformPerUnitPolicy(AllocationPolicy):
    """expense_per_unit = total_expenses / Σ qty; cost = unit_price + expense_per_unit."""

    name = UNIFORM_PER_UNIT

    def allocate(self, lines, total_expenses):
        total_qty = sum((line.qty for line in lines), ZERO)
        expense_per_unit = total_expenses / total_qty if total_qty > 0 else ZERO

        allocations = []
        for line in lines:
            share = expense_per_unit * line.qty
            allocations.append(
                LineAllocation(
                    line=line,
                    expense_per_unit=expense_per_unit,
                    expense_share=share,
                    value_percentage=(line.qty / total_qty * HUNDRED) if total_qty > 0 else ZERO,
                    cost_per_unit=line.unit_price + expense_per_unit,
                )
            )
        return allocations


class ValueWeightedPolicy(AllocationPolicy):
    """Expense share follows each line's fraction of the invoice value."""

    name = VALUE_WEIGHTED

    def allocate(self, lines, total_expenses):
        total_value = sum((line.line_value for line in lines), ZERO)

        allocations = []
        for line in lines:
            if total_value > 0:
                pct = line.line_value / total_value * HUNDRED
            else:
                pct = ZERO
            share = pct / HUNDRED * total_expenses
            if line.qty > 0:
                cost = (line.line_value + share) / line.qty
                per_unit = share / line.qty
            else:
                cost = ZERO
                per_unit = ZERO
            allocations.append(
                LineAllocation(
                    line=line,
                    expense_per_unit=per_unit,
                    expense_share=share,
                    value_percentage=pct,
                    cost_per_unit=cost,
                )
            )
        return allocations


_POLICIES: dict[str, AllocationPolicy] = {
    UNIFORM_PER_UNIT: UniformPerUnitPolicy(),
    VALUE_WEIGHTED: ValueWeightedPolicy(),
}


def get_policy(name: str) -> AllocationPolicy:
    policy = _POLICIES.get(name)
    if policy is None:
        raise ValidationError(
            f"Unknown allocation strategy: {name}",
            details={"available": sorted(_POLICIES)},
        )
    return policy
