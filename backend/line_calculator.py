# backend/line_calculator.py

"""
Line Calculator - line and document money arithmetic

Used the same way by purchase-order lines, inventory-count lines and
custody-closure invoices:

    amount_before_discount = quantity * unit_cost
    amount_after_discount  = amount_before_discount - discount
    line_total             = amount_after_discount + tax_amount

TAX MODELS:
Two conventions coexist and are kept apart with a tagged TaxSpec:
- RateBasedTax(percent): custody-closure invoices (VAT 0 / 5 / 15 %),
  tax_amount = amount_after_discount * percent / 100
- FlatAmountTax(amount): purchase-order lines, tax entered as currency

Discount is always an absolute amount. Negative intermediate values are
passed through; sign checks belong to form validation.
"""

from typing import Annotated, Any, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from numeric_utils import exact_sum, round_money, to_number

STANDARD_VAT_RATES = (0.0, 5.0, 15.0)


# ==================== TAX SPEC ====================

class RateBasedTax(BaseModel):
    """Tax as a percentage of the discounted amount"""
    kind: Literal["rate"] = "rate"
    percent: float = 0.0

    def amount_for(self, amount_after_discount: float) -> float:
        return amount_after_discount * self.percent / 100


class FlatAmountTax(BaseModel):
    """Tax entered as an absolute currency amount"""
    kind: Literal["flat"] = "flat"
    amount: float = 0.0

    def amount_for(self, amount_after_discount: float) -> float:
        return self.amount


TaxSpec = Annotated[Union[RateBasedTax, FlatAmountTax], Field(discriminator="kind")]


# ==================== RESULTS ====================

class LineResult(BaseModel):
    """Computed line amounts"""
    quantity: float
    unit_cost: float
    amount_before_discount: float
    discount: float = 0.0
    amount_after_discount: float
    tax_amount: float = 0.0
    line_total: float


class DocumentTotals(BaseModel):
    """Document-level roll-up (purchase order, inventory count, custody closure)"""
    total_excl_tax: float = 0.0
    total_discount: float = 0.0
    total_tax: float = 0.0
    grand_total: float = 0.0
    line_count: int = 0

    def rounded(self) -> "DocumentTotals":
        return DocumentTotals(
            total_excl_tax=round_money(self.total_excl_tax),
            total_discount=round_money(self.total_discount),
            total_tax=round_money(self.total_tax),
            grand_total=round_money(self.grand_total),
            line_count=self.line_count,
        )


# ==================== CALCULATIONS ====================

def compute_line(
    quantity: Any,
    unit_cost: Any,
    discount: Any = 0,
    tax: Optional[Union[RateBasedTax, FlatAmountTax]] = None,
) -> LineResult:
    """
    Compute one line.

    Args:
        quantity: Quantity (non-numeric -> 0)
        unit_cost: Cost of one unit (non-numeric -> 0)
        discount: Absolute discount amount (non-numeric -> 0)
        tax: RateBasedTax, FlatAmountTax or None for no tax

    Returns:
        LineResult (unrounded)
    """
    quantity = to_number(quantity)
    unit_cost = to_number(unit_cost)
    discount = to_number(discount)

    amount_before_discount = quantity * unit_cost
    amount_after_discount = amount_before_discount - discount
    # NaN / inf tax values count as no tax, like the other inputs
    tax_amount = to_number(tax.amount_for(amount_after_discount)) if tax is not None else 0.0

    return LineResult(
        quantity=quantity,
        unit_cost=unit_cost,
        amount_before_discount=amount_before_discount,
        discount=discount,
        amount_after_discount=amount_after_discount,
        tax_amount=tax_amount,
        line_total=amount_after_discount + tax_amount,
    )


def aggregate_document(lines: Iterable[LineResult]) -> DocumentTotals:
    """
    Sum line amounts into document totals.

    Sums are exact decimal sums of the line values, so they carry no float
    drift and do not depend on line order.
    """
    lines: List[LineResult] = list(lines)
    if not lines:
        return DocumentTotals()

    return DocumentTotals(
        total_excl_tax=exact_sum(line.amount_before_discount for line in lines),
        total_discount=exact_sum(line.discount for line in lines),
        total_tax=exact_sum(line.tax_amount for line in lines),
        grand_total=exact_sum(line.line_total for line in lines),
        line_count=len(lines),
    )


def infer_tax_rate(tax_amount: Any, amount_after_discount: Any) -> float:
    """
    Recover the VAT rate of a stored invoice from its amounts.

    Stored invoices keep the tax amount, not the rate. Ratios close to a
    standard rate snap to it: [14.5, 15.5] -> 15, [4.5, 5.5] -> 5,
    below 0.5 -> 0. Anything else is returned as the raw percentage.
    A non-positive base gives 0.
    """
    tax_amount = to_number(tax_amount)
    amount_after_discount = to_number(amount_after_discount)
    if amount_after_discount <= 0:
        return 0.0

    rate = tax_amount / amount_after_discount * 100
    if 14.5 <= rate <= 15.5:
        return 15.0
    if 4.5 <= rate <= 5.5:
        return 5.0
    if rate < 0.5:
        return 0.0
    return rate
