# backend/tests/test_line_calculator.py

"""
Unit tests for LineCalculator

Tests cover:
- Custody-closure invoice (rate-based VAT)
- Purchase-order line (flat tax)
- Zero quantity, negative pass-through, invalid input coercion
- Document aggregation (empty, drift, order independence)
- VAT rate inference
"""

import pytest
import random
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import TypeAdapter, ValidationError

from line_calculator import (
    DocumentTotals,
    FlatAmountTax,
    RateBasedTax,
    STANDARD_VAT_RATES,
    TaxSpec,
    aggregate_document,
    compute_line,
    infer_tax_rate,
)


class TestComputeLine:
    """Test single-line arithmetic"""

    def test_custody_closure_invoice(self):
        """amountWithoutTax=100, discount=10, VAT 15% -> 90 / 13.5 / 103.5"""
        line = compute_line(1, 100, discount=10, tax=RateBasedTax(percent=15))

        assert line.amount_before_discount == 100
        assert line.amount_after_discount == 90
        assert line.tax_amount == pytest.approx(13.5)
        assert line.line_total == pytest.approx(103.5)

    def test_purchase_order_line_flat_tax(self):
        """quantity=5, unitPrice=20, tax=7 (flat) -> 107"""
        line = compute_line(5, 20, tax=FlatAmountTax(amount=7))

        assert line.amount_before_discount == 100
        assert line.tax_amount == 7
        assert line.line_total == 107

    def test_flat_tax_ignores_discounted_amount(self):
        line = compute_line(2, 50, discount=40, tax=FlatAmountTax(amount=5))
        assert line.amount_after_discount == 60
        assert line.tax_amount == 5
        assert line.line_total == 65

    def test_no_tax(self):
        line = compute_line(3, 2.5)
        assert line.tax_amount == 0
        assert line.line_total == 7.5

    @pytest.mark.parametrize("unit_cost", [0, 1, 48.75, -3, 1e9])
    def test_zero_quantity_total_is_zero(self, unit_cost):
        line = compute_line(0, unit_cost, tax=RateBasedTax(percent=15))
        assert line.line_total == 0

    def test_over_discount_is_not_clamped(self):
        line = compute_line(1, 50, discount=80, tax=RateBasedTax(percent=15))

        assert line.amount_after_discount == -30
        assert line.tax_amount == pytest.approx(-4.5)
        assert line.line_total == pytest.approx(-34.5)

    def test_negative_values_pass_through(self):
        line = compute_line(-2, 10)
        assert line.amount_before_discount == -20
        assert line.line_total == -20

    @pytest.mark.parametrize("rate", STANDARD_VAT_RATES)
    def test_standard_vat_rates(self, rate):
        line = compute_line(1, 200, tax=RateBasedTax(percent=rate))
        assert line.tax_amount == pytest.approx(200 * rate / 100)

    def test_invalid_input_coerced_to_zero(self):
        line = compute_line("abc", None, discount="")
        assert line.quantity == 0
        assert line.unit_cost == 0
        assert line.discount == 0
        assert line.line_total == 0

    @pytest.mark.parametrize("tax", [
        RateBasedTax(percent=float("nan")),
        FlatAmountTax(amount=float("nan")),
        FlatAmountTax(amount=float("inf")),
    ])
    def test_non_finite_tax_coerced_to_zero(self, tax):
        line = compute_line(1, 100, tax=tax)
        assert line.tax_amount == 0
        assert line.line_total == 100

        totals = aggregate_document([line, compute_line(1, 50, tax=RateBasedTax(percent=10))])
        assert totals.total_tax == 5
        assert totals.grand_total == 155

    def test_string_input(self):
        line = compute_line("6.780", "2", discount="0.78")
        assert line.amount_before_discount == pytest.approx(13.56)
        assert line.amount_after_discount == pytest.approx(12.78)


class TestTaxSpec:
    """Test the tagged tax union"""

    def test_discriminated_parsing(self):
        adapter = TypeAdapter(TaxSpec)
        assert isinstance(adapter.validate_python({"kind": "rate", "percent": 5}), RateBasedTax)
        assert isinstance(adapter.validate_python({"kind": "flat", "amount": 7}), FlatAmountTax)

    def test_unknown_kind_rejected(self):
        adapter = TypeAdapter(TaxSpec)
        with pytest.raises(ValidationError):
            adapter.validate_python({"kind": "percent", "percent": 5})


class TestAggregateDocument:
    """Test document totals"""

    def test_empty_document(self):
        totals = aggregate_document([])
        assert totals == DocumentTotals()
        assert totals.total_excl_tax == 0
        assert totals.total_discount == 0
        assert totals.total_tax == 0
        assert totals.grand_total == 0

    def test_custody_closure_totals(self):
        lines = [
            compute_line(1, 100, 10, RateBasedTax(percent=15)),
            compute_line(1, 200, 0, RateBasedTax(percent=5)),
            compute_line(1, 50, 5, RateBasedTax(percent=0)),
        ]
        totals = aggregate_document(lines)

        assert totals.total_excl_tax == 350
        assert totals.total_discount == 15
        assert totals.total_tax == pytest.approx(23.5)
        assert totals.grand_total == pytest.approx(358.5)
        assert totals.line_count == 3

    def test_grand_total_matches_components(self):
        lines = [compute_line(q, 3.3, 0.1, FlatAmountTax(amount=0.7)) for q in range(1, 20)]
        totals = aggregate_document(lines)
        assert totals.grand_total == pytest.approx(
            totals.total_excl_tax - totals.total_discount + totals.total_tax, abs=1e-9
        )

    def test_no_accumulation_drift(self):
        lines = [compute_line(1, 0.1) for _ in range(10)]
        # naive float summation gives 0.9999999999999999
        assert aggregate_document(lines).grand_total == 1.0

    def test_order_independent(self):
        lines = [compute_line(1, value, tax=RateBasedTax(percent=15)) for value in (0.1, 0.2, 0.3, 1e6, 17.35, 0.07)]
        shuffled = list(lines)
        random.Random(7).shuffle(shuffled)

        assert aggregate_document(lines) == aggregate_document(shuffled)
        assert aggregate_document(lines) == aggregate_document(reversed(lines))

    def test_rounded_totals(self):
        totals = DocumentTotals(total_excl_tax=10.005, total_discount=0, total_tax=1.5007, grand_total=11.5057)
        rounded = totals.rounded()
        assert rounded.total_excl_tax == 10.01
        assert rounded.total_tax == 1.5
        assert rounded.grand_total == 11.51


class TestInferTaxRate:
    """Test VAT rate recovery for stored invoices"""

    def test_exact_rates(self):
        assert infer_tax_rate(13.5, 90) == 15.0
        assert infer_tax_rate(5, 100) == 5.0
        assert infer_tax_rate(0, 100) == 0.0

    def test_rounded_amounts_snap(self):
        # 15% of 33.33 = 4.9995 stored as 5.00
        assert infer_tax_rate(5.00, 33.33) == 15.0
        assert infer_tax_rate(0.1, 100) == 0.0

    def test_non_standard_rate_kept(self):
        assert infer_tax_rate(10, 100) == pytest.approx(10.0)

    def test_non_positive_base(self):
        assert infer_tax_rate(5, 0) == 0.0
        assert infer_tax_rate(5, -10) == 0.0
        assert infer_tax_rate("x", "y") == 0.0
