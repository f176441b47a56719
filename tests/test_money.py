"""Tests for CHF money helpers."""

import re
from decimal import Decimal

from yogaswiss.utils.money import (
    calculate_tax,
    format_amount,
    format_chf,
    generate_code,
    generate_order_number,
    generate_refund_number,
    round_to_five_rappen,
    vat_exclusive,
    vat_inclusive,
)


def test_inclusive_vat_is_extracted_from_the_gross_amount():
    breakdown = calculate_tax(10000, Decimal("8.1"), inclusive=True)

    assert breakdown.tax_cents == 749
    assert breakdown.subtotal_cents == 9251
    assert breakdown.total_cents == 10000


def test_exclusive_vat_is_added_on_top():
    breakdown = calculate_tax(10000, "8.1", inclusive=False)

    assert breakdown == (10000, 810, 10810)


def test_vat_rounds_half_up_to_the_rappen():
    # 2500 * 7.7 / 107.7 = 178.73...
    assert vat_inclusive(2500, 7.7) == 179
    # 150 * 2.6 / 100 = 3.9
    assert vat_exclusive(150, "2.6") == 4


def test_zero_rate_means_no_tax():
    assert calculate_tax(4200, 0) == (4200, 0, 4200)
    assert calculate_tax(4200, 0, inclusive=False) == (4200, 0, 4200)


def test_five_rappen_rounding():
    assert round_to_five_rappen(1234) == (1235, 1)
    assert round_to_five_rappen(1232) == (1230, -2)
    assert round_to_five_rappen(1237) == (1235, -2)
    assert round_to_five_rappen(1238) == (1240, 2)
    assert round_to_five_rappen(1500) == (1500, 0)
    assert round_to_five_rappen(-1238) == (-1240, -2)


def test_formatting():
    assert format_chf(123450) == "CHF 1'234.50"
    assert format_chf(-5) == "CHF -0.05"
    assert format_amount(199) == "1.99"
    assert format_amount(100000) == "1000.00"


def test_generated_numbers_have_their_documented_shape():
    assert re.fullmatch(r"YS-\d{8}-[0-9A-Z]{4}", generate_order_number())
    assert re.fullmatch(r"REF-\d{8}-[0-9A-Z]{4}", generate_refund_number())

    code = generate_code(12)
    assert len(code) == 12
    assert code.isupper() or code.isdigit()
