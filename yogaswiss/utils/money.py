"""
Money helpers for CHF amounts held as integer cents (Rappen).

VAT math follows the Swiss convention of quoting rates in percent
(7.7, 8.1, 2.6, ...) and rounding the tax part half-up to the Rappen.
"""

import secrets
import string
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple, Tuple, Union

Rate = Union[int, float, Decimal, str]

CODE_ALPHABET = string.ascii_uppercase + string.digits
BASE36_ALPHABET = string.digits + string.ascii_uppercase


class TaxBreakdown(NamedTuple):
    """Result of a VAT calculation in cents."""
    subtotal_cents: int
    tax_cents: int
    total_cents: int


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_decimal(rate: Rate) -> Decimal:
    # str() first so 7.7 stays 7.7 rather than its binary expansion
    return Decimal(str(rate))


def vat_inclusive(amount_cents: int, rate: Rate) -> int:
    """Tax contained in a gross amount."""
    rate_d = _as_decimal(rate)
    if rate_d <= 0:
        return 0
    return _round_half_up(Decimal(amount_cents) * rate_d / (Decimal(100) + rate_d))


def vat_exclusive(amount_cents: int, rate: Rate) -> int:
    """Tax to add on top of a net amount."""
    rate_d = _as_decimal(rate)
    if rate_d <= 0:
        return 0
    return _round_half_up(Decimal(amount_cents) * rate_d / Decimal(100))


def calculate_tax(amount_cents: int, rate: Rate, inclusive: bool = True) -> TaxBreakdown:
    """
    Split an amount into net, tax and gross parts.

    Args:
        amount_cents: Gross amount when ``inclusive`` is true, net amount otherwise
        rate: VAT rate in percent
        inclusive: Whether ``amount_cents`` already contains the tax

    Returns:
        TaxBreakdown with subtotal (net), tax and total (gross)
    """
    if inclusive:
        tax = vat_inclusive(amount_cents, rate)
        return TaxBreakdown(amount_cents - tax, tax, amount_cents)

    tax = vat_exclusive(amount_cents, rate)
    return TaxBreakdown(amount_cents, tax, amount_cents + tax)


def round_to_five_rappen(amount_cents: int) -> Tuple[int, int]:
    """
    Round to the nearest 0.05 CHF as required for cash payments.

    Returns:
        Tuple of (rounded amount, adjustment applied)
    """
    sign = -1 if amount_cents < 0 else 1
    magnitude = abs(amount_cents)
    rounded = ((magnitude + 2) // 5) * 5 * sign
    return rounded, rounded - amount_cents


def format_chf(amount_cents: int, currency: str = "CHF") -> str:
    """Render cents the way Swiss receipts do, e.g. ``CHF 1'234.50``."""
    sign = "-" if amount_cents < 0 else ""
    francs, rappen = divmod(abs(amount_cents), 100)
    grouped = f"{francs:,}".replace(",", "'")
    return f"{currency} {sign}{grouped}.{rappen:02d}"


def format_amount(amount_cents: int) -> str:
    """Plain decimal notation used on QR-bills, e.g. ``1234.50``."""
    francs, rappen = divmod(amount_cents, 100)
    return f"{francs}.{rappen:02d}"


def generate_code(length: int = 12, alphabet: str = CODE_ALPHABET) -> str:
    """Random code for gift cards and vouchers."""
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _clock_digits(width: int) -> str:
    return str(int(time.time() * 1000))[-width:]


def generate_order_number() -> str:
    """Order numbers look like ``YS-12345678-4KQZ``."""
    return f"YS-{_clock_digits(8)}-{generate_code(4, BASE36_ALPHABET)}"


def generate_refund_number() -> str:
    """Refund numbers look like ``REF-12345678-7H2A``."""
    return f"REF-{_clock_digits(8)}-{generate_code(4, BASE36_ALPHABET)}"


def generate_twint_transaction_id() -> str:
    return f"twint_{int(time.time() * 1000)}_{generate_code(9, string.ascii_lowercase + string.digits)}"
