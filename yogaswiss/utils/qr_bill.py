"""
Swiss QR-bill payload builder and reference number helpers.

Implements the text payload of the Swiss Payments Code (version 0200)
together with the two structured reference schemes it accepts: the
27 digit QR reference (QRR, modulo 10 recursive) and the ISO 11649
creditor reference (SCOR, modulo 97).
"""

import re
import string
from dataclasses import dataclass, field
from typing import List, Optional

from .exceptions import ValidationError
from .money import format_amount

QR_TYPE = "SPC"
QR_VERSION = "0200"
QR_CODING = "1"
QR_TRAILER = "EPD"

REFERENCE_QRR = "QRR"
REFERENCE_SCOR = "SCOR"
REFERENCE_NONE = "NON"

SUPPORTED_CURRENCIES = ("CHF", "EUR")
SUPPORTED_IBAN_COUNTRIES = ("CH", "LI")
MAX_AMOUNT_CENTS = 99_999_999_999

_MOD10_TABLE = (0, 9, 4, 6, 8, 2, 7, 1, 3, 5)
_LETTER_VALUES = {letter: str(index + 10) for index, letter in enumerate(string.ascii_uppercase)}


def _compact(value: str) -> str:
    return re.sub(r"\s+", "", value or "").upper()


def _mod97(value: str) -> int:
    numeric = "".join(_LETTER_VALUES.get(ch, ch) for ch in value)
    return int(numeric) % 97


def normalize_iban(iban: str) -> str:
    return _compact(iban)


def validate_iban(iban: str) -> bool:
    """Check a Swiss or Liechtenstein IBAN (21 characters, mod 97)."""
    iban = normalize_iban(iban)
    if len(iban) != 21 or iban[:2] not in SUPPORTED_IBAN_COUNTRIES:
        return False
    if not iban[2:4].isdigit() or not iban.isalnum():
        return False
    return _mod97(iban[4:] + iban[:4]) == 1


def is_qr_iban(iban: str) -> bool:
    """QR-IBANs carry an institution id between 30000 and 31999."""
    iban = normalize_iban(iban)
    iid = iban[4:9]
    return iid.isdigit() and 30000 <= int(iid) <= 31999


def mod10_recursive(digits: str) -> int:
    """Check digit of the Swiss modulo 10 recursive scheme."""
    carry = 0
    for digit in digits:
        carry = _MOD10_TABLE[(carry + int(digit)) % 10]
    return (10 - carry) % 10


def build_qr_reference(customer_number: str, sequence: int) -> str:
    """
    Build a 27 digit QR reference.

    Args:
        customer_number: Numeric prefix assigned to the creditor (may be empty)
        sequence: Running number of the document being referenced

    Returns:
        26 payload digits followed by the check digit
    """
    prefix = re.sub(r"\D", "", customer_number or "")
    body_width = 26 - len(prefix)
    sequence_digits = str(sequence)
    if body_width < 1 or len(sequence_digits) > body_width:
        raise ValidationError(
            "QR reference does not fit into 26 digits",
            details={"customer_number": customer_number, "sequence": sequence}
        )
    body = prefix + sequence_digits.rjust(body_width, "0")
    return body + str(mod10_recursive(body))


def validate_qr_reference(reference: str) -> bool:
    reference = _compact(reference)
    if len(reference) != 27 or not reference.isdigit():
        return False
    return mod10_recursive(reference[:-1]) == int(reference[-1])


def build_creditor_reference(payload: str) -> str:
    """Build an ISO 11649 ``RF`` reference around an alphanumeric payload."""
    payload = re.sub(r"[^A-Z0-9]", "", _compact(payload))
    if not payload or len(payload) > 21:
        raise ValidationError(
            "Creditor reference payload must be 1-21 alphanumeric characters",
            details={"payload": payload}
        )
    check = 98 - _mod97(payload + "RF00")
    return f"RF{check:02d}{payload}"


def validate_creditor_reference(reference: str) -> bool:
    reference = _compact(reference)
    if not reference.startswith("RF") or not 5 <= len(reference) <= 25:
        return False
    if not reference[2:4].isdigit() or not reference.isalnum():
        return False
    return _mod97(reference[4:] + reference[:4]) == 1


def format_qr_reference(reference: str) -> str:
    """Print form: first two digits, then blocks of five."""
    reference = _compact(reference)
    head, tail = reference[:2], reference[2:]
    return " ".join([head] + [tail[i:i + 5] for i in range(0, len(tail), 5)])


@dataclass
class QRBillAddress:
    """Structured ("S") address block."""

    name: str
    street: str = ""
    building_number: str = ""
    postal_code: str = ""
    town: str = ""
    country: str = "CH"

    _limits = {
        "name": 70,
        "street": 70,
        "building_number": 16,
        "postal_code": 16,
        "town": 35,
    }

    def errors(self, prefix: str) -> List[str]:
        problems = []
        if not self.name:
            problems.append(f"{prefix}.name is required")
        if not self.postal_code or not self.town:
            problems.append(f"{prefix}.postal_code and {prefix}.town are required")
        if len(self.country or "") != 2:
            problems.append(f"{prefix}.country must be a two letter ISO code")
        for attr, limit in self._limits.items():
            if len(getattr(self, attr) or "") > limit:
                problems.append(f"{prefix}.{attr} exceeds {limit} characters")
        return problems

    def lines(self) -> List[str]:
        return [
            "S",
            self.name,
            self.street,
            self.building_number,
            self.postal_code,
            self.town,
            self.country.upper(),
        ]


@dataclass
class QRBill:
    """Data of one QR-bill payment part."""

    account: str
    creditor: QRBillAddress
    amount_cents: Optional[int] = None
    currency: str = "CHF"
    debtor: Optional[QRBillAddress] = None
    reference_type: str = REFERENCE_NONE
    reference: str = ""
    message: str = ""
    extra_lines: List[str] = field(default_factory=list)

    def validate(self) -> None:
        """Raise ValidationError listing every rule the bill breaks."""
        problems = []
        account = normalize_iban(self.account)

        if not validate_iban(account):
            problems.append("account must be a valid CH or LI IBAN")
        elif is_qr_iban(account) and self.reference_type != REFERENCE_QRR:
            problems.append("a QR-IBAN requires a QRR reference")
        elif not is_qr_iban(account) and self.reference_type == REFERENCE_QRR:
            problems.append("a QRR reference requires a QR-IBAN")

        if self.currency not in SUPPORTED_CURRENCIES:
            problems.append(f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")

        if self.amount_cents is not None and not 1 <= self.amount_cents <= MAX_AMOUNT_CENTS:
            problems.append("amount must be between 0.01 and 999999999.99")

        if self.reference_type == REFERENCE_QRR and not validate_qr_reference(self.reference):
            problems.append("reference is not a valid QR reference")
        elif self.reference_type == REFERENCE_SCOR and not validate_creditor_reference(self.reference):
            problems.append("reference is not a valid creditor reference")
        elif self.reference_type == REFERENCE_NONE and self.reference:
            problems.append("reference must be empty for reference type NON")
        elif self.reference_type not in (REFERENCE_QRR, REFERENCE_SCOR, REFERENCE_NONE):
            problems.append(f"unknown reference type {self.reference_type}")

        if len(self.message or "") > 140:
            problems.append("message exceeds 140 characters")

        problems.extend(self.creditor.errors("creditor"))
        if self.debtor is not None:
            problems.extend(self.debtor.errors("debtor"))

        if problems:
            raise ValidationError("Invalid QR-bill data", details={"problems": problems})

    def payload(self) -> str:
        """Render the Swiss Payments Code text encoded in the QR code."""
        self.validate()

        lines = [QR_TYPE, QR_VERSION, QR_CODING, normalize_iban(self.account)]
        lines.extend(self.creditor.lines())
        lines.extend([""] * 7)  # ultimate creditor, reserved for future use
        lines.append(format_amount(self.amount_cents) if self.amount_cents is not None else "")
        lines.append(self.currency)
        lines.extend(self.debtor.lines() if self.debtor else [""] * 7)
        lines.append(self.reference_type)
        lines.append(_compact(self.reference))
        lines.append(self.message or "")
        lines.append(QR_TRAILER)
        lines.extend(self.extra_lines)
        return "\n".join(lines)
