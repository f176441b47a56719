"""Tests for the Swiss QR-bill payload and reference helpers."""

import pytest

from yogaswiss.utils.exceptions import ValidationError
from yogaswiss.utils.qr_bill import (
    QRBill,
    QRBillAddress,
    build_creditor_reference,
    build_qr_reference,
    format_qr_reference,
    is_qr_iban,
    mod10_recursive,
    validate_creditor_reference,
    validate_iban,
    validate_qr_reference,
)

IBAN = "CH9300762011623852957"
QR_IBAN = "CH4431999123000889012"


def creditor():
    return QRBillAddress(
        name="Zen Studio",
        street="Bahnhofstrasse",
        building_number="10",
        postal_code="8001",
        town="Zürich",
        country="CH",
    )


class TestIban:

    def test_valid_swiss_ibans(self):
        assert validate_iban(IBAN)
        assert validate_iban("CH93 0076 2011 6238 5295 7")
        assert validate_iban(QR_IBAN)

    def test_checksum_and_country_are_enforced(self):
        assert not validate_iban("CH9300762011623852958")
        assert not validate_iban("DE89370400440532013000")
        assert not validate_iban("CH93")

    def test_qr_iban_detection(self):
        assert is_qr_iban(QR_IBAN)
        assert not is_qr_iban(IBAN)


class TestReferences:

    def test_known_qr_reference_validates(self):
        assert validate_qr_reference("210000000003139471430009017")
        assert not validate_qr_reference("210000000003139471430009018")
        assert not validate_qr_reference("12345")

    def test_build_qr_reference_pads_and_appends_check_digit(self):
        reference = build_qr_reference("", 1)

        assert len(reference) == 27
        assert reference == "0" * 25 + "11"
        assert validate_qr_reference(reference)

    def test_build_qr_reference_with_customer_number(self):
        reference = build_qr_reference("123456", 42)

        assert reference.startswith("123456")
        assert reference[6:26] == "42".rjust(20, "0")
        assert int(reference[-1]) == mod10_recursive(reference[:-1])

    def test_qr_reference_overflow_is_rejected(self):
        with pytest.raises(ValidationError):
            build_qr_reference("1" * 25, 123)

    def test_creditor_reference(self):
        assert build_creditor_reference("539007547034") == "RF18539007547034"
        assert validate_creditor_reference("RF18 5390 0754 7034")
        assert not validate_creditor_reference("RF19539007547034")

        built = build_creditor_reference("INV-2026-000001")
        assert built.endswith("INV2026000001")
        assert validate_creditor_reference(built)

    def test_format_qr_reference_groups_digits(self):
        assert format_qr_reference("210000000003139471430009017") == "21 00000 00003 13947 14300 09017"


class TestQRBill:

    def test_payload_layout(self):
        bill = QRBill(
            account=QR_IBAN,
            creditor=creditor(),
            amount_cents=5000,
            currency="CHF",
            debtor=QRBillAddress(name="Lena Keller", postal_code="8002", town="Zürich"),
            reference_type="QRR",
            reference="210000000003139471430009017",
            message="Invoice INV-2026-000001",
        )

        lines = bill.payload().split("\n")

        assert lines[:4] == ["SPC", "0200", "1", QR_IBAN]
        assert lines[4:11] == ["S", "Zen Studio", "Bahnhofstrasse", "10", "8001", "Zürich", "CH"]
        assert lines[11:18] == [""] * 7
        assert lines[18:20] == ["50.00", "CHF"]
        assert lines[20:27] == ["S", "Lena Keller", "", "", "8002", "Zürich", "CH"]
        assert lines[27:29] == ["QRR", "210000000003139471430009017"]
        assert lines[29] == "Invoice INV-2026-000001"
        assert lines[30] == "EPD"

    def test_open_amount_without_debtor(self):
        bill = QRBill(account=IBAN, creditor=creditor(), reference_type="NON")

        lines = bill.payload().split("\n")

        assert lines[18] == ""
        assert lines[20:27] == [""] * 7
        assert lines[27:29] == ["NON", ""]

    def test_qr_iban_requires_qrr_reference(self):
        bill = QRBill(account=QR_IBAN, creditor=creditor(), amount_cents=100, reference_type="NON")

        with pytest.raises(ValidationError) as exc_info:
            bill.validate()

        assert "a QR-IBAN requires a QRR reference" in exc_info.value.details["problems"]

    def test_every_problem_is_reported(self):
        bill = QRBill(
            account="CH0000000000000000000",
            creditor=QRBillAddress(name="", country="Switzerland"),
            amount_cents=0,
            currency="USD",
            reference_type="SCOR",
            reference="RF00",
            message="x" * 141,
        )

        with pytest.raises(ValidationError) as exc_info:
            bill.validate()

        problems = exc_info.value.details["problems"]
        assert "account must be a valid CH or LI IBAN" in problems
        assert "currency must be one of CHF, EUR" in problems
        assert "amount must be between 0.01 and 999999999.99" in problems
        assert "reference is not a valid creditor reference" in problems
        assert "message exceeds 140 characters" in problems
        assert "creditor.name is required" in problems
        assert "creditor.country must be a two letter ISO code" in problems
