"""Tests for the two-stage receipt validator."""

from datetime import date
from decimal import Decimal

import pytest

from pocket.models import ExtractedReceipt, ReceiptItem
from pocket.validation import ReceiptValidator
from tests.helpers import USER, make_expense

TODAY = date(2024, 5, 20)


def receipt(**overrides) -> ExtractedReceipt:
    data = {
        "confidence_score": 0.9,
        "establishment_name": "Supermercado Bom Preço",
        "amount": Decimal("150.00"),
        "receipt_date": date(2024, 5, 18),
    }
    data.update(overrides)
    return ExtractedReceipt(**data)


@pytest.fixture
def validator():
    return ReceiptValidator(max_amount=Decimal("10000"), future_tolerance_days=1)


def issue_types(result) -> set[tuple[str, str]]:
    return {(issue.field, issue.issue_type) for issue in result.issues}


class TestSchemaValidation:
    """Stage 1: required fields and confidence."""

    @pytest.mark.asyncio
    async def test_valid_receipt(self, validator):
        result = await validator.validate(receipt(), today=TODAY)

        assert result.is_valid is True
        assert result.can_proceed_with_review is True
        assert result.issues == []
        assert validator.get_user_friendly_summary(result) == "✅ Tudo certo! Revise os dados abaixo."

    @pytest.mark.asyncio
    async def test_missing_amount_blocks(self, validator):
        result = await validator.validate(receipt(amount=None), today=TODAY)

        assert result.schema_valid is False
        assert result.semantic_valid is False
        assert result.can_proceed_with_review is False
        assert ("amount", "missing") in issue_types(result)
        assert "Corrija os problemas acima" in validator.get_user_friendly_summary(result)

    @pytest.mark.asyncio
    async def test_zero_amount_blocks(self, validator):
        result = await validator.validate(receipt(amount=Decimal("0")), today=TODAY)
        assert ("amount", "invalid_value") in issue_types(result)
        assert result.can_proceed_with_review is False

    @pytest.mark.asyncio
    async def test_missing_name_and_date_are_warnings(self, validator):
        result = await validator.validate(
            receipt(establishment_name=None, receipt_date=None), today=TODAY,
        )

        assert result.schema_valid is True
        assert result.can_proceed_with_review is True
        assert ("establishment_name", "missing") in issue_types(result)
        assert ("receipt_date", "missing") in issue_types(result)
        assert "revise com cuidado" in validator.get_user_friendly_summary(result)

    @pytest.mark.asyncio
    async def test_low_confidence_warning(self, validator):
        result = await validator.validate(receipt(confidence_score=0.4), today=TODAY)
        assert ("confidence_score", "low_confidence") in issue_types(result)
        assert result.has_errors is False

    @pytest.mark.asyncio
    async def test_empty_extraction(self, validator):
        result = await validator.validate(
            ExtractedReceipt(confidence_score=0.1), today=TODAY,
        )
        assert ("extraction", "empty") in issue_types(result)


class TestSemanticValidation:
    """Stage 2: plausibility."""

    @pytest.mark.asyncio
    async def test_future_date(self, validator):
        result = await validator.validate(receipt(receipt_date=date(2024, 5, 25)), today=TODAY)
        assert ("receipt_date", "future_date") in issue_types(result)
        assert result.is_valid is True

    @pytest.mark.asyncio
    async def test_tomorrow_is_tolerated(self, validator):
        """Timezones can put the receipt one day ahead."""
        result = await validator.validate(receipt(receipt_date=date(2024, 5, 21)), today=TODAY)
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_very_old_date(self, validator):
        result = await validator.validate(receipt(receipt_date=date(2021, 1, 1)), today=TODAY)
        assert ("receipt_date", "suspicious_date") in issue_types(result)

    @pytest.mark.asyncio
    async def test_amount_too_high(self, validator):
        result = await validator.validate(receipt(amount=Decimal("25000")), today=TODAY)
        assert ("amount", "suspicious_value") in issue_types(result)

    @pytest.mark.asyncio
    async def test_amount_too_low(self, validator):
        result = await validator.validate(receipt(amount=Decimal("0.10")), today=TODAY)
        assert ("amount", "suspicious_value") in issue_types(result)

    @pytest.mark.asyncio
    async def test_items_do_not_add_up(self, validator):
        extracted = receipt(items=[
            ReceiptItem(name="Arroz", price=Decimal("25.00")),
            ReceiptItem(name="Feijão", price=Decimal("10.00")),
        ])
        result = await validator.validate(extracted, today=TODAY)
        assert ("items", "inconsistent") in issue_types(result)

    @pytest.mark.asyncio
    async def test_items_within_service_charge(self, validator):
        """Differences must exceed both 5% and R$ 1 to be flagged."""
        extracted = receipt(amount=Decimal("10.50"), items=[
            ReceiptItem(name="Café", price=Decimal("10.00")),
        ])
        result = await validator.validate(extracted, today=TODAY)
        assert ("items", "inconsistent") not in issue_types(result)

    @pytest.mark.asyncio
    async def test_garbled_establishment_name(self, validator):
        result = await validator.validate(receipt(establishment_name="12/34 5678-90"), today=TODAY)
        assert ("establishment_name", "suspicious_value") in issue_types(result)


class TestDuplicateDetection:

    @pytest.mark.asyncio
    async def test_existing_expense_flagged(self, expense_storage):
        await expense_storage.save_expense(make_expense(
            150, date(2024, 5, 18), establishment_name="supermercado bom preço",
        ))
        validator = ReceiptValidator(
            expense_storage, max_amount=Decimal("10000"), future_tolerance_days=1,
        )

        result = await validator.validate(receipt(), user_id=USER, today=TODAY)

        assert ("duplicate", "potential_duplicate") in issue_types(result)
        assert result.can_proceed_with_review is True

    @pytest.mark.asyncio
    async def test_no_user_skips_duplicate_check(self, expense_storage):
        await expense_storage.save_expense(make_expense(150, date(2024, 5, 18)))
        validator = ReceiptValidator(
            expense_storage, max_amount=Decimal("10000"), future_tolerance_days=1,
        )

        result = await validator.validate(receipt(), today=TODAY)

        assert result.issues == []
