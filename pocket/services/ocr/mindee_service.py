"""
OCR Service using Mindee

DESIGN DECISION: We use Mindee's receipt model because:
1. Specialized for receipts (Brazilian cupons fiscais included)
2. Returns STRUCTURED data, not just raw text
3. Provides a confidence score per field

This service handles:
1. Sending the uploaded receipt image to Mindee
2. Parsing the structured response into ExtractedReceipt
3. Rejecting images where no receipt field could be read

CRITICAL: The result is a PROPOSAL. It goes through validation and user
confirmation before becoming an Expense.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog
from mindee import Client
from mindee.product import ReceiptV5
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pocket.config import get_settings
from pocket.finance.categories import categorize_by_keywords
from pocket.models import ExpenseCategory, ExtractedReceipt, ReceiptItem, utc_now

logger = structlog.get_logger()

# Below this overall confidence nothing useful was read
REJECT_CONFIDENCE = 0.2

# Mindee's receipt classification -> our categories
MINDEE_CATEGORIES = {
    "food": ExpenseCategory.DINING_OUT,
    "gasoline": ExpenseCategory.TRANSPORT,
    "parking": ExpenseCategory.TRANSPORT,
    "toll": ExpenseCategory.TRANSPORT,
    "transport": ExpenseCategory.TRANSPORT,
    "accommodation": ExpenseCategory.LEISURE,
    "telecom": ExpenseCategory.HOUSING,
}


class OCRError(Exception):
    """Base exception for OCR errors."""
    pass


class ReceiptRejectedError(OCRError):
    """The image does not look like a readable receipt."""
    pass


class ExtractionFailedError(OCRError):
    """Failed to extract data from the receipt."""
    pass


def _safe_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return None


def _safe_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
        try:
            return datetime.strptime(str(value), fmt).date()
        except ValueError:
            continue
    return None


def suggest_category(
    establishment_name: Optional[str],
    mindee_category: Optional[str] = None,
) -> ExpenseCategory:
    """
    Category suggestion from the establishment name, then Mindee's own guess.

    This is a SUGGESTION only - the categorizer and the user have the last word.
    """
    if establishment_name:
        result = categorize_by_keywords(establishment_name)
        if result.source == "keywords":
            return result.category
    return MINDEE_CATEGORIES.get((mindee_category or "").lower(), ExpenseCategory.OTHER)


class MindeeReceiptService:
    """
    OCR service using Mindee for receipt extraction.

    IMPORTANT BOUNDARIES:
    1. This service ONLY extracts data - it does NOT validate semantically
    2. This service REJECTS unreadable images loudly
    3. Confidence scores are preserved for downstream validation
    """

    def __init__(self, client: Optional[Client] = None):
        self._app_settings = get_settings().app
        self._client = client

    def _get_client(self) -> Client:
        """Get or create Mindee client."""
        if self._client is None:
            self._client = Client(api_key=get_settings().mindee.api_key)
        return self._client

    def _extract_items(self, line_items) -> list[ReceiptItem]:
        items = []
        for line in line_items or []:
            price = _safe_decimal(getattr(line, "total_amount", None))
            if price is None:
                unit_price = _safe_decimal(getattr(line, "unit_price", None))
                quantity = _safe_decimal(getattr(line, "quantity", None)) or Decimal("1")
                price = unit_price * quantity if unit_price is not None else None
            if price is None or price < 0:
                continue
            quantity = _safe_decimal(getattr(line, "quantity", None))
            items.append(ReceiptItem(
                name=str(getattr(line, "description", None) or "Item")[:200],
                quantity=quantity if quantity and quantity > 0 else Decimal("1"),
                price=price,
            ))
        return items

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(ReceiptRejectedError),
        reraise=True,
    )
    async def extract_receipt(self, image_url: str) -> ExtractedReceipt:
        """
        Extract structured receipt data from an image.

        Args:
            image_url: URL of the uploaded image (Cloudinary)

        Raises:
            ReceiptRejectedError: If no receipt field could be read
            ExtractionFailedError: If Mindee fails
        """
        client = self._get_client()

        try:
            input_doc = client.source_from_url(image_url)
            result = client.parse(ReceiptV5, input_doc)
            prediction = result.document.inference.prediction
        except Exception as e:
            logger.error("mindee_request_failed", image_url=image_url, error=str(e))
            raise ExtractionFailedError(f"Failed to extract receipt data: {e}")

        establishment = getattr(prediction.supplier_name, "value", None)
        amount = _safe_decimal(getattr(prediction.total_amount, "value", None))
        receipt_date = _safe_date(getattr(prediction.date, "value", None))

        confidences = [
            field.confidence
            for field, value in (
                (prediction.supplier_name, establishment),
                (prediction.total_amount, amount),
                (prediction.date, receipt_date),
            )
            if value is not None
        ]
        overall_confidence = sum(confidences) / len(confidences) if confidences else 0.0

        if not confidences or overall_confidence < REJECT_CONFIDENCE:
            raise ReceiptRejectedError(
                "Não parece ser um comprovante legível. "
                "Tire uma foto nítida do cupom ou nota fiscal."
            )

        mindee_category = getattr(getattr(prediction, "category", None), "value", None)
        items = self._extract_items(getattr(prediction, "line_items", []))

        raw_parts = []
        if establishment:
            raw_parts.append(f"Estabelecimento: {establishment}")
        if receipt_date:
            raw_parts.append(f"Data: {receipt_date.isoformat()}")
        if amount is not None:
            raw_parts.append(f"Total: {amount}")

        extracted = ExtractedReceipt(
            extracted_at=utc_now(),
            confidence_score=min(1.0, max(0.0, float(overall_confidence))),
            establishment_name=establishment[:200] if establishment else None,
            amount=amount,
            receipt_date=receipt_date,
            items=items,
            suggested_category=suggest_category(establishment, mindee_category),
            image_url=image_url,
            raw_text="\n".join(raw_parts) or None,
        )
        logger.info(
            "receipt_extracted",
            extraction_id=str(extracted.extraction_id),
            confidence=extracted.confidence_score,
            items=len(items),
        )
        return extracted

    def should_proceed_with_extraction(
        self,
        extracted: ExtractedReceipt,
    ) -> tuple[bool, str]:
        """
        Determine if extraction quality is good enough to show for review.

        Returns: (should_proceed, message_for_user)
        """
        if extracted.confidence_score < 0.3:
            return False, (
                "❌ Não foi possível ler o comprovante com segurança. "
                "A foto pode estar tremida ou escura. Tente novamente."
            )

        if extracted.amount is None:
            return False, (
                "⚠️ Não encontramos o valor total no comprovante. "
                "Verifique se o total aparece na foto."
            )

        if extracted.confidence_score < self._app_settings.min_ocr_confidence:
            return True, (
                f"⚠️ A leitura teve confiança de {extracted.confidence_score:.0%}. "
                "Revise os dados com atenção."
            )

        return True, "✅ Comprovante lido com sucesso. Revise e confirme."
