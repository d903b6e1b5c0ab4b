"""OCR services package."""

from pocket.services.ocr.mindee_service import (
    ExtractionFailedError,
    MindeeReceiptService,
    OCRError,
    ReceiptRejectedError,
    suggest_category,
)

__all__ = [
    "ExtractionFailedError",
    "MindeeReceiptService",
    "OCRError",
    "ReceiptRejectedError",
    "suggest_category",
]
