"""
Services package: image hosting, OCR and storage.

Open Finance is imported from `pocket.services.openfinance` directly; it
depends on `pocket.audit`, which itself depends on storage.
"""

from pocket.services.image import (
    CloudinaryImageService,
    ImageError,
    ImageUploadError,
    InvalidImageError,
)
from pocket.services.ocr import (
    ExtractionFailedError,
    MindeeReceiptService,
    OCRError,
    ReceiptRejectedError,
)
from pocket.services.storage import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Image services
    "CloudinaryImageService",
    "ImageError",
    "ImageUploadError",
    "InvalidImageError",
    # OCR services
    "ExtractionFailedError",
    "MindeeReceiptService",
    "OCRError",
    "ReceiptRejectedError",
    # Storage errors
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
]
