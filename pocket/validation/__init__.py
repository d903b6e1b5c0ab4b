"""Receipt validation package."""

from pocket.validation.validator import ReceiptValidator

__all__ = ["ReceiptValidator"]
