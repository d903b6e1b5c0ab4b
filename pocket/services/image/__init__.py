"""Receipt image services package."""

from pocket.services.image.cloudinary_service import (
    CloudinaryImageService,
    ImageError,
    ImageUploadError,
    InvalidImageError,
    check_image,
    resize_for_ocr,
)

__all__ = [
    "CloudinaryImageService",
    "ImageError",
    "ImageUploadError",
    "InvalidImageError",
    "check_image",
    "resize_for_ocr",
]
