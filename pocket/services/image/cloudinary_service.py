"""
Receipt Image Hosting using Cloudinary

DESIGN DECISION: Receipt photos are uploaded to Cloudinary because:
1. Mindee reads the image straight from a URL
2. The user can open the original receipt later from the expense
3. Free tier is enough for personal use

This service handles:
1. A PIL pre-check (format, size, resolution) before anything is uploaded
2. Resizing to a fixed width and re-encoding as JPEG, which keeps uploads
   small and OCR fast
3. Uploading to Cloudinary and returning the secure URL

CRITICAL: We do NOT send images we already know are unreadable.
The user is asked to retake the photo instead.
"""

import hashlib
from io import BytesIO
from typing import Optional
from uuid import UUID

import cloudinary
import cloudinary.uploader
import structlog
from PIL import Image, UnidentifiedImageError
from tenacity import retry, stop_after_attempt, wait_exponential

from pocket.config import get_settings

logger = structlog.get_logger()

JPEG_QUALITY = 80
MIN_DIMENSION = 300


class ImageError(Exception):
    """Base exception for receipt image errors."""
    pass


class InvalidImageError(ImageError):
    """Image cannot be used (wrong format, too big, too small)."""

    def __init__(self, issues: list[str]):
        self.issues = issues
        super().__init__("; ".join(issues))


class ImageUploadError(ImageError):
    """Failed to upload image to Cloudinary."""
    pass


def check_image(
    image_bytes: bytes,
    supported_formats: list[str],
    max_size_bytes: int,
) -> list[str]:
    """
    Return the reasons an image can't be used; empty when it's fine.
    """
    issues = []

    if len(image_bytes) > max_size_bytes:
        issues.append(f"Imagem maior que {max_size_bytes // (1024 * 1024)} MB")

    try:
        img = Image.open(BytesIO(image_bytes))
    except (UnidentifiedImageError, OSError):
        return issues + ["Arquivo não é uma imagem válida"]

    fmt = (img.format or "").lower()
    if fmt and fmt not in supported_formats and not (fmt == "jpeg" and "jpg" in supported_formats):
        issues.append(f"Formato {fmt} não suportado")

    if min(img.size) < MIN_DIMENSION:
        issues.append(
            f"Resolução muito baixa ({img.size[0]}x{img.size[1]}), "
            f"mínimo {MIN_DIMENSION}px no menor lado"
        )

    return issues


def resize_for_ocr(image_bytes: bytes, width: int) -> bytes:
    """Resize to `width` (never upscale) and re-encode as JPEG."""
    img = Image.open(BytesIO(image_bytes))
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    if img.width > width:
        height = round(img.height * width / img.width)
        img = img.resize((width, height), Image.LANCZOS)

    out = BytesIO()
    img.save(out, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    return out.getvalue()


class CloudinaryImageService:
    """
    Uploads receipt photos.

    Flow:
    1. Receive raw image bytes
    2. Pre-check with PIL, raise InvalidImageError if unusable
    3. Resize and re-encode
    4. Upload to Cloudinary, return the secure URL
    """

    def __init__(self):
        self._settings = get_settings().cloudinary
        self._app_settings = get_settings().app
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _generate_public_id(self, upload_id: UUID, filename: str) -> str:
        """Format: {upload_id}_{filename_hash}, inside the configured folder."""
        filename_hash = hashlib.md5(filename.encode()).hexdigest()[:8]
        return f"{upload_id}_{filename_hash}"

    def validate(self, image_bytes: bytes) -> None:
        """Raise InvalidImageError if the photo can't be used."""
        issues = check_image(
            image_bytes,
            self._app_settings.supported_formats_list,
            self._app_settings.max_upload_size_bytes,
        )
        if issues:
            raise InvalidImageError(issues)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _upload(self, data: bytes, public_id: str) -> dict:
        return cloudinary.uploader.upload(
            data,
            public_id=public_id,
            folder=self._settings.folder,
            resource_type="image",
        )

    async def upload_receipt(
        self,
        image_bytes: bytes,
        upload_id: UUID,
        filename: Optional[str] = None,
    ) -> str:
        """
        Validate, resize and upload a receipt photo.

        Returns:
            The secure URL of the uploaded image

        Raises:
            InvalidImageError: If the image fails the pre-check
            ImageUploadError: If upload fails
        """
        self.validate(image_bytes)
        self._configure()

        try:
            data = resize_for_ocr(image_bytes, self._app_settings.receipt_image_width)
            result = self._upload(data, self._generate_public_id(upload_id, filename or "receipt"))
        except Exception as e:
            logger.error("receipt_upload_failed", upload_id=str(upload_id), error=str(e))
            raise ImageUploadError(f"Cloudinary error: {e}")

        url = result.get("secure_url") or result.get("url")
        if not url:
            raise ImageUploadError("No URL returned from Cloudinary")

        logger.info("receipt_uploaded", upload_id=str(upload_id), bytes=len(data))
        return url
