"""
Upload normalization.

Turns an uploaded buffer into the artifact that gets stored and handed to the
extraction model. Raster images pass through untouched; PDFs are handled per
the configured policy (read text layer, rasterize page 1, or reject).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from io import BytesIO
from typing import Literal

import fitz
from PIL import Image, UnidentifiedImageError

from spendtrail.core.errors import PayloadTooLarge, UnsupportedMediaType, ValidationError
from spendtrail.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)

PdfPolicy = Literal["text", "rasterize", "reject"]

PDF_MEDIA_TYPE = "application/pdf"
PNG_MEDIA_TYPE = "image/png"

IMAGE_MEDIA_TYPES: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

_EXTENSION_MEDIA_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "pdf": PDF_MEDIA_TYPE,
}

PDF_REJECTED_MESSAGE = (
    "PDF receipts are not supported. Please take a screenshot or photo of the receipt "
    "and upload it as a JPEG, PNG or WEBP image."
)


@dataclass(frozen=True)
class NormalizedArtifact:
    body: bytes
    media_type: str
    extension: str
    # True when the artifact is a PDF whose text layer should be read instead of pixels.
    text_bearing: bool = False


def resolve_media_type(content_type: str | None, filename: str | None = None) -> str:
    ctype = (content_type or "").split(";", 1)[0].strip().lower()
    if ctype and ctype != "application/octet-stream":
        return ctype
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].strip().lower()
        return _EXTENSION_MEDIA_TYPES.get(ext, ctype or "application/octet-stream")
    return ctype or "application/octet-stream"


def _looks_like_pdf_bytes(body: bytes) -> bool:
    b = body.lstrip()
    if b.startswith(b"\xef\xbb\xbf"):
        b = b[3:].lstrip()
    return b.startswith(b"%PDF")


def _sniff_image_type(body: bytes) -> str | None:
    if body.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if body.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if len(body) >= 12 and body.startswith(b"RIFF") and body[8:12] == b"WEBP":
        return "image/webp"
    return None


class FormatNormalizer:
    def __init__(
        self,
        *,
        max_bytes: int,
        pdf_policy: PdfPolicy = "text",
        render_scale: float = 2.0,
    ) -> None:
        self.max_bytes = max_bytes
        self.pdf_policy = pdf_policy
        self.render_scale = render_scale

    def validate(self, *, body: bytes, media_type: str) -> None:
        """Cheap checks that must pass before anything is written anywhere."""
        if media_type not in IMAGE_MEDIA_TYPES and media_type != PDF_MEDIA_TYPE:
            raise UnsupportedMediaType(
                f"Invalid file type {media_type!r}. Only JPEG, PNG, WEBP, and PDF are allowed."
            )
        if not body:
            raise ValidationError("The uploaded file is empty.")
        if len(body) > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise PayloadTooLarge(f"File too large. Maximum size is {limit_mb}MB.")

    def normalize(self, *, body: bytes, media_type: str) -> NormalizedArtifact:
        self.validate(body=body, media_type=media_type)
        if media_type == PDF_MEDIA_TYPE:
            return self._normalize_pdf(body)

        sniffed = _sniff_image_type(body)
        declared = "image/jpeg" if media_type == "image/jpg" else media_type
        if sniffed != declared:
            raise ValidationError(
                f"File content does not match its declared type ({media_type})."
            )
        self._verify_image(body)
        return NormalizedArtifact(
            body=body, media_type=declared, extension=IMAGE_MEDIA_TYPES[declared]
        )

    def _verify_image(self, body: bytes) -> None:
        try:
            with Image.open(BytesIO(body)) as image:
                image.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ValidationError("The image file is corrupt or truncated.") from e

    def _normalize_pdf(self, body: bytes) -> NormalizedArtifact:
        if self.pdf_policy == "reject":
            raise UnsupportedMediaType(PDF_REJECTED_MESSAGE)
        if not _looks_like_pdf_bytes(body):
            raise ValidationError("This file looks like a PDF but is missing the %PDF header.")
        if self.pdf_policy == "text":
            return NormalizedArtifact(
                body=body, media_type=PDF_MEDIA_TYPE, extension="pdf", text_bearing=True
            )
        return NormalizedArtifact(
            body=self.rasterize_first_page(body), media_type=PNG_MEDIA_TYPE, extension="png"
        )

    def rasterize_first_page(self, body: bytes) -> bytes:
        start = time.monotonic()
        try:
            with fitz.open(stream=body, filetype="pdf") as doc:
                if doc.page_count < 1:
                    raise ValidationError("The PDF has no pages.")
                matrix = fitz.Matrix(self.render_scale, self.render_scale)
                pixmap = doc.load_page(0).get_pixmap(matrix=matrix, alpha=False)
                png = pixmap.tobytes("png")
                page_count = doc.page_count
        except ValidationError:
            raise
        except Exception as e:  # noqa: BLE001
            raise ValidationError("Could not read the PDF file.") from e
        log_event(
            logger,
            "normalize.pdf.rasterized",
            page_count=page_count,
            scale=self.render_scale,
            byte_size=len(png),
            duration_ms=monotonic_ms(start),
        )
        return png
