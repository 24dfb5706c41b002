from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from io import BytesIO

from pydantic import ValidationError as SchemaValidationError
from pypdf import PdfReader

from spendtrail.core.currencies import normalize_currency
from spendtrail.core.logging import get_logger, log_event, monotonic_ms
from spendtrail.modules.extraction.ai import (
    ChatCompletionsClient,
    ModelCallError,
    image_messages,
    parse_json_object,
    text_messages,
    truncate_text,
)
from spendtrail.modules.extraction.schemas import ExtractedReceipt, sentinel_record

logger = get_logger(__name__)

SCANNED_PDF_MESSAGE = (
    "PDF appears to be scanned (no text layer); re-upload the receipt as an image."
)


@dataclass(frozen=True)
class ArtifactRef:
    """What the engine is asked to read: exactly one of url / data / text."""

    media_type: str
    url: str | None = None
    data: bytes | None = None
    text: str | None = None

    @classmethod
    def image_url(cls, url: str, media_type: str) -> ArtifactRef:
        return cls(media_type=media_type, url=url)

    @classmethod
    def image_bytes(cls, data: bytes, media_type: str) -> ArtifactRef:
        return cls(media_type=media_type, data=data)

    @classmethod
    def pdf_bytes(cls, data: bytes) -> ArtifactRef:
        return cls(media_type="application/pdf", data=data)

    @classmethod
    def plain_text(cls, text: str) -> ArtifactRef:
        return cls(media_type="text/plain", text=text)


def extract_pdf_text(body: bytes) -> str:
    """Text layer of the first page; receipts are single-page documents."""
    reader = PdfReader(BytesIO(body))
    if not reader.pages:
        return ""
    text = reader.pages[0].extract_text() or ""
    return text.replace("\u202f", " ").replace("\xa0", " ").strip()


class ExtractionEngine:
    """
    Turns a receipt artifact into an ``ExtractedReceipt``.

    Never raises for model or parse problems: any failure yields the sentinel
    record with the reason in ``raw_text``. Retrying is the caller's concern.
    """

    def __init__(
        self,
        client: ChatCompletionsClient,
        *,
        max_chars: int = 12000,
        min_text_chars: int = 50,
    ) -> None:
        self.client = client
        self.max_chars = max_chars
        self.min_text_chars = min_text_chars

    def extract(self, ref: ArtifactRef) -> ExtractedReceipt:
        if ref.text is not None:
            return self.extract_from_text(ref.text)
        if ref.media_type == "application/pdf":
            return self.extract_from_pdf(ref.data or b"")
        if ref.url:
            return self.extract_from_image_url(ref.url)
        if ref.data:
            return self.extract_from_image_bytes(ref.data, media_type=ref.media_type)
        return sentinel_record("Nothing to extract from")

    def extract_from_image_url(self, url: str) -> ExtractedReceipt:
        return self._run(image_messages(url), source="image")

    def extract_from_image_bytes(self, data: bytes, *, media_type: str) -> ExtractedReceipt:
        encoded = base64.b64encode(data).decode("ascii")
        return self._run(image_messages(f"data:{media_type};base64,{encoded}"), source="image")

    def extract_from_text(self, text: str) -> ExtractedReceipt:
        cleaned = truncate_text(text, max_chars=self.max_chars)
        if not cleaned:
            return sentinel_record("Document contains no text")
        return self._run(text_messages(cleaned), source="text")

    def extract_from_pdf(self, body: bytes) -> ExtractedReceipt:
        try:
            text = extract_pdf_text(body)
        except Exception as e:  # noqa: BLE001
            log_event(logger, "extraction.pdf.unreadable", error_type=type(e).__name__)
            return sentinel_record(f"Could not read PDF text layer: {e}")
        if len(text) < self.min_text_chars:
            log_event(logger, "extraction.pdf.scanned", text_chars=len(text))
            return sentinel_record(SCANNED_PDF_MESSAGE)
        return self.extract_from_text(text)

    def _run(self, messages: list[dict], *, source: str) -> ExtractedReceipt:
        start = time.monotonic()
        try:
            content = self.client.complete(messages)
            record = self.parse_response(content)
        except (ModelCallError, ValueError, ArithmeticError, SchemaValidationError) as e:
            log_event(
                logger,
                "extraction.ai.failure",
                source=source,
                model=self.client.model,
                error_type=type(e).__name__,
                error=str(e)[:500],
                duration_ms=monotonic_ms(start),
            )
            return sentinel_record(str(e))
        log_event(
            logger,
            "extraction.ai.success",
            source=source,
            model=self.client.model,
            vendor=record.vendor,
            confidence=record.confidence,
            line_items=len(record.line_items),
            duration_ms=monotonic_ms(start),
        )
        return record

    @staticmethod
    def parse_response(content: str) -> ExtractedReceipt:
        obj = parse_json_object(content)
        currency = obj.get("currency")
        if isinstance(currency, str):
            obj["currency"] = normalize_currency(currency) or currency
        if isinstance(obj.get("total"), str):
            obj["total"] = obj["total"].replace(",", "").strip()
        # raw_text is ours to set; the model doesn't get to fill it.
        obj.pop("raw_text", None)
        return ExtractedReceipt.model_validate(obj)
