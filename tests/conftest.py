from __future__ import annotations

import os
import shutil
from io import BytesIO
from pathlib import Path

import pytest

# Set env before any spendtrail imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.spendtrail_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("BASE_URL", "http://testserver")
os.environ.setdefault("SECRET_KEY", "test-secret")


class FakeChatClient:
    """Stands in for ``ChatCompletionsClient``; replays queued replies."""

    model = "fake-model"
    available = True

    def __init__(self, replies: list | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[list[dict]] = []

    def queue(self, *replies) -> None:
        self.replies.extend(replies)

    def complete(self, messages: list[dict], *, max_tokens: int = 1000) -> str:
        self.calls.append(messages)
        if not self.replies:
            raise AssertionError("unexpected model call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self) -> None:
        pass


AMAZON_REPLY = """```json
{
  "vendor": "Amazon",
  "date": "2024-03-14",
  "total": 97.41,
  "currency": "USD",
  "line_items": [
    {"description": "USB-C hub", "amount": 54.99},
    {"description": "HDMI cable", "amount": 34.50}
  ],
  "confidence": 0.93
}
```"""


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import spendtrail.models  # noqa: F401
    from spendtrail.core.db import engine
    from spendtrail.core.models import Base

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture
def storage_root() -> Path:
    return Path(os.environ["LOCAL_STORAGE_PATH"]).resolve()


@pytest.fixture
def storage(storage_root: Path):
    from spendtrail.core.storage import LocalObjectStorage

    return LocalObjectStorage(storage_root, base_url=os.environ["BASE_URL"])


@pytest.fixture
def fake_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def orchestrator(storage, fake_client, sleeps):
    from spendtrail.modules.extraction.engine import ExtractionEngine
    from spendtrail.modules.extraction.normalizer import FormatNormalizer
    from spendtrail.modules.ingestion.service import IngestionOrchestrator, RetryPolicy

    return IngestionOrchestrator(
        storage=storage,
        normalizer=FormatNormalizer(max_bytes=10 * 1024 * 1024),
        engine=ExtractionEngine(fake_client),
        retry_policy=RetryPolicy(max_attempts=3, delay_seconds=1.0),
        sleep=sleeps.append,
    )


@pytest.fixture
def session():
    from spendtrail.core.db import SessionLocal

    with SessionLocal() as s:
        yield s


@pytest.fixture
def make_user(session):
    from spendtrail.modules.identity.models import UserRole
    from spendtrail.modules.identity.service import create_user

    def _make(email: str = "employee@example.com", role: UserRole = UserRole.EMPLOYEE):
        return create_user(session, email=email, password="pw", role=role, full_name="Test")

    return _make


def _image_bytes(fmt: str) -> bytes:
    from PIL import Image

    buf = BytesIO()
    Image.new("RGB", (64, 96), color=(240, 240, 240)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return _image_bytes("JPEG")


@pytest.fixture
def png_bytes() -> bytes:
    return _image_bytes("PNG")


@pytest.fixture
def make_pdf():
    import fitz

    def _make(text: str = "") -> bytes:
        doc = fitz.open()
        page = doc.new_page(width=612, height=792)
        if text:
            page.insert_text((72, 72), text, fontsize=11)
        body = doc.tobytes()
        doc.close()
        return body

    return _make


@pytest.fixture
def extracted_receipt(session, make_user, orchestrator, fake_client, jpeg_bytes):
    """An employee's receipt that has been uploaded and extracted (Amazon, 97.41 USD)."""
    user = make_user()
    upload = orchestrator.ingest_upload(
        session, user=user, body=jpeg_bytes, content_type="image/jpeg", upload_source="camera"
    )
    fake_client.queue(AMAZON_REPLY)
    outcome = orchestrator.extract_receipt(session, receipt_id=upload.receipt.id, user=user)
    return user, upload.receipt, outcome.expense
