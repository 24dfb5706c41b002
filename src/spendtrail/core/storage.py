from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from spendtrail.core.config import Settings
from spendtrail.core.logging import get_logger, log_event, log_exception, monotonic_ms
from spendtrail.core.security import create_blob_token

logger = get_logger(__name__)


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int
    content_type: str


class ObjectStorage:
    backend: str = "abstract"

    def put(self, *, key: str, body: bytes, content_type: str) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def delete(self, *, key: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def create_signed_url(self, *, key: str, ttl_seconds: int) -> str:  # pragma: no cover
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    """Filesystem backend; signed URLs point back at ``/api/blobs/{token}``."""

    backend = "local"

    def __init__(self, root: Path, *, base_url: str):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def put(self, *, key: str, body: bytes, content_type: str) -> StoredObject:
        start = time.monotonic()
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except Exception:
            log_exception(
                logger,
                "storage.put.failure",
                backend=self.backend,
                storage_key=key,
                byte_size=len(body),
            )
            raise
        log_event(
            logger,
            "storage.put.success",
            backend=self.backend,
            storage_key=key,
            byte_size=len(body),
            content_type=content_type,
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body), content_type=content_type)

    def get(self, *, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            log_event(logger, "storage.get.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def delete(self, *, key: str) -> None:
        path = self._path(key)
        if not path.exists():
            return
        try:
            path.unlink()
        except Exception:
            log_exception(logger, "storage.delete.failure", backend=self.backend, storage_key=key)
            raise
        log_event(logger, "storage.delete.success", backend=self.backend, storage_key=key)

    def create_signed_url(self, *, key: str, ttl_seconds: int) -> str:
        token = create_blob_token(key=key, ttl_seconds=ttl_seconds)
        return f"{self._base_url}/api/blobs/{token}"


class S3ObjectStorage(ObjectStorage):
    backend = "s3"

    def __init__(self, settings: Settings) -> None:
        # S3-compatible providers report "auto"; boto3 needs a concrete region.
        region = settings.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"

        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=region,
        )
        config = Config(
            s3={"addressing_style": "virtual"},
            retries={"max_attempts": 3, "mode": "adaptive"},
            connect_timeout=30,
            read_timeout=60,
        )
        self._client = session.client(
            "s3", endpoint_url=settings.s3_endpoint_url or None, config=config
        )
        self._bucket = settings.s3_bucket

    def _retry_delay_s(self, attempt: int) -> float:
        # attempt=1 => 0.25s, attempt=2 => 0.5s, attempt=3 => 1.0s
        return min(3.0, 0.25 * (2 ** (attempt - 1)))

    def _should_retry_error(self, error: Exception) -> bool:
        if isinstance(error, ClientError):
            code = (error.response.get("Error") or {}).get("Code")
            return code in {
                "RequestTimeout",
                "Throttling",
                "ThrottlingException",
                "SlowDown",
                "InternalError",
                "ServiceUnavailable",
            }
        return isinstance(error, BotoCoreError)

    def put(self, *, key: str, body: bytes, content_type: str) -> StoredObject:
        start = time.monotonic()
        max_attempts = 4
        for attempt in range(1, max_attempts + 1):
            try:
                self._client.put_object(
                    Bucket=self._bucket, Key=key, Body=body, ContentType=content_type
                )
                break
            except Exception as e:  # noqa: BLE001
                if attempt < max_attempts and self._should_retry_error(e):
                    delay_s = self._retry_delay_s(attempt)
                    log_event(
                        logger,
                        "storage.put.retry",
                        backend=self.backend,
                        storage_key=key,
                        attempt=attempt,
                        delay_s=delay_s,
                        error_type=type(e).__name__,
                    )
                    time.sleep(delay_s)
                    continue
                log_exception(
                    logger,
                    "storage.put.failure",
                    backend=self.backend,
                    storage_key=key,
                    byte_size=len(body),
                    attempt=attempt,
                )
                raise StorageError(f"Could not store object: {key}") from e
        log_event(
            logger,
            "storage.put.success",
            backend=self.backend,
            storage_key=key,
            byte_size=len(body),
            content_type=content_type,
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body), content_type=content_type)

    def get(self, *, key: str) -> bytes:
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
            return resp["Body"].read()
        except Exception as e:  # noqa: BLE001
            log_exception(logger, "storage.get.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Object not found: {key}") from e

    def delete(self, *, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except Exception:
            log_exception(logger, "storage.delete.failure", backend=self.backend, storage_key=key)
            raise
        log_event(logger, "storage.delete.success", backend=self.backend, storage_key=key)

    def create_signed_url(self, *, key: str, ttl_seconds: int) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )


def build_storage(settings: Settings) -> ObjectStorage:
    if settings.storage_backend == "s3":
        return S3ObjectStorage(settings)
    root = settings.local_storage_path
    if not root.is_absolute():
        root = Path(os.getcwd()) / root
    return LocalObjectStorage(root, base_url=settings.base_url)


def diagnose_storage(storage: ObjectStorage, *, write_test: bool = False) -> dict[str, Any]:
    """
    Connectivity check for the configured backend.

    With ``write_test`` a small object is written, read back and deleted.
    """
    result: dict[str, Any] = {"ok": True, "backend": storage.backend}
    if not write_test:
        return result

    key = f"diagnostics/healthz-{time.time_ns()}.txt"
    body = b"ok"
    start = time.monotonic()
    try:
        storage.put(key=key, body=body, content_type="text/plain")
        out = storage.get(key=key)
        storage.delete(key=key)
    except Exception as e:  # noqa: BLE001
        result["ok"] = False
        result["error_type"] = type(e).__name__
        result["error"] = str(e)
        return result

    result["write_test"] = {
        "ok": out == body,
        "key": key,
        "duration_ms": monotonic_ms(start),
    }
    if out != body:
        result["ok"] = False
    return result
