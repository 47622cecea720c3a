from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import time
from pathlib import Path
from typing import Callable, TypeVar

from minio import Minio

from savepast.core.config import settings

log = logging.getLogger("object_store")

# Result field carrying a base64 artifact -> filename it is stored under.
BINARY_RESULT_FIELDS: dict[str, str] = {
    "modelBase64": "model.glb",
    "colorizedImageBase64": "colorized.png",
}


def put_text(*, object_key: str, text: str, content_type: str = "text/plain; charset=utf-8") -> str:
    return put_bytes(object_key=object_key, data=text.encode("utf-8"), content_type=content_type)


def put_bytes(*, object_key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
    """Write bytes into object store. Best-effort.

    Primary backend: MinIO.
    Fallback backend (offline/tests): local filesystem directory.
    """

    def _op() -> str:
        c = _client()
        if not c.bucket_exists(settings.MINIO_BUCKET):
            c.make_bucket(settings.MINIO_BUCKET)
        c.put_object(
            settings.MINIO_BUCKET,
            object_key,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        return object_key

    try:
        return _with_retry(_op, attempts=2)
    except Exception as e:
        log.warning("MinIO unavailable (%s); writing %s locally", type(e).__name__, object_key)
        _put_local(object_key=object_key, data=data)
        return object_key


def get_bytes(*, object_key: str) -> bytes | None:
    """Read bytes from object store. Returns None if object is not available."""

    def _op() -> bytes:
        c = _client()
        res = c.get_object(settings.MINIO_BUCKET, object_key)
        try:
            return res.read()
        finally:
            res.close()
            res.release_conn()

    try:
        return _with_retry(_op, attempts=2)
    except Exception:
        return _get_local(object_key=object_key)


def store_operation_result(*, op_id: str, op_type: str, result: dict) -> dict[str, str]:
    """Write a replayed operation's result back to the record store.

    Base64 artifacts are decoded into their own objects and replaced in the JSON
    by their object key. Returns {name: object_key}.
    """

    base = f"operations/{op_id}"
    keys: dict[str, str] = {}
    doc = dict(result or {})

    for field, filename in BINARY_RESULT_FIELDS.items():
        raw = doc.get(field)
        if not isinstance(raw, str) or not raw:
            continue
        try:
            data = base64.b64decode(raw.split(",", 1)[-1], validate=True)
        except (binascii.Error, ValueError):
            log.warning("Operation %s: %s is not valid base64; keeping inline", op_id, field)
            continue
        keys[filename] = put_bytes(object_key=f"{base}/{filename}", data=data)
        doc[field] = keys[filename]

    keys["result.json"] = put_text(
        object_key=f"{base}/result.json",
        text=json.dumps({"id": op_id, "type": op_type, "result": doc}, ensure_ascii=False),
        content_type="application/json",
    )
    return keys


T = TypeVar("T")


def _client() -> Minio:
    return Minio(
        endpoint=settings.MINIO_ENDPOINT,
        access_key=settings.MINIO_ACCESS_KEY,
        secret_key=settings.MINIO_SECRET_KEY,
        secure=settings.MINIO_SECURE,
    )


def _local_root() -> Path:
    return Path(settings.LOCAL_OBJECT_STORE_DIR)


def _put_local(*, object_key: str, data: bytes) -> None:
    path = _local_root() / object_key
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _get_local(*, object_key: str) -> bytes | None:
    path = _local_root() / object_key
    try:
        return path.read_bytes()
    except OSError:
        return None


def _with_retry(fn: Callable[[], T], *, attempts: int = 3, sleep_s: float = 0.3) -> T:
    last_exc: Exception | None = None
    for i in range(attempts):
        try:
            return fn()
        except Exception as e:
            last_exc = e
            if i == attempts - 1:
                raise
            time.sleep(sleep_s * (2**i))
    raise last_exc or RuntimeError("minio error")


def minio_ready() -> bool:
    try:
        c = _client()
        _with_retry(lambda: c.bucket_exists(settings.MINIO_BUCKET), attempts=1)
        return True
    except Exception:
        return False
