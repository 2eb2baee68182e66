"""offload.py — Oversized-payload offload to S3 and rehydration.

A body whose JSON encoding reaches PAYLOAD_SIZE_THRESHOLD bytes is written to
the offload bucket and replaced by a reference:

    {"contentS3Path": "lambda-payloads/2026/10/19/K3J9QZ1ABC.json", "id": "..."}

where any declared fixed properties stay inline next to the reference. The
receiving side swaps the reference back for the stored content. When no
bucket is configured offloading is skipped and bodies travel inline.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
import secrets
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from lambda_relay import aws_clients, config

logger = logging.getLogger(__name__)

BLOB_REF_KEY = "contentS3Path"
ERROR_KEY = "error"


class BlobStore(Protocol):
    enabled: bool

    def put(self, key: str, data: bytes) -> str: ...

    def get(self, key: str) -> bytes: ...


class S3BlobStore:
    """Blob store backed by the configured offload bucket."""

    def __init__(self, bucket: Optional[str] = None, s3_client=None) -> None:
        self._bucket = bucket
        self._s3 = s3_client

    @property
    def bucket(self) -> str:
        return self._bucket if self._bucket is not None else config.S3_BUCKET

    @property
    def enabled(self) -> bool:
        return bool(self.bucket)

    @property
    def s3(self):
        if self._s3 is None:
            self._s3 = aws_clients._get_s3()
        return self._s3

    def put(self, key: str, data: bytes) -> str:
        self.s3.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType="application/json",
        )
        return key

    def get(self, key: str) -> bytes:
        resp = self.s3.get_object(Bucket=self.bucket, Key=key)
        return resp["Body"].read()


# ---------------------------------------------------------------------------
# Size measurement and keys
# ---------------------------------------------------------------------------


def dumps(value: Any) -> str:
    """Compact JSON used both to measure bodies and to put them on the wire."""
    return json.dumps(value, separators=(",", ":"), default=str)


def _encode(body: Any) -> bytes:
    return dumps(body).encode("utf-8")


def payload_size(body: Any) -> int:
    return len(_encode(body))


def exceeds_threshold(body: Any, threshold: Optional[int] = None) -> bool:
    limit = threshold if threshold is not None else config.PAYLOAD_SIZE_THRESHOLD
    return payload_size(body) >= limit


def _blob_id() -> str:
    return "".join(secrets.choice(config.BLOB_ID_ALPHABET) for _ in range(config.BLOB_ID_LENGTH))


def build_blob_key(prefix: str, now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    return f"{prefix}/{now.year}/{now.month}/{now.day}/{_blob_id()}.json"


def is_offloaded(body: Any) -> bool:
    return isinstance(body, dict) and bool(body.get(BLOB_REF_KEY))


def _pick(data: Any, fields: Sequence[str]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    return {name: data[name] for name in fields if name in data}


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


async def store_body(
    prefix: str,
    data: Any,
    fixed_properties: Sequence[str] = (),
    store: Optional[BlobStore] = None,
    clock: Optional[Callable[[], dt.datetime]] = None,
) -> Any:
    """Write ``data`` to the blob store unconditionally and return its reference.

    Returns ``data`` untouched when the store is not configured.
    """
    store = store or S3BlobStore()
    if not store.enabled:
        return data

    key = build_blob_key(prefix, clock() if clock else None)
    encoded = _encode(data)
    await asyncio.to_thread(store.put, key, encoded)
    logger.info("[INFO] Offloaded %d bytes payload to %s", len(encoded), key)

    return {BLOB_REF_KEY: key, **_pick(data, fixed_properties)}


async def offload_body(
    prefix: str,
    data: Any,
    fixed_properties: Sequence[str] = (),
    store: Optional[BlobStore] = None,
    threshold: Optional[int] = None,
) -> Any:
    """Replace ``data`` by a blob reference only when it reaches the size threshold."""
    if data is None or not exceeds_threshold(data, threshold):
        return data
    return await store_body(prefix, data, fixed_properties, store)


async def fetch_body(key: str, store: Optional[BlobStore] = None) -> Any:
    store = store or S3BlobStore()
    raw = await asyncio.to_thread(store.get, key)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    return json.loads(raw)


async def rehydrate_body(body: Any, store: Optional[BlobStore] = None) -> Any:
    """Swap an offloaded reference for its content; any other body is returned as is.

    An ``error`` sibling of the reference is carried over onto the content.
    """
    if not is_offloaded(body):
        return body

    content = await fetch_body(body[BLOB_REF_KEY], store)
    if ERROR_KEY in body and isinstance(content, dict):
        content = {**content, ERROR_KEY: body[ERROR_KEY]}
    return content
