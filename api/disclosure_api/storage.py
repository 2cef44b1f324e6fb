import io
import logging
from datetime import datetime

from minio import Minio
from .config import (
    MINIO_ENDPOINT,
    MINIO_ACCESS_KEY,
    MINIO_SECRET_KEY,
    MINIO_BUCKET,
    MINIO_SECURE,
    FILES_BASE_URL,
)

logger = logging.getLogger(__name__)

_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=MINIO_SECURE,
)
_bucket_checked = False

def ensure_bucket():
    global _bucket_checked
    if _bucket_checked:
        return
    if not _client.bucket_exists(MINIO_BUCKET):
        logger.info("creating bucket %s", MINIO_BUCKET)
        _client.make_bucket(MINIO_BUCKET)
    _bucket_checked = True

def disclosure_pdf_key(disclosure_id: int, stamp: datetime) -> str:
    # one object per render; older renders stay addressable by their url
    return f"disclosures/{disclosure_id}/disclosure-{disclosure_id}-{stamp:%Y%m%d%H%M%S%f}.pdf"

def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    _client.put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)

def get_bytes(key: str) -> bytes:
    resp = _client.get_object(MINIO_BUCKET, key)
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()

def public_url(key: str) -> str:
    return f"{FILES_BASE_URL.rstrip('/')}/{key}"
