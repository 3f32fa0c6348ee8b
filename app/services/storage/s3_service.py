# app/services/storage/s3_service.py
import io
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_s3_client() -> Any | None:
    """Create the S3 client once; None when credentials or bucket are missing."""
    if not all([settings.aws_access_key_id, settings.aws_secret_access_key, settings.s3_bucket_name, settings.aws_region]):
        logger.error("AWS S3 credentials or bucket name/region not configured. S3 storage is unavailable.")
        return None
    try:
        session = boto3.session.Session(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        client = session.client("s3", config=Config(signature_version="s3v4"))
        logger.info("S3 client initialized for bucket: %s in region: %s", settings.s3_bucket_name, settings.aws_region)
        return client
    except BotoCoreError as e:
        logger.error("Failed to initialize S3 session: %s", e, exc_info=True)
        return None


def upload_bytes(key: str, data: bytes, content_type: str = "application/octet-stream") -> bool:
    """Upload *data* under *key*. Blocking; callers run it in a worker thread."""
    s3 = get_s3_client()
    if s3 is None:
        return False
    try:
        s3.put_object(Bucket=settings.s3_bucket_name, Key=key, Body=data, ContentType=content_type)
        logger.info("Uploaded S3 object: %s (%d bytes)", key, len(data))
        return True
    except ClientError as e:
        logger.error("Error uploading S3 object %s: %s", key, e, exc_info=True)
        return False


def download_bytes(key: str) -> bytes | None:
    """Download an object as bytes; None when it is missing or unreadable."""
    s3 = get_s3_client()
    if s3 is None:
        return None

    buf = io.BytesIO()
    try:
        s3.download_fileobj(settings.s3_bucket_name, key, buf)
        buf.seek(0)
        logger.info("Successfully downloaded S3 object: %s", key)
        return buf.read()
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        if code in ("NoSuchKey", "404"):
            logger.warning("File not found in S3: %s/%s", settings.s3_bucket_name, key)
        else:
            logger.exception("ClientError downloading S3 object %s", key)
        return None


def delete_object(key: str) -> bool:
    s3 = get_s3_client()
    if s3 is None:
        return False
    try:
        s3.delete_object(Bucket=settings.s3_bucket_name, Key=key)
        logger.info("Deleted S3 object: %s", key)
        return True
    except ClientError as e:
        logger.error("Error deleting S3 object %s: %s", key, e)
        return False


def list_objects(prefix: str) -> list[tuple[str, datetime]] | None:
    """(key, last modified) of every object under *prefix*; None when listing fails."""
    s3 = get_s3_client()
    if s3 is None:
        return None
    objects: list[tuple[str, datetime]] = []
    try:
        paginator = s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=settings.s3_bucket_name, Prefix=prefix):
            for obj in page.get("Contents", []):
                # Skip "folder" placeholder objects
                if obj["Key"].endswith("/") and obj.get("Size", 0) == 0:
                    continue
                objects.append((obj["Key"], obj["LastModified"]))
    except ClientError as e:
        logger.error("Error listing S3 prefix %s: %s", prefix, e)
        return None
    return objects
