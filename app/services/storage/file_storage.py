"""Stored files (uploaded models, generated reports, economic outlooks) on local disk or S3.

``settings.storage_backend`` picks the backend. Paths handed back by
``save_file`` are opaque: pass them unchanged to ``read_file`` and
``delete_file``.
"""

import asyncio
import logging
import re
import uuid
from datetime import UTC
from datetime import datetime
from pathlib import Path

from app.core.config import settings
from app.services.storage import s3_service

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class StorageError(Exception):
    """Raised when a file cannot be stored or read."""


class StoredFileNotFoundError(StorageError):
    """Raised when a stored file no longer exists (for example after retention cleanup)."""


def _use_s3() -> bool:
    return settings.storage_backend == "s3"


def _content_type(name: str) -> str:
    if name.endswith(".docx"):
        return DOCX_MEDIA_TYPE
    if name.endswith((".xlsx", ".xlsm")):
        return XLSX_MEDIA_TYPE
    return "application/octet-stream"


def generate_file_name(base: str, extension: str) -> str:
    """Unique, filesystem-safe name such as ``acme_corp_20250101T120000_1a2b3c4d.docx``."""
    safe = re.sub(r"[^a-z0-9]+", "_", base.lower()).strip("_")[:60] or "file"
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    return f"{safe}_{stamp}_{uuid.uuid4().hex[:8]}.{extension.lstrip('.')}"


def stored_path(directory: str, name: str) -> str:
    """The path (or S3 key) ``save_file`` uses for *name* in *directory*."""
    if _use_s3():
        return f"{directory.strip('/')}/{name}"
    return str(Path(directory) / name)


async def save_file(data: bytes, directory: str, name: str) -> str:
    """Store *data* and return the path (or S3 key) it was saved under.

    Raises:
        StorageError: if the write fails.
    """
    if _use_s3():
        key = stored_path(directory, name)
        ok = await asyncio.to_thread(s3_service.upload_bytes, key, data, _content_type(name))
        if not ok:
            raise StorageError(f"Failed to upload {key} to S3")
        return key

    def _sync() -> str:
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = Path(stored_path(directory, name))
        target.write_bytes(data)
        return str(target)

    try:
        path = await asyncio.to_thread(_sync)
    except OSError as e:
        logger.error("Failed to save %s in %s: %s", name, directory, e)
        raise StorageError(f"Failed to save file {name}: {e}") from e
    logger.info("Saved %s (%d bytes)", path, len(data))
    return path


async def read_file(path: str) -> bytes:
    """Return the stored bytes.

    Raises:
        StoredFileNotFoundError: if nothing is stored under *path*.
        StorageError: on any other read failure.
    """
    if _use_s3():
        data = await asyncio.to_thread(s3_service.download_bytes, path)
        if data is None:
            raise StoredFileNotFoundError(f"File not found: {path}")
        return data

    try:
        return await asyncio.to_thread(Path(path).read_bytes)
    except FileNotFoundError as e:
        raise StoredFileNotFoundError(f"File not found: {path}") from e
    except OSError as e:
        raise StorageError(f"Failed to read file {path}: {e}") from e


async def delete_file(path: str) -> bool:
    """Delete the stored file. Returns False when it was already gone or could not be removed."""
    if _use_s3():
        return await asyncio.to_thread(s3_service.delete_object, path)

    def _sync() -> bool:
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False

    try:
        deleted = await asyncio.to_thread(_sync)
    except OSError as e:
        logger.error("Failed to delete %s: %s", path, e)
        return False
    if deleted:
        logger.info("Deleted %s", path)
    return deleted


async def list_files(directory: str) -> list[tuple[str, datetime]]:
    """(path, last modified) of every file stored in *directory*.

    Raises:
        StorageError: if the listing fails.
    """
    if _use_s3():
        objects = await asyncio.to_thread(s3_service.list_objects, f"{directory.strip('/')}/")
        if objects is None:
            raise StorageError(f"Failed to list {directory} in S3")
        return objects

    def _sync() -> list[tuple[str, datetime]]:
        root = Path(directory)
        if not root.is_dir():
            return []
        return [
            (str(p), datetime.fromtimestamp(p.stat().st_mtime, UTC))
            for p in sorted(root.iterdir())
            if p.is_file()
        ]

    try:
        return await asyncio.to_thread(_sync)
    except OSError as e:
        raise StorageError(f"Failed to list {directory}: {e}") from e
