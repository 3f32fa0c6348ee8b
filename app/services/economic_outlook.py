"""Quarterly economic outlook documents.

One ``Q{quarter}_{year}.docx`` per quarter lives in ``settings.economic_outlook_dir``
on the configured storage backend. Only successful reads are cached; storing or
deleting an outlook clears the cache.
"""

import asyncio
import io
import logging
import re
from datetime import UTC
from datetime import date
from datetime import datetime
from pathlib import PurePosixPath

from async_lru import alru_cache
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from pydantic import BaseModel

from app.core.config import settings
from app.services.storage.file_storage import StorageError
from app.services.storage.file_storage import StoredFileNotFoundError
from app.services.storage.file_storage import delete_file
from app.services.storage.file_storage import list_files
from app.services.storage.file_storage import read_file
from app.services.storage.file_storage import save_file
from app.services.storage.file_storage import stored_path

logger = logging.getLogger(__name__)

MIN_YEAR = 2020
MAX_YEAR = 2100
_FILE_NAME_RE = re.compile(r"^Q([1-4])_(\d{4})\.docx$")


class OutlookUnavailableError(Exception):
    """Raised when no readable outlook is stored for a quarter."""


class OutlookExistsError(Exception):
    """Raised when an outlook for the quarter is already stored."""


class EconomicOutlookInfo(BaseModel):
    id: str
    quarter: int
    year: int
    filePath: str
    uploadedAt: datetime


def quarter_for(valuation_date: date) -> tuple[int, int]:
    """Return (quarter, year) of *valuation_date*."""
    return (valuation_date.month - 1) // 3 + 1, valuation_date.year


def outlook_file_name(quarter: int, year: int) -> str:
    return f"Q{quarter}_{year}.docx"


def is_valid_quarter(quarter: int) -> bool:
    return isinstance(quarter, int) and 1 <= quarter <= 4


def is_valid_year(year: int) -> bool:
    return isinstance(year, int) and MIN_YEAR <= year <= MAX_YEAR


def _outlook_dir() -> str:
    return str(settings.economic_outlook_dir)


def _extract_text(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    return "\n\n".join(p.text.strip() for p in doc.paragraphs if p.text.strip())


@alru_cache(maxsize=16)
async def _load_outlook_text(quarter: int, year: int) -> str:
    # Raising keeps a miss out of the cache
    path = stored_path(_outlook_dir(), outlook_file_name(quarter, year))
    try:
        data = await read_file(path)
    except StoredFileNotFoundError as e:
        raise OutlookUnavailableError(f"No economic outlook stored for Q{quarter} {year}") from e

    try:
        text = await asyncio.to_thread(_extract_text, data)
    except (PackageNotFoundError, ValueError, KeyError) as e:
        raise OutlookUnavailableError(f"Economic outlook {path} could not be read: {e}") from e
    if not text:
        raise OutlookUnavailableError(f"Economic outlook {path} is empty")
    return text


async def load_economic_outlook(quarter: int, year: int) -> str | None:
    """Text of the stored outlook document for the quarter, or None when there is none."""
    try:
        return await _load_outlook_text(quarter, year)
    except OutlookUnavailableError as e:
        logger.info("%s", e)
        return None
    except StorageError as e:
        logger.warning("Economic outlook for Q%d %d could not be read: %s", quarter, year, e)
        return None


async def get_outlook_for_date(valuation_date: date) -> str | None:
    quarter, year = quarter_for(valuation_date)
    return await load_economic_outlook(quarter, year)


def clear_outlook_cache() -> None:
    _load_outlook_text.cache_clear()


async def list_outlooks() -> list[EconomicOutlookInfo]:
    """Stored outlooks, newest quarter first.

    Raises:
        StorageError: if the storage backend cannot be listed.
    """
    outlooks = []
    for path, modified in await list_files(_outlook_dir()):
        match = _FILE_NAME_RE.match(PurePosixPath(path.replace("\\", "/")).name)
        if not match:
            continue
        quarter, year = int(match.group(1)), int(match.group(2))
        outlooks.append(
            EconomicOutlookInfo(
                id=f"Q{quarter}_{year}",
                quarter=quarter,
                year=year,
                filePath=path,
                uploadedAt=modified,
            )
        )
    outlooks.sort(key=lambda o: (o.year, o.quarter), reverse=True)
    return outlooks


async def store_outlook(quarter: int, year: int, data: bytes) -> EconomicOutlookInfo:
    """Store the outlook document for a quarter that has none yet.

    Raises:
        OutlookExistsError: if the quarter already has an outlook.
        StorageError: if the write fails.
    """
    if any(o.quarter == quarter and o.year == year for o in await list_outlooks()):
        raise OutlookExistsError(f"An economic outlook for Q{quarter} {year} already exists")

    path = await save_file(data, _outlook_dir(), outlook_file_name(quarter, year))
    clear_outlook_cache()
    logger.info("Economic outlook for Q%d %d stored at %s", quarter, year, path)
    return EconomicOutlookInfo(
        id=f"Q{quarter}_{year}",
        quarter=quarter,
        year=year,
        filePath=path,
        uploadedAt=datetime.now(UTC),
    )


async def delete_outlook(quarter: int, year: int) -> bool:
    """Delete the quarter's outlook. Returns False when none was stored.

    Raises:
        StorageError: if the storage backend cannot be listed.
    """
    if not any(o.quarter == quarter and o.year == year for o in await list_outlooks()):
        return False
    deleted = await delete_file(stored_path(_outlook_dir(), outlook_file_name(quarter, year)))
    clear_outlook_cache()
    if deleted:
        logger.info("Economic outlook for Q%d %d deleted", quarter, year)
    return deleted
