"""Heuristic extraction of valuation data from an uploaded Excel model.

The workbook is scanned cell by cell: a text label is paired with the first
value to its right on the same row. Nothing here validates the numbers; it only
finds them.
"""

import asyncio
import io
import logging
import re
import zipfile
from datetime import date
from datetime import datetime
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.models.report_models import ApproachData
from app.models.report_models import ParsedModel
from app.services.storage.file_storage import StorageError
from app.services.storage.file_storage import read_file

logger = logging.getLogger(__name__)

_COMPANY_RE = re.compile(r"^(company|company name|subject company|client)\s*:?$", re.I)
_DATE_RE = re.compile(r"valuation\s+date|date\s+of\s+valuation|as\s+of\s+date", re.I)
_CONCLUDED_RE = re.compile(r"concluded.*value|final.*value|fair\s+market\s+value", re.I)
_DLOM_RE = re.compile(r"dlom|discount.*lack.*marketability", re.I)

_APPROACH_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"guideline.*public.*compan|\bgpc\b", re.I), "Guideline Public Company Method"),
    (re.compile(r"guideline.*transaction|\bm&a\b|merger", re.I), "Guideline Transaction Method"),
    (re.compile(r"\bdcf\b|discounted\s+cash", re.I), "Discounted Cash Flow Method"),
    (re.compile(r"\bccf\b|capitalized\s+cash", re.I), "Capitalized Cash Flow Method"),
    (re.compile(r"back-?\s?solve", re.I), "Backsolve Method"),
    (re.compile(r"\bopm\b|option\s+pricing", re.I), "Option Pricing Method"),
    (re.compile(r"asset\s+approach|net\s+asset", re.I), "Asset Approach"),
]

# Labels longer than this are prose, not row headers.
_MAX_LABEL_LENGTH = 80


class ModelParseError(Exception):
    """Raised when the valuation model cannot be opened or read."""


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _first_value_right(row: tuple[Any, ...], index: int) -> Any:
    for value in row[index + 1 :]:
        if value is not None and value != "":
            return value
    return None


def _numbers_right(row: tuple[Any, ...], index: int) -> list[float]:
    return [float(v) for v in row[index + 1 :] if _is_number(v)]


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%B %d, %Y"):
            try:
                return datetime.strptime(value.strip(), fmt).date()
            except ValueError:
                continue
    return None


def _match_approach(label: str) -> str | None:
    for pattern, name in _APPROACH_PATTERNS:
        if pattern.search(label):
            return name
    return None


def _parse_workbook(data: bytes) -> ParsedModel:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ModelParseError(f"Unable to open valuation model: {e}") from e

    result = ParsedModel(sheet_names=list(workbook.sheetnames))
    approaches: dict[str, ApproachData] = {}

    try:
        for sheet in workbook.worksheets:
            for row in sheet.iter_rows(values_only=True):
                for index, cell in enumerate(row):
                    if not isinstance(cell, str) or not cell.strip() or len(cell) > _MAX_LABEL_LENGTH:
                        continue
                    label = cell.strip()

                    if result.company_name is None and _COMPANY_RE.match(label):
                        value = _first_value_right(row, index)
                        if isinstance(value, str) and value.strip():
                            result.company_name = value.strip()
                        continue

                    if result.valuation_date is None and _DATE_RE.search(label):
                        result.valuation_date = _as_date(_first_value_right(row, index))
                        continue

                    if _DLOM_RE.search(label):
                        numbers = _numbers_right(row, index)
                        if numbers and result.dlom is None:
                            result.dlom = numbers[0]
                        continue

                    if result.concluded_value is None and _CONCLUDED_RE.search(label):
                        numbers = [n for n in _numbers_right(row, index) if n > 1000]
                        if numbers:
                            result.concluded_value = numbers[0]
                        continue

                    name = _match_approach(label)
                    if name is None or name in approaches:
                        continue
                    numbers = _numbers_right(row, index)
                    if not numbers:
                        continue
                    values = [n for n in numbers if abs(n) > 1]
                    weights = [n for n in numbers if 0 <= n <= 1]
                    approaches[name] = ApproachData(
                        name=name,
                        indicated_value=values[0] if values else None,
                        weight=weights[0] if weights else None,
                        sheet=sheet.title,
                    )
    except ModelParseError:
        raise
    except Exception as e:
        raise ModelParseError(f"Unable to read valuation model: {e}") from e
    finally:
        workbook.close()

    result.approaches = list(approaches.values())
    if result.company_name is None:
        result.warnings.append("Company name not found in model")
    if result.valuation_date is None:
        result.warnings.append("Valuation date not found in model")
    if not result.approaches:
        result.warnings.append("No valuation approaches found in model")
    if result.concluded_value is None:
        result.warnings.append("Concluded value not found in model")
    return result


async def parse_model(path: str) -> ParsedModel:
    """Read the stored workbook at *path* and extract its valuation data.

    Raises:
        ModelParseError: if the file is missing, not a workbook, or unreadable.
    """
    try:
        data = await read_file(path)
    except StorageError as e:
        raise ModelParseError(f"Valuation model not available: {e}") from e

    parsed = await asyncio.to_thread(_parse_workbook, data)
    logger.info(
        "Parsed model %s: %d approach(es), %d warning(s)",
        path,
        len(parsed.approaches),
        len(parsed.warnings),
    )
    return parsed
