"""Defines constants and checks for valuation model and economic outlook uploads."""

import asyncio
import logging
from pathlib import Path

import magic
from fastapi import HTTPException

logger = logging.getLogger(__name__)

# Allowed file extensions and size limits
ALLOWED_EXTENSIONS: set[str] = {".xlsx", ".xlsm"}
MAX_FILE_SIZE: int = 25 * 1024 * 1024  # 25 MB per model
MAX_OUTLOOK_SIZE: int = 50 * 1024 * 1024

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLSM_MIME = "application/vnd.ms-excel.sheet.macroEnabled.12"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# MIME types accepted per extension. libmagic reports some workbooks as a
# plain zip archive depending on the order of the archive members.
MIME_MAPPING: dict[str, set[str]] = {
    ".xlsx": {XLSX_MIME, "application/zip"},
    ".xlsm": {XLSM_MIME, XLSX_MIME, "application/zip"},
}
DOCX_MIMES: set[str] = {DOCX_MIME, "application/zip"}


async def validate_model_upload(filename: str | None, content: bytes) -> str:
    """Check an uploaded workbook and return its lower-cased extension.

    Raises:
        HTTPException: 400 for a wrong type or empty file, 413 when too large,
            500 when the content type cannot be detected.
    """
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        logger.warning("Rejected model upload with extension %r", ext)
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {ext or 'none'}. Upload an .xlsx or .xlsm workbook.")
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(status_code=413, detail=f"File exceeds {MAX_FILE_SIZE // (1024 * 1024)} MB limit")

    try:
        mime = await asyncio.to_thread(magic.from_buffer, content, mime=True)
    except Exception as mime_err:
        logger.error("Failed to detect MIME type for %s: %s", filename, mime_err)
        raise HTTPException(status_code=500, detail="Failed to analyse the uploaded file") from mime_err

    if mime not in MIME_MAPPING[ext]:
        logger.warning("Rejected model upload %s with content type %s", filename, mime)
        raise HTTPException(status_code=400, detail="Uploaded file is not a valid Excel workbook")
    logger.debug("Model upload %s validated (%d bytes, MIME: %s)", filename, len(content), mime)
    return ext


async def validate_outlook_upload(filename: str | None, content: bytes) -> None:
    """Check an uploaded economic outlook document (.docx only).

    Raises:
        HTTPException: 400 for a wrong type or empty file, 413 when too large,
            500 when the content type cannot be detected.
    """
    ext = Path(filename or "").suffix.lower()
    if ext != ".docx":
        raise HTTPException(status_code=400, detail="Invalid file type. Only .docx files are allowed")
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > MAX_OUTLOOK_SIZE:
        raise HTTPException(status_code=413, detail=f"File exceeds {MAX_OUTLOOK_SIZE // (1024 * 1024)} MB limit")

    try:
        mime = await asyncio.to_thread(magic.from_buffer, content, mime=True)
    except Exception as mime_err:
        logger.error("Failed to detect MIME type for %s: %s", filename, mime_err)
        raise HTTPException(status_code=500, detail="Failed to analyse the uploaded file") from mime_err

    if mime not in DOCX_MIMES:
        logger.warning("Rejected outlook upload %s with content type %s", filename, mime)
        raise HTTPException(status_code=400, detail="Uploaded file is not a valid Word document")
