import re
from datetime import UTC
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from app.core.config import settings
from app.services.storage import file_storage
from app.services.storage.file_storage import StoredFileNotFoundError
from app.services.storage.file_storage import StorageError
from app.services.storage.file_storage import delete_file
from app.services.storage.file_storage import generate_file_name
from app.services.storage.file_storage import list_files
from app.services.storage.file_storage import read_file
from app.services.storage.file_storage import save_file
from app.services.storage.file_storage import stored_path


def test_generate_file_name_is_safe_and_unique():
    first = generate_file_name("Acme Corp, Inc.", "docx")
    second = generate_file_name("Acme Corp, Inc.", ".docx")

    assert re.fullmatch(r"acme_corp_inc_\d{8}T\d{6}_[0-9a-f]{8}\.docx", first)
    assert second.endswith(".docx") and not second.endswith("..docx")
    assert first != second


def test_generate_file_name_falls_back_for_empty_base():
    assert generate_file_name("!!!", "xlsx").startswith("file_")


@pytest.mark.asyncio
async def test_local_save_read_delete(tmp_path):
    path = await save_file(b"content", str(tmp_path / "reports"), "a.docx")

    assert Path(path).exists()
    assert await read_file(path) == b"content"
    assert await delete_file(path) is True
    assert await delete_file(path) is False


@pytest.mark.asyncio
async def test_local_read_missing_file_raises_not_found(tmp_path):
    with pytest.raises(StoredFileNotFoundError):
        await read_file(str(tmp_path / "missing.docx"))


@pytest.mark.asyncio
async def test_local_save_failure_raises_storage_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")

    with pytest.raises(StorageError):
        await save_file(b"content", str(blocker), "a.docx")


@pytest.fixture
def s3(monkeypatch):
    monkeypatch.setattr(settings, "storage_backend", "s3")
    fake = MagicMock()
    monkeypatch.setattr(file_storage, "s3_service", fake)
    return fake


@pytest.mark.asyncio
async def test_s3_save_uses_key_and_content_type(s3):
    s3.upload_bytes.return_value = True

    key = await save_file(b"content", "/uploads/reports/", "a.docx")

    assert key == "uploads/reports/a.docx"
    s3.upload_bytes.assert_called_once_with("uploads/reports/a.docx", b"content", file_storage.DOCX_MEDIA_TYPE)


@pytest.mark.asyncio
async def test_s3_upload_failure_raises(s3):
    s3.upload_bytes.return_value = False

    with pytest.raises(StorageError):
        await save_file(b"content", "uploads/models", "m.xlsx")


@pytest.mark.asyncio
async def test_s3_missing_object_raises_not_found(s3):
    s3.download_bytes.return_value = None

    with pytest.raises(StoredFileNotFoundError):
        await read_file("uploads/reports/a.docx")


@pytest.mark.asyncio
async def test_s3_read_and_delete(s3):
    s3.download_bytes.return_value = b"content"
    s3.delete_object.return_value = True

    assert await read_file("k") == b"content"
    assert await delete_file("k") is True
    s3.delete_object.assert_called_once_with("k")


@pytest.mark.asyncio
async def test_local_list_files(tmp_path):
    directory = str(tmp_path / "outlooks")
    assert await list_files(directory) == []

    saved = await save_file(b"x", directory, "Q1_2025.docx")

    files = await list_files(directory)
    assert [path for path, _ in files] == [saved]
    assert saved == stored_path(directory, "Q1_2025.docx")


@pytest.mark.asyncio
async def test_s3_list_files_uses_directory_prefix(s3):
    modified = datetime(2025, 1, 1, tzinfo=UTC)
    s3.list_objects.return_value = [("uploads/outlooks/Q1_2025.docx", modified)]

    assert await list_files("uploads/outlooks") == [("uploads/outlooks/Q1_2025.docx", modified)]
    s3.list_objects.assert_called_once_with("uploads/outlooks/")
    assert stored_path("/uploads/outlooks/", "Q1_2025.docx") == "uploads/outlooks/Q1_2025.docx"


@pytest.mark.asyncio
async def test_s3_list_failure_raises(s3):
    s3.list_objects.return_value = None

    with pytest.raises(StorageError):
        await list_files("uploads/outlooks")
