import io
from datetime import date

import pytest
from docx import Document

from app.core.config import settings
from app.services.economic_outlook import OutlookExistsError
from app.services.economic_outlook import delete_outlook
from app.services.economic_outlook import get_outlook_for_date
from app.services.economic_outlook import is_valid_quarter
from app.services.economic_outlook import is_valid_year
from app.services.economic_outlook import list_outlooks
from app.services.economic_outlook import load_economic_outlook
from app.services.economic_outlook import outlook_file_name
from app.services.economic_outlook import quarter_for
from app.services.economic_outlook import store_outlook


@pytest.fixture
def outlook_dir():
    path = settings.economic_outlook_dir
    path.mkdir(parents=True, exist_ok=True)
    return path


def _write_outlook(directory, name, paragraphs):
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    doc.save(str(directory / name))


@pytest.mark.parametrize(
    "valuation_date, expected",
    [
        (date(2025, 1, 1), (1, 2025)),
        (date(2025, 3, 31), (1, 2025)),
        (date(2025, 4, 1), (2, 2025)),
        (date(2024, 12, 31), (4, 2024)),
    ],
)
def test_quarter_for(valuation_date, expected):
    assert quarter_for(valuation_date) == expected


def test_outlook_file_name():
    assert outlook_file_name(3, 2025) == "Q3_2025.docx"


@pytest.mark.asyncio
async def test_outlook_text_is_read_from_quarter_document(outlook_dir):
    _write_outlook(outlook_dir, "Q1_2025.docx", ["GDP grew 2.1%.", "", "Inflation eased."])

    text = await get_outlook_for_date(date(2025, 2, 14))

    assert text == "GDP grew 2.1%.\n\nInflation eased."


@pytest.mark.asyncio
async def test_missing_outlook_returns_none(outlook_dir):
    assert await get_outlook_for_date(date(2025, 8, 1)) is None


@pytest.mark.asyncio
async def test_unreadable_outlook_returns_none(outlook_dir):
    (outlook_dir / "Q2_2025.docx").write_bytes(b"not a docx")

    assert await load_economic_outlook(2, 2025) is None


@pytest.mark.asyncio
async def test_outlook_is_cached(outlook_dir):
    _write_outlook(outlook_dir, "Q4_2024.docx", ["Original."])
    first = await load_economic_outlook(4, 2024)

    _write_outlook(outlook_dir, "Q4_2024.docx", ["Replaced."])

    assert await load_economic_outlook(4, 2024) == first == "Original."


def _docx_bytes(*paragraphs):
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


@pytest.mark.asyncio
async def test_outlook_added_after_a_miss_is_picked_up(outlook_dir):
    assert await get_outlook_for_date(date(2025, 3, 31)) is None

    _write_outlook(outlook_dir, "Q1_2025.docx", ["Consumer spending held up."])

    assert await get_outlook_for_date(date(2025, 3, 31)) == "Consumer spending held up."


@pytest.mark.asyncio
async def test_store_outlook_is_read_by_next_lookup():
    assert await load_economic_outlook(2, 2025) is None

    info = await store_outlook(2, 2025, _docx_bytes("Rates stayed on hold."))

    assert info.id == "Q2_2025"
    assert info.filePath.endswith("Q2_2025.docx")
    assert await load_economic_outlook(2, 2025) == "Rates stayed on hold."


@pytest.mark.asyncio
async def test_store_outlook_refuses_duplicate_quarter():
    await store_outlook(3, 2025, _docx_bytes("First."))

    with pytest.raises(OutlookExistsError, match="Q3 2025 already exists"):
        await store_outlook(3, 2025, _docx_bytes("Second."))

    assert await load_economic_outlook(3, 2025) == "First."


@pytest.mark.asyncio
async def test_list_outlooks_newest_first_and_ignores_other_files(outlook_dir):
    await store_outlook(4, 2024, _docx_bytes("Q4."))
    await store_outlook(1, 2025, _docx_bytes("Q1."))
    await store_outlook(2, 2024, _docx_bytes("Q2."))
    (outlook_dir / "notes.txt").write_text("scratch")

    outlooks = await list_outlooks()

    assert [o.id for o in outlooks] == ["Q1_2025", "Q4_2024", "Q2_2024"]


@pytest.mark.asyncio
async def test_list_outlooks_without_directory_is_empty():
    assert await list_outlooks() == []


@pytest.mark.asyncio
async def test_delete_outlook_clears_cached_text():
    await store_outlook(1, 2026, _docx_bytes("Outlook."))
    assert await load_economic_outlook(1, 2026) == "Outlook."

    assert await delete_outlook(1, 2026) is True

    assert await load_economic_outlook(1, 2026) is None
    assert await delete_outlook(1, 2026) is False


@pytest.mark.parametrize("quarter, valid", [(0, False), (1, True), (4, True), (5, False)])
def test_is_valid_quarter(quarter, valid):
    assert is_valid_quarter(quarter) is valid


@pytest.mark.parametrize("year, valid", [(2019, False), (2020, True), (2100, True), (2101, False)])
def test_is_valid_year(year, valid):
    assert is_valid_year(year) is valid
