import asyncio
import io
import logging
import re

from docx import Document
from docx.document import Document as DocxDocument
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.enum.text import WD_COLOR_INDEX
from docx.shared import Pt
from docx.text.paragraph import Paragraph

from app.models.report_models import ReportContent
from app.models.report_models import SectionContent
from app.services.formatting import format_currency
from app.services.formatting import format_percent

# Configure module logger
logger = logging.getLogger(__name__)

# Markdown-style **bold** spans in generated text
BOLD_RE = re.compile(r"\*\*(.+?)\*\*")

REVIEW_TABLE_HEADERS = ("Section", "Type", "Item")
SECTION_TITLES: dict[str, str] = {
    "company_overview": "Company Overview",
    "industry_outlook": "Industry Outlook",
    "economic_outlook": "Economic Outlook",
    "valuation_analysis": "Valuation Analysis",
    "conclusion": "Valuation Conclusion",
}


class DocBuilderError(Exception):
    """Raised when DOCX generation fails"""


def _add_markdown_line(par: Paragraph, line: str) -> None:
    """Append *line* to *par*, turning **bold** spans into bold runs."""
    pos = 0
    for m in BOLD_RE.finditer(line):
        if m.start() > pos:
            par.add_run(line[pos : m.start()])
        par.add_run(m.group(1)).bold = True
        pos = m.end()
    if pos < len(line):
        par.add_run(line[pos:])


def _add_section_text(doc: DocxDocument, section: SectionContent) -> None:
    """Write the section body, one paragraph per blank-line separated block."""
    if section.is_placeholder:
        par = doc.add_paragraph()
        run = par.add_run(f"[{section.content}]")
        run.italic = True
        run.font.highlight_color = WD_COLOR_INDEX.YELLOW
        return

    blocks = [t.strip() for t in str(section.content).split("\n\n") if t.strip()]
    for block in blocks:
        _add_markdown_line(doc.add_paragraph(), block)


def _add_title_page(doc: DocxDocument, content: ReportContent) -> None:
    title = doc.add_heading(content.company_name, level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    for line in (
        content.report_type.display_name,
        f"Valuation Date: {content.valuation_date.strftime('%B %d, %Y').replace(' 0', ' ')}",
        f"DRAFT generated {content.generated_at.strftime('%Y-%m-%d %H:%M UTC')}",
    ):
        par = doc.add_paragraph(line)
        par.alignment = WD_ALIGN_PARAGRAPH.CENTER
    doc.add_page_break()


def _add_valuation_analysis(doc: DocxDocument, content: ReportContent) -> None:
    doc.add_heading(SECTION_TITLES["valuation_analysis"], level=1)
    if not content.valuation_analysis:
        _add_section_text(doc, SectionContent.placeholder("No valuation approaches were analysed"))
        return

    for key, section in content.valuation_analysis.items():
        doc.add_heading(_section_label(key, content), level=2)
        _add_section_text(doc, section)


def _add_conclusion(doc: DocxDocument, content: ReportContent) -> None:
    doc.add_heading(SECTION_TITLES["conclusion"], level=1)
    if content.concluded_value is not None:
        par = doc.add_paragraph()
        par.add_run("Concluded Value: ").bold = True
        par.add_run(format_currency(content.concluded_value))
    if content.dlom is not None:
        par = doc.add_paragraph()
        par.add_run("Discount for Lack of Marketability: ").bold = True
        par.add_run(format_percent(content.dlom))
    _add_section_text(doc, content.conclusion)


def _add_sources(doc: DocxDocument, content: ReportContent) -> None:
    if not content.industry_citations:
        return
    doc.add_heading("Sources", level=2)
    for number, citation in enumerate(content.industry_citations, start=1):
        par = doc.add_paragraph(f"{number}. {citation.source}")
        for run in par.runs:
            run.font.size = Pt(9)


def _section_label(section: str, content: ReportContent) -> str:
    if section in SECTION_TITLES:
        return SECTION_TITLES[section]
    for narrative in content.approach_narratives:
        if narrative.approach_key == section:
            return narrative.approach_name
    return section.replace("_", " ").title()


def _add_review_table(doc: DocxDocument, content: ReportContent) -> None:
    if not content.flags:
        return
    doc.add_page_break()
    doc.add_heading("Items Requiring Review", level=1)
    table = doc.add_table(rows=1, cols=len(REVIEW_TABLE_HEADERS))
    table.style = "Table Grid"
    for cell, header in zip(table.rows[0].cells, REVIEW_TABLE_HEADERS, strict=True):
        cell.text = header
        cell.paragraphs[0].runs[0].bold = True
    for flag in content.flags:
        row = table.add_row().cells
        row[0].text = _section_label(flag.section, content)
        row[1].text = flag.type.upper()
        row[2].text = flag.message


def _build(content: ReportContent) -> bytes:
    doc = Document()
    _add_title_page(doc, content)

    doc.add_heading(SECTION_TITLES["company_overview"], level=1)
    _add_section_text(doc, content.company_overview)

    doc.add_heading(SECTION_TITLES["industry_outlook"], level=1)
    _add_section_text(doc, content.industry_outlook)
    _add_sources(doc, content)

    doc.add_heading(SECTION_TITLES["economic_outlook"], level=1)
    _add_section_text(doc, content.economic_outlook)

    _add_valuation_analysis(doc, content)
    _add_conclusion(doc, content)
    _add_review_table(doc, content)

    bio = io.BytesIO()
    doc.save(bio)
    return bio.getvalue()


async def assemble_document(content: ReportContent, job_id: str = "-") -> bytes:
    """Render *content* into a DOCX document and return its bytes."""

    def _sync() -> bytes:
        logger.info("[%s] Assembling report for %s", job_id, content.company_name)
        try:
            data = _build(content)
        except Exception as err:
            logger.exception("[%s] Report assembly failed", job_id)
            raise DocBuilderError(f"unexpected rendering error: {err}") from err
        logger.info("[%s] Report ready (%d bytes)", job_id, len(data))
        return data

    # run sync work in a thread
    return await asyncio.to_thread(_sync)
