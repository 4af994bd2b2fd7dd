"""Shared fixtures: .docx templates built on the fly with python-docx."""

from io import BytesIO

import pytest
from docx import Document

from template_engine import load_template


def build_docx(paragraphs=(), table_rows=None, header=None, footer=None, split_runs=()):
    """
    Build a .docx in memory.

    split_runs: paragraphs given as a list of run texts, to mimic Word
    splitting a tag across several runs.
    """
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    for runs in split_runs:
        paragraph = doc.add_paragraph()
        for text in runs:
            paragraph.add_run(text)
    if table_rows:
        table = doc.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for r, row in enumerate(table_rows):
            for c, text in enumerate(row):
                table.cell(r, c).text = text
    if header is not None:
        doc.sections[0].header.paragraphs[0].text = header
    if footer is not None:
        doc.sections[0].footer.paragraphs[0].text = footer
    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def read_docx(data):
    """(body paragraph texts, table rows as lists of cell texts, header text)"""
    doc = Document(BytesIO(data))
    paragraphs = [p.text for p in doc.paragraphs]
    tables = [[[cell.text for cell in row.cells] for row in table.rows] for table in doc.tables]
    header = "\n".join(p.text for p in doc.sections[0].header.paragraphs)
    return paragraphs, tables, header


@pytest.fixture
def make_template():
    def _make(*paragraphs, key="test.docx", **kwargs):
        return load_template(build_docx(paragraphs, **kwargs), key)
    return _make


@pytest.fixture
def docx_reader():
    return read_docx


REPORT_PARAGRAPHS = (
    "{reportDate}",
    "Client Claim #: {claimNumber}",
    "Insured: {insuredName}",
    "Loss Location: {riskAddress}",
    "Cause of Loss: {causeOfLoss}",
    "This will serve as our {reportType} on the above captioned assignment.",
    "REMARKS",
    "{remarks}",
    "DWELLING DAMAGE",
    "{dwellingDamage}",
    "{#hasRoofDamage}",
    "ROOF: {roofDamages}",
    "{/hasRoofDamage}",
    "{^hasRoofDamage}",
    "No roof damage reported.",
    "{/hasRoofDamage}",
    "ATTACHMENTS",
    "{#attachments}",
    "{attachmentName}",
    "{/attachments}",
)

RESERVE_TABLE = [
    ["Coverage", "Limit", "Prior", "Change", "Remaining"],
    ["Dwelling", "{dwellingLimit}", "{dwellingPrior}", "{dwellingChange}", "{dwellingRemaining}"],
    ["Total", "{totalLimit}", "{totalPrior}", "{totalChange}", "{totalRemaining}"],
]


@pytest.fixture
def report_template_bytes():
    return build_docx(REPORT_PARAGRAPHS, table_rows=RESERVE_TABLE, header="Claim {claimNumber}")


@pytest.fixture
def report_template(report_template_bytes):
    return load_template(report_template_bytes, "CRU_Property_Report_Template.docx")
