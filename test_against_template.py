#!/usr/bin/env python3
"""
Test merge output against the variables extracted from a CRU report template,
then run the full fill + PDF pipeline over it.
"""

import pytest

from errors import PlaceholderMismatch
from extract_template_vars import extract_template_variables
from merge_engine import merge_fields
from pdf_fallback import Tier
from report_pipeline import generate_report
from template_engine import compare_placeholders, extract_tags, render_template

CLAIM = {
    "claimNumber": "CLM-001",
    "insuredName": "Jane Doe",
    "propertyAddress": "12 Oak St, Raleigh, NC",
    "lossType": "Wind/Hail",
    "lossDescription": "hail storm",
    "reportType": "First Report",
}

AI_NARRATIVE = """REMARKS
Inspection completed with the insured present.

DWELLING DAMAGE
Hail impacts to the front slope and gutters.

ROOF
Bruised shingles on the north slope.
"""


def _stub_tiers(calls):
    def native(job):
        calls.append(("native", job.docx_bytes is not None))
        return b"%PDF-stub"
    return [Tier("native", native)]


def test_template_variables_are_all_provided(report_template):
    tags = extract_tags(report_template.markup)
    merged = merge_fields(CLAIM, AI_NARRATIVE)
    missing, unused = compare_placeholders(tags, merged)
    assert missing == []
    # the merged map carries every CRU field; this template uses only some of them
    assert "risk" in unused


def test_strict_render_of_used_fields(report_template, docx_reader):
    tags = extract_tags(report_template.markup)
    merged = merge_fields(CLAIM, AI_NARRATIVE)
    used = {key: value for key, value in merged.items() if key in tags.names}

    paragraphs, tables, header = docx_reader(render_template(report_template, used, strict=True))

    assert header == "Claim CLM-001"
    assert "Client Claim #: CLM-001" in paragraphs
    assert "Loss Location: 12 Oak St, Raleigh, NC" in paragraphs
    assert "This will serve as our First Report on the above captioned assignment." in paragraphs
    assert "Hail impacts to the front slope and gutters." in paragraphs
    assert "ROOF: Bruised shingles on the north slope." in paragraphs
    assert "No roof damage reported." not in paragraphs
    assert paragraphs[-1] == "Photo Report"
    assert not any("{" in p for p in paragraphs)
    assert tables[0][1] == ["Dwelling", "$250,000.00", "$0.00", "$15,000.00", "$15,000.00"]
    assert tables[0][2][0] == "Total"


def test_strict_render_of_full_merge_reports_unused_keys(report_template):
    with pytest.raises(PlaceholderMismatch) as exc:
        render_template(report_template, merge_fields(CLAIM), strict=True)
    assert exc.value.missing == []
    assert "risk" in exc.value.unused


def test_inverted_roof_section_without_roof_damage(report_template, docx_reader):
    paragraphs, _, _ = docx_reader(render_template(report_template, merge_fields(CLAIM)))
    assert "No roof damage reported." in paragraphs
    assert not any(p.startswith("ROOF:") for p in paragraphs)


def test_generate_report_runs_pdf_tiers(report_template):
    calls = []
    artifact = generate_report(report_template, CLAIM, AI_NARRATIVE, tiers=_stub_tiers(calls))
    assert artifact.docx_bytes.startswith(b"PK")
    assert artifact.pdf_bytes == b"%PDF-stub"
    assert artifact.tier_used == 1
    assert artifact.warning is None
    assert calls == [("native", True)]
    assert artifact.fields["hasRoofDamage"] is True


def test_generate_report_docx_only(report_template):
    artifact = generate_report(report_template, CLAIM, include_pdf=False)
    assert artifact.docx_bytes
    assert artifact.pdf_bytes is None
    assert artifact.tier_used is None


def test_generate_report_strict_errors_reach_caller(report_template):
    calls = []
    with pytest.raises(PlaceholderMismatch):
        generate_report(report_template, CLAIM, strict=True, tiers=_stub_tiers(calls))
    assert calls == []


def test_extract_template_variables_from_file(tmp_path, report_template_bytes):
    path = tmp_path / "report.docx"
    path.write_bytes(report_template_bytes)
    names = extract_template_variables(str(path))
    assert {"claimNumber", "attachmentName", "hasRoofDamage", "totalRemaining"} <= names
    assert extract_template_variables(str(tmp_path / "missing.docx")) == set()


def test_fill_local_cli(tmp_path, monkeypatch, report_template_bytes, docx_reader):
    import json

    import fill_local

    template_path = tmp_path / "template.docx"
    template_path.write_bytes(report_template_bytes)
    input_path = tmp_path / "claim.json"
    input_path.write_text(json.dumps({"claim": CLAIM, "ai_content": AI_NARRATIVE}), encoding="utf-8")
    output_path = tmp_path / "out.docx"

    monkeypatch.setattr("sys.argv", ["fill_local.py", "-t", str(template_path), "-i", str(input_path), "-o", str(output_path)])
    fill_local.main()
    paragraphs, _, _ = docx_reader(output_path.read_bytes())
    assert "ROOF: Bruised shingles on the north slope." in paragraphs

    monkeypatch.setattr("sys.argv", ["fill_local.py", "-t", str(template_path), "-i", str(input_path), "--strict"])
    with pytest.raises(SystemExit) as exc:
        fill_local.main()
    assert exc.value.code == 2
