"""
PDF rendering with an ordered fallback chain.

    1. native  - LibreOffice converts the filled .docx
    2. html    - the field map is laid out as HTML and printed by headless Chromium
    3. basic   - fpdf2 writes a plain report from whatever fields exist

Tiers run one after the other; the first that returns bytes wins. Every
tier failure is logged and recorded, never raised, until all have failed.
"""

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from fpdf import FPDF
from fpdf.enums import XPos, YPos
from jinja2 import Environment

import config
from errors import AllTiersExhausted, ConversionFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderJob:
    fields: Mapping[str, Any]
    docx_bytes: Optional[bytes] = None


@dataclass
class RenderResult:
    pdf_bytes: bytes
    tier_used: int
    tier_name: str
    warning: Optional[str] = None
    failures: List[Tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class Tier:
    name: str
    convert: Callable[[RenderJob], bytes]
    warning: Optional[str] = None

    def attempt(self, job: RenderJob) -> Tuple[Optional[bytes], Optional[ConversionFailure]]:
        try:
            pdf_bytes = self.convert(job)
        except ConversionFailure as e:
            return None, e
        except Exception as e:  # any crash advances the chain
            logger.exception("PDF tier %s crashed", self.name)
            return None, ConversionFailure(self.name, f"{type(e).__name__}: {e}")
        if not pdf_bytes:
            return None, ConversionFailure(self.name, "produced no output")
        return pdf_bytes, None


# =============================================================================
# Report layout shared by the html and basic tiers
# =============================================================================
CLAIM_INFO_ROWS = (
    ("Client Claim #:", "claimNumber"),
    ("Insured:", "insuredName"),
    ("Loss Location:", "riskAddress"),
    ("Date of Loss:", "dateOfLoss"),
)

RESERVE_ROWS = (
    ("Dwelling", "dwelling"),
    ("Other Structures", "otherStructures"),
    ("Personal Property", "personalProperty"),
    ("Total", "total"),
)
RESERVE_COLUMNS = (
    ("Limit", "Limit"),
    ("Prior Reserve", "Prior"),
    ("Change +/-", "Change"),
    ("Remaining Reserve", "Remaining"),
)

# (heading, field, flag that must be truthy or None)
NARRATIVE_SECTIONS = (
    ("REMARKS", "remarks", None),
    ("RISK", "risk", None),
    ("ITV (Insurance to Value)", "itv", None),
    ("OCCURRENCE", "occurrence", None),
    ("COVERAGE", "coverage", None),
    ("LOSS AND ORIGIN", "lossOriginDetails", None),
    ("DAMAGES", "dwellingDamage", None),
    ("OTHER STRUCTURES", "otherStructuresDetails", "hasOtherStructures"),
    ("ROOF DAMAGE", "roofDamages", "hasRoofDamage"),
    ("SUBROGATION / SALVAGE", "subrogation", None),
    ("WORK TO BE COMPLETED / RECOMMENDATION", "recommendation", None),
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(_text(item) for item in value)
    return str(value).strip()


def report_sections(fields: Mapping[str, Any]) -> List[Tuple[str, str]]:
    sections = []
    for heading, key, flag in NARRATIVE_SECTIONS:
        if flag and not fields.get(flag):
            continue
        sections.append((heading, _text(fields.get(key))))
    return sections


def reserve_table(fields: Mapping[str, Any]) -> List[Tuple[str, List[str]]]:
    return [
        (label, [_text(fields.get(prefix + suffix)) for _, suffix in RESERVE_COLUMNS])
        for label, prefix in RESERVE_ROWS
    ]


# =============================================================================
# Tier 1: LibreOffice
# =============================================================================
def find_soffice() -> Optional[str]:
    if config.SOFFICE_BINARY:
        return config.SOFFICE_BINARY
    return shutil.which("soffice") or shutil.which("libreoffice")


def convert_with_libreoffice(job: RenderJob) -> bytes:
    if not job.docx_bytes:
        raise ConversionFailure("native", "no filled document to convert")
    binary = find_soffice()
    if not binary:
        raise ConversionFailure("native", "LibreOffice not found")

    timeout = config.SOFFICE_TIMEOUT
    with tempfile.TemporaryDirectory(prefix="claim_report_") as workdir:
        source = Path(workdir) / "report.docx"
        source.write_bytes(job.docx_bytes)
        # per-call user profile
        profile = (Path(workdir) / "profile").as_uri()
        cmd = [
            binary,
            f"-env:UserInstallation={profile}",
            "--headless",
            "--convert-to", "pdf",
            "--outdir", workdir,
            str(source),
        ]
        try:
            completed = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise ConversionFailure("native", f"timed out after {timeout}s") from e
        except OSError as e:
            raise ConversionFailure("native", str(e)) from e

        target = source.with_suffix(".pdf")
        if completed.returncode != 0 or not target.is_file():
            detail = completed.stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise ConversionFailure("native", detail or f"exit code {completed.returncode}")
        return target.read_bytes()


# =============================================================================
# Tier 2: HTML + Chromium
# =============================================================================
REPORT_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<style>
  @page { size: Letter; margin: 0; }
  body { font-family: Arial, sans-serif; font-size: 10pt; line-height: 1.3; color: #000; background: #fff; }
  .date-row { margin-bottom: 20pt; }
  .destination-block { margin: 20pt 0; }
  .claim-info-table { width: 100%; margin-bottom: 20pt; border-collapse: collapse; }
  .claim-info-table td { padding: 2pt 0; vertical-align: top; }
  .label { font-weight: bold; width: 120pt; }
  .section-header { font-weight: bold; font-size: 11pt; margin: 15pt 0 5pt; border-bottom: 1pt solid #000; padding-bottom: 2pt; }
  .estimated-loss-table { width: 100%; border-collapse: collapse; margin: 10pt 0 15pt; }
  .estimated-loss-table th, .estimated-loss-table td { border: 0.5pt solid #000; padding: 4pt; text-align: left; }
  .estimated-loss-table th { background-color: #f2f2f2; }
  .estimated-loss-table tr.total td { font-weight: bold; }
  .narrative { white-space: pre-wrap; margin-bottom: 10pt; text-align: justify; }
  .signature-block { margin-top: 40pt; }
</style>
</head>
<body>
  <div class="date-row">{{ f.reportDate }}</div>
  {% if f.carrierName %}
  <div class="destination-block">{{ f.carrierName }}{% if f.carrierAddress %}<br>{{ f.carrierAddress | replace("\\n", ", ") }}{% endif %}</div>
  {% endif %}
  <table class="claim-info-table">
    {% for label, key in claim_rows %}
    <tr><td class="label">{{ label }}</td><td>{{ f[key] or "N/A" }}</td></tr>
    {% endfor %}
  </table>
  <p>This will serve as our {{ f.reportType or "inspection report" }} on the above captioned assignment.</p>

  <div class="section-header">ESTIMATED LOSS</div>
  <p>The following reserves are suggested for damages observed to date:</p>
  <table class="estimated-loss-table">
    <thead><tr><th>Coverage</th>{% for heading, _ in columns %}<th>{{ heading }}</th>{% endfor %}</tr></thead>
    <tbody>
      {% for label, values in reserves %}
      <tr{% if loop.last %} class="total"{% endif %}><td>{{ label }}</td>{% for value in values %}<td>{{ value }}</td>{% endfor %}</tr>
      {% endfor %}
    </tbody>
  </table>

  {% for heading, text in sections %}
  <div class="section-header">{{ heading }}</div>
  <div class="narrative">{{ text }}</div>
  {% endfor %}

  <div class="signature-block">
    Respectfully submitted,<br><br><br>
    {% if f.adjusterName %}<b>{{ f.adjusterName }}</b>{% endif %}
  </div>
</body>
</html>
"""

_html_env = Environment(autoescape=True)


def build_report_html(fields: Mapping[str, Any]) -> str:
    template = _html_env.from_string(REPORT_HTML)
    return template.render(
        f=dict(fields),
        claim_rows=CLAIM_INFO_ROWS,
        columns=RESERVE_COLUMNS,
        reserves=reserve_table(fields),
        sections=report_sections(fields),
    )


def render_html_with_chromium(job: RenderJob) -> bytes:
    from playwright.sync_api import sync_playwright

    html = build_report_html(job.fields)
    timeout_ms = config.BROWSER_TIMEOUT_MS
    with sync_playwright() as p:
        browser = p.chromium.launch(args=["--no-sandbox", "--disable-setuid-sandbox"], timeout=timeout_ms)
        try:
            page = browser.new_page()
            page.set_default_timeout(timeout_ms)
            page.set_content(html, wait_until="load")
            pdf_bytes = page.pdf(
                format="Letter",
                print_background=True,
                display_header_footer=False,
                margin={"top": "0.75in", "right": "0.75in", "bottom": "0.75in", "left": "0.75in"},
            )
        finally:
            browser.close()
    return pdf_bytes


# =============================================================================
# Tier 3: fpdf2
# =============================================================================
def sanitize_for_pdf(text: Any) -> str:
    """Core fonts are latin-1 only; swap typographic characters for plain ones."""
    if not text:
        return ""
    text = str(text)
    replacements = {
        "\u2013": "-", "\u2014": "--", "\u2018": "'", "\u2019": "'",
        "\u201c": "\"", "\u201d": "\"", "\u2026": "...", "\u2022": "*",
        "\u00a0": " ", "\u200b": "", "\u2010": "-", "\u2011": "-",
        "\u2122": "(TM)",
    }
    for char, replacement in replacements.items():
        text = text.replace(char, replacement)
    return text.encode("latin-1", errors="replace").decode("latin-1")


class BasicReportPDF(FPDF):
    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.cell(0, 10, f"Page {self.page_no()}", align="C")


def render_basic_pdf(job: RenderJob) -> bytes:
    fields = job.fields or {}
    pdf = BasicReportPDF(format="letter")
    pdf.set_auto_page_break(auto=True, margin=20)
    pdf.set_margins(19, 19, 19)
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 14)
    title = _text(fields.get("reportType")) or "Inspection Report"
    pdf.cell(0, 10, sanitize_for_pdf(title), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_font("Helvetica", "", 10)
    pdf.cell(0, 6, sanitize_for_pdf(_text(fields.get("reportDate"))), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    for label, key in CLAIM_INFO_ROWS:
        pdf.set_font("Helvetica", "B", 10)
        pdf.cell(40, 6, label)
        pdf.set_font("Helvetica", "", 10)
        pdf.cell(0, 6, sanitize_for_pdf(_text(fields.get(key)) or "N/A"), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    rows = reserve_table(fields)
    if any(any(values) for _, values in rows):
        pdf.set_font("Helvetica", "B", 11)
        pdf.cell(0, 8, "ESTIMATED LOSS", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        widths = (42, 31, 31, 31, 33)
        pdf.set_font("Helvetica", "B", 9)
        for width, heading in zip(widths, ["Coverage"] + [h for h, _ in RESERVE_COLUMNS]):
            pdf.cell(width, 7, heading, border=1)
        pdf.ln()
        for label, values in rows:
            pdf.set_font("Helvetica", "B" if label == "Total" else "", 9)
            for width, value in zip(widths, [label] + values):
                pdf.cell(width, 7, sanitize_for_pdf(value), border=1)
            pdf.ln()
        pdf.ln(4)

    for heading, text in report_sections(fields):
        if not text:
            continue
        pdf.set_font("Helvetica", "B", 11)
        pdf.cell(0, 8, heading, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.set_font("Helvetica", "", 10)
        pdf.multi_cell(0, 5, sanitize_for_pdf(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(2)

    return bytes(pdf.output())


# =============================================================================
# Orchestrator
# =============================================================================
def default_tiers() -> List[Tier]:
    return [
        Tier("native", convert_with_libreoffice),
        Tier(
            "html",
            render_html_with_chromium,
            "LibreOffice conversion unavailable. Used the high-fidelity HTML generator instead.",
        ),
        Tier(
            "basic",
            render_basic_pdf,
            "All high-fidelity generators failed. Used the basic generator.",
        ),
    ]


def render_pdf(
    docx_bytes: Optional[bytes],
    fields: Mapping[str, Any],
    tiers: Optional[Sequence[Tier]] = None,
) -> RenderResult:
    """Run the tiers in order and return the first PDF produced."""
    job = RenderJob(fields=dict(fields), docx_bytes=docx_bytes)
    failures: List[Tuple[str, str]] = []

    if tiers is None:
        tiers = default_tiers()
    for number, tier in enumerate(tiers, start=1):
        pdf_bytes, error = tier.attempt(job)
        if pdf_bytes is not None:
            warning = None
            if number > 1:
                warning = tier.warning or f"Rendered with fallback tier {tier.name}"
                logger.warning("PDF rendered by tier %d (%s) after %d failure(s)", number, tier.name, len(failures))
            else:
                logger.info("PDF rendered by tier %d (%s)", number, tier.name)
            return RenderResult(pdf_bytes, number, tier.name, warning, failures)
        logger.warning("PDF tier %s failed: %s", tier.name, error.message)
        failures.append((tier.name, error.message))

    raise AllTiersExhausted(failures)
