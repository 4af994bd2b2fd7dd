"""End-to-end report generation: merge fields, fill the template, convert to PDF."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from errors import ReportEngineError
from merge_engine import merge_fields
from pdf_fallback import Tier, render_pdf
from template_engine import Template, render_template

logger = logging.getLogger(__name__)


@dataclass
class ReportArtifact:
    fields: Dict[str, Any]
    docx_bytes: Optional[bytes] = None
    pdf_bytes: Optional[bytes] = None
    tier_used: Optional[int] = None
    tier_name: Optional[str] = None
    warning: Optional[str] = None
    render_error: Optional[str] = None
    failures: List[Tuple[str, str]] = field(default_factory=list)


def generate_report(
    template: Template,
    claim: Optional[Mapping[str, Any]] = None,
    ai_content: Union[str, Mapping[str, Any], None] = None,
    financials: Optional[Mapping[str, Any]] = None,
    strict: bool = False,
    include_pdf: bool = True,
    layer_order: Optional[Sequence[str]] = None,
    tiers: Optional[Sequence[Tier]] = None,
) -> ReportArtifact:
    """
    Build one report.

    Strict-mode validation errors always reach the caller. In lenient mode a
    template that fails to render is only fatal when no PDF was asked for;
    otherwise the PDF tiers that work from the field map take over.
    """
    fields = merge_fields(claim, ai_content, financials, layer_order=layer_order)
    artifact = ReportArtifact(fields=fields)

    try:
        artifact.docx_bytes = render_template(template, fields, strict=strict)
    except ReportEngineError as e:
        if strict or not include_pdf:
            raise
        logger.warning("Template %s failed to render, falling back to generated layouts: %s", template.key, e.message)
        artifact.render_error = e.message

    if include_pdf:
        result = render_pdf(artifact.docx_bytes, fields, tiers=tiers)
        artifact.pdf_bytes = result.pdf_bytes
        artifact.tier_used = result.tier_used
        artifact.tier_name = result.tier_name
        artifact.warning = result.warning
        artifact.failures = result.failures

    return artifact
