"""
Claim Report Filler Service - CRU property inspection reports

FastAPI service that merges claim data with AI-generated narrative, fills
{placeholder} Word templates through docxtpl and converts the result to PDF
with a LibreOffice -> Chromium -> fpdf2 fallback chain.

Version: 1.0.0
"""

import logging
import os
import re
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

import config
from content_parser import extract_financials, parse_sections
from errors import (
    AllTiersExhausted,
    MissingValueAtRender,
    PlaceholderMismatch,
    ReportEngineError,
    StorageError,
    StructuralDefect,
    TemplateNotFound,
)
from merge_engine import merge_fields
from report_pipeline import generate_report
from template_engine import extract_tags, find_section_defects
from template_store import get_template, s3_client

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

app = FastAPI(title="Claim Report Filler Service", version=VERSION)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MEDIA_TYPE = "application/pdf"

ERROR_STATUS = (
    (TemplateNotFound, 404),
    (StructuralDefect, 422),
    (PlaceholderMismatch, 422),
    (MissingValueAtRender, 422),
    (AllTiersExhausted, 502),
    (StorageError, 500),
)


# =============================================================================
# Request/Response Models
# =============================================================================
class MergeRequest(BaseModel):
    claim: Dict[str, Any] = {}
    ai_content: Union[str, Dict[str, Any], None] = None  # raw AI text or an already structured map
    financials: Dict[str, Any] = {}
    layer_order: Optional[List[str]] = None


class ReportRequest(MergeRequest):
    template_key: str = config.DEFAULT_TEMPLATE_KEY
    strict: bool = config.STRICT_VALIDATION
    output_filename: Optional[str] = None


class RenderAndUploadRequest(ReportRequest):
    output_key: str


class ParseContentRequest(BaseModel):
    content: str


class HealthResponse(BaseModel):
    status: str
    version: str
    engine: str


# =============================================================================
# Error mapping
# =============================================================================
@app.exception_handler(ReportEngineError)
async def report_engine_error_handler(request: Request, exc: ReportEngineError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    logger.warning("%s %s -> %d %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


# =============================================================================
# Helper Functions
# =============================================================================
def _key_exists(key: str) -> bool:
    try:
        s3_client.head_object(Bucket=config.S3_BUCKET, Key=key)
    except ClientError:
        return False
    except BotoCoreError as e:
        raise StorageError(key, str(e)) from e
    return True


def get_unique_output_key(output_key: str) -> str:
    if not _key_exists(output_key):
        return output_key

    base, ext = os.path.splitext(output_key)
    match = re.match(r'(.+)_(\d+)$', base)
    if match:
        base = match.group(1)
        start = int(match.group(2)) + 1
    else:
        start = 2

    for i in range(start, 1000):
        new_key = f"{base}_{i}{ext}"
        if not _key_exists(new_key):
            return new_key

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    return f"{base}_{timestamp}{ext}"


def upload_to_s3(content: bytes, key: str, content_type: str) -> str:
    try:
        s3_client.put_object(
            Bucket=config.S3_BUCKET,
            Key=key,
            Body=content,
            ContentType=content_type
        )
    except (ClientError, BotoCoreError) as e:
        raise StorageError(key, str(e)) from e
    return f"{config.S3_ENDPOINT}/{config.S3_BUCKET}/{key}"


def report_filename(fields: Dict[str, Any], requested: Optional[str], ext: str) -> str:
    if requested:
        base = os.path.splitext(requested)[0]
    else:
        parts = [fields.get("claimNumber") or "Claim", fields.get("reportType") or "Report"]
        base = "_".join(str(part) for part in parts)
    base = re.sub(r'[^A-Za-z0-9._-]+', '_', base).strip('_') or "Report"
    return f"{base}{ext}"


def _download(content: bytes, media_type: str, filename: str, headers: Optional[Dict[str, str]] = None):
    all_headers = {"Content-Disposition": f"attachment; filename={filename}"}
    all_headers.update(headers or {})
    return StreamingResponse(BytesIO(content), media_type=media_type, headers=all_headers)


def _merge_or_400(request: MergeRequest) -> Dict[str, Any]:
    try:
        return merge_fields(request.claim, request.ai_content, request.financials, layer_order=request.layer_order)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _generate(request: ReportRequest, include_pdf: bool):
    template = get_template(request.template_key)
    try:
        return generate_report(
            template,
            request.claim,
            request.ai_content,
            request.financials,
            strict=request.strict,
            include_pdf=include_pdf,
            layer_order=request.layer_order,
        )
    except ValueError as e:
        # bad layer_order
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# API Endpoints
# =============================================================================
@app.get("/health", response_model=HealthResponse)
def health_check():
    return {"status": "ok", "version": VERSION, "engine": "docxtpl"}


@app.get("/template-info")
def get_template_info(template_key: str = config.DEFAULT_TEMPLATE_KEY):
    """Placeholders, sections and nesting defects of a template (useful for debugging)."""
    template = get_template(template_key)
    tags = extract_tags(template.markup)
    return {
        "template_key": template_key,
        "parts": list(template.parts),
        "placeholders": sorted(tags.placeholders),
        "sections": sorted(tags.sections),
        "variable_count": len(tags.names),
        "defects": find_section_defects(template.markup),
    }


@app.post("/parse-content")
def parse_content_endpoint(request: ParseContentRequest):
    """Content Parser output WITHOUT merging. Useful for checking how AI text is sectioned."""
    return {
        "sections": parse_sections(request.content),
        "financials": extract_financials(request.content),
    }


@app.post("/merge-fields")
def merge_fields_endpoint(request: MergeRequest):
    """Merged canonical field map WITHOUT filling a template."""
    return _merge_or_400(request)


@app.post("/fill")
def fill_endpoint(request: ReportRequest):
    """Fill the template and return the .docx as a download."""
    artifact = _generate(request, include_pdf=False)

    filename = report_filename(artifact.fields, request.output_filename, ".docx")
    return _download(artifact.docx_bytes, DOCX_MEDIA_TYPE, filename)


@app.post("/render-report")
def render_report_endpoint(request: ReportRequest):
    """Fill the template and return a PDF. X-Render-Tier names the tier that produced it."""
    artifact = _generate(request, include_pdf=True)

    headers = {"X-Render-Tier": str(artifact.tier_used)}
    if artifact.warning:
        headers["X-Render-Warning"] = artifact.warning
    filename = report_filename(artifact.fields, request.output_filename, ".pdf")
    return _download(artifact.pdf_bytes, PDF_MEDIA_TYPE, filename, headers)


@app.post("/render-and-upload")
def render_and_upload_endpoint(request: RenderAndUploadRequest):
    """Fill, convert and upload the PDF (and the .docx when one was produced) to S3."""
    artifact = _generate(request, include_pdf=True)

    base = os.path.splitext(request.output_key)[0]
    pdf_key = get_unique_output_key(f"{base}.pdf")
    pdf_url = upload_to_s3(artifact.pdf_bytes, pdf_key, PDF_MEDIA_TYPE)

    docx_key = docx_url = None
    if artifact.docx_bytes:
        docx_key = get_unique_output_key(f"{base}.docx")
        docx_url = upload_to_s3(artifact.docx_bytes, docx_key, DOCX_MEDIA_TYPE)

    logger.info("Uploaded report %s (tier %s)", pdf_key, artifact.tier_used)
    return {
        "success": True,
        "output_key": pdf_key,
        "output_url": pdf_url,
        "docx_key": docx_key,
        "docx_url": docx_url,
        "tierUsed": artifact.tier_used,
        "tierName": artifact.tier_name,
        "warning": artifact.warning,
    }


# =============================================================================
# Main
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
