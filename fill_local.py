#!/usr/bin/env python3
"""
Fill a claim report template locally (no S3).

Reads the claim JSON, optional AI narrative and the template .docx from disk,
merges the fields and writes the filled report (and optionally a PDF).

Usage:
  python fill_local.py --template templates/CRU_Property_Report_Template.docx --input claim.json
  python fill_local.py -t template.docx -i claim.json --ai-content narrative.txt --pdf --output CLM-001.docx

The input JSON is either a flat claim object, or an object with "claim",
"ai_content" and "financials" keys.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from errors import ReportEngineError
from report_pipeline import generate_report
from template_engine import load_template


def _load_input(path_arg):
    if path_arg == "-" or path_arg is None:
        return json.load(sys.stdin)
    input_path = Path(path_arg)
    if not input_path.exists():
        print(f"Error: Input JSON not found: {input_path}", file=sys.stderr)
        sys.exit(1)
    with open(input_path, "r", encoding="utf-8") as f:
        return json.load(f)


def main():
    p = argparse.ArgumentParser(description="Fill a claim report template from local JSON and template file.")
    p.add_argument("--template", "-t", required=True, help="Path to .docx template")
    p.add_argument("--input", "-i", default=None, help="Path to claim JSON file, or '-' for stdin")
    p.add_argument("--ai-content", "-a", default=None, help="Path to a text file with the AI-generated narrative")
    p.add_argument("--output", "-o", default=None, help="Output .docx path (default: Report_<claimNumber>.docx)")
    p.add_argument("--pdf", action="store_true", help="Also write a PDF next to the .docx")
    p.add_argument("--strict", action="store_true", help="Fail on placeholder/data mismatches")
    p.add_argument("--verbose", "-v", action="store_true")
    args = p.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    template_path = Path(args.template)
    if not template_path.exists():
        print(f"Error: Template not found: {template_path}", file=sys.stderr)
        sys.exit(1)

    raw = _load_input(args.input)
    if not isinstance(raw, dict):
        print("Error: JSON must be a claim object", file=sys.stderr)
        sys.exit(1)
    if "claim" in raw:
        claim, ai_content, financials = raw.get("claim") or {}, raw.get("ai_content"), raw.get("financials") or {}
    else:
        claim, ai_content, financials = raw, None, {}

    if args.ai_content:
        ai_content = Path(args.ai_content).read_text(encoding="utf-8")

    claim_number = claim.get("claimNumber", "claim")
    output_path = Path(args.output) if args.output else Path(f"Report_{claim_number}.docx")

    try:
        template = load_template(template_path.read_bytes(), template_path.name)
        artifact = generate_report(template, claim, ai_content, financials, strict=args.strict, include_pdf=args.pdf)
    except ReportEngineError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        for line in e.details.get("errors", []):
            print(f"  - {line}", file=sys.stderr)
        sys.exit(2)

    if artifact.docx_bytes:
        output_path.write_bytes(artifact.docx_bytes)
        print(f"Wrote {len(artifact.docx_bytes)} bytes to {output_path.absolute()}")
    if artifact.pdf_bytes:
        pdf_path = output_path.with_suffix(".pdf")
        pdf_path.write_bytes(artifact.pdf_bytes)
        print(f"Wrote {len(artifact.pdf_bytes)} bytes to {pdf_path.absolute()} (tier {artifact.tier_used}: {artifact.tier_name})")
        if artifact.warning:
            print(f"Warning: {artifact.warning}")


if __name__ == "__main__":
    main()
