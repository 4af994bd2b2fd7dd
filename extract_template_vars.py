#!/usr/bin/env python3
"""
Extract placeholders and sections from a Word template and report nesting defects.
"""

import sys
from pathlib import Path

from errors import ReportEngineError
from template_engine import extract_tags, find_section_defects, load_template


def extract_template_variables(template_path: str):
    """Print and return all placeholder and section names of a .docx template."""
    print(f"Loading template: {template_path}")
    try:
        template = load_template(Path(template_path).read_bytes(), Path(template_path).name)
    except (OSError, ReportEngineError) as e:
        print(f"Error: {e}")
        return set()

    tags = extract_tags(template.markup)

    print(f"\nFound {len(tags.placeholders)} placeholders:")
    print("=" * 60)
    for name in sorted(tags.placeholders):
        print(f"  - {name}")

    print(f"\nFound {len(tags.sections)} sections:")
    print("=" * 60)
    for name in sorted(tags.sections):
        print(f"  - {name}")

    defects = find_section_defects(template.markup)
    if defects:
        print(f"\n{len(defects)} section defect(s):")
        for defect in defects:
            print(f"  ! {defect}")

    return set(tags.names)


if __name__ == "__main__":
    template_file = sys.argv[1] if len(sys.argv) > 1 else "templates/CRU_Property_Report_Template.docx"
    extract_template_variables(template_file)
