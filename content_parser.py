"""
Content Parser - turns free-form AI narrative into template fields.

Two independent passes over the same text:
  * parse_sections: a line-oriented state machine keyed on recognised headers
  * extract_financials: reserve figures from markdown tables or narrative prose
"""

import logging
import re
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

# =============================================================================
# Coverage buckets
# =============================================================================
DWELLING = "dwelling"
OTHER_STRUCTURES = "otherStructures"
PERSONAL_PROPERTY = "personalProperty"
TOTAL = "total"

COVERAGE_BUCKETS = (DWELLING, OTHER_STRUCTURES, PERSONAL_PROPERTY)
BUCKET_SUFFIXES = ("Limit", "Prior", "Change", "Paid", "Payment", "Remaining")

FINANCIAL_KEYS = frozenset(
    prefix + suffix for prefix in COVERAGE_BUCKETS + (TOTAL,) for suffix in BUCKET_SUFFIXES
)


def financial_key(bucket: str, suffix: str) -> str:
    return f"{bucket}{suffix}"


# =============================================================================
# Header synonyms: normalised header text -> template field
# =============================================================================
HEADER_SYNONYMS: Mapping[str, str] = MappingProxyType({
    # Main sections
    "REMARKS": "remarks",
    "RISK": "risk",
    "ITV": "itv",
    "INSURANCE TO VALUE": "itv",
    "OCCURRENCE": "occurrence",
    "COVERAGE": "coverage",

    # Damage
    "DWELLING DAMAGE": "dwellingDamage",
    "DWELLING": "dwellingDamage",
    "OTHER STRUCTURES DAMAGE": "otherStructuresDamage",
    "OTHER STRUCTURES": "otherStructuresDetails",
    "CONTENTS DAMAGE": "contentsDamage",
    "CONTENTS": "contentsDamage",
    "DAMAGES": "dwellingDamage",

    # ALE / subrogation / salvage
    "ALE": "aleClaim",
    "ALE / FMV": "aleClaim",
    "ALE / FMV CLAIM": "aleClaim",
    "ALE/FMV": "aleClaim",
    "ALE/FMV CLAIM": "aleClaim",
    "SUBROGATION": "subrogation",
    "SUBROGATION / SALVAGE": "subrogation",
    "SUBROGATION/SALVAGE": "subrogation",
    "SALVAGE": "salvageInfo",

    # Work & recommendations
    "WORK TO BE COMPLETED": "workToBeCompleted",
    "RECOMMENDATION": "recommendation",
    "RECOMMENDATIONS": "recommendation",
    "WORK TO BE COMPLETED / RECOMMENDATION": "workToBeCompleted",
    "WORK TO BE COMPLETED/RECOMMENDATION": "workToBeCompleted",
    "ACTION PLAN": "workToBeCompleted",
    "ACTION PLAN / PENDING ITEMS": "workToBeCompleted",
    "ACTION PLAN/PENDING ITEMS": "workToBeCompleted",
    "PENDING ITEMS": "workToBeCompleted",

    # Loss, experts, reports
    "LOSS AND ORIGIN": "lossOriginDetails",
    "LOSS ORIGIN": "lossOriginDetails",
    "EXPERTS": "expertsInfo",
    "OFFICIAL REPORTS": "officialReports",
    "DIARY DATE": "diaryDate",

    # Assignment & contact
    "ASSIGNMENT": "remarks",
    "INSURED": "contactInfo",

    # Ownership
    "OWNERSHIP": "ownershipInfo",
    "OWNERSHIP / INSURABLE INTEREST": "ownershipInfo",
    "OWNERSHIP/INSURABLE INTEREST": "ownershipInfo",
    "INSURABLE INTEREST": "ownershipInfo",

    # Roof & elevations
    "ROOF": "roofDamages",
    "ROOF DAMAGE": "roofDamages",
    "EXTERIOR": "rightElevation",
    "PROPERTY DESCRIPTION": "propertyDescription",
    "FRONT ELEVATION": "rightElevation",
    "RIGHT ELEVATION": "rightElevation",
    "LEFT ELEVATION": "leftElevation",
    "REAR ELEVATION": "rearElevation",
    "INTERIOR": "interiorDamages",
    "INTERIOR DAMAGES": "interiorDamages",
})

SECTION_FIELDS = frozenset(HEADER_SYNONYMS.values())

_SEPARATORS = ("---", "___", "***")
_HEADING_PREFIX_RE = re.compile(r"^#{1,6}\s*")
_PARENTHETICAL_RE = re.compile(r"\s*\([^)]*\)\s*")
_WHITESPACE_RE = re.compile(r"\s+")


# =============================================================================
# Markdown helpers
# =============================================================================
def strip_markdown(text: Optional[str]) -> Optional[str]:
    """Remove markdown formatting from text."""
    if not text:
        return text
    # Remove headers (# ## ### etc)
    text = re.sub(r'^#+\s*', '', text, flags=re.MULTILINE)
    # Remove bold markers (**text** or __text__)
    text = re.sub(r'\*\*([^*]+)\*\*', r'\1', text)
    text = re.sub(r'__([^_]+)__', r'\1', text)
    # Remove italic markers (*text*)
    text = re.sub(r'(?<!\w)\*([^*\n]+)\*(?!\w)', r'\1', text)
    # Remove [GENERATED] prefix if present
    text = re.sub(r'^\[GENERATED\]\s*', '', text)
    return text.strip()


def normalize_header(line: str) -> str:
    """'## **Insurance to Value (ITV):**' -> 'INSURANCE TO VALUE'"""
    text = _HEADING_PREFIX_RE.sub("", line.strip())
    text = text.replace("**", "").replace("__", "").strip("*_ ")
    text = _PARENTHETICAL_RE.sub(" ", text)
    text = text.upper().strip().rstrip(":").strip()
    return _WHITESPACE_RE.sub(" ", text)


def match_header(line: str) -> Optional[str]:
    return HEADER_SYNONYMS.get(normalize_header(line))


def _clean_content_line(line: str) -> str:
    return _HEADING_PREFIX_RE.sub("", line).replace("**", "").replace("__", "")


# =============================================================================
# Section state machine
# =============================================================================
def _flush(sections: Dict[str, str], field: Optional[str], lines: List[str]) -> None:
    if field is None or not lines:
        return
    text = "\n".join(lines).strip()
    # first header to produce content wins
    if text and field not in sections:
        sections[field] = text


def parse_sections(text: Any) -> Dict[str, str]:
    if not isinstance(text, str) or not text.strip():
        return {}

    sections: Dict[str, str] = {}
    current: Optional[str] = None
    buffer: List[str] = []

    for line in text.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed in _SEPARATORS:
            if buffer:
                buffer.append("")
            continue

        field = match_header(trimmed)
        if field is not None:
            _flush(sections, current, buffer)
            current, buffer = field, []
        elif current is not None:
            buffer.append(_clean_content_line(trimmed))

    _flush(sections, current, buffer)
    logger.debug("Parsed sections: %s", sorted(sections))
    return sections


# =============================================================================
# Financial extraction
# =============================================================================
AMOUNT = r"\$[\d,]+(?:\.\d{2})?"

_TABLE_ROW_RE = re.compile(
    r"\|\s*([^|\n]+?)\s*"
    + r"".join(r"\|\s*(" + AMOUNT + r")\s*" for _ in range(4))
    + r"\|"
)
_TABLE_COLUMNS = ("Limit", "Prior", "Change", "Remaining")

_COVERAGE_LABEL = r"(?:dwelling|other\s*structures?|personal\s*property|contents)"
# label, then text up to the first amount without passing another coverage label
_UNTIL_AMOUNT = r"(?:(?!" + _COVERAGE_LABEL + r")[^$\n])*(" + AMOUNT + ")"

_NARRATIVE_PATTERNS = (
    (DWELLING, re.compile(r"dwelling" + _UNTIL_AMOUNT, re.IGNORECASE)),
    (OTHER_STRUCTURES, re.compile(r"other\s*structures?" + _UNTIL_AMOUNT, re.IGNORECASE)),
    (PERSONAL_PROPERTY, re.compile(r"(?:personal\s*property|contents)" + _UNTIL_AMOUNT, re.IGNORECASE)),
)

_TOTAL_PATTERNS = (
    re.compile(r"total\s*(?:estimate|damage|loss|reserve)[^$]*(" + AMOUNT + ")", re.IGNORECASE),
    re.compile(r"estimated\s*(?:total|loss|damage)[^$]*(" + AMOUNT + ")", re.IGNORECASE),
    re.compile(r"reserve[^$]*(" + AMOUNT + ")", re.IGNORECASE),
)


def classify_coverage(label: str) -> Optional[str]:
    """Map a reserve-table row label to its coverage bucket."""
    label = label.lower()
    if "dwelling" in label and "other" not in label:
        return DWELLING
    if "other" in label and "structure" in label:
        return OTHER_STRUCTURES
    if "personal" in label or "property" in label or "content" in label:
        return PERSONAL_PROPERTY
    return None


def extract_financials(text: Any) -> Dict[str, str]:
    """
    Reserve figures by field key, e.g. {"dwellingChange": "$12,500.00"}.

    Per bucket the first strategy that yields a figure wins:
    table row, then labelled narrative amount, then (dwelling only) a
    generic total/estimate/reserve amount.
    """
    if not isinstance(text, str) or not text.strip():
        return {}

    figures: Dict[str, str] = {}
    found = set()
    # start offsets of amounts already assigned to a bucket
    claimed = set()

    for match in _TABLE_ROW_RE.finditer(text):
        bucket = classify_coverage(match.group(1))
        if bucket is None or bucket in found:
            continue
        for index, suffix in enumerate(_TABLE_COLUMNS, start=2):
            figures[financial_key(bucket, suffix)] = match.group(index)
            claimed.add(match.start(index))
        found.add(bucket)

    for bucket, pattern in _NARRATIVE_PATTERNS:
        if bucket in found:
            continue
        match = next((m for m in pattern.finditer(text) if m.start(1) not in claimed), None)
        if match:
            figures[financial_key(bucket, "Change")] = match.group(1)
            claimed.add(match.start(1))
            found.add(bucket)

    if DWELLING not in found:
        for pattern in _TOTAL_PATTERNS:
            match = next((m for m in pattern.finditer(text) if m.start(1) not in claimed), None)
            if match:
                figures[financial_key(DWELLING, "Change")] = match.group(1)
                break

    return figures


def parse_ai_content(text: Any) -> Dict[str, str]:
    """Sections and reserve figures from one block of AI output."""
    if not isinstance(text, str) or not text.strip():
        return {}
    result = parse_sections(text)
    result.update(extract_financials(text))
    return result
