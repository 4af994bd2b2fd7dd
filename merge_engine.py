"""
Data Merge Engine - builds the canonical field map for one report.

Layers are applied lowest to highest priority on top of the boilerplate
defaults; a layer only writes keys whose incoming value is non-empty.
After layering: conditional flags, reserve synthesis (when no figures exist)
and the reserve arithmetic pass.
"""

import logging
from dataclasses import dataclass, fields as dataclass_fields
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from config import MERGE_LAYER_ORDER
from content_parser import (
    COVERAGE_BUCKETS,
    DWELLING,
    FINANCIAL_KEYS,
    OTHER_STRUCTURES,
    PERSONAL_PROPERTY,
    SECTION_FIELDS,
    TOTAL,
    financial_key,
    parse_ai_content,
    strip_markdown,
)

logger = logging.getLogger(__name__)

LAYER_NAMES = ("user", "ai", "financial")


# =============================================================================
# Defaults
# =============================================================================
NO_ROOF_DAMAGE = "No visible / related damages were observed to the roof during our inspection."


def _no_elevation_damage(side: str) -> str:
    return f"No visible / related damages were observed to the {side} Elevation during our inspection."


def default_fields(today: Optional[datetime] = None) -> Dict[str, Any]:
    """Boilerplate for every template key. Returns a fresh dict each call."""
    today = today or datetime.now()
    defaults: Dict[str, Any] = {
        # Header & basic info
        "reportDate": today.strftime("%B %d, %Y").replace(" 0", " "),
        "insuredName": "",
        "insuredPhone": "",
        "insuredEmail": "",
        "riskAddress": "",
        "causeOfLoss": "",
        "reportType": "Initial Inspection",
        "dateReceived": "",
        "dateContacted": "",
        "dateInspected": "",
        "propertyDescription": "",

        # Main sections
        "remarks": "",
        "risk": "",
        "itv": "The limit of insurance appears adequate based on the size, construction quality, and occupancy type.",
        "occurrence": "",
        "coverage": (
            "The risk is insured with the above stated limits, policy forms, and deductible. "
            "All aspects pertaining to coverage are submitted for the carrier's review and final disposition."
        ),

        # Damage
        "dwellingDamage": "",
        "otherStructuresDamage": "The insured did not sustain damage to other structures.",
        "otherStructuresDetails": "No other structures were affected.",
        "contentsDamage": "The insured did not sustain damage to contents or personal property.",

        # ALE / subrogation / salvage
        "aleClaim": (
            "The risk did not become uninhabitable. Additional Living Expenses (ALE) / "
            "Fair Market Value (FMV) claims are not anticipated."
        ),
        "subrogation": (
            "Our investigation did not reveal any third-party liability or product defects; "
            "therefore, subrogation potential is not present at this time."
        ),
        "subrogationPotential": "None",
        "subrogationParty": "",
        "subrogationRemarks": "Our investigation did not reveal any third-party liability or product defects.",
        "salvageInfo": (
            "An inspection of the damaged property determined that there is no viable salvage "
            "opportunities associated with this claim."
        ),

        # Work & recommendations
        "workToBeCompleted": "",
        "recommendation": "",
        "lossOriginDetails": "",

        # Roof
        "roofType": "N/A",
        "roofAge": "N/A",
        "roofCondition": "N/A",
        "roofLayers": "N/A",
        "roofPitch": "N/A",
        "roofDripEdge": "N/A",
        "roofDamages": NO_ROOF_DAMAGE,

        # Elevations
        "rightElevation": _no_elevation_damage("Right"),
        "leftElevation": _no_elevation_damage("Left"),
        "rearElevation": _no_elevation_damage("Rear"),
        "interiorDamages": "No visible / related damages were observed to the interior during our inspection.",

        # Experts & reports
        "expertsInfo": "No experts were retained or recommended for this loss.",
        "officialReports": "No official reports were provided or pending with this assignment.",
        "ownershipInfo": "",
        "diaryDate": "",

        # Repeating sections
        "attachments": [{"attachmentName": "Photo Report"}],
        "partiesPresent": [],
        "actionItems": [],

        # Conditional flags
        "hasRoofDamage": False,
        "hasExteriorDamage": False,
        "hasInteriorDamage": False,
        "hasOtherStructures": False,
        "hasContents": False,
        "hasAle": False,
        "hasSubrogation": False,
        "hasSalvage": False,
        "hasExperts": False,
        "hasDiaryDate": False,
        "includeRoof": True,
        "includeExterior": True,
        "includeOtherStructures": True,
    }
    for key in sorted(FINANCIAL_KEYS):
        defaults[key] = ""
    return defaults


# =============================================================================
# Layers
# =============================================================================
# claim/form field -> template keys it populates
USER_FIELD_MAP: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("insuredName", ("insuredName",)),
    ("insuredPhone", ("insuredPhone",)),
    ("insuredEmail", ("insuredEmail",)),
    ("claimNumber", ("claimNumber",)),
    ("propertyAddress", ("riskAddress", "lossLocation")),
    ("lossDate", ("dateOfLoss",)),
    ("lossType", ("causeOfLoss",)),
    ("reportType", ("reportType",)),
    ("dateReceived", ("dateReceived",)),
    ("dateContacted", ("dateContacted",)),
    ("dateInspected", ("dateInspected",)),
    ("propertyDescription", ("propertyDescription",)),
    ("propertyDetails", ("propertyDescription",)),
    ("lossDescription", ("occurrence",)),
    ("damages", ("dwellingDamage",)),
    ("recommendations", ("recommendation", "workToBeCompleted")),
    ("adjusterName", ("adjusterName",)),
    ("dwellingLimit", ("dwellingLimit",)),
    ("otherStructuresLimit", ("otherStructuresLimit",)),
    ("personalPropertyLimit", ("personalPropertyLimit",)),
)

AI_FIELDS = frozenset(SECTION_FIELDS | FINANCIAL_KEYS | {
    "subrogationPotential",
    "subrogationParty",
    "subrogationRemarks",
    "roofType",
    "roofAge",
    "roofCondition",
    "roofLayers",
    "roofPitch",
    "roofDripEdge",
})

# AI narrative fields that get markdown stripped
_NARRATIVE_FIELDS = SECTION_FIELDS


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class FieldPatch:
    """One merge layer. Applying it overwrites only the keys it has a non-empty value for."""

    layer: str
    values: Mapping[str, Any]

    def apply(self, target: Dict[str, Any]) -> List[str]:
        applied = []
        for key, value in self.values.items():
            if is_empty(value):
                continue
            target[key] = value
            applied.append(key)
        return applied


def _parties_rows(value: Any) -> List[Dict[str, str]]:
    if isinstance(value, str):
        names = [part.strip() for part in value.replace(";", ",").split(",")]
        return [{"partyName": name} for name in names if name]
    if isinstance(value, (list, tuple)):
        rows = []
        for item in value:
            if isinstance(item, Mapping):
                rows.append(dict(item))
            elif not is_empty(item):
                rows.append({"partyName": str(item).strip()})
        return rows
    return []


def user_patch(claim: Optional[Mapping[str, Any]]) -> FieldPatch:
    claim = claim or {}
    values: Dict[str, Any] = {}
    for source, targets in USER_FIELD_MAP:
        value = claim.get(source)
        if is_empty(value):
            continue
        for target in targets:
            values[target] = value.strip() if isinstance(value, str) else value
    if "partiesPresent" in claim:
        values["partiesPresent"] = _parties_rows(claim["partiesPresent"])
    return FieldPatch("user", values)


def ai_patch(ai_content: Union[str, Mapping[str, Any], None]) -> FieldPatch:
    """A raw string is run through the Content Parser; a map keeps only known AI keys."""
    if isinstance(ai_content, str):
        source: Mapping[str, Any] = parse_ai_content(ai_content)
    else:
        source = ai_content or {}

    values: Dict[str, Any] = {}
    for key, value in source.items():
        if key not in AI_FIELDS:
            continue
        if key in _NARRATIVE_FIELDS and isinstance(value, str):
            value = strip_markdown(value)
        values[key] = value
    return FieldPatch("ai", values)


def financial_patch(financials: Optional[Mapping[str, Any]]) -> FieldPatch:
    financials = financials or {}
    return FieldPatch("financial", {k: v for k, v in financials.items() if k in FINANCIAL_KEYS})


def resolve_layer_order(layer_order: Optional[Sequence[str]] = None) -> Tuple[str, ...]:
    """Validate a layer order; names left out keep their default relative order at the end."""
    requested = [name.strip().lower() for name in (layer_order or MERGE_LAYER_ORDER)]
    requested = [name for name in requested if name and name != "defaults"]
    unknown = [name for name in requested if name not in LAYER_NAMES]
    if unknown:
        raise ValueError(f"Unknown merge layer(s): {', '.join(unknown)}. Expected {', '.join(LAYER_NAMES)}")
    order: List[str] = []
    for name in requested + list(LAYER_NAMES):
        if name not in order:
            order.append(name)
    return tuple(order)


# =============================================================================
# Flags
# =============================================================================
# flag -> (source fields, boilerplate phrase meaning "nothing to report")
FLAG_RULES: Tuple[Tuple[str, Tuple[str, ...], str], ...] = (
    ("hasRoofDamage", ("roofDamages",), "No visible"),
    ("hasExteriorDamage", ("rightElevation", "leftElevation", "rearElevation"), "No visible"),
    ("hasInteriorDamage", ("interiorDamages",), "No visible"),
    ("hasOtherStructures", ("otherStructuresDamage",), "did not sustain"),
    ("hasContents", ("contentsDamage",), "did not sustain"),
    ("hasAle", ("aleClaim",), "did not become"),
    ("hasSalvage", ("salvageInfo",), "no viable salvage"),
    ("hasExperts", ("expertsInfo",), "No experts"),
)


def derive_flags(merged: Dict[str, Any]) -> Dict[str, Any]:
    for flag, sources, boilerplate in FLAG_RULES:
        merged[flag] = any(
            not is_empty(merged.get(source)) and boilerplate not in str(merged.get(source))
            for source in sources
        )
    potential = str(merged.get("subrogationPotential") or "").strip()
    merged["hasSubrogation"] = bool(potential) and potential.lower() != "none"
    merged["hasDiaryDate"] = not is_empty(merged.get("diaryDate"))
    return merged


# =============================================================================
# Currency
# =============================================================================
def parse_currency_to_number(val) -> float:
    """
    Convert currency string like '$35,610,000' to a number.
    Returns 0.0 for None, empty, or unparseable values.
    """
    if val is None or isinstance(val, bool):
        return 0.0
    if isinstance(val, (int, float)):
        return float(val)
    if isinstance(val, str):
        # Remove currency symbols, commas, whitespace
        cleaned = "".join(val.replace('$', '').replace(',', '').split())
        if not cleaned:
            return 0.0
        try:
            return float(cleaned)
        except ValueError:
            return 0.0
    return 0.0


def format_currency(amount: float) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


@dataclass
class CoverageBucket:
    limit: float = 0.0
    prior: float = 0.0
    change: float = 0.0
    paid: float = 0.0
    payment: float = 0.0
    remaining: float = 0.0

    @classmethod
    def from_fields(cls, merged: Mapping[str, Any], prefix: str) -> "CoverageBucket":
        bucket = cls(
            limit=parse_currency_to_number(merged.get(financial_key(prefix, "Limit"))),
            prior=parse_currency_to_number(merged.get(financial_key(prefix, "Prior"))),
            change=parse_currency_to_number(merged.get(financial_key(prefix, "Change"))),
            paid=parse_currency_to_number(merged.get(financial_key(prefix, "Paid"))),
            payment=parse_currency_to_number(merged.get(financial_key(prefix, "Payment"))),
        )
        bucket.remaining = bucket.prior + bucket.change - bucket.paid
        return bucket

    def __add__(self, other: "CoverageBucket") -> "CoverageBucket":
        return CoverageBucket(**{
            f.name: getattr(self, f.name) + getattr(other, f.name) for f in dataclass_fields(self)
        })

    def is_blank(self) -> bool:
        return all(getattr(self, f.name) == 0 for f in dataclass_fields(self))

    def to_fields(self, prefix: str) -> Dict[str, str]:
        blank = self.is_blank()
        return {
            financial_key(prefix, f.name.capitalize()): "" if blank else format_currency(getattr(self, f.name))
            for f in dataclass_fields(self)
        }


# =============================================================================
# Reserves
# =============================================================================
BASE_DWELLING_LIMIT = 250000.0
OTHER_STRUCTURES_RATIO = 0.10
PERSONAL_PROPERTY_RATIO = 0.50

# first keyword group found in the cause of loss wins
LOSS_TYPE_ESTIMATES: Tuple[Tuple[Tuple[str, ...], float], ...] = (
    (("water", "flood", "pipe"), 12500.0),
    (("fire", "smoke"), 45000.0),
    (("wind", "storm", "hail"), 15000.0),
    (("theft", "burglary"), 5000.0),
    (("vandalism",), 3500.0),
    (("mold",), 8000.0),
)
DEFAULT_LOSS_ESTIMATE = 10000.0


def estimate_for_loss_type(cause_of_loss: str) -> float:
    cause = (cause_of_loss or "").lower()
    for keywords, estimate in LOSS_TYPE_ESTIMATES:
        if any(keyword in cause for keyword in keywords):
            return estimate
    return DEFAULT_LOSS_ESTIMATE


def has_financial_data(merged: Mapping[str, Any]) -> bool:
    return any(
        not is_empty(merged.get(financial_key(bucket, suffix)))
        for bucket in COVERAGE_BUCKETS
        for suffix in ("Limit", "Prior", "Change", "Paid", "Payment")
    )


def synthesize_reserves(merged: Dict[str, Any]) -> bool:
    """Fill placeholder reserves from the cause of loss when no figures exist. Returns True when it did."""
    cause = merged.get("causeOfLoss")
    if has_financial_data(merged) or is_empty(cause):
        return False

    estimate = estimate_for_loss_type(str(cause))
    logger.info("No reserve figures supplied; estimating %s for cause of loss %r", format_currency(estimate), cause)
    merged.update({
        financial_key(DWELLING, "Limit"): format_currency(BASE_DWELLING_LIMIT),
        financial_key(DWELLING, "Prior"): format_currency(0),
        financial_key(DWELLING, "Change"): format_currency(estimate),
        financial_key(OTHER_STRUCTURES, "Limit"): format_currency(BASE_DWELLING_LIMIT * OTHER_STRUCTURES_RATIO),
        financial_key(OTHER_STRUCTURES, "Prior"): format_currency(0),
        financial_key(OTHER_STRUCTURES, "Change"): format_currency(0),
        financial_key(PERSONAL_PROPERTY, "Limit"): format_currency(BASE_DWELLING_LIMIT * PERSONAL_PROPERTY_RATIO),
        financial_key(PERSONAL_PROPERTY, "Prior"): format_currency(0),
        financial_key(PERSONAL_PROPERTY, "Change"): format_currency(0),
    })
    return True


def settle_reserves(merged: Dict[str, Any]) -> Dict[str, CoverageBucket]:
    """Recompute every bucket's remaining and the Total bucket, writing formatted figures back."""
    buckets = {prefix: CoverageBucket.from_fields(merged, prefix) for prefix in COVERAGE_BUCKETS}
    buckets[TOTAL] = sum((buckets[prefix] for prefix in COVERAGE_BUCKETS), CoverageBucket())
    for prefix, bucket in buckets.items():
        merged.update(bucket.to_fields(prefix))
    return buckets


# =============================================================================
# Entry point
# =============================================================================
def build_patches(
    claim: Optional[Mapping[str, Any]] = None,
    ai_content: Union[str, Mapping[str, Any], None] = None,
    financials: Optional[Mapping[str, Any]] = None,
    layer_order: Optional[Sequence[str]] = None,
) -> List[FieldPatch]:
    patches = {
        "user": user_patch(claim),
        "ai": ai_patch(ai_content),
        "financial": financial_patch(financials),
    }
    return [patches[name] for name in resolve_layer_order(layer_order)]


def merge_fields(
    claim: Optional[Mapping[str, Any]] = None,
    ai_content: Union[str, Mapping[str, Any], None] = None,
    financials: Optional[Mapping[str, Any]] = None,
    layer_order: Optional[Sequence[str]] = None,
    today: Optional[datetime] = None,
) -> Dict[str, Any]:
    merged = default_fields(today)
    for patch in build_patches(claim, ai_content, financials, layer_order):
        applied = patch.apply(merged)
        logger.debug("Layer %s set %d field(s)", patch.layer, len(applied))

    derive_flags(merged)
    synthesize_reserves(merged)
    settle_reserves(merged)
    return merged
