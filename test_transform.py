#!/usr/bin/env python3
"""
Validate the merged field map against the keys the CRU report template uses,
plus the layering, flag and reserve rules of the merge engine.
"""

from datetime import datetime

import pytest

from merge_engine import (
    BASE_DWELLING_LIMIT,
    DEFAULT_LOSS_ESTIMATE,
    CoverageBucket,
    FieldPatch,
    default_fields,
    derive_flags,
    format_currency,
    merge_fields,
    parse_currency_to_number,
    resolve_layer_order,
    settle_reserves,
    synthesize_reserves,
)

# Keys every CRU template expects, with their types
REQUIRED_TEMPLATE_KEYS = {
    # Header & basic info
    "reportDate": str,
    "insuredName": str,
    "riskAddress": str,
    "causeOfLoss": str,
    "reportType": str,

    # Narrative
    "remarks": str,
    "risk": str,
    "itv": str,
    "occurrence": str,
    "coverage": str,
    "dwellingDamage": str,
    "otherStructuresDamage": str,
    "contentsDamage": str,
    "aleClaim": str,
    "subrogation": str,
    "salvageInfo": str,
    "workToBeCompleted": str,
    "recommendation": str,
    "roofDamages": str,
    "expertsInfo": str,

    # Repeating sections
    "attachments": list,
    "partiesPresent": list,

    # Flags
    "hasRoofDamage": bool,
    "hasExteriorDamage": bool,
    "hasInteriorDamage": bool,
    "hasOtherStructures": bool,
    "hasContents": bool,
    "hasAle": bool,
    "hasSubrogation": bool,
    "hasSalvage": bool,
    "hasExperts": bool,
    "hasDiaryDate": bool,

    # Reserves
    "dwellingLimit": str,
    "dwellingRemaining": str,
    "totalLimit": str,
    "totalRemaining": str,
}

SAMPLE_CLAIM = {
    "claimNumber": "CLM-001",
    "insuredName": "Jane Doe",
    "propertyAddress": "12 Oak St, Raleigh, NC",
    "lossType": "Wind/Hail",
    "lossDescription": "hail storm",
    "partiesPresent": "Jane Doe, Roofer Bob",
}


def test_required_keys_and_types():
    merged = merge_fields(SAMPLE_CLAIM)
    for key, expected in REQUIRED_TEMPLATE_KEYS.items():
        assert key in merged, key
        assert isinstance(merged[key], expected), f"{key}: {type(merged[key]).__name__}"


def test_defaults_are_fresh_copies():
    first = default_fields()
    first["attachments"].append({"attachmentName": "Extra"})
    assert default_fields()["attachments"] == [{"attachmentName": "Photo Report"}]


def test_report_date_format():
    assert default_fields(datetime(2026, 3, 5))["reportDate"] == "March 5, 2026"


def test_user_fields_map_to_template_keys():
    merged = merge_fields(SAMPLE_CLAIM)
    assert merged["riskAddress"] == merged["lossLocation"] == "12 Oak St, Raleigh, NC"
    assert merged["causeOfLoss"] == "Wind/Hail"
    assert merged["occurrence"] == "hail storm"
    assert merged["partiesPresent"] == [{"partyName": "Jane Doe"}, {"partyName": "Roofer Bob"}]


def test_recommendations_fill_both_fields():
    merged = merge_fields({"recommendations": "Replace roof"})
    assert merged["recommendation"] == merged["workToBeCompleted"] == "Replace roof"


def test_empty_values_never_overwrite():
    merged = merge_fields({"insuredName": "Jane"}, {"remarks": "", "risk": None, "itv": "   "})
    assert merged["insuredName"] == "Jane"
    assert merged["itv"] == default_fields()["itv"]


def test_field_patch_skips_empty_values():
    target = {"a": "keep", "b": "keep", "c": "keep"}
    applied = FieldPatch("test", {"a": "", "b": [], "c": "new"}).apply(target)
    assert target == {"a": "keep", "b": "keep", "c": "new"}
    assert applied == ["c"]


def test_ai_map_ignores_unknown_keys_and_strips_markdown():
    merged = merge_fields({}, {"remarks": "**Bold** remark", "somethingElse": "x"})
    assert merged["remarks"] == "Bold remark"
    assert "somethingElse" not in merged


def test_clm_001_scenario():
    narrative = "DWELLING DAMAGE\nHail impacts to the front slope and gutters.\n"
    merged = merge_fields(
        {"claimNumber": "CLM-001", "lossType": "Wind/Hail", "lossDescription": "hail storm"},
        narrative,
    )
    assert merged["dwellingDamage"] == "Hail impacts to the front slope and gutters."
    assert merged["roofDamages"].startswith("No visible")
    assert merged["hasRoofDamage"] is False


# =============================================================================
# Layer order
# =============================================================================
def test_default_layer_order():
    assert resolve_layer_order() == ("user", "ai", "financial")


def test_layer_order_fills_in_missing_names():
    assert resolve_layer_order(["financial", "defaults"]) == ("financial", "user", "ai")


def test_unknown_layer_rejected():
    with pytest.raises(ValueError):
        resolve_layer_order(["user", "bogus"])


def test_financial_layer_wins_by_default():
    merged = merge_fields({}, {"dwellingChange": "$100"}, {"dwellingChange": "$200"})
    assert merged["dwellingChange"] == "$200.00"


def test_ai_can_be_ordered_above_financial():
    merged = merge_fields({}, {"dwellingChange": "$100"}, {"dwellingChange": "$200"}, layer_order=["user", "financial", "ai"])
    assert merged["dwellingChange"] == "$100.00"


def test_ai_overrides_user():
    merged = merge_fields({"lossDescription": "from user"}, {"occurrence": "from ai"})
    assert merged["occurrence"] == "from ai"


# =============================================================================
# Flags
# =============================================================================
def test_flags_default_to_false():
    merged = derive_flags(default_fields())
    assert not any(merged[flag] for flag in (
        "hasRoofDamage", "hasExteriorDamage", "hasInteriorDamage", "hasOtherStructures",
        "hasContents", "hasAle", "hasSubrogation", "hasSalvage", "hasExperts", "hasDiaryDate",
    ))


def test_flags_follow_non_boilerplate_content():
    merged = merge_fields({}, {
        "roofDamages": "Missing shingles",
        "leftElevation": "Dented siding",
        "subrogationPotential": "Yes",
        "diaryDate": "2026-11-01",
    })
    assert merged["hasRoofDamage"] is True
    assert merged["hasExteriorDamage"] is True
    assert merged["hasSubrogation"] is True
    assert merged["hasDiaryDate"] is True
    assert merged["hasInteriorDamage"] is False


# =============================================================================
# Reserves
# =============================================================================
@pytest.mark.parametrize("value,expected", [
    ("$35,610,000", 35610000.0),
    (" $1,234.50 ", 1234.5),
    ("", 0.0),
    (None, 0.0),
    ("n/a", 0.0),
    (12, 12.0),
])
def test_parse_currency_to_number(value, expected):
    assert parse_currency_to_number(value) == expected


def test_format_currency():
    assert format_currency(1234.5) == "$1,234.50"
    assert format_currency(0) == "$0.00"
    assert format_currency(-50) == "-$50.00"


def test_remaining_identity_and_totals():
    merged = default_fields()
    merged.update({
        "dwellingPrior": "$1,000.00", "dwellingChange": "$500", "dwellingPaid": "$200",
        "personalPropertyPrior": "$300", "personalPropertyChange": "$0", "personalPropertyPaid": "$50",
    })
    buckets = settle_reserves(merged)
    for prefix in ("dwelling", "otherStructures", "personalProperty"):
        bucket = buckets[prefix]
        assert bucket.remaining == bucket.prior + bucket.change - bucket.paid
    total = buckets["total"]
    assert total.remaining == sum(buckets[p].remaining for p in ("dwelling", "otherStructures", "personalProperty"))
    assert merged["dwellingRemaining"] == "$1,300.00"
    assert merged["personalPropertyRemaining"] == "$250.00"
    assert merged["totalRemaining"] == "$1,550.00"


def test_all_zero_bucket_is_blank():
    merged = default_fields()
    merged["dwellingChange"] = "$100"
    settle_reserves(merged)
    assert merged["otherStructuresLimit"] == ""
    assert merged["otherStructuresRemaining"] == ""
    assert merged["dwellingPrior"] == "$0.00"


def test_bucket_addition():
    total = CoverageBucket(limit=1, change=2) + CoverageBucket(limit=3, paid=4)
    assert total == CoverageBucket(limit=4, change=2, paid=4)


def test_synthesis_for_fire_loss():
    merged = merge_fields({"lossType": "Kitchen Fire"})
    assert merged["dwellingChange"] == "$45,000.00"
    assert merged["dwellingLimit"] == format_currency(BASE_DWELLING_LIMIT)
    assert merged["otherStructuresLimit"] == "$25,000.00"
    assert merged["personalPropertyLimit"] == "$125,000.00"
    assert merged["totalLimit"] == "$400,000.00"


def test_synthesis_default_estimate():
    merged = merge_fields({"lossType": "Meteor strike"})
    assert merged["dwellingChange"] == format_currency(DEFAULT_LOSS_ESTIMATE)


def test_keyword_order_decides_mixed_causes():
    merged = merge_fields({"lossType": "Storm caused pipe burst"})
    assert merged["dwellingChange"] == "$12,500.00"


def test_no_synthesis_when_any_figure_present():
    merged = merge_fields({"lossType": "Fire"}, financials={"personalPropertyChange": "$900"})
    assert merged["dwellingChange"] == ""
    assert merged["personalPropertyChange"] == "$900.00"


def test_no_synthesis_without_cause_of_loss():
    merged = default_fields()
    assert synthesize_reserves(merged) is False
    assert merged["dwellingLimit"] == ""


def test_one_amount_is_counted_once_in_totals():
    merged = merge_fields({}, "The dwelling roof was damaged; other structures repairs are estimated at $1,500.")
    assert merged["otherStructuresChange"] == "$1,500.00"
    assert merged["dwellingChange"] == ""
    assert merged["totalChange"] == "$1,500.00"
