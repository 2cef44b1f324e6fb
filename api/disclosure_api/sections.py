from collections import namedtuple
from typing import Optional

TRISTATE = ("yes", "no", "unknown")
FLOOD_100_YEAR_ZONES = ("A", "AE", "AO", "AH", "V", "VE")
FLOOD_500_YEAR_ZONES = ("X500", "B")
MIN_PROPERTY_ITEMS = 5

Section = namedtuple("Section", "number key title weight scored fields")

SECTIONS = (
    Section(1, "section1", "Property Items", 15, "property_items",
            ("property_items", "water_supply", "roof_info", "defects_explanation")),
    Section(2, "section2", "Defects/Malfunctions", 10, "defects", ("defects", "explanation")),
    Section(3, "section3", "Conditions", 15, "conditions", ("conditions", "explanation")),
    Section(4, "section4", "Additional Repairs", 5, "additional_repairs", ("additional_repairs", "explanation")),
    Section(5, "section5", "Flood Conditions", 10, "flood_data", ("flood_data", "explanation")),
    Section(6, "section6", "Flood Claims", 5, "flood_claim", ("flood_claim", "explanation")),
    Section(7, "section7", "FEMA/SBA Assistance", 5, "fema_assistance", ("fema_assistance", "explanation")),
    Section(8, "section8", "Legal/HOA", 10, "conditions",
            ("conditions", "hoa_details", "common_areas", "explanation")),
    Section(9, "section9", "Inspection Reports", 5, "has_reports", ("has_reports", "reports")),
    Section(10, "section10", "Tax Exemptions", 5, "exemptions", ("exemptions",)),
    Section(11, "section11", "Insurance Claims", 5, "insurance_claims", ("insurance_claims",)),
    Section(12, "section12", "Unremediated Claims", 5, "unremediated_claims", ("unremediated_claims", "explanation")),
    Section(13, "section13", "Smoke Detectors", 5, "smoke_detectors", ("smoke_detectors", "explanation")),
)

SECTIONS_BY_KEY = {s.key: s for s in SECTIONS}

# Savable parts of the form that are not scored.
HEADER = "header"
UTILITIES = "utilities"
EXTRA_PARTS = (HEADER, UTILITIES)

# kind: "text" needs a non-blank value, "answer" needs a resolved answer
Rule = namedtuple("Rule", "section field path kind message")

REQUIRED_FIELDS = (
    Rule(1, "roof_type", ("section1", "roof_info", "roof_type"), "text", "Roof type is required"),
    Rule(1, "roof_age", ("section1", "roof_info", "roof_age"), "text", "Roof age is required"),
    Rule(1, "water_provider", ("section1", "water_supply", "provider"), "text",
         "Water supply provider is required"),
    Rule(4, "additional_repairs", ("section4", "additional_repairs"), "answer",
         "Please indicate if additional repairs are needed"),
    Rule(6, "flood_claim", ("section6", "flood_claim"), "answer",
         "Please indicate if flood claims were filed"),
    Rule(7, "fema_assistance", ("section7", "fema_assistance"), "answer",
         "Please indicate if FEMA/SBA assistance was received"),
    Rule(9, "has_reports", ("section9", "has_reports"), "answer",
         "Please indicate if inspection reports exist"),
    Rule(11, "insurance_claims", ("section11", "insurance_claims"), "answer",
         "Please indicate if insurance claims were filed"),
    Rule(12, "unremediated_claims", ("section12", "unremediated_claims"), "answer",
         "Please indicate if there are unremediated claims"),
    Rule(13, "smoke_detectors", ("section13", "smoke_detectors"), "answer",
         "Please indicate smoke detector status"),
)

SOFT_FIELDS = (
    Rule(1, "built_before_1978", ("section1", "roof_info", "built_before_1978"), "answer",
         "Please indicate if property was built before 1978"),
    Rule(5, "flood_insurance", ("section5", "flood_data", "flood_insurance_present"), "answer",
         "Please indicate if flood insurance is present"),
)


def is_answered(value) -> bool:
    # {} is unanswered; {"basement": False} is an answer
    if isinstance(value, bool):
        return True
    if isinstance(value, str):
        return value.strip().lower() in TRISTATE
    if isinstance(value, (dict, list)):
        return len(value) > 0
    return False


def _has_text(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _lookup(sections: dict, path):
    current = sections
    for part in path:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _satisfied(sections: dict, rule: Rule) -> bool:
    value = _lookup(sections, rule.path)
    if rule.kind == "text":
        return _has_text(value)
    return is_answered(value)


def section_complete(sections: dict, section: Section) -> bool:
    payload = sections.get(section.key) or {}
    if not isinstance(payload, dict):
        return False
    return is_answered(payload.get(section.scored))


def compute_completion(sections: Optional[dict]) -> int:
    sections = sections or {}
    total = sum(s.weight for s in SECTIONS if section_complete(sections, s))
    return min(total, 100)


def sections_summary(sections: Optional[dict]) -> dict:
    sections = sections or {}
    return {
        s.key: {"name": s.title, "completed": section_complete(sections, s)}
        for s in SECTIONS
    }


def incomplete_sections(sections: Optional[dict]) -> list:
    return [
        {"section": key, "name": entry["name"]}
        for key, entry in sections_summary(sections).items()
        if not entry["completed"]
    ]


def validate_for_completion(sections: Optional[dict], utilities: Optional[dict] = None) -> dict:
    sections = sections or {}
    errors = [
        {"section": r.section, "field": r.field, "message": r.message}
        for r in REQUIRED_FIELDS
        if not _satisfied(sections, r)
    ]
    warnings = [
        {"section": r.section, "field": r.field, "message": r.message}
        for r in SOFT_FIELDS
        if not _satisfied(sections, r)
    ]
    items = _lookup(sections, ("section1", "property_items"))
    if not isinstance(items, dict) or len(items) < MIN_PROPERTY_ITEMS:
        warnings.append({"section": 1, "field": "property_items",
                         "message": "Consider reviewing more property items"})
    if not utilities:
        warnings.append({"section": "utilities", "field": "utility_providers",
                         "message": "Utility provider information is recommended"})
    return {
        "valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "error_count": len(errors),
        "warning_count": len(warnings),
    }


def section_number(part: str) -> Optional[int]:
    section = SECTIONS_BY_KEY.get(part)
    return section.number if section else None


def normalize_part(part) -> Optional[str]:
    """Accept ``3``, ``"3"``, ``"section3"``, ``"header"`` or ``"utilities"``."""
    raw = str(part).strip().lower()
    if raw in EXTRA_PARTS or raw in SECTIONS_BY_KEY:
        return raw
    if raw.isdigit() and f"section{int(raw)}" in SECTIONS_BY_KEY:
        return f"section{int(raw)}"
    return None


def merge_section(sections: dict, key: str, data: dict) -> dict:
    """Return a copy of ``sections`` with the allowed fields of ``data`` written to ``key``."""
    merged = dict(sections)
    section = SECTIONS_BY_KEY[key]
    payload = dict(merged.get(key) or {})
    for field in section.fields:
        if field in data:
            payload[field] = data[field]
    merged[key] = payload
    return merged


def prefill_from_property(prop: Optional[dict]):
    """Build ``(header, sections)`` seed payloads from listing data."""
    prop = prop or {}
    header = {
        "property_address": prop.get("address") or "",
        "city": prop.get("city"),
        "county": prop.get("county"),
        "zip_code": prop.get("zip_code"),
    }
    roof_info, flood_data, hoa_details = {}, {}, {}

    year_built = prop.get("year_built")
    if year_built:
        roof_info["built_before_1978"] = "yes" if int(year_built) < 1978 else "no"
        roof_info["year_built"] = year_built

    flood_zone = prop.get("flood_zone")
    if flood_zone:
        flood_data["flood_zone"] = flood_zone
        flood_data["in_100_year_floodplain"] = flood_zone in FLOOD_100_YEAR_ZONES
        flood_data["in_500_year_floodplain"] = flood_zone in FLOOD_500_YEAR_ZONES
    if isinstance(prop.get("flood_zone_data"), dict):
        flood_data.update(prop["flood_zone_data"])

    if prop.get("mud_district"):
        hoa_details["mud_district"] = prop["mud_district"]
        hoa_details["mud_annual_fee"] = prop.get("mud_annual_fee")

    if prop.get("school_district"):
        header["school_district"] = prop["school_district"]
    if prop.get("property_taxes"):
        header["estimated_annual_taxes"] = prop["property_taxes"]

    sections = {}
    if roof_info:
        sections["section1"] = {"roof_info": roof_info}
    if flood_data:
        sections["section5"] = {"flood_data": flood_data}
    if hoa_details:
        sections["section8"] = {"hoa_details": hoa_details}
    return header, sections
