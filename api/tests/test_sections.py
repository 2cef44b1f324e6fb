from disclosure_api import sections as form


REQUIRED_ONLY = {
    "section1": {
        "roof_info": {"roof_type": "Composition", "roof_age": "10 years"},
        "water_supply": {"provider": "city"},
    },
    "section4": {"additional_repairs": "no"},
    "section6": {"flood_claim": "no"},
    "section7": {"fema_assistance": "no"},
    "section9": {"has_reports": "no"},
    "section11": {"insurance_claims": "no"},
    "section12": {"unremediated_claims": "no"},
    "section13": {"smoke_detectors": "yes"},
}


def test_section_weights_sum_to_one_hundred():
    assert sum(s.weight for s in form.SECTIONS) == 100
    assert [s.number for s in form.SECTIONS] == list(range(1, 14))


def test_empty_form_scores_zero_and_is_invalid():
    assert form.compute_completion({}) == 0
    assert form.compute_completion(None) == 0
    result = form.validate_for_completion({})
    assert result["valid"] is False
    assert result["error_count"] == len(form.REQUIRED_FIELDS)
    assert {e["field"] for e in result["errors"]} >= {"roof_type", "roof_age", "water_provider"}


def test_required_answers_validate_regardless_of_completion():
    result = form.validate_for_completion(REQUIRED_ONLY)
    assert result["valid"] is True
    assert result["errors"] == []
    # section 1 is unscored without property items
    assert form.compute_completion(REQUIRED_ONLY) == 35
    fields = {w["field"] for w in result["warnings"]}
    assert {"built_before_1978", "flood_insurance", "property_items", "utility_providers"} <= fields


def test_empty_object_is_incomplete_but_all_false_object_counts():
    assert form.compute_completion({"section2": {"defects": {}}}) == 0
    assert form.compute_completion({"section2": {"defects": {"foundation": False}}}) == 10
    assert form.compute_completion({"section9": {"has_reports": False}}) == 5


def test_unresolved_tristate_does_not_count():
    assert form.compute_completion({"section13": {"smoke_detectors": "maybe"}}) == 0
    assert form.compute_completion({"section13": {"smoke_detectors": "Unknown"}}) == 5


def test_completion_is_idempotent_and_capped():
    data = {s.key: {s.scored: "yes"} for s in form.SECTIONS}
    assert form.compute_completion(data) == 100
    assert form.compute_completion(data) == form.compute_completion(dict(data))


def test_incomplete_sections_lists_unscored_parts():
    missing = form.incomplete_sections({"section13": {"smoke_detectors": "yes"}})
    keys = [m["section"] for m in missing]
    assert "section13" not in keys
    assert keys[0] == "section1"
    assert len(keys) == 12


def test_normalize_part_accepts_numbers_keys_and_extras():
    assert form.normalize_part(3) == "section3"
    assert form.normalize_part("7") == "section7"
    assert form.normalize_part("Section12") == "section12"
    assert form.normalize_part("utilities") == "utilities"
    assert form.normalize_part("header") == "header"
    assert form.normalize_part("14") is None
    assert form.normalize_part("section0") is None
    assert form.normalize_part("seller") is None


def test_merge_section_drops_unknown_fields():
    merged = form.merge_section({}, "section4", {"additional_repairs": "yes", "injected": 1})
    assert merged == {"section4": {"additional_repairs": "yes"}}
    merged = form.merge_section(merged, "section4", {"explanation": "Fence"})
    assert merged["section4"] == {"additional_repairs": "yes", "explanation": "Fence"}


def test_prefill_from_property_context():
    header, seeded = form.prefill_from_property({
        "address": "12 Oak St",
        "city": "Austin",
        "zip_code": "78701",
        "year_built": 1965,
        "flood_zone": "AE",
        "mud_district": "MUD 5",
        "mud_annual_fee": 400,
        "school_district": "AISD",
        "property_taxes": 9100,
    })
    assert header["property_address"] == "12 Oak St"
    assert header["school_district"] == "AISD"
    assert header["estimated_annual_taxes"] == 9100
    assert seeded["section1"]["roof_info"]["built_before_1978"] == "yes"
    assert seeded["section5"]["flood_data"]["in_100_year_floodplain"] is True
    assert seeded["section5"]["flood_data"]["in_500_year_floodplain"] is False
    assert seeded["section8"]["hoa_details"]["mud_district"] == "MUD 5"


def test_prefill_without_context_is_empty():
    header, seeded = form.prefill_from_property(None)
    assert header["property_address"] == ""
    assert seeded == {}
