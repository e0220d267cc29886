"""
test_composer.py

Tests for composing report rows from a stored patient record.

Covers:
- End-to-end resolution -> parsing -> classification per parameter.
- Subparameters, subheadings, hidden parameters and outsourced tests.
- Out-of-range summary and payload shape.
"""

import json

import pytest
from pydantic import ValidationError

from labreport.commons.report_engine import ReportEngine
from labreport.commons.row_composer import RowComposer, format_test_title, format_value
from labreport.commons.types import Parameter, PatientRecord
from labreport.validation.validators import patient_age_days, validate_patient_record_or_raise


def make_engine():
    return ReportEngine({})


def cbc_record():
    # Shape of a patients/<id> node exported from the Realtime Database
    return {
        "name": "Asha Verma",
        "age": 34,
        "gender": "Female",
        "patientId": "P0042",
        "createdAt": "2025-03-01T09:12:00Z",
        "contact": "9800000000",
        "bloodtest": {
            "complete_blood_count": {
                "type": "in-house",
                "reportedOn": "2025-03-01T14:00:00Z",
                "parameters": [
                    {
                        "name": "Haemoglobin",
                        "value": "10.5",
                        "unit": "g/dL",
                        "range": {
                            "male": [{"rangeKey": "0-100y", "rangeValue": "13-17"}],
                            "female": [{"rangeKey": "0-100y", "rangeValue": "12-15"}],
                        },
                    },
                    {
                        "name": "Total Leucocyte Count",
                        "value": 7200,
                        "unit": "/cumm",
                        "range": "4000-11000",
                        "subparameters": [
                            {"name": "Neutrophils", "value": "82", "unit": "%", "range": "40-75"},
                            {"name": "Lymphocytes", "value": "12", "unit": "%", "range": "20-40"},
                            {"name": "Basophils", "value": "0", "unit": "%", "range": "0-1", "visibility": "hidden"},
                        ],
                    },
                    {"name": "Platelet Count", "value": "2.1", "unit": "lakh/cumm", "range": "1.5 to 4.1"},
                    {"name": "Peripheral Smear", "value": "Normocytic normochromic", "unit": "", "range": ""},
                    {"name": "MCV", "value": "", "unit": "fL", "range": "83-101"},
                    {"name": "ESR (internal)", "value": "40", "unit": "mm/hr", "range": "0-20", "visibility": "hidden"},
                ],
                "subheadings": [
                    {"title": "Differential Count", "parameterNames": ["Total Leucocyte Count"]},
                    {"title": "Indices", "parameterNames": ["MCV"]},
                    {"title": "Empty", "parameterNames": ["Not Booked"]},
                ],
            },
            "vitamin_d": {
                "type": "outsource",
                "parameters": [{"name": "25-OH Vitamin D", "value": "8", "unit": "ng/mL", "range": "30-100"}],
            },
        },
    }


def rows_by_name(payload):
    out = {}
    for test in payload["tests"]:
        for section in test["sections"]:
            for row in section["rows"]:
                out[row["name"]] = row
    return out


# ----------------- Single parameters -----------------
def test_fixed_range_normal_value():
    composer = RowComposer()
    param = Parameter(name="Haemoglobin", value="15", unit="g/dL", range="12-16")
    [row] = composer.compose_parameter(param, age_days=30 * 365, gender="male")
    assert row.range_display == "12-16"
    assert row.out_of_range_label == ""
    assert row.level == "normal"
    assert row.formatted_value == "15"


def test_gender_age_table_neonate():
    composer = RowComposer()
    param = Parameter.model_validate(
        {
            "name": "Bilirubin",
            "value": "2",
            "range": {
                "male": [{"rangeKey": "0-30d", "rangeValue": "1-3"}],
                "female": [{"rangeKey": "0-30d", "rangeValue": "0.5-2.5"}],
            },
        }
    )
    [row] = composer.compose_parameter(param, age_days=10, gender="male")
    assert row.range_display == "1-3"
    assert row.level == "normal"


def test_up_to_range_high_severe():
    [row] = RowComposer().compose_parameter(
        Parameter(name="CRP", value="20", range="up to 12.5"), age_days=0, gender=""
    )
    assert row.level == "high"
    assert row.severity == "severe"
    assert row.formatted_value == "20 H"


def test_subparameters_are_indented():
    param = Parameter.model_validate(
        {
            "name": "TLC",
            "value": "7000",
            "range": "4000-11000",
            "subparameters": [{"name": "Neutrophils", "value": "30", "range": "40-75"}],
        }
    )
    rows = RowComposer().compose_parameter(param, age_days=0, gender="male")
    assert [r.name for r in rows] == ["TLC", "Neutrophils"]
    assert [r.indent for r in rows] == [0, 1]
    assert rows[1].out_of_range_label == "L"


def test_format_helpers():
    assert format_value("", "") == "-"
    assert format_value(None, "H") == "-"
    assert format_value(3, "L") == "3 L"
    assert format_test_title("complete_blood_count") == "COMPLETE BLOOD COUNT"


# ----------------- Whole record -----------------
def test_compose_record_rows():
    payload = make_engine().compose_payload(cbc_record())
    rows = rows_by_name(payload)

    assert rows["Haemoglobin"]["rangeDisplayString"] == "12-15"
    assert rows["Haemoglobin"]["outOfRangeLabel"] == "L"
    assert rows["Haemoglobin"]["formattedValue"] == "10.5 L"
    assert rows["Neutrophils"]["outOfRangeLabel"] == "H"
    assert rows["Neutrophils"]["indent"] == 1
    assert rows["Lymphocytes"]["severity"] == "severe"
    assert rows["Platelet Count"]["level"] == "normal"
    assert rows["Peripheral Smear"]["level"] == "normal"
    assert rows["MCV"]["formattedValue"] == "-"
    assert "Basophils" not in rows
    assert "ESR (internal)" not in rows


def test_outsourced_tests_are_skipped():
    payload = make_engine().compose_payload(cbc_record())
    assert [t["key"] for t in payload["tests"]] == ["complete_blood_count"]

    engine = ReportEngine({"report": {"skip_outsourced": False}})
    payload = engine.compose_payload(cbc_record())
    assert [t["title"] for t in payload["tests"]] == ["COMPLETE BLOOD COUNT", "VITAMIN D"]


def test_subheading_sections():
    payload = make_engine().compose_payload(cbc_record())
    sections = payload["tests"][0]["sections"]
    assert [s["title"] for s in sections] == [None, "Differential Count", "Indices"]
    assert [r["name"] for r in sections[0]["rows"]] == ["Haemoglobin", "Platelet Count", "Peripheral Smear"]
    assert [r["name"] for r in sections[1]["rows"]] == ["Total Leucocyte Count", "Neutrophils", "Lymphocytes"]


def test_reported_on_passes_through():
    payload = make_engine().compose_payload(cbc_record())
    assert payload["tests"][0]["reportedOn"] == "2025-03-01T14:00:00Z"
    assert payload["patient"]["ageDays"] == 34 * 365


def test_compose_is_idempotent():
    engine = make_engine()
    first = json.dumps(engine.compose_payload(cbc_record()), sort_keys=True)
    second = json.dumps(engine.compose_payload(cbc_record()), sort_keys=True)
    assert first == second


def test_out_of_range_summary():
    summary = make_engine().out_of_range_payload(cbc_record())
    assert list(summary) == ["COMPLETE BLOOD COUNT"]
    flagged = {p["name"]: p for p in summary["COMPLETE BLOOD COUNT"]}
    assert set(flagged) == {"Haemoglobin", "Neutrophils", "Lymphocytes"}
    assert flagged["Haemoglobin"]["level"] == "low"
    assert flagged["Neutrophils"]["level"] == "high"


def test_firebase_object_arrays():
    record = {
        "gender": "male",
        "total_day": "10",
        "bloodtest": {
            "bilirubin": {
                "parameters": {
                    "0": {
                        "name": "Total Bilirubin",
                        "value": "25",
                        "range": {"male": {"0": {"rangeKey": "0-30d", "rangeValue": "1-12"}}},
                    }
                }
            }
        },
    }
    rows = rows_by_name(make_engine().compose_payload(record))
    assert rows["Total Bilirubin"]["rangeDisplayString"] == "1-12"
    assert rows["Total Bilirubin"]["severity"] == "severe"


def test_malformed_range_never_flags():
    record = {
        "gender": "male",
        "age": 40,
        "bloodtest": {"misc": {"parameters": [{"name": "X", "value": "999", "range": ["4", "7"]}]}},
    }
    rows = rows_by_name(make_engine().compose_payload(record))
    assert rows["X"]["rangeDisplayString"] == ""
    assert rows["X"]["outOfRangeLabel"] == ""


def test_classifier_thresholds_from_config():
    engine = ReportEngine({"classifier": {"severe_ratio": 0.5, "moderate_ratio": 0.2}})
    dev = engine.classify_text("6", "10-20")
    assert dev.level == "low" and dev.severity == "moderate"


# ----------------- Age and validation -----------------
@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"total_day": "10", "age": 5}, 10),
        ({"age": 2, "dayType": "month"}, 60),
        ({"age": 3, "dayType": "day"}, 3),
        ({"age": "30"}, 30 * 365),
        ({"age": "unknown"}, 0),
        ({}, 0),
    ],
)
def test_patient_age_days(fields, expected):
    assert patient_age_days(PatientRecord.model_validate(fields)) == expected


def test_bloodtest_must_be_mapping():
    with pytest.raises(ValidationError):
        validate_patient_record_or_raise({"name": "X", "bloodtest": ["cbc"]})


def test_parameter_without_name_is_rejected():
    with pytest.raises(ValidationError):
        validate_patient_record_or_raise({"bloodtest": {"cbc": {"parameters": [{"value": "1"}]}}})


def test_stored_formula_is_ignored():
    param = Parameter.model_validate({"name": "LDL", "value": "130", "range": "< 100", "formula": "TC - HDL - TG/5"})
    assert "formula" not in Parameter.model_fields
    assert not hasattr(param, "formula")
