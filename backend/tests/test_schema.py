import pytest

from medscribe.errors import ParseError
from medscribe.schemas.transcription import (
    REQUIRED_KEYS,
    RESPONSE_SCHEMA,
    count_data_fields,
    is_valid_structured_data,
    validate_structured_data,
)

from tests.helpers import valid_data


def test_valid_data_passes_and_is_normalised():
    data = valid_data()
    data["unexpected"] = "dropped"
    data["diagnoses"] = [{"condition": "Hypertension"}]

    result = validate_structured_data(data)

    assert "unexpected" not in result
    assert result["patient"]["name"] == "John Doe"
    assert result["diagnoses"] == [{"condition": "Hypertension", "notes": None}]
    # The normalised tree validates again unchanged.
    assert validate_structured_data(result) == result


def test_empty_arrays_are_allowed():
    data = valid_data()
    for key in ("prescriptions", "diagnoses", "observations", "tests"):
        data[key] = []
    assert is_valid_structured_data(data)


@pytest.mark.parametrize("key", REQUIRED_KEYS)
def test_every_top_level_key_is_required(key):
    data = valid_data()
    del data[key]
    with pytest.raises(ParseError, match=f"Missing required field: {key}"):
        validate_structured_data(data)


def test_nested_required_fields():
    data = valid_data()
    del data["patient"]["name"]
    with pytest.raises(ParseError, match="patient.name"):
        validate_structured_data(data)

    data = valid_data()
    del data["doctor"]["signature"]
    assert not is_valid_structured_data(data)

    data = valid_data()
    del data["prescriptions"][0]["dosage"]
    assert not is_valid_structured_data(data)


def test_wrong_types_are_rejected():
    data = valid_data()
    data["prescriptions"] = "Amoxicillin"
    assert not is_valid_structured_data(data)
    assert not is_valid_structured_data(["not", "an", "object"])
    assert not is_valid_structured_data(None)


@pytest.mark.parametrize("age", [True, "45", 45.5])
def test_patient_age_must_be_an_integer(age):
    data = valid_data()
    data["patient"]["age"] = age
    with pytest.raises(ParseError, match="patient.age"):
        validate_structured_data(data)

def test_count_data_fields():
    assert count_data_fields(valid_data()) == {
        "prescriptions": 1,
        "diagnoses": 1,
        "observations": 2,
        "tests": 1,
    }


def test_response_schema_mirrors_required_keys():
    assert RESPONSE_SCHEMA["required"] == REQUIRED_KEYS
    assert set(RESPONSE_SCHEMA["properties"]) == set(REQUIRED_KEYS)
    assert RESPONSE_SCHEMA["properties"]["patient"]["required"] == ["name", "age", "gender"]
    assert RESPONSE_SCHEMA["properties"]["observations"]["type"] == "ARRAY"
