"""Structured transcription schema.

``MedicalTranscript`` is the Pydantic rendition of the tree stored in
``Transcript.structured_data``.  ``RESPONSE_SCHEMA`` is the same shape in the
OpenAPI subset understood by the Gemini ``responseSchema`` field; both must
change together.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, StrictInt, ValidationError

from medscribe.errors import ParseError

REQUIRED_KEYS = [
    "patient",
    "date",
    "prescriptions",
    "diagnoses",
    "observations",
    "tests",
    "instructions",
    "doctor",
]


class _SchemaModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Patient(_SchemaModel):
    name: str
    age: StrictInt
    gender: str


class Prescription(_SchemaModel):
    drug_name: str
    dosage: str
    route: str
    frequency: str
    duration: str
    notes: Optional[str] = None


class Diagnosis(_SchemaModel):
    condition: str
    notes: Optional[str] = None


class LabTest(_SchemaModel):
    test_name: str
    result: Optional[str] = None
    normal_range: Optional[str] = None
    notes: Optional[str] = None


class Doctor(_SchemaModel):
    name: str
    signature: str


class MedicalTranscript(_SchemaModel):
    patient: Patient
    date: str
    prescriptions: List[Prescription]
    diagnoses: List[Diagnosis]
    observations: List[str]
    tests: List[LabTest]
    instructions: str
    doctor: Doctor


def validate_structured_data(data: Any) -> dict[str, Any]:
    """Validate *data* against the transcription schema.

    Returns the normalised tree (unknown keys dropped, optional keys present).
    Raises ``ParseError`` naming the first offending location otherwise.
    """
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ParseError(f"Missing required field: {missing[0]}")

    try:
        model = MedicalTranscript.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ParseError(f"Invalid transcription field {location}: {first['msg']}") from exc
    return model.model_dump()


def is_valid_structured_data(data: Any) -> bool:
    try:
        validate_structured_data(data)
    except ParseError:
        return False
    return True


def count_data_fields(data: dict[str, Any]) -> dict[str, int]:
    """Number of entries per list section, used for completion logging."""
    return {
        "prescriptions": len(data.get("prescriptions") or []),
        "diagnoses": len(data.get("diagnoses") or []),
        "observations": len(data.get("observations") or []),
        "tests": len(data.get("tests") or []),
    }


def _string(nullable: bool = False) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "STRING"}
    if nullable:
        schema["nullable"] = True
    return schema


RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "patient": {
            "type": "OBJECT",
            "properties": {
                "name": _string(),
                "age": {"type": "INTEGER"},
                "gender": _string(),
            },
            "required": ["name", "age", "gender"],
        },
        "date": _string(),
        "prescriptions": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "drug_name": _string(),
                    "dosage": _string(),
                    "route": _string(),
                    "frequency": _string(),
                    "duration": _string(),
                    "notes": _string(nullable=True),
                },
                "required": ["drug_name", "dosage", "route", "frequency", "duration"],
            },
        },
        "diagnoses": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "condition": _string(),
                    "notes": _string(nullable=True),
                },
                "required": ["condition"],
            },
        },
        "observations": {"type": "ARRAY", "items": _string()},
        "tests": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "test_name": _string(),
                    "result": _string(nullable=True),
                    "normal_range": _string(nullable=True),
                    "notes": _string(nullable=True),
                },
                "required": ["test_name"],
            },
        },
        "instructions": _string(),
        "doctor": {
            "type": "OBJECT",
            "properties": {
                "name": _string(),
                "signature": _string(),
            },
            "required": ["name", "signature"],
        },
    },
    "required": list(REQUIRED_KEYS),
}
