"""Test data shared by several modules."""

import copy
import json

from medscribe.models.transcript import Transcript, TranscriptStatus
from medscribe.utils.storage import store_image

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 64
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
GIF_BYTES = b"GIF89a" + b"\x00" * 64

VALID_DATA = {
    "patient": {"name": "John Doe", "age": 45, "gender": "Male"},
    "date": "2024-01-15",
    "prescriptions": [
        {
            "drug_name": "Amoxicillin",
            "dosage": "500mg",
            "route": "Oral",
            "frequency": "3 times daily",
            "duration": "7 days",
            "notes": "Take with food",
        }
    ],
    "diagnoses": [{"condition": "Upper respiratory infection", "notes": None}],
    "observations": ["Mild fever", "Sore throat"],
    "tests": [{"test_name": "CBC", "result": "Normal", "normal_range": None, "notes": None}],
    "instructions": "Rest and drink plenty of fluids",
    "doctor": {"name": "Dr. Smith", "signature": "J. Smith"},
}


def valid_data():
    return copy.deepcopy(VALID_DATA)


def gemini_body(data=None, finish_reason="STOP"):
    """A ``generateContent`` response body carrying *data* as JSON text."""
    text = json.dumps(valid_data() if data is None else data)
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": text}]},
                "finishReason": finish_reason,
            }
        ]
    }


def make_transcript(db, status=TranscriptStatus.PENDING, chain_id="chain-1", title="Test", **fields):
    """Insert a record whose fields are consistent with *status*."""
    values = {
        "title": title,
        "image_key": store_image(JPEG_BYTES, "image/jpeg"),
        "content_type": "image/jpeg",
        "status": status,
        "active_chain_id": chain_id,
    }
    if status == TranscriptStatus.COMPLETED:
        values.update(Transcript.completion_values(valid_data()))
    elif status == TranscriptStatus.FAILED:
        values.update(Transcript.failure_values("The transcription service is temporarily unavailable."))
    values.update(fields)
    transcript = Transcript(**values)
    db.add(transcript)
    db.commit()
    db.refresh(transcript)
    return transcript
