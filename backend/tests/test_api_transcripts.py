from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from medscribe.main import app
from medscribe.models.attempt import TranscriptionAttempt
from medscribe.models.transcript import TranscriptStatus
from medscribe.services.transcription_job import TranscriptionJob

from tests.helpers import GIF_BYTES, JPEG_BYTES, PNG_BYTES, make_transcript, valid_data

client = TestClient(app)


def upload(title="Test", data=JPEG_BYTES, filename="scan.jpg", content_type="image/jpeg", **fields):
    return client.post(
        "/api/transcripts",
        data={"title": title, **fields},
        files={"image": (filename, data, content_type)},
    )


# --- create ---

def test_create_and_complete(scheduled):
    response = upload(description="Clinic note")

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["title"] == "Test"
    assert len(scheduled) == 1

    # Run the scheduled job with a stubbed AI client.
    stub = MagicMock()
    stub.transcribe.return_value = valid_data()
    spec = scheduled[0]
    TranscriptionJob(client_factory=lambda: stub).run(spec.transcript_id, spec.chain_id)

    detail = client.get(f"/api/transcripts/{body['id']}").json()
    assert detail["status"] == "completed"
    assert detail["structured_data"]["patient"]["name"] == "John Doe"
    assert detail["processed_at"] is not None
    assert detail["has_structured_data"] is True
    assert detail["can_retry"] is False
    assert detail["description"] == "Clinic note"
    assert detail["image_url"] == f"/api/transcripts/{body['id']}/image"


def test_create_rejects_gif_before_scheduling(scheduled):
    response = upload(data=GIF_BYTES, filename="scan.gif", content_type="image/gif")

    assert response.status_code == 400
    assert "jpg, jpeg, png, webp" in response.json()["detail"]
    assert scheduled == []
    assert client.get("/api/transcripts").json()["total"] == 0


def test_create_rejects_oversized_upload(scheduled, monkeypatch):
    from medscribe.api import routes_transcripts

    monkeypatch.setattr(routes_transcripts.settings, "MAX_UPLOAD_SIZE_MB", 0)
    response = upload()

    assert response.status_code == 413
    assert scheduled == []


def test_create_requires_title_and_image(scheduled):
    response = client.post("/api/transcripts", files={"image": ("scan.jpg", JPEG_BYTES, "image/jpeg")})
    assert response.status_code == 422

    response = client.post("/api/transcripts", data={"title": "No image"})
    assert response.status_code == 422

    response = upload(title="x" * 256)
    assert response.status_code == 422
    assert scheduled == []


# --- read side ---

def test_status_of_processing_record(db):
    transcript = make_transcript(db, status=TranscriptStatus.PROCESSING)

    response = client.get(f"/api/transcripts/{transcript.id}/status")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "processing"
    assert body["is_processing"] is True
    assert body["can_retry"] is False
    assert body["has_structured_data"] is False
    assert "structured_data" not in body


def test_status_of_failed_record(db):
    transcript = make_transcript(db, status=TranscriptStatus.FAILED)

    body = client.get(f"/api/transcripts/{transcript.id}/status").json()

    assert body["can_retry"] is True
    assert body["is_processing"] is False
    assert body["error_message"]


def test_unknown_transcript_is_404():
    response = client.get("/api/transcripts/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"detail": "Transcript not found"}


def test_list_stats_and_processing_count(db):
    make_transcript(db, title="Cardiology", status=TranscriptStatus.PROCESSING)
    make_transcript(db, title="Dermatology", status=TranscriptStatus.COMPLETED)

    listing = client.get("/api/transcripts", params={"search": "cardio"}).json()
    assert listing["total"] == 1
    assert listing["items"][0]["title"] == "Cardiology"
    assert listing["pages"] == 1

    stats = client.get("/api/transcripts/stats").json()
    assert stats["total"] == 2
    assert stats["processing"] == 1
    assert stats["completed"] == 1
    assert len(stats["recent"]) == 2

    assert client.get("/api/transcripts/processing-count").json() == {"count": 1}

    assert client.get("/api/transcripts", params={"status": "archived"}).status_code == 422


def test_image_download(db):
    transcript = make_transcript(db)

    response = client.get(f"/api/transcripts/{transcript.id}/image")

    assert response.status_code == 200
    assert response.content == JPEG_BYTES
    assert response.headers["content-type"] == "image/jpeg"


def test_attempt_history(db):
    transcript = make_transcript(db)
    db.add(
        TranscriptionAttempt(
            transcript_id=transcript.id,
            chain_id="chain-1",
            attempt_number=1,
            error_kind="network",
            error_detail="NetworkError: internal detail",
        )
    )
    db.commit()

    body = client.get(f"/api/transcripts/{transcript.id}/attempts").json()

    assert len(body) == 1
    assert body[0]["attempt_number"] == 1
    assert body[0]["error_kind"] == "network"
    assert "error_detail" not in body[0]


# --- mutations ---

def test_edit_image_of_completed_record(db, scheduled):
    transcript = make_transcript(db, status=TranscriptStatus.COMPLETED)

    response = client.patch(
        f"/api/transcripts/{transcript.id}",
        files={"image": ("new.png", PNG_BYTES, "image/png")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["structured_data"] is None
    assert body["processed_at"] is None
    assert body["content_type"] == "image/png"
    assert len(scheduled) == 1


def test_edit_metadata_only(db, scheduled):
    transcript = make_transcript(db, status=TranscriptStatus.COMPLETED)

    response = client.patch(f"/api/transcripts/{transcript.id}", data={"title": "Renamed"})

    assert response.status_code == 200
    assert response.json()["title"] == "Renamed"
    assert response.json()["status"] == "completed"
    assert scheduled == []


def test_edit_rejected_while_processing(db, scheduled):
    transcript = make_transcript(db, status=TranscriptStatus.PROCESSING)

    response = client.patch(
        f"/api/transcripts/{transcript.id}",
        files={"image": ("new.png", PNG_BYTES, "image/png")},
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "Cannot update transcript while it is being processed."
    assert scheduled == []


def test_retry_failed_record(db, scheduled):
    transcript = make_transcript(db, status=TranscriptStatus.FAILED)

    response = client.post(f"/api/transcripts/{transcript.id}/retry")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["error_message"] is None
    assert body["has_structured_data"] is False
    assert len(scheduled) == 1


def test_retry_rejected_for_completed_record(db, scheduled):
    transcript = make_transcript(db, status=TranscriptStatus.COMPLETED)

    response = client.post(f"/api/transcripts/{transcript.id}/retry")

    assert response.status_code == 400
    assert response.json() == {"detail": "Only failed transcripts can be retried."}
    assert client.get(f"/api/transcripts/{transcript.id}/status").json()["status"] == "completed"
    assert scheduled == []


def test_delete(db, image_dir):
    transcript = make_transcript(db)

    response = client.delete(f"/api/transcripts/{transcript.id}")

    assert response.status_code == 204
    assert not (image_dir / transcript.image_key).exists()
    assert client.get(f"/api/transcripts/{transcript.id}").status_code == 404
    assert client.delete(f"/api/transcripts/{transcript.id}").status_code == 404
