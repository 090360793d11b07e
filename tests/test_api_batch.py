"""Batch analysis API: submit, poll, results, ownership, cancel, events, admin."""
import time

from conftest import make_headers
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from app.core.config import settings
from app.core.database import engine
from app.models import SecurityLog

URLS = ["https://img.example/a.jpg", "https://img.example/b.jpg"]


def _submit(client: TestClient, headers: dict, urls=URLS, **extra) -> dict:
    body = {"imageUrls": urls, "fieldId": "field-a", "analysisType": "comprehensive", **extra}
    r = client.post("/analysis/batch", json=body, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def _wait_terminal(client: TestClient, headers: dict, job_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        r = client.get(f"/analysis/batch/{job_id}", headers=headers)
        assert r.status_code == 200
        job = r.json()
        if job["status"] in ("completed", "failed"):
            return job
        assert time.monotonic() < deadline, f"job still {job['status']}"
        time.sleep(0.05)


def test_submit_returns_handle(client: TestClient, auth_headers):
    j = _submit(client, auth_headers)
    assert j["success"] is True
    assert j["status"] == "processing"
    assert j["totalImages"] == 2
    assert j["batchAnalysisId"]


def test_batch_runs_to_completion(client: TestClient, auth_headers):
    job_id = _submit(client, auth_headers)["batchAnalysisId"]
    job = _wait_terminal(client, auth_headers, job_id)
    assert job["status"] == "completed"
    assert job["total_images"] == 2
    assert job["field_id"] == "field-a"
    summary = job["results_summary"]
    assert summary["successful_analyses"] == 2
    assert summary["average_health_score"] == 80.0

    r = client.get(f"/analysis/batch/{job_id}/results", headers=auth_headers)
    assert r.status_code == 200
    results = r.json()
    assert [x["image_url"] for x in results] == URLS
    assert all(x["status"] == "ok" for x in results)
    assert results[0]["crop_health"]["health_score"] == 80


def test_requires_token(client: TestClient):
    r = client.post("/analysis/batch", json={"imageUrls": URLS, "fieldId": "field-a"})
    assert r.status_code == 401
    assert r.json()["error"] == "No authorization header"


def test_invalid_token_is_logged(client: TestClient):
    r = client.get("/analysis/batch/whatever", headers={"Authorization": "Bearer not-a-jwt", "X-Forwarded-For": "192.0.2.44"})
    assert r.status_code == 401
    with Session(engine) as db:
        rows = db.exec(select(SecurityLog).where(SecurityLog.ip == "192.0.2.44")).all()
    assert [row.event for row in rows] == ["invalid_token"]


def test_other_users_job_is_not_found(client: TestClient, auth_headers):
    job_id = _submit(client, auth_headers)["batchAnalysisId"]
    other = make_headers("farmer-2")
    assert client.get(f"/analysis/batch/{job_id}", headers=other).status_code == 404
    assert client.get(f"/analysis/batch/{job_id}/results", headers=other).status_code == 404
    assert client.post(f"/analysis/batch/{job_id}/cancel", headers=other).status_code == 404
    _wait_terminal(client, auth_headers, job_id)


def test_empty_batch_is_rejected(client: TestClient, auth_headers):
    r = client.post("/analysis/batch", json={"imageUrls": [], "fieldId": "field-a"}, headers=auth_headers)
    assert r.status_code == 400
    j = r.json()
    assert j["error"] == "Please provide at least one image."
    assert j["status_code"] == 400
    assert j["request_id"] == r.headers["X-Request-ID"]


def test_missing_field_is_rejected(client: TestClient, auth_headers):
    r = client.post("/analysis/batch", json={"imageUrls": URLS}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Please select a field."


def test_unknown_analysis_type_is_422(client: TestClient, auth_headers):
    r = client.post(
        "/analysis/batch",
        json={"imageUrls": URLS, "fieldId": "field-a", "analysisType": "everything"},
        headers=auth_headers,
    )
    assert r.status_code == 422
    assert "analysisType" in r.json()["error"]


def test_cancel_completed_job(client: TestClient, auth_headers):
    job_id = _submit(client, auth_headers)["batchAnalysisId"]
    _wait_terminal(client, auth_headers, job_id)
    r = client.post(f"/analysis/batch/{job_id}/cancel", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"cancelled": False, "status": "completed"}


def test_events_stream_ends_for_finished_job(client: TestClient, auth_headers):
    job_id = _submit(client, auth_headers)["batchAnalysisId"]
    _wait_terminal(client, auth_headers, job_id)
    r = client.get(f"/analysis/batch/{job_id}/events", headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.text.startswith("event: SNAPSHOT\n")
    assert '"status": "completed"' in r.text


def test_admin_jobs_not_configured(client: TestClient):
    r = client.get("/admin/jobs", headers={"X-Admin-Secret": "anything"})
    assert r.status_code == 503


def test_admin_jobs(client: TestClient, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "admin_secret", "s3cret")
    job_id = _submit(client, make_headers("admin-view-user"))["batchAnalysisId"]

    assert client.get("/admin/jobs", headers={"X-Admin-Secret": "wrong"}).status_code == 403
    r = client.get("/admin/jobs", params={"user_id": "admin-view-user"}, headers={"X-Admin-Secret": "s3cret"})
    assert r.status_code == 200
    assert [j["id"] for j in r.json()] == [job_id]
    r = client.get("/admin/jobs", params={"status": "exploded"}, headers={"X-Admin-Secret": "s3cret"})
    assert r.status_code == 400
    _wait_terminal(client, make_headers("admin-view-user"), job_id)
