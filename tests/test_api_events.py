"""Change event stream of a running batch."""
import json

import pytest
from conftest import FakeInvoker
from fastapi.testclient import TestClient


@pytest.fixture
def fake_invoker():
    # Slow enough that the stream is open before the first result row lands
    return FakeInvoker(delay=0.5)


def _parse_sse(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = block.splitlines()
        if not lines or lines[0].startswith(":"):
            continue
        event_type = lines[0].removeprefix("event: ")
        data = json.loads(lines[1].removeprefix("data: "))
        events.append((event_type, data))
    return events


def test_stream_follows_job_to_completion(client: TestClient, auth_headers):
    r = client.post(
        "/analysis/batch",
        json={"imageUrls": ["https://img.example/1.jpg", "https://img.example/2.jpg"], "fieldId": "field-a"},
        headers=auth_headers,
    )
    job_id = r.json()["batchAnalysisId"]

    r = client.get(f"/analysis/batch/{job_id}/events", headers=auth_headers)
    assert r.status_code == 200
    events = _parse_sse(r.text)

    first_type, first = events[0]
    assert first_type == "SNAPSHOT"
    assert first["record"]["status"] == "processing"

    inserts = [data for kind, data in events if kind == "INSERT"]
    assert sorted(d["record"]["image_index"] for d in inserts) == [0, 1]
    assert all(d["table"] == "advanced_image_results" for d in inserts)

    last_type, last = events[-1]
    assert last_type == "UPDATE"
    assert last["table"] == "batch_image_analysis"
    assert last["record"]["status"] == "completed"
    assert last["record"]["results_summary"]["successful_analyses"] == 2
