"""Rate limit: POST /analysis/batch allows RATE_LIMIT_SUBMIT_PER_MINUTE (30 in tests), then 429."""
from fastapi.testclient import TestClient


def test_submit_limited_per_ip(client: TestClient, auth_headers):
    headers = {**auth_headers, "X-Forwarded-For": "203.0.113.7"}
    # Rejected submissions still count towards the limit
    for i in range(30):
        r = client.post("/analysis/batch", json={"imageUrls": [], "fieldId": "field-a"}, headers=headers)
        assert r.status_code == 400, f"Request {i+1} should be 400"
    r = client.post("/analysis/batch", json={"imageUrls": [], "fieldId": "field-a"}, headers=headers)
    assert r.status_code == 429
    j = r.json()
    assert j.get("error") == "Too many requests. Please wait a minute."
    assert j.get("status_code") == 429

    # Other clients are not affected
    other = {**auth_headers, "X-Forwarded-For": "198.51.100.2"}
    r = client.post("/analysis/batch", json={"imageUrls": [], "fieldId": "field-a"}, headers=other)
    assert r.status_code == 400
