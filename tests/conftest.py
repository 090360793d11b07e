"""Pytest fixtures: test client, test DB (in-memory SQLite), scripted model invoker."""
import asyncio
import os

import pytest
from fastapi.testclient import TestClient

# In-memory SQLite for tests (must be set before the app is imported)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-dummy")
os.environ.setdefault("RATE_LIMIT_SUBMIT_PER_MINUTE", "30")

from app.core.database import init_db
from app.core.rate_limit import limiter
from app.core.security import create_access_token
from app.main import app
from app.services.batch_orchestrator import BatchOrchestrator
from app.services.job_scheduler import CancelToken

DEFAULT_RESPONSES = {
    "health": {"health_score": 80, "stress_indicators": [], "water_status": "adequate"},
    "disease": {"diseases_detected": False, "disease_types": []},
    "pest": {"pests_detected": False, "pest_types": []},
    "growth_stage": {"growth_stage": "vegetative", "development_percentage": 100, "stage_specific_needs": []},
    "soil_quality": {"soil_texture": "loam", "improvement_needs": []},
}


class FakeInvoker:
    """
    ModelInvoker double. `script[(image_url, dimension_key)]` is a response dict
    or an exception instance to raise; unscripted calls get DEFAULT_RESPONSES.
    """

    def __init__(self, script=None, delay: float = 0.0):
        self.script = dict(script or {})
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight: set[str] = set()
        self.max_images_in_flight = 0

    async def _respond(self, image_url, spec):
        self.calls.append((image_url, spec.key))
        self.in_flight.add(image_url)
        self.max_images_in_flight = max(self.max_images_in_flight, len(self.in_flight))
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight.discard(image_url)
        value = self.script.get((image_url, spec.key), DEFAULT_RESPONSES[spec.key])
        if isinstance(value, BaseException):
            raise value
        return spec.schema.model_validate(value)

    async def invoke(self, image_url, spec, token: CancelToken | None = None):
        call = self._respond(image_url, spec)
        if token is not None:
            return await token.run(call)
        return await call


@pytest.fixture(scope="session", autouse=True)
def _tables():
    init_db()


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture(scope="function")
def client(fake_invoker):
    """TestClient with an orchestrator on the fake invoker; lifespan creates the tables."""
    app.state.orchestrator = BatchOrchestrator(fake_invoker, retry_attempts=0)
    limiter.reset()
    with TestClient(app) as c:
        yield c
    app.state.orchestrator = None


def make_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def auth_headers():
    return make_headers("farmer-1")
