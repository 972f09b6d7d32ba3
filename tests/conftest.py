"""
Pytest configuration and shared fixtures.

Provides fake generation clients, store and service fixtures, and
environment setup for the AgriCare test suite.

IMPORTANT: Environment variables must be set BEFORE importing agricare
modules that use pydantic-settings, so that no developer key or .env
value leaks into the tests.
"""

import os

# Set test environment variables before importing agricare modules
for _name in ("GEMINI_API_KEY", "GEMINI_API_KEY_2", "GEMINI_API_KEY_3"):
    os.environ.pop(_name, None)
os.environ["AI_PROVIDER"] = "gemini"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["RETRY_DELAY_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DEBUG"] = "false"

# Now safe to import everything else
import pytest
from fastapi.testclient import TestClient

from agricare.dispatcher import GenerationResult, KeyRotatingDispatcher, TokenUsage

from tests.fixtures import FakeAPIError, advisory_reply


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset all singleton instances between tests.

    This ensures each test starts with a clean state.
    """
    yield

    from agricare.advisory.service import reset_advisory_service
    from agricare.config import get_settings
    from agricare.dispatcher import reset_dispatcher
    from agricare.metrics import get_stats_store
    from agricare.storage import reset_farm_store

    reset_advisory_service()
    reset_dispatcher()
    reset_farm_store()
    get_stats_store().reset()
    get_settings.cache_clear()


# =============================================================================
# FAKE PROVIDER
# =============================================================================


class FakeClient:
    """Generation client bound to one credential, driven by FakeProvider."""

    def __init__(self, provider: "FakeProvider", credential: str):
        self.provider = provider
        self.credential = credential

    async def generate(self, request):
        self.provider.calls.append(self.credential)
        self.provider.requests.append(request)

        queue = self.provider.behaviors.get(self.credential, [self.provider.default])
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(outcome, Exception):
            raise outcome
        return GenerationResult(
            text=outcome,
            model=request.model,
            provider="fake",
            latency_ms=5.0,
            tokens=TokenUsage(input_tokens=10, output_tokens=20),
        )


class FakeProvider:
    """
    Scriptable stand-in for a generation endpoint.

    behaviors maps a credential to a list of outcomes consumed one per
    call (the last one repeats). An outcome is response text or an
    exception instance to raise.

    Attributes:
        calls: Credential used by each attempt, in order
        created: Credentials a client was constructed for, in order
        requests: Request envelope of each attempt
    """

    def __init__(self, behaviors: dict | None = None, default="ok"):
        self.behaviors = {key: list(value) for key, value in (behaviors or {}).items()}
        self.default = default
        self.calls: list[str] = []
        self.created: list[str] = []
        self.requests: list = []

    def factory(self, credential: str) -> FakeClient:
        self.created.append(credential)
        return FakeClient(self, credential)


@pytest.fixture
def fake_provider():
    """
    Factory fixture for FakeProvider instances.

    Usage:
        provider = fake_provider({"key-a": [FakeAPIError("429", 429)]})
    """

    def _create(behaviors: dict | None = None, default="ok"):
        return FakeProvider(behaviors, default)

    return _create


@pytest.fixture
def rate_limited():
    """A retryable provider error (HTTP 429)."""
    return FakeAPIError("429 RESOURCE_EXHAUSTED: quota exceeded", status_code=429)


@pytest.fixture
def bad_request():
    """A non-retryable provider error (HTTP 400)."""
    return FakeAPIError("400 INVALID_ARGUMENT: schema rejected", status_code=400)


@pytest.fixture
def credentials():
    """Three distinct credentials, long enough to pass validation."""
    return ["key-alpha-0001", "key-bravo-0002", "key-charlie-003"]


@pytest.fixture
def make_dispatcher(fake_provider):
    """
    Build a KeyRotatingDispatcher over a FakeProvider.

    Usage:
        dispatcher, provider = make_dispatcher(["k1..."], {"k1...": [...]})
    """

    def _create(creds, behaviors=None, default="ok", **kwargs):
        provider = fake_provider(behaviors, default)
        dispatcher = KeyRotatingDispatcher(
            credentials=creds,
            client_factory=provider.factory,
            **kwargs,
        )
        return dispatcher, provider

    return _create


# =============================================================================
# ADVISORY FIXTURES
# =============================================================================


class ScriptedDispatcher:
    """
    Dispatcher double answering each request with advisory_reply, or
    raising a fixed error.
    """

    def __init__(self, error: Exception | None = None, credential_count: int = 2):
        self.error = error
        self.requests: list = []
        self.credential_count = credential_count
        self.cursor = 0
        self.has_credentials = credential_count > 0

    def credential_labels(self) -> list[str]:
        return ["key-...001"] * self.credential_count

    async def dispatch(self, request, retries=None):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            text=advisory_reply(request),
            model=request.model,
            provider="fake",
            latency_ms=3.0,
            sources=[{"title": "Met Office", "uri": "https://example.org/bd"}]
            if request.use_search
            else [],
        )


@pytest.fixture
def scripted_dispatcher():
    """Factory for ScriptedDispatcher instances."""

    def _create(error: Exception | None = None, credential_count: int = 2):
        return ScriptedDispatcher(error, credential_count)

    return _create


@pytest.fixture
def farm_store():
    """Fresh in-memory farm store."""
    from agricare.storage import InMemoryFarmStore

    return InMemoryFarmStore()


@pytest.fixture
def sample_field():
    from agricare.storage import Field

    return Field(
        field_id=7,
        user_id="u1",
        field_name="North Plot",
        location="Bogura",
        size=2.0,
        soil_type="Loamy",
    )


@pytest.fixture
def dry_conditions():
    from agricare.advisory import FieldConditions

    return FieldConditions(
        temperature=31.0, moisture=18.0, ph_level=5.2, npk_n=15, npk_p=12, npk_k=100
    )


@pytest.fixture
def seeded_store(farm_store):
    """
    Store with one user, two fields and sensors on the first field.

    Fields: 1 "North Plot" (Bogura), 2 "River Plot" (Rajshahi).
    """
    from agricare.storage import NPK, Field, Sensor, SensorReading, User

    farm_store.register_user(
        User(id="u1", name="Rahim", email="rahim@example.com"), "boro-2026"
    )
    north = farm_store.add_field(
        Field(user_id="u1", field_name="North Plot", location="Bogura", size=2.0)
    )
    farm_store.add_field(
        Field(user_id="u1", field_name="River Plot", location="Rajshahi", size=1.5,
              soil_type="Clay")
    )
    farm_store.upsert_sensor(
        Sensor(field_id=north.field_id, sensor_type="Soil Moisture",
               last_reading=SensorReading(value=18.0))
    )
    farm_store.upsert_sensor(
        Sensor(field_id=north.field_id, sensor_type="NPK Probe",
               last_reading=SensorReading(npk=NPK(n=15, p=12, k=100)))
    )
    return farm_store


@pytest.fixture
def test_client(seeded_store, scripted_dispatcher):
    """
    FastAPI TestClient with the seeded store and a scripted dispatcher.

    Dependencies are swapped with app.dependency_overrides; the service
    object is exposed as client.service for assertions.
    """
    from agricare.advisory import AdvisoryService, get_advisory_service
    from agricare.main import app
    from agricare.storage import get_farm_store

    service = AdvisoryService(dispatcher=scripted_dispatcher())
    app.dependency_overrides[get_farm_store] = lambda: seeded_store
    app.dependency_overrides[get_advisory_service] = lambda: service

    with TestClient(app) as client:
        client.service = service
        client.store = seeded_store
        yield client

    app.dependency_overrides.clear()
