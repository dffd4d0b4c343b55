"""
Shared fixtures: an in-memory profile store, a scripted model client, and
an HTTP client bound to the app with the model dependency overridden.
"""

from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from mythilens.api.routes import get_model_client
from mythilens.main import app
from mythilens.models.dto import Site
from mythilens.services.profile_store import InMemoryProfileStore


class FakeModelClient:
    """Returns canned JSON and records every prompt it was sent."""

    def __init__(self, response: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.response = response if response is not None else {}
        self.error = error
        self.prompts: List[str] = []
        self.schemas: List[Dict[str, Any]] = []

    async def invoke(self, prompt, response_schema, add_context_from_internet=False):
        self.prompts.append(prompt)
        self.schemas.append(response_schema)
        if self.error is not None:
            raise self.error
        return self.response


def make_site(site_id: str, lat, lng, popularity: Optional[float] = 5.0, **kwargs) -> Site:
    return Site(id=site_id, latitude=lat, longitude=lng, popularity_score=popularity, **kwargs)


@pytest.fixture
def store():
    return InMemoryProfileStore()


@pytest.fixture
def fake_model():
    return FakeModelClient()


@pytest.fixture
def client(fake_model):
    app.dependency_overrides[get_model_client] = lambda: fake_model
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"X-User-Id": "ada@example.com"}
