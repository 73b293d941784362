"""Integration test fixtures.

Provides a fully wired TrackerSession against a respx-mocked backend. The
mock backend keeps a real subscription set so subscribe/unsubscribe calls
change what the list endpoint returns.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from classtracker.api import ApiClient, build_http_client
from classtracker.config import Settings
from classtracker.identity import Identity, StaticIdentityProvider
from classtracker.session import TrackerSession
from tests.conftest import BASE_URL, SAMPLE_HITS, courses_payload, subscriptions_payload


class FakeBackend:
    """In-memory stand-in for the course/subscription API."""

    def __init__(self) -> None:
        self.subscriptions: set[tuple[str, str]] = set()
        self.registered: list[dict] = []
        self.reject_mutations = False

    def courses(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=courses_payload(SAMPLE_HITS, found=120))

    def list_subscriptions(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=subscriptions_payload(*sorted(self.subscriptions)))

    def subscribe(self, request: httpx.Request) -> httpx.Response:
        if self.reject_mutations:
            return httpx.Response(500)
        body = json.loads(request.content)
        self.subscriptions.add((body["courseId"], body["courseSubjectCode"]))
        return httpx.Response(200, json={"message": "Subscribed"})

    def unsubscribe(self, request: httpx.Request) -> httpx.Response:
        if self.reject_mutations:
            return httpx.Response(500)
        body = json.loads(request.content)
        self.subscriptions.discard((body["courseId"], body["courseSubjectCode"]))
        return httpx.Response(200, json={"message": "Unsubscribed"})

    def register(self, request: httpx.Request) -> httpx.Response:
        self.registered.append(json.loads(request.content)["user"])
        return httpx.Response(200)


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def router(backend: FakeBackend):
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        mock.get("/api/courses", name="courses").mock(side_effect=backend.courses)
        mock.get("/api/subscriptions", name="subscriptions").mock(
            side_effect=backend.list_subscriptions
        )
        mock.post("/api/subscribe", name="subscribe").mock(side_effect=backend.subscribe)
        mock.post("/api/unsubscribe", name="unsubscribe").mock(side_effect=backend.unsubscribe)
        mock.post("/api/register", name="register").mock(side_effect=backend.register)
        yield mock


@pytest.fixture()
async def api(settings: Settings, router: respx.MockRouter):
    async with build_http_client(settings.api) as client:
        yield ApiClient(client)


@pytest.fixture()
async def session(settings: Settings, api: ApiClient):
    identity = Identity.signed_in("bucky@wisc.edu", "Bucky Badger")
    s = TrackerSession(settings, api, StaticIdentityProvider(identity))
    await s.open()
    yield s
    s.close()


@pytest.fixture()
async def anonymous_session(settings: Settings, api: ApiClient):
    s = TrackerSession(settings, api, StaticIdentityProvider())
    await s.open()
    yield s
    s.close()
