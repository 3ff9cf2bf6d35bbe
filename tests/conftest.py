"""Shared fixtures: a fake LMS API on httpx.MockTransport and an authenticated session."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from lms_admin.auth import MemorySessionProvider, Session
from lms_admin.cache import TaggedCache
from lms_admin.client import ResourceClient
from lms_admin.config import LmsConfig
from lms_admin.resources import COURSES, GROUPS

API_BASE = "http://lms.test/api/v1"


class FakeApi:
    """Canned responses keyed by (method, path); records every request it sees."""

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, json=None, content: bytes | None = None):
        self.routes.setdefault((method, f"/api/v1{path}"), []).append((status, json, content))
        return self

    def fail(self, method: str, path: str, exc_type=httpx.ConnectError):
        self.routes.setdefault((method, f"/api/v1{path}"), []).append(exc_type)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"success": False, "message": "Not found"})
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, type) and issubclass(entry, Exception):
            raise entry("connection refused", request=request)
        status, json, content = entry
        if content is not None:
            return httpx.Response(status, content=content)
        return httpx.Response(status, json=json)

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def listing(resource: str, records: list, page: int = 1, **extra) -> dict:
    """A list response in the API's envelope."""
    return {
        "success": True,
        "message": f"{resource} fetched",
        "code": 200,
        "data": {
            resource: records,
            "pagination": {"current_page": page, "last_page": 3, "per_page": 10, "total": 25},
            **extra,
        },
    }


@pytest.fixture
def config():
    return LmsConfig(api_base=API_BASE, timeout=5.0)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def session():
    return Session(
        access_token="secret-token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        id="7",
        name="Ada Admin",
        email="ada@example.com",
        roles=["admin"],
        permissions=["courses.manage"],
    )


@pytest.fixture
def sessions(session):
    return MemorySessionProvider(session)


@pytest.fixture
def cache():
    return TaggedCache()


@pytest.fixture
def courses(api, sessions, cache, config):
    return ResourceClient(COURSES, sessions, cache, config=config, transport=api.transport())


@pytest.fixture
def groups(api, sessions, cache, config):
    return ResourceClient(GROUPS, sessions, cache, config=config, transport=api.transport())
