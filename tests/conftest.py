import itertools
import json
import math
import re
import time
from datetime import datetime, timezone
from typing import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from periolifts.config import settings
from periolifts.database import build_engine, build_session_factory, init_cache_db
from periolifts.main import app
from periolifts.services.offline_cache import OfflineCache
from periolifts.services.record_store import PocketBaseClient

POCKETBASE_URL = "http://pocketbase.test"
USER_ID = "user_a"
OTHER_USER_ID = "user_b"

_RECORD_PATH = re.compile(r"^/api/collections/(?P<collection>[^/]+)/records(?:/(?P<record_id>[^/]+))?$")
_USER_FILTER = re.compile(r'user_id = "([^"]+)"')


class FakePocketBase:
    """In-memory stand-in for the PocketBase records API.

    Filters are honoured only for ``user_id``; tests that care about the
    rest of an expression assert on ``last_params`` instead.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = {}
        self.requests: list[httpx.Request] = []
        self.last_params: dict[str, str] = {}
        self.failures: list = []
        self.offline = False
        self._ids = itertools.count(1)

    def seed(self, collection: str, *records: dict) -> list[dict]:
        stored = []
        for record in records:
            record = dict(record)
            record.setdefault("id", f"rec{next(self._ids):04d}")
            record.setdefault("created", "2024-01-01 00:00:00.000Z")
            record.setdefault("updated", record["created"])
            self.collections.setdefault(collection, {})[record["id"]] = record
            stored.append(record)
        return stored

    def fail_next(self, status_code: int, body: dict | None = None) -> None:
        self.failures.append((status_code, body or {}))

    def drop_connection_next(self) -> None:
        self.failures.append(httpx.ConnectError("connection refused"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("offline", request=request)
        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            status_code, body = failure
            return httpx.Response(status_code, json=body)

        if request.url.path == "/api/health":
            return httpx.Response(200, json={"code": 200, "message": "API is healthy."})

        match = _RECORD_PATH.match(request.url.path)
        if match is None:
            return httpx.Response(404, json={"code": 404, "message": "The requested resource wasn't found."})
        records = self.collections.setdefault(match["collection"], {})
        record_id = match["record_id"]

        if record_id is None and request.method == "GET":
            return self._list(records, request)
        if record_id is None and request.method == "POST":
            body = json.loads(request.content)
            (created,) = self.seed(match["collection"], {**body, "created": _now()})
            return httpx.Response(200, json=created)
        if record_id not in records:
            return httpx.Response(404, json={"code": 404, "message": "The requested resource wasn't found."})
        if request.method == "GET":
            return httpx.Response(200, json=records[record_id])
        if request.method == "PATCH":
            records[record_id] = {**records[record_id], **json.loads(request.content), "updated": _now()}
            return httpx.Response(200, json=records[record_id])
        if request.method == "DELETE":
            del records[record_id]
            return httpx.Response(204)
        return httpx.Response(405)

    def _list(self, records: dict[str, dict], request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.last_params = params
        items = list(records.values())
        user = _USER_FILTER.search(params.get("filter", ""))
        if user:
            items = [item for item in items if item.get("user_id") == user.group(1)]
        page = int(params.get("page", 1))
        per_page = int(params.get("perPage", 30))
        total_pages = max(math.ceil(len(items) / per_page), 1) if items else 0
        start = (page - 1) * per_page
        return httpx.Response(
            200,
            json={
                "page": page,
                "perPage": per_page,
                "totalItems": len(items),
                "totalPages": total_pages,
                "items": items[start:start + per_page],
            },
        )


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.000Z")


def make_token(user_id: str = USER_ID, *, expires_in: int = 3600) -> str:
    claims = {"id": user_id, "type": "auth", "collectionId": "_pb_users_auth_", "exp": int(time.time()) + expires_in}
    return jwt.encode(claims, "test-signing-key", algorithm="HS256")


def workout_record(
    *,
    user_id: str = USER_ID,
    name: str = "Push Day",
    status: str = "completed",
    scheduled_date: str = "2024-05-10 08:00:00.000Z",
    started_at: str = "",
    completed_at: str = "",
    duration: int | str = "",
    exercises: list | None = None,
    **extra,
) -> dict:
    return {
        "user_id": user_id,
        "name": name,
        "status": status,
        "scheduled_date": scheduled_date,
        "started_at": started_at,
        "completed_at": completed_at,
        "duration": duration,
        "exercises": exercises if exercises is not None else [],
        "notes": "",
        **extra,
    }


def exercise(name: str, *sets: tuple, exercise_id: str | None = None) -> dict:
    """``sets`` are ``(reps, weight, completed)`` triples."""
    return {
        "exercise_id": exercise_id or name.lower().replace(" ", "_"),
        "exercise_name": name,
        "sets": [{"reps": reps, "weight": weight, "completed": completed} for reps, weight, completed in sets],
    }


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def fake_pb() -> FakePocketBase:
    return FakePocketBase()


@pytest.fixture
async def http_client(fake_pb) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_pb), base_url=POCKETBASE_URL) as c:
        yield c


@pytest.fixture
def store(http_client) -> PocketBaseClient:
    return PocketBaseClient(http_client, token=make_token(), retry_attempts=2, sleep=_no_sleep)


@pytest.fixture
async def offline_cache() -> AsyncGenerator[OfflineCache, None]:
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_cache_db(engine)
    yield OfflineCache(build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture(scope="function")
async def client(http_client, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    monkeypatch.setattr(settings, "NETWORK_RETRY_BACKOFF_SECONDS", 0.0)
    app.state.http_client = http_client
    app.state.offline_cache = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.state.http_client = None
    app.state.offline_cache = None
    app.dependency_overrides.clear()
