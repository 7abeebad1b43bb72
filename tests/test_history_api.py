import pytest
from httpx import AsyncClient

from conftest import OTHER_USER_ID, USER_ID, exercise, make_token, workout_record
from periolifts.auth.dependencies import read_session
from periolifts.core.exceptions import AuthenticationError
from periolifts.main import app

COLLECTION = "workout_history"


def test_read_session_takes_user_from_claims():
    session = read_session(make_token("abc123"))

    assert session.user_id == "abc123"


@pytest.mark.parametrize("token", ["not-a-jwt", make_token(expires_in=-10)])
def test_read_session_rejects_bad_tokens(token):
    with pytest.raises(AuthenticationError):
        read_session(token)


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_healthz_checks_record_store(client: AsyncClient, fake_pb):
    ok = await client.get("/healthz")
    fake_pb.offline = True
    down = await client.get("/healthz")

    assert ok.json() == {"status": "ok", "record_store": "ok"}
    assert down.status_code == 503


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(client: AsyncClient):
    response = await client.get("/api/v1/history", headers={"X-Request-ID": "req-1"})

    assert response.status_code == 401
    body = response.json()
    assert body["kind"] == "authentication"
    assert body["request_id"] == "req-1"
    assert body["retryable"] is False


@pytest.mark.asyncio
async def test_list_history(client: AsyncClient, fake_pb, auth_headers):
    fake_pb.seed(
        COLLECTION,
        workout_record(name="Mine", completed_at="2024-05-10 09:00:00.000Z"),
        workout_record(user_id=OTHER_USER_ID, name="Theirs"),
    )

    response = await client.get("/api/v1/history", params={"perPage": 5, "status": "completed"}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_items"] == 1
    assert [item["name"] for item in data["items"]] == ["Mine"]
    assert 'status = "completed"' in fake_pb.last_params["filter"]


@pytest.mark.asyncio
async def test_bad_paging_is_a_400(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/history", params={"perPage": 500}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"


@pytest.mark.asyncio
async def test_create_get_update_delete(client: AsyncClient, fake_pb, auth_headers):
    payload = {
        "name": "Leg Day",
        "status": "completed",
        "scheduled_date": "2099-01-01T08:00:00Z",
        "exercises": [exercise("Squat", (5, 100, True))],
    }

    created = await client.post("/api/v1/history", json=payload, headers=auth_headers)
    assert created.status_code == 201
    record_id = created.json()["data"]["id"]

    fetched = await client.get(f"/api/v1/history/{record_id}", headers=auth_headers)
    assert fetched.json()["data"]["exercises"][0]["name"] == "Squat"

    updated = await client.put(
        f"/api/v1/history/{record_id}", json={**payload, "name": "Heavy Leg Day"}, headers=auth_headers
    )
    assert updated.json()["data"]["name"] == "Heavy Leg Day"

    deleted = await client.delete(f"/api/v1/history/{record_id}", headers=auth_headers)
    assert deleted.status_code == 200
    assert fake_pb.collections[COLLECTION] == {}


@pytest.mark.asyncio
async def test_someone_elses_workout_is_forbidden(client: AsyncClient, fake_pb, auth_headers):
    (theirs,) = fake_pb.seed(COLLECTION, workout_record(user_id=OTHER_USER_ID))

    response = await client.get(f"/api/v1/history/{theirs['id']}", headers=auth_headers)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_workout_is_not_found(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/history/nope", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_store_outage_maps_to_503(client: AsyncClient, fake_pb, auth_headers):
    fake_pb.offline = True

    response = await client.get("/api/v1/history/recent", headers=auth_headers)

    assert response.status_code == 503
    assert response.json()["retryable"] is True


@pytest.mark.asyncio
async def test_upstream_5xx_maps_to_502(client: AsyncClient, fake_pb, auth_headers):
    fake_pb.fail_next(500, {"message": "Something went wrong while processing your request."})

    response = await client.get("/api/v1/analytics/stats", headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["message"] == "Something went wrong while processing your request."


@pytest.mark.asyncio
async def test_stats_for_custom_range(client: AsyncClient, fake_pb, auth_headers):
    fake_pb.seed(
        COLLECTION,
        workout_record(
            completed_at="2024-05-14 09:00:00.000Z",
            duration=2400,
            exercises=[exercise("Bench Press", (10, 50, True), (8, 0, True))],
        ),
        workout_record(status="planned", scheduled_date="2024-05-16 09:00:00.000Z"),
    )

    response = await client.get(
        "/api/v1/analytics/stats",
        params={"from": "2024-05-01T00:00:00Z", "to": "2024-05-31T23:59:59Z"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_workouts"] == 2
    assert data["completed_workouts"] == 1
    assert data["completion_rate"] == 50.0
    assert data["total_weight_lifted"] == 500
    assert data["average_duration_seconds"] == 2400
    assert data["exercise_frequency"] == {"Bench Press": 1}
    assert data["exercise_progress"][0]["total_reps"] == 18


@pytest.mark.asyncio
async def test_inverted_range_is_rejected(client: AsyncClient, auth_headers):
    response = await client.get(
        "/api/v1/analytics/stats",
        params={"from": "2024-06-01T00:00:00Z", "to": "2024-05-01T00:00:00Z"},
        headers=auth_headers,
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_half_open_range_is_rejected(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/analytics/calendar", params={"from": "2024-06-01T00:00:00Z"}, headers=auth_headers)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_period_is_a_422(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/analytics/stats", params={"period": "decade"}, headers=auth_headers)

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("period", ["week", "month", "quarter", "year"])
async def test_period_ranges_are_accepted(client: AsyncClient, auth_headers, period):
    response = await client.get("/api/v1/analytics/patterns", params={"period": period}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["current_streak"] == 0
    assert set(data["weekly_pattern"]) == {"1", "2", "3", "4", "5", "6", "7"}


@pytest.mark.asyncio
async def test_calendar_and_personal_records(client: AsyncClient, fake_pb, auth_headers):
    fake_pb.seed(
        COLLECTION,
        workout_record(completed_at="2024-05-14 09:00:00.000Z", exercises=[exercise("Row", (8, 60, True))]),
        workout_record(completed_at="2024-05-14 18:00:00.000Z", exercises=[exercise("Curl", (10, 15, True))]),
    )
    params = {"from": "2024-05-01T00:00:00Z", "to": "2024-05-31T00:00:00Z"}

    calendar = await client.get("/api/v1/analytics/calendar", params=params, headers=auth_headers)
    records = await client.get("/api/v1/analytics/personal-records", params=params, headers=auth_headers)

    (day,) = calendar.json()["data"]
    assert day["day"] == "2024-05-14"
    assert day["completed"] == 2
    assert [r["exercise_name"] for r in records.json()["data"]["personal_records"]] == ["Row", "Curl"]


@pytest.mark.asyncio
async def test_sync_without_cache_is_a_noop(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/history/sync", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"applied": 0, "rejected": [], "remaining": 0}


@pytest.mark.asyncio
async def test_sync_replays_queued_writes(client: AsyncClient, fake_pb, offline_cache, auth_headers):
    app.state.offline_cache = offline_cache
    fake_pb.offline = True
    queued = await client.post(
        "/api/v1/history",
        json={"name": "Offline", "scheduled_date": "2099-01-01T08:00:00Z"},
        headers=auth_headers,
    )
    fake_pb.offline = False

    synced = await client.post("/api/v1/history/sync", headers=auth_headers)

    assert queued.status_code == 201
    assert queued.json()["data"]["id"].startswith("local-")
    assert synced.json()["data"]["applied"] == 1
    assert [r["name"] for r in fake_pb.collections[COLLECTION].values()] == ["Offline"]


@pytest.mark.asyncio
async def test_other_token_sees_own_history_only(client: AsyncClient, fake_pb):
    fake_pb.seed(COLLECTION, workout_record(name="A"), workout_record(user_id=OTHER_USER_ID, name="B"))

    response = await client.get(
        "/api/v1/history/recent", headers={"Authorization": f"Bearer {make_token(OTHER_USER_ID)}"}
    )

    assert [w["name"] for w in response.json()["data"]] == ["B"]


@pytest.mark.asyncio
async def test_other_users_sync_leaves_queue_alone(client: AsyncClient, fake_pb, offline_cache, auth_headers):
    app.state.offline_cache = offline_cache
    fake_pb.offline = True
    await client.post(
        "/api/v1/history",
        json={"name": "Offline", "scheduled_date": "2099-01-01T08:00:00Z"},
        headers=auth_headers,
    )
    fake_pb.offline = False

    synced = await client.post(
        "/api/v1/history/sync", headers={"Authorization": f"Bearer {make_token(OTHER_USER_ID)}"}
    )

    assert synced.json()["data"] == {"applied": 0, "rejected": [], "remaining": 0}
    assert len(await offline_cache.pending(USER_ID)) == 1
    assert fake_pb.collections.get(COLLECTION, {}) == {}


@pytest.mark.asyncio
async def test_period_stats_are_served_from_cache_when_offline(
    client: AsyncClient, fake_pb, offline_cache, auth_headers
):
    app.state.offline_cache = offline_cache
    fake_pb.seed(COLLECTION, workout_record(status="planned", scheduled_date="2099-01-01 08:00:00.000Z"))
    await client.get("/api/v1/analytics/stats", params={"period": "month"}, headers=auth_headers)
    online = await client.get("/api/v1/analytics/stats", params={"period": "month"}, headers=auth_headers)
    fake_pb.offline = True

    offline = await client.get("/api/v1/analytics/stats", params={"period": "month"}, headers=auth_headers)

    assert offline.status_code == 200
    assert offline.json()["data"]["total_workouts"] == online.json()["data"]["total_workouts"]
    assert await offline_cache.count_queries(USER_ID, COLLECTION) == 1
