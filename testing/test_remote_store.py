"""Tests for the Supabase REST backend and its row mapping."""

import json

import httpx
import pytest

from clinical_tutor.models import Session, SessionId, SessionStageRecord, User
from clinical_tutor.services.identifiers import new_local_session_id
from clinical_tutor.services.remote_store import (
    RemoteBackend,
    case_from_row,
    case_to_row,
    iso_to_millis,
    millis_to_iso,
    session_from_row,
    session_to_row,
    user_from_row,
    user_to_row,
)
from clinical_tutor.services.storage import StorageError

REMOTE_ID = "3f2b8c1e-1d2a-4c5b-9e8f-0a1b2c3d4e5f"


def _finished_session() -> Session:
    return Session(
        id=SessionId(value=REMOTE_ID, origin="remote"),
        student_id="student-1",
        case_id="case-1",
        status="finished",
        current_stage_index=4,
        total_score=12,
        records=[
            SessionStageRecord(
                stage_index=i, student_response=f"a{i}", ai_feedback=f"f{i}", score=s,
                timestamp=1_700_000_001_000 + i,
            )
            for i, s in enumerate([3, 2, 3, 1, 3])
        ],
        created_at=1_700_000_000_123,
        finished_at=1_700_000_009_999,
    )


def test_millis_iso_conversion_is_exact():
    assert millis_to_iso(1_700_000_000_123) == "2023-11-14T22:13:20.123+00:00"
    assert iso_to_millis("2023-11-14T22:13:20.123+00:00") == 1_700_000_000_123
    assert iso_to_millis("2023-11-14T22:13:20.123456Z") == 1_700_000_000_123
    assert iso_to_millis("2023-11-14T22:13:20") == 1_700_000_000_000


def test_session_row_mapping_is_lossless():
    session = _finished_session()

    row = session_to_row(session)

    assert row["student_id"] == "student-1"
    assert row["current_stage_index"] == 4
    assert row["total_score"] == 12
    assert row["finished_at"] == millis_to_iso(1_700_000_009_999)
    assert row["records"][0]["studentResponse"] == "a0"
    assert session_from_row(row) == session
    assert session_to_row(session_from_row(row)) == row


def test_active_session_row_has_null_finished_at():
    session = _finished_session().model_copy(
        update={"status": "active", "finished_at": None, "current_stage_index": 3,
                "records": _finished_session().records[:3]}
    )

    row = session_to_row(session)

    assert row["finished_at"] is None
    assert session_from_row(row).finished_at is None


def test_local_session_row_never_carries_the_temporary_id():
    session = Session(id=new_local_session_id(), student_id="s", case_id="c")

    assert "id" not in session_to_row(session)


def test_user_and_case_row_mapping_is_lossless(make_case):
    user = User(id="u1", email="a@b.c", name="Ana", role="admin", password="pw", class_group="T1")
    case = make_case()

    assert user_to_row(user)["class_group"] == "T1"
    assert user_from_row(user_to_row(user)) == user
    assert case_from_row(case_to_row(case)) == case
    assert case_to_row(case)["created_at"] == millis_to_iso(case.created_at)


def _backend(handler) -> RemoteBackend:
    return RemoteBackend("https://db.example.co", "anon-key", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_inserting_a_local_session_gets_a_backend_id():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        body = json.loads(request.content)
        return httpx.Response(201, json=[{**body[0], "id": REMOTE_ID}])

    session = Session(id=new_local_session_id(), student_id="s", case_id="c", created_at=5)

    stored = await _backend(handler).save_session(session)

    assert stored.id == SessionId(value=REMOTE_ID, origin="remote")
    assert stored.created_at == 5
    sent = requests[0]
    assert sent.method == "POST"
    assert sent.url.path == "/rest/v1/sessions"
    assert sent.headers["apikey"] == "anon-key"
    assert sent.headers["Prefer"] == "return=representation"
    assert "id" not in json.loads(sent.content)[0]


@pytest.mark.asyncio
async def test_updating_a_remote_session_upserts_by_id():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json=json.loads(request.content))

    session = _finished_session()

    stored = await _backend(handler).save_session(session)

    assert stored == session
    assert json.loads(requests[0].content)[0]["id"] == REMOTE_ID
    assert "merge-duplicates" in requests[0].headers["Prefer"]


@pytest.mark.asyncio
async def test_list_sessions_filters_by_student_newest_first():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=[session_to_row(_finished_session()) | {"id": REMOTE_ID}])

    sessions = await _backend(handler).list_sessions("student-1")

    assert seen["student_id"] == "eq.student-1"
    assert seen["order"] == "created_at.desc"
    assert sessions == [_finished_session()]


@pytest.mark.asyncio
async def test_save_case_with_unknown_id_is_inserted(make_case):
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        if request.method == "PATCH":
            return httpx.Response(200, json=[])
        return httpx.Response(201, json=[{**json.loads(request.content)[0], "id": "new-id"}])

    stored = await _backend(handler).save_case(make_case())

    assert methods == ["PATCH", "POST"]
    assert stored.id == "new-id"


@pytest.mark.asyncio
async def test_http_errors_become_storage_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Invalid API key"})

    with pytest.raises(StorageError) as excinfo:
        await _backend(handler).list_users()

    assert "Invalid API key" in str(excinfo.value)


@pytest.mark.asyncio
async def test_network_errors_become_storage_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route to host", request=request)

    with pytest.raises(StorageError):
        await _backend(handler).list_cases()


@pytest.mark.asyncio
async def test_malformed_rows_become_storage_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"id": "1", "title": "no stages"}])

    with pytest.raises(StorageError):
        await _backend(handler).list_cases()
