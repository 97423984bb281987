"""Tests for the local JSON store."""

import json

import pytest

from clinical_tutor.models import Session, SessionStageRecord, User
from clinical_tutor.services.identifiers import new_local_session_id
from clinical_tutor.services.local_store import FileStorage, LocalBackend
from clinical_tutor.services.storage import StorageAdapter


@pytest.mark.asyncio
async def test_empty_store_is_seeded_with_a_starter_case(tmp_path):
    backend = LocalBackend(FileStorage(tmp_path), namespace="test")

    cases = await backend.list_cases()

    assert len(cases) == 1
    assert len(cases[0].stages) == 5
    assert (tmp_path / "test_cases.json").exists()


@pytest.mark.asyncio
async def test_seeding_can_be_disabled(local_backend):
    assert await local_backend.list_cases() == []


@pytest.mark.asyncio
async def test_session_round_trip_without_remote(storage, make_case):
    session = Session(
        id=new_local_session_id(),
        student_id="student-1",
        case_id=make_case().id,
        current_stage_index=1,
        total_score=2,
        records=[
            SessionStageRecord(
                stage_index=0,
                student_response="Acute angle closure",
                ai_feedback="Good",
                score=2,
                justification="Missed the differential",
                timestamp=1_700_000_000_500,
            )
        ],
        created_at=1_700_000_000_000,
    )

    saved = await storage.upsert_session(session)
    listed = await storage.list_sessions_for_student("student-1")

    assert saved.ok and saved.value == session
    assert listed.ok
    assert listed.value == [session]


@pytest.mark.asyncio
async def test_saving_a_session_again_replaces_it(local_backend):
    session = Session(id=new_local_session_id(), student_id="s", case_id="c")
    await local_backend.save_session(session)

    updated = session.model_copy(update={"current_stage_index": 1})
    await local_backend.save_session(updated)

    assert await local_backend.list_sessions() == [updated]


@pytest.mark.asyncio
async def test_sessions_listed_newest_first_and_filtered(local_backend):
    older = Session(id=new_local_session_id(), student_id="a", case_id="c", created_at=1)
    newer = Session(id=new_local_session_id(), student_id="a", case_id="c", created_at=2)
    other = Session(id=new_local_session_id(), student_id="b", case_id="c", created_at=3)
    for session in (older, newer, other):
        await local_backend.save_session(session)

    assert await local_backend.list_sessions("a") == [newer, older]


@pytest.mark.asyncio
async def test_collections_are_stored_in_canonical_shape(tmp_path, local_backend):
    await local_backend.insert_user(
        User(email="ana@example.com", name="Ana", password="pw", class_group="T1")
    )

    stored = json.loads((tmp_path / "store" / "tutoroftalmo_users.json").read_text())

    assert stored[0]["classGroup"] == "T1"
    assert stored[0]["role"] == "student"
    assert stored[0]["id"]


@pytest.mark.asyncio
async def test_save_case_assigns_id_then_updates_in_place(local_backend, make_case):
    draft = make_case().model_copy(update={"id": None})

    created = await local_backend.save_case(draft)
    edited = await local_backend.save_case(created.model_copy(update={"title": "Edited"}))

    cases = await local_backend.list_cases()
    assert created.id
    assert [c.title for c in cases] == ["Edited"]
    assert edited.id == created.id


@pytest.mark.asyncio
async def test_delete_user_and_case(local_backend, make_case):
    user = await local_backend.insert_user(User(email="a@b.c", name="A"))
    await local_backend.save_case(make_case())

    await local_backend.delete_user(user.id)
    await local_backend.delete_case("case-1")

    assert await local_backend.list_users() == []
    assert await local_backend.list_cases() == []


@pytest.mark.asyncio
async def test_corrupted_collection_reads_as_empty_with_error(tmp_path):
    files = FileStorage(tmp_path)
    files.set_item("tutoroftalmo_sessions", "{not json")
    adapter = StorageAdapter(LocalBackend(files, seed=False))

    result = await adapter.list_sessions()

    assert result.value == []
    assert not result.ok
    assert "corrupted" in str(result.error)


def test_file_storage_leaves_no_temp_files(tmp_path):
    files = FileStorage(tmp_path)
    files.set_item("key", "[1]")
    files.set_item("key", "[2]")

    assert files.get_item("key") == "[2]"
    assert [p.name for p in tmp_path.iterdir()] == ["key.json"]
