"""Supabase (PostgREST) client for users, cases and sessions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from clinical_tutor.models import CaseStage, ClinicalCase, Session, SessionStageRecord, User
from clinical_tutor.services.identifiers import WriteMode, confirm, write_mode
from clinical_tutor.services.storage import StorageBackend, StorageError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

USERS = "users"
CASES = "clinical_cases"
SESSIONS = "sessions"


def millis_to_iso(millis: int) -> str:
    return (EPOCH + timedelta(milliseconds=millis)).isoformat(timespec="milliseconds")


def iso_to_millis(value: str) -> int:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


# --- row mapping (canonical <-> columns) ---

def user_to_row(user: User) -> dict[str, Any]:
    row = {
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "password": user.password,
        "class_group": user.class_group,
    }
    if user.id:
        row["id"] = user.id
    return row


def user_from_row(row: dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        email=row["email"],
        name=row["name"],
        role=row["role"],
        password=row.get("password") or "",
        class_group=row.get("class_group"),
    )


def case_to_row(case: ClinicalCase) -> dict[str, Any]:
    row = {
        "title": case.title,
        "theme": case.theme,
        "difficulty": case.difficulty,
        "tags": list(case.tags),
        "stages": [stage.to_record() for stage in case.stages],
        "created_at": millis_to_iso(case.created_at),
    }
    if case.id:
        row["id"] = case.id
    return row


def case_from_row(row: dict[str, Any]) -> ClinicalCase:
    return ClinicalCase(
        id=str(row["id"]),
        title=row["title"],
        theme=row.get("theme") or "",
        difficulty=row["difficulty"],
        tags=row.get("tags") or [],
        stages=[CaseStage.model_validate(stage) for stage in row["stages"]],
        created_at=iso_to_millis(row["created_at"]),
    )


def session_to_row(session: Session) -> dict[str, Any]:
    row = {
        "student_id": session.student_id,
        "case_id": session.case_id,
        "status": session.status,
        "current_stage_index": session.current_stage_index,
        "total_score": session.total_score,
        "records": [record.to_record() for record in session.records],
        "created_at": millis_to_iso(session.created_at),
        "finished_at": (
            millis_to_iso(session.finished_at) if session.finished_at is not None else None
        ),
    }
    # Temporary ids never reach the backend; it assigns the permanent one on insert.
    if write_mode(session.id) is WriteMode.UPDATE:
        row["id"] = session.id.value
    return row


def session_from_row(row: dict[str, Any]) -> Session:
    finished_at = row.get("finished_at")
    return Session(
        id=confirm(str(row["id"])),
        student_id=str(row["student_id"]),
        case_id=str(row["case_id"]),
        status=row["status"],
        current_stage_index=row["current_stage_index"],
        total_score=row["total_score"],
        records=[SessionStageRecord.model_validate(r) for r in row.get("records") or []],
        created_at=iso_to_millis(row["created_at"]),
        finished_at=iso_to_millis(finished_at) if finished_at else None,
    )


class RemoteBackend(StorageBackend):
    name = "remote"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base = f"{base_url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "content-type": "application/json",
        }

    async def _request(
        self,
        operation: str,
        method: str,
        table: str,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.request(
                    method, f"{self.base}/{table}", params=params, json=json, headers=headers
                )
                r.raise_for_status()
        except httpx.HTTPStatusError as e:
            # PostgREST puts the useful part (code, hint) in the body.
            raise StorageError(operation, f"{e} | detail: {e.response.text}") from e
        except httpx.HTTPError as e:
            raise StorageError(operation, f"{type(e).__name__}: {e}") from e
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise StorageError(operation, f"invalid JSON from backend: {e}") from e

    @staticmethod
    def _map(operation: str, rows: Any, mapper: Callable[[dict[str, Any]], Any]) -> list:
        if not isinstance(rows, list):
            raise StorageError(operation, f"expected a list of rows, got {type(rows).__name__}")
        try:
            return [mapper(row) for row in rows]
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise StorageError(operation, f"unexpected row shape: {e}") from e

    def _first(self, operation: str, rows: Any, mapper: Callable[[dict[str, Any]], Any]):
        mapped = self._map(operation, rows, mapper)
        if not mapped:
            raise StorageError(operation, "backend returned no row")
        return mapped[0]

    # --- users ---

    async def list_users(self) -> list[User]:
        rows = await self._request("list users", "GET", USERS, params={"select": "*"})
        return self._map("list users", rows, user_from_row)

    async def insert_user(self, user: User) -> User:
        rows = await self._request(
            "insert user", "POST", USERS, json=[user_to_row(user)], prefer="return=representation"
        )
        return self._first("insert user", rows, user_from_row)

    async def delete_user(self, user_id: str) -> None:
        await self._request("delete user", "DELETE", USERS, params={"id": f"eq.{user_id}"})

    # --- cases ---

    async def list_cases(self) -> list[ClinicalCase]:
        rows = await self._request(
            "list cases", "GET", CASES, params={"select": "*", "order": "created_at.desc"}
        )
        return self._map("list cases", rows, case_from_row)

    async def save_case(self, case: ClinicalCase) -> ClinicalCase:
        row = case_to_row(case)
        row.pop("id", None)
        if case.id:
            rows = await self._request(
                "update case",
                "PATCH",
                CASES,
                params={"id": f"eq.{case.id}"},
                json=row,
                prefer="return=representation",
            )
            if rows:
                return self._first("update case", rows, case_from_row)
        # Unknown id (e.g. a case first saved locally): let the backend assign one.
        rows = await self._request(
            "insert case", "POST", CASES, json=[row], prefer="return=representation"
        )
        return self._first("insert case", rows, case_from_row)

    async def delete_case(self, case_id: str) -> None:
        await self._request("delete case", "DELETE", CASES, params={"id": f"eq.{case_id}"})

    # --- sessions ---

    async def list_sessions(self, student_id: Optional[str] = None) -> list[Session]:
        params = {"select": "*", "order": "created_at.desc"}
        if student_id is not None:
            params["student_id"] = f"eq.{student_id}"
        rows = await self._request("list sessions", "GET", SESSIONS, params=params)
        return self._map("list sessions", rows, session_from_row)

    async def save_session(self, session: Session) -> Session:
        if write_mode(session.id) is WriteMode.INSERT:
            operation, prefer = "insert session", "return=representation"
        else:
            operation, prefer = "update session", "resolution=merge-duplicates,return=representation"
        rows = await self._request(
            operation, "POST", SESSIONS, json=[session_to_row(session)], prefer=prefer
        )
        return self._first(operation, rows, session_from_row)
