"""Storage adapter over interchangeable backends.

Backends raise :class:`StorageError`. The adapter never raises for backend
failures: every call returns a :class:`StorageResult` and the caller decides
whether an error means "render empty" or "tell the user".
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from clinical_tutor.models import ClinicalCase, Session, User

log = logging.getLogger(__name__)

T = TypeVar("T")


class StorageError(Exception):
    """A backend could not complete an operation."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


@dataclass
class StorageResult(Generic[T]):
    value: T
    error: Optional[StorageError] = None
    fell_back: bool = False  # served by the fallback store instead of the primary

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


class StorageBackend(ABC):
    """CRUD contract shared by the local and remote stores."""

    name: str = "backend"

    @abstractmethod
    async def list_users(self) -> list[User]: ...

    @abstractmethod
    async def insert_user(self, user: User) -> User: ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> None: ...

    @abstractmethod
    async def list_cases(self) -> list[ClinicalCase]:
        """Cases, newest first."""

    @abstractmethod
    async def save_case(self, case: ClinicalCase) -> ClinicalCase:
        """Insert a case without id (or unknown id), else update it."""

    @abstractmethod
    async def delete_case(self, case_id: str) -> None: ...

    @abstractmethod
    async def list_sessions(self, student_id: Optional[str] = None) -> list[Session]:
        """Sessions, newest first, optionally only one student's."""

    @abstractmethod
    async def save_session(self, session: Session) -> Session:
        """Insert or update a session and return it as stored."""


class StorageAdapter:
    """Uniform access to the configured backend.

    ``fallback`` is the local store kept beside a remote primary. Session and
    case writes that fail remotely land there; reads that fail remotely are
    answered from it.
    """

    def __init__(self, primary: StorageBackend, fallback: Optional[StorageBackend] = None):
        self.primary = primary
        self.fallback = fallback

    @property
    def backend_name(self) -> str:
        return self.primary.name

    async def _read(
        self, operation: str, call: Callable[[StorageBackend], Awaitable[T]], empty: T
    ) -> StorageResult[T]:
        try:
            return StorageResult(await call(self.primary))
        except StorageError as exc:
            log.warning(f"{operation} failed on {self.primary.name} store: {exc}")
            if self.fallback is None:
                return StorageResult(empty, error=exc)
            try:
                value = await call(self.fallback)
            except StorageError as fallback_exc:
                log.warning(f"{operation} failed on {self.fallback.name} store too: {fallback_exc}")
                value = empty
            return StorageResult(value, error=exc, fell_back=True)

    async def _write(
        self, operation: str, call: Callable[[StorageBackend], Awaitable[T]]
    ) -> StorageResult[Optional[T]]:
        try:
            return StorageResult(await call(self.primary))
        except StorageError as exc:
            log.error(f"{operation} failed on {self.primary.name} store: {exc}")
            return StorageResult(None, error=exc)

    async def _write_with_fallback(
        self, operation: str, call: Callable[[StorageBackend], Awaitable[T]]
    ) -> StorageResult[Optional[T]]:
        try:
            return StorageResult(await call(self.primary))
        except StorageError as exc:
            if self.fallback is None:
                log.error(f"{operation} failed on {self.primary.name} store: {exc}")
                return StorageResult(None, error=exc)
            log.warning(
                f"{operation} failed on {self.primary.name} store, "
                f"writing to {self.fallback.name} store instead: {exc}"
            )
        try:
            value = await call(self.fallback)
        except StorageError as fallback_exc:
            log.error(f"{operation} failed on {self.fallback.name} store: {fallback_exc}")
            return StorageResult(None, error=fallback_exc)
        return StorageResult(value, fell_back=True)

    # --- users ---

    async def list_users(self) -> StorageResult[list[User]]:
        return await self._read("list users", lambda b: b.list_users(), [])

    async def create_user(self, user: User) -> StorageResult[Optional[User]]:
        return await self._write("create user", lambda b: b.insert_user(user))

    async def delete_user(self, user_id: str) -> StorageResult[None]:
        return await self._write(f"delete user {user_id}", lambda b: b.delete_user(user_id))

    # --- cases ---

    async def list_cases(self) -> StorageResult[list[ClinicalCase]]:
        return await self._read("list cases", lambda b: b.list_cases(), [])

    async def get_case(self, case_id: str) -> StorageResult[Optional[ClinicalCase]]:
        result = await self.list_cases()
        found = next((case for case in result.value if case.id == case_id), None)
        return StorageResult(found, error=result.error, fell_back=result.fell_back)

    async def save_case(self, case: ClinicalCase) -> StorageResult[Optional[ClinicalCase]]:
        return await self._write_with_fallback(
            f"save case {case.id or '(new)'}", lambda b: b.save_case(case)
        )

    async def delete_case(self, case_id: str) -> StorageResult[None]:
        return await self._write(f"delete case {case_id}", lambda b: b.delete_case(case_id))

    # --- sessions ---

    async def list_sessions(self) -> StorageResult[list[Session]]:
        return await self._read("list sessions", lambda b: b.list_sessions(), [])

    async def list_sessions_for_student(self, student_id: str) -> StorageResult[list[Session]]:
        return await self._read(
            f"list sessions of {student_id}", lambda b: b.list_sessions(student_id), []
        )

    async def get_session(self, session_id: str) -> StorageResult[Optional[Session]]:
        result = await self.list_sessions()
        found = next((s for s in result.value if s.id.value == session_id), None)
        return StorageResult(found, error=result.error, fell_back=result.fell_back)

    async def upsert_session(self, session: Session) -> StorageResult[Optional[Session]]:
        return await self._write_with_fallback(
            f"save session {session.id}", lambda b: b.save_session(session)
        )
