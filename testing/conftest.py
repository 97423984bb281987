"""Shared fixtures: cases, a local store in tmp_path, scripted oracles."""

from __future__ import annotations

from typing import Optional

import pytest

from clinical_tutor.models import CaseStage, ClinicalCase, OracleFeedback, Session, User
from clinical_tutor.services.local_store import FileStorage, LocalBackend
from clinical_tutor.services.oracle import OracleError
from clinical_tutor.services.storage import StorageAdapter, StorageBackend, StorageError


def build_case(case_id: str = "case-1", title: str = "Red eye") -> ClinicalCase:
    return ClinicalCase(
        id=case_id,
        title=title,
        theme="Glaucoma",
        difficulty="medium",
        tags=["emergency"],
        stages=[
            CaseStage(
                id=i,
                title=f"Stage {i + 1}",
                content=f"{case_id} content {i}",
                question=f"{case_id} question {i}",
            )
            for i in range(5)
        ],
        created_at=1_700_000_000_000,
    )


class ScriptedOracle:
    """Returns the given scores in order, or raises ``error``."""

    def __init__(self, scores: Optional[list[int]] = None, error: Optional[Exception] = None):
        self.scores = list(scores or [])
        self.error = error
        self.calls: list[tuple[str, int, str]] = []

    async def evaluate(self, case, stage_index, student_response):
        self.calls.append((case.id, stage_index, student_response))
        if self.error is not None:
            raise self.error
        score = self.scores.pop(0)
        return OracleFeedback(
            feedback=f"Feedback for stage {stage_index}",
            score=score,
            justification=f"Scored {score}",
        )


class FailingBackend(StorageBackend):
    """Remote store that is down."""

    name = "remote"

    def __init__(self):
        self.calls = 0

    def _fail(self, operation: str):
        self.calls += 1
        raise StorageError(operation, "connection refused")

    async def list_users(self) -> list[User]:
        self._fail("list users")

    async def insert_user(self, user: User) -> User:
        self._fail("insert user")

    async def delete_user(self, user_id: str) -> None:
        self._fail("delete user")

    async def list_cases(self) -> list[ClinicalCase]:
        self._fail("list cases")

    async def save_case(self, case: ClinicalCase) -> ClinicalCase:
        self._fail("save case")

    async def delete_case(self, case_id: str) -> None:
        self._fail("delete case")

    async def list_sessions(self, student_id=None) -> list[Session]:
        self._fail("list sessions")

    async def save_session(self, session: Session) -> Session:
        self._fail("save session")


@pytest.fixture
def make_case():
    return build_case


@pytest.fixture
def local_backend(tmp_path) -> LocalBackend:
    return LocalBackend(FileStorage(tmp_path / "store"), seed=False)


@pytest.fixture
def storage(local_backend) -> StorageAdapter:
    return StorageAdapter(local_backend)


@pytest.fixture
def failing_backend() -> FailingBackend:
    return FailingBackend()


@pytest.fixture
def make_oracle():
    def _make(scores=None, error: Optional[OracleError] = None) -> ScriptedOracle:
        return ScriptedOracle(scores=scores, error=error)

    return _make
