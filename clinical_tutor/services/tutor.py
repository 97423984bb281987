"""Case discussion session lifecycle: start, answer stage by stage, finish.

A session moves ``active`` -> ``finished`` after its last stage is answered
and never leaves ``finished``. Each answer is scored by the oracle, applied
to a copy of the session and persisted; the caller only ever sees the
persisted copy, so on any failure its session is exactly as before and the
same stage can be retried.
"""

from __future__ import annotations

import logging
import random
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from clinical_tutor.models import (
    ClinicalCase,
    OracleFeedback,
    Session,
    SessionStageRecord,
    now_millis,
)
from clinical_tutor.services.identifiers import new_local_session_id
from clinical_tutor.services.oracle import FeedbackOracle
from clinical_tutor.services.selection import select_next_case
from clinical_tutor.services.storage import StorageAdapter

log = logging.getLogger(__name__)


class TutorError(Exception):
    pass


class SessionFinishedError(TutorError):
    pass


class EmptyResponseError(TutorError):
    pass


class SubmissionInProgressError(TutorError):
    """Another answer for the same session is still being scored."""


class SessionStateError(TutorError):
    """The stored session contradicts its own invariants."""


class PersistenceError(TutorError):
    pass


class SessionNotFoundError(TutorError):
    pass


class CaseNotFoundError(TutorError):
    pass


def apply_feedback(
    session: Session,
    case: ClinicalCase,
    student_response: str,
    feedback: OracleFeedback,
    now: Optional[int] = None,
) -> Session:
    """Return the session after answering its current stage.

    The last stage finishes the session and keeps ``current_stage_index`` on
    it; earlier stages move the index forward by one.
    """
    now = now if now is not None else now_millis()
    index = session.current_stage_index
    record = SessionStageRecord(
        stage_index=index,
        student_response=student_response,
        ai_feedback=feedback.feedback,
        score=feedback.score,
        justification=feedback.justification,
        timestamp=now,
    )
    is_last_stage = index == len(case.stages) - 1
    update = {
        "records": [*session.records, record],
        "total_score": session.total_score + feedback.score,
    }
    if is_last_stage:
        update.update(status="finished", finished_at=now)
    else:
        update["current_stage_index"] = index + 1
    return session.model_copy(update=update)


class CaseTutor:
    def __init__(
        self,
        storage: StorageAdapter,
        oracle: FeedbackOracle,
        rng: Optional[random.Random] = None,
    ):
        self.storage = storage
        self.oracle = oracle
        self.rng = rng
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    @contextmanager
    def _submission_slot(self, session_id: str) -> Iterator[None]:
        with self._lock:
            if session_id in self._in_flight:
                raise SubmissionInProgressError(
                    f"An answer for session {session_id} is already being evaluated."
                )
            self._in_flight.add(session_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(session_id)

    def is_busy(self, session_id: str) -> bool:
        return session_id in self._in_flight

    async def start_session(self, student_id: str) -> Session:
        """Create and persist a new session on the next case for the student."""
        cases = await self.storage.list_cases()
        history = await self.storage.list_sessions_for_student(student_id)
        for result in (cases, history):
            # A fallback answer is usable; an unanswered read is not an empty bank.
            if not result.ok and not result.fell_back:
                raise PersistenceError(f"Could not reach the case store: {result.error}")
        case = select_next_case(cases.value, history.value, rng=self.rng)
        session = Session(
            id=new_local_session_id(),
            student_id=student_id,
            case_id=case.id,
        )
        result = await self.storage.upsert_session(session)
        if not result.ok or result.value is None:
            raise PersistenceError(f"Could not start a session: {result.error}")
        log.info(f"Student {student_id} started case {case.id} (session {result.value.id})")
        return result.value

    async def load_session(self, session_id: str) -> tuple[Session, ClinicalCase]:
        session = (await self.storage.get_session(session_id)).value
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found.")
        return session, await self._load_case(session.case_id)

    async def _load_case(self, case_id: str) -> ClinicalCase:
        case = (await self.storage.get_case(case_id)).value
        if case is None:
            raise CaseNotFoundError(f"Case {case_id} not found.")
        return case

    async def submit_answer(
        self,
        session: Session,
        student_response: str,
        case: Optional[ClinicalCase] = None,
    ) -> Session:
        """Score the answer to the current stage and return the persisted session."""
        if session.is_finished:
            raise SessionFinishedError(f"Session {session.id} is already finished.")
        if not student_response or not student_response.strip():
            raise EmptyResponseError("Write an answer before submitting.")

        with self._submission_slot(session.id.value):
            if case is None:
                case = await self._load_case(session.case_id)
            self._check_consistency(session, case)

            feedback = await self.oracle.evaluate(
                case, session.current_stage_index, student_response
            )
            updated = apply_feedback(session, case, student_response, feedback)

            result = await self.storage.upsert_session(updated)
            if not result.ok or result.value is None:
                raise PersistenceError(f"Your answer could not be saved: {result.error}")
            if result.fell_back:
                log.warning(
                    f"Session {updated.id} saved to the local store only; "
                    f"remote and local copies now differ"
                )

        stored = result.value
        if stored.is_finished:
            log.info(
                f"Session {stored.id} finished with {stored.total_score}/{case.max_score}"
            )
        else:
            log.info(
                f"Session {stored.id} stage {session.current_stage_index + 1}/"
                f"{len(case.stages)} scored {feedback.score}/3"
            )
        return stored

    @staticmethod
    def _check_consistency(session: Session, case: ClinicalCase) -> None:
        if case.id != session.case_id:
            raise SessionStateError(
                f"Session {session.id} belongs to case {session.case_id}, not {case.id}."
            )
        if session.current_stage_index >= len(case.stages):
            raise SessionStateError(
                f"Session {session.id} points at stage {session.current_stage_index}, "
                f"case {case.id} has {len(case.stages)}."
            )
        if len(session.records) != session.expected_record_count():
            raise SessionStateError(
                f"Session {session.id} has {len(session.records)} records at stage "
                f"{session.current_stage_index}."
            )
