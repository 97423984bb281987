"""Helpers for the Streamlit UI."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional

from clinical_tutor.models import CaseStage, ClinicalCase, Session, SessionStageRecord
from clinical_tutor.services.oracle import (
    FeedbackOracle,
    OracleError,
    OracleResponseError,
    OracleTimeoutError,
    OracleStatus,
    OracleUnavailableError,
)
from clinical_tutor.services.selection import EmptyCaseBankError
from clinical_tutor.services.tutor import PersistenceError, SubmissionInProgressError


def progress_percent(session: Session, case: ClinicalCase) -> float:
    """Share of the case answered so far, 0-100."""
    if not case.stages:
        return 0.0
    answered = len(session.records)
    return min(100.0, answered / len(case.stages) * 100)


def stage_label(session: Session, case: ClinicalCase) -> str:
    return f"Stage {session.current_stage_index + 1}/{len(case.stages)}"


def open_stage(session: Session, case: ClinicalCase) -> CaseStage | None:
    """The stage waiting for an answer, or None once the session is finished."""
    if session.is_finished:
        return None
    return case.stages[session.current_stage_index]


def format_day(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).strftime("%d %B %Y")


def describe_error(exc: Exception) -> str:
    """User-facing text for a failed action."""
    if isinstance(exc, OracleUnavailableError):
        return "The AI tutor is not configured. Ask your teacher to set the API key."
    if isinstance(exc, OracleTimeoutError):
        return "The AI tutor took too long to answer. Your answer was not scored; try again."
    if isinstance(exc, OracleResponseError):
        return "The AI tutor returned an unreadable evaluation. Your answer was not scored; try again."
    if isinstance(exc, OracleError):
        return f"The AI tutor could not be reached ({exc}). Your answer was not scored; try again."
    if isinstance(exc, PersistenceError):
        return f"{exc} Nothing was recorded; try again."
    if isinstance(exc, SubmissionInProgressError):
        return "Your previous answer is still being evaluated."
    if isinstance(exc, EmptyCaseBankError):
        return "No clinical case is available yet."
    return str(exc)


def format_record(record: SessionStageRecord) -> str:
    """Markdown for one answered stage: score, feedback and the reason for the score."""
    text = f"**Score {record.score}/3**\n\n{record.ai_feedback}"
    if record.justification:
        text += f"\n\n_Why this score: {record.justification}_"
    return text


ORACLE_STATUS_KEY = "oracle_status"


async def oracle_status(
    state: MutableMapping[str, Any], oracle: FeedbackOracle, refresh: bool = False
) -> Optional[OracleStatus]:
    """Last availability check kept in ``state``; the oracle is only pinged on ``refresh``."""
    if refresh:
        state[ORACLE_STATUS_KEY] = await oracle.check_availability()
    return state.get(ORACLE_STATUS_KEY)


def filter_cases(cases: list[ClinicalCase], search: str) -> list[ClinicalCase]:
    needle = search.strip().lower()
    if not needle:
        return cases
    return [c for c in cases if needle in c.title.lower() or needle in c.theme.lower()]


def revise_case(
    case: ClinicalCase,
    title: str,
    theme: str,
    difficulty: str,
    stages: list[tuple[str, str]],
) -> ClinicalCase:
    """Copy of ``case`` with edited fields, validated again and keeping its id.

    ``stages`` holds (content, question) pairs in stage order.
    """
    data = case.model_dump()
    data.update(title=title.strip(), theme=theme.strip(), difficulty=difficulty)
    data["stages"] = [
        {**stage, "content": content, "question": question}
        for stage, (content, question) in zip(data["stages"], stages)
    ]
    return ClinicalCase.model_validate(data)
