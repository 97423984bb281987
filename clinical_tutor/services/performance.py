"""Score summaries for the student and admin dashboards."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable, Optional

from clinical_tutor.models import ClinicalCase, Session, User, UserRole

# Display scale: a five-stage case maxes out at 15 points.
FULL_CASE_SCORE = 15
NO_GROUP = "No class group"


def average_score(sessions: Iterable[Session]) -> float:
    scores = [s.total_score for s in sessions]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def grade_on_ten(sessions: Iterable[Session]) -> Optional[float]:
    """Mean total score of finished sessions on a 0-10 scale."""
    finished = [s for s in sessions if s.is_finished]
    if not finished:
        return None
    return average_score(finished) / FULL_CASE_SCORE * 10


def grade_band(grade: Optional[float]) -> str:
    if grade is None:
        return "none"
    if grade >= 7:
        return "good"
    if grade >= 5:
        return "fair"
    return "poor"


def summarize_student(
    sessions: list[Session], cases: Iterable[ClinicalCase] = ()
) -> dict[str, Any]:
    """Summarize one student's sessions for their dashboard."""
    titles = {case.id: case.title for case in cases}
    rows: list[dict[str, Any]] = []
    for session in sessions:
        title = titles.get(session.case_id, "Clinical case")
        rows.append(
            {
                "session_id": session.id.value,
                "title": title if session.is_finished else f"In progress: {title}",
                "created_at": session.created_at,
                "status": session.status,
                "score": (
                    f"{session.total_score}/{FULL_CASE_SCORE}" if session.is_finished else "Active"
                ),
            }
        )
    return {
        "rows": rows,
        "sessions": len(sessions),
        "finished": sum(1 for s in sessions if s.is_finished),
        "average": round(average_score(sessions), 1),
    }


def performance_by_case(
    cases: Iterable[ClinicalCase], sessions: Iterable[Session]
) -> list[dict[str, Any]]:
    by_case: dict[str, list[Session]] = defaultdict(list)
    for session in sessions:
        by_case[session.case_id].append(session)
    return [
        {"case_id": case.id, "title": case.title, "average": round(average_score(by_case[case.id]), 1)}
        for case in cases
    ]


def summarize_cohort(
    users: Iterable[User], sessions: Iterable[Session], search: str = ""
) -> dict[str, Any]:
    """Group students by class, each with their grade, for the admin view."""
    sessions = list(sessions)
    needle = search.strip().lower()
    by_student: dict[str, list[Session]] = defaultdict(list)
    for session in sessions:
        by_student[session.student_id].append(session)

    groups: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for user in users:
        if user.role is not UserRole.STUDENT:
            continue
        haystack = (user.name, user.email, user.class_group or "")
        if needle and not any(needle in field.lower() for field in haystack):
            continue
        grade = grade_on_ten(by_student[user.id])
        groups[user.class_group or NO_GROUP].append(
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "sessions": len(by_student[user.id]),
                "grade": round(grade, 1) if grade is not None else None,
                "band": grade_band(grade),
            }
        )

    return {
        "groups": dict(sorted(groups.items())),
        "sessions": len(sessions),
        "average": round(average_score(sessions), 1),
    }
