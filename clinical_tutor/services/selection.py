"""Which case a student gets next."""

from __future__ import annotations

import random
from typing import Iterable, Sequence

from clinical_tutor.models import ClinicalCase, Session


class EmptyCaseBankError(Exception):
    """There is no case to start."""


def select_next_case(
    cases: Sequence[ClinicalCase],
    student_sessions: Iterable[Session],
    rng: random.Random | None = None,
) -> ClinicalCase:
    """Pick an unattempted case at random, or any case once all were attempted."""
    if not cases:
        raise EmptyCaseBankError("No clinical case is available in the case bank.")
    rng = rng or random.Random()
    attempted = {session.case_id for session in student_sessions}
    fresh = [case for case in cases if case.id not in attempted]
    return rng.choice(fresh or list(cases))
