"""Pydantic models for users, cases and sessions.

Attributes are snake_case; ``model_dump(by_alias=True)`` gives the canonical
camelCase shape kept by the local store and shown to the UI.
"""

import time
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

STAGE_COUNT = 5
MAX_STAGE_SCORE = 3
ID_SCHEME_VERSION = 1


def now_millis() -> int:
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        """Canonical JSON-ready shape."""
        return self.model_dump(mode="json", by_alias=True)


class UserRole(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"


class User(CamelModel):
    id: Optional[str] = None  # assigned by the backend on create
    email: str
    name: str
    role: UserRole = UserRole.STUDENT
    password: str = ""
    class_group: Optional[str] = None


class CaseStage(CamelModel):
    id: int = Field(ge=0)
    title: str
    content: str
    question: str


class ClinicalCase(CamelModel):
    id: Optional[str] = None
    title: str
    theme: str = ""
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    tags: List[str] = []
    stages: List[CaseStage]
    created_at: int = Field(default_factory=now_millis)

    @field_validator("stages")
    @classmethod
    def _five_contiguous_stages(cls, stages: List[CaseStage]) -> List[CaseStage]:
        if len(stages) != STAGE_COUNT:
            raise ValueError(f"a case needs exactly {STAGE_COUNT} stages, got {len(stages)}")
        ids = [stage.id for stage in stages]
        if ids != list(range(STAGE_COUNT)):
            raise ValueError(f"stage ids must be 0..{STAGE_COUNT - 1} in order, got {ids}")
        return stages

    @property
    def max_score(self) -> int:
        return MAX_STAGE_SCORE * len(self.stages)


class SessionId(CamelModel):
    """Session identifier tagged with where it came from.

    ``local`` ids are temporary and never seen by the remote backend;
    ``remote`` ids were assigned by it.
    """

    model_config = ConfigDict(frozen=True)

    value: str
    origin: Literal["local", "remote"]
    scheme: int = ID_SCHEME_VERSION

    def __str__(self) -> str:
        return self.value


class SessionStageRecord(CamelModel):
    """One answered stage. Never modified after it is appended."""

    model_config = ConfigDict(frozen=True)

    stage_index: int = Field(ge=0)
    student_response: str
    ai_feedback: str
    score: int = Field(ge=0, le=MAX_STAGE_SCORE)
    justification: str = ""
    timestamp: int = Field(default_factory=now_millis)


class Session(CamelModel):
    """One student's attempt at one case.

    While active, ``current_stage_index`` is the open stage. Once finished it
    stays on the last answered stage.
    """

    id: SessionId
    student_id: str
    case_id: str
    status: Literal["active", "finished"] = "active"
    current_stage_index: int = Field(default=0, ge=0)
    total_score: int = Field(default=0, ge=0)
    records: List[SessionStageRecord] = []
    created_at: int = Field(default_factory=now_millis)
    finished_at: Optional[int] = None

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"

    def expected_record_count(self) -> int:
        if self.is_finished:
            return self.current_stage_index + 1
        return self.current_stage_index


class OracleFeedback(BaseModel):
    """Strict shape of the oracle's answer."""

    feedback: str = Field(min_length=1)
    score: int = Field(ge=0, le=MAX_STAGE_SCORE, strict=True)
    justification: str
