"""Local JSON persistence for users, cases and sessions.

Each collection is one JSON list kept under a namespaced key. ``FileStorage``
maps keys to ``<key>.json`` files and replaces them atomically, so a
collection is either fully written or left as it was.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from clinical_tutor.models import CaseStage, ClinicalCase, Session, User
from clinical_tutor.services.storage import StorageBackend, StorageError

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class FileStorage:
    """Key-value store with one JSON file per key."""

    def __init__(self, data_dir: str | Path = "data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def seed_case() -> ClinicalCase:
    """Minimal case so a fresh install has something to practise on."""
    stages = [
        ("Presentation",
         "A 67-year-old woman arrives at the emergency department with a painful red "
         "right eye that started two hours ago, with blurred vision, halos around "
         "lights, headache and nausea.",
         "What are your main diagnostic hypotheses?"),
        ("Examination",
         "Visual acuity is 20/200 OD and 20/25 OS. The right eye shows ciliary "
         "injection, corneal oedema and a mid-dilated pupil that reacts poorly to light.",
         "Which examinations would you perform next and what do you expect to find?"),
        ("Findings",
         "Intraocular pressure is 52 mmHg OD and 16 mmHg OS. Gonioscopy of the left "
         "eye shows a narrow angle.",
         "What is your diagnosis and how do you justify it?"),
        ("Initial management",
         "The patient is in pain and vomiting. There are no known drug allergies; she "
         "has mild chronic kidney disease.",
         "How would you lower the intraocular pressure right now?"),
        ("Definitive treatment",
         "After medical treatment the pressure falls to 24 mmHg and the cornea clears.",
         "What is the definitive treatment, and what do you do about the fellow eye?"),
    ]
    return ClinicalCase(
        id="seed-acute-angle-closure",
        title="Sudden painful red eye",
        theme="Glaucoma",
        difficulty="medium",
        tags=["glaucoma", "emergency"],
        stages=[
            CaseStage(id=i, title=title, content=content, question=question)
            for i, (title, content, question) in enumerate(stages)
        ],
    )


class LocalBackend(StorageBackend):
    """Schema-free store keeping the canonical camelCase shapes as-is."""

    name = "local"

    def __init__(self, storage: FileStorage, namespace: str = "tutoroftalmo", seed: bool = True):
        self.storage = storage
        self.namespace = namespace
        self.seed = seed
        self._seed_checked = False

    def _key(self, collection: str) -> str:
        return f"{self.namespace}_{collection}"

    def _load_raw(self, collection: str) -> list[dict[str, Any]]:
        key = self._key(collection)
        try:
            raw = self.storage.get_item(key)
        except OSError as e:
            raise StorageError(f"read {key}", str(e)) from e
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"read {key}", f"corrupted collection: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"read {key}", "collection is not a list")
        return data

    def _load(self, collection: str, model: Type[M]) -> list[M]:
        self._ensure_seeded()
        try:
            return [model.model_validate(item) for item in self._load_raw(collection)]
        except ValidationError as e:
            raise StorageError(f"read {self._key(collection)}", str(e)) from e

    def _store(self, collection: str, items: list) -> None:
        key = self._key(collection)
        payload = json.dumps([item.to_record() for item in items], indent=2)
        try:
            self.storage.set_item(key, payload)
        except OSError as e:
            raise StorageError(f"write {key}", str(e)) from e

    def _ensure_seeded(self) -> None:
        if self._seed_checked or not self.seed:
            return
        self._seed_checked = True
        if not self._load_raw("cases"):
            log.info(f"Local store {self.namespace} is empty, adding the starter case")
            self._store("cases", [seed_case()])

    # --- users ---

    async def list_users(self) -> list[User]:
        return self._load("users", User)

    async def insert_user(self, user: User) -> User:
        users = self._load("users", User)
        stored = user.model_copy(update={"id": user.id or str(uuid.uuid4())})
        users.append(stored)
        self._store("users", users)
        return stored

    async def delete_user(self, user_id: str) -> None:
        users = self._load("users", User)
        self._store("users", [u for u in users if u.id != user_id])

    # --- cases ---

    async def list_cases(self) -> list[ClinicalCase]:
        cases = self._load("cases", ClinicalCase)
        return sorted(cases, key=lambda c: c.created_at, reverse=True)

    async def save_case(self, case: ClinicalCase) -> ClinicalCase:
        cases = self._load("cases", ClinicalCase)
        stored = case if case.id else case.model_copy(update={"id": str(uuid.uuid4())})
        for i, existing in enumerate(cases):
            if existing.id == stored.id:
                cases[i] = stored
                break
        else:
            cases.append(stored)
        self._store("cases", cases)
        return stored

    async def delete_case(self, case_id: str) -> None:
        cases = self._load("cases", ClinicalCase)
        self._store("cases", [c for c in cases if c.id != case_id])

    # --- sessions ---

    async def list_sessions(self, student_id: Optional[str] = None) -> list[Session]:
        sessions = self._load("sessions", Session)
        if student_id is not None:
            sessions = [s for s in sessions if s.student_id == student_id]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    async def save_session(self, session: Session) -> Session:
        sessions = self._load("sessions", Session)
        for i, existing in enumerate(sessions):
            if existing.id.value == session.id.value:
                sessions[i] = session
                break
        else:
            sessions.append(session)
        self._store("sessions", sessions)
        return session
