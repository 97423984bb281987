"""Session identifier reconciliation.

A session starts with a temporary local id. When the remote backend stores
it for the first time it assigns the permanent id, and from then on the
session is updated in place. Which path a write takes is decided by the
origin tag on the id only.
"""

from __future__ import annotations

import secrets
import time
from enum import Enum

from clinical_tutor.models import ID_SCHEME_VERSION, SessionId


class WriteMode(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


def new_local_session_id() -> SessionId:
    """Generate a temporary id for a session nobody has stored remotely yet."""
    value = f"temp-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    return SessionId(value=value, origin="local")


def confirm(value: str) -> SessionId:
    """Wrap an id the remote backend assigned."""
    if not value:
        raise ValueError("backend returned an empty session id")
    return SessionId(value=str(value), origin="remote")


def write_mode(session_id: SessionId) -> WriteMode:
    if session_id.scheme != ID_SCHEME_VERSION:
        raise ValueError(f"unsupported session id scheme {session_id.scheme}")
    if session_id.origin == "remote":
        return WriteMode.UPDATE
    return WriteMode.INSERT
