"""Registration and sign-in against the stored users."""

from __future__ import annotations

import logging
from typing import Optional

from clinical_tutor.config import settings
from clinical_tutor.models import User, UserRole
from clinical_tutor.services.storage import StorageAdapter

log = logging.getLogger(__name__)


class AccountError(Exception):
    pass


class RegistrationError(AccountError):
    pass


class AuthenticationError(AccountError):
    pass


def registration_code_for(role: UserRole) -> str:
    if role is UserRole.ADMIN:
        return settings.ADMIN_REGISTRATION_CODE
    return settings.STUDENT_REGISTRATION_CODE


async def register(
    storage: StorageAdapter,
    name: str,
    email: str,
    password: str,
    role: UserRole,
    registration_code: str,
    class_group: Optional[str] = None,
) -> User:
    role = UserRole(role)
    if registration_code.strip() != registration_code_for(role):
        raise RegistrationError(f"Invalid registration code for role {role.value}.")
    group = (class_group or "").strip() or None
    if role is UserRole.STUDENT and group is None:
        raise RegistrationError("Students must provide their class group.")
    if role is UserRole.ADMIN:
        group = None

    existing = await storage.list_users()
    if not existing.ok:
        # Without the user list a duplicate email cannot be ruled out.
        raise RegistrationError(f"Could not check existing accounts: {existing.error}")
    email = email.strip()
    if any(user.email == email for user in existing.value):
        raise RegistrationError("This email is already registered.")

    result = await storage.create_user(
        User(name=name.strip(), email=email, password=password, role=role, class_group=group)
    )
    if not result.ok or result.value is None:
        raise RegistrationError(f"Registration failed: {result.error}")
    log.info(f"Registered {role.value} {email}")
    return result.value


async def authenticate(storage: StorageAdapter, email: str, password: str) -> User:
    result = await storage.list_users()
    if not result.ok and not result.value:
        raise AuthenticationError("Could not reach the user store.")
    email = email.strip()
    for user in result.value:
        if user.email == email and user.password == password:
            return user
    raise AuthenticationError("Incorrect email or password.")
