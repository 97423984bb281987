"""Tests for registration and sign-in."""

import pytest

from clinical_tutor.config import settings
from clinical_tutor.models import UserRole
from clinical_tutor.services.accounts import (
    AuthenticationError,
    RegistrationError,
    authenticate,
    register,
)
from clinical_tutor.services.storage import StorageAdapter


@pytest.fixture(autouse=True)
def registration_codes(monkeypatch):
    monkeypatch.setattr(settings, "STUDENT_REGISTRATION_CODE", "2026")
    monkeypatch.setattr(settings, "ADMIN_REGISTRATION_CODE", "2317")


@pytest.mark.asyncio
async def test_student_registers_and_signs_in(storage):
    user = await register(
        storage, "Ana Souza", "ana@example.com", "pw", UserRole.STUDENT, "2026", " T1 "
    )

    signed_in = await authenticate(storage, "ana@example.com", "pw")

    assert user.id
    assert user.class_group == "T1"
    assert signed_in == user


@pytest.mark.asyncio
async def test_wrong_code_for_role_is_rejected(storage):
    with pytest.raises(RegistrationError):
        await register(storage, "Prof", "prof@example.com", "pw", UserRole.ADMIN, "2026")


@pytest.mark.asyncio
async def test_student_needs_class_group(storage):
    with pytest.raises(RegistrationError):
        await register(storage, "Ana", "ana@example.com", "pw", UserRole.STUDENT, "2026", "  ")


@pytest.mark.asyncio
async def test_admin_class_group_is_dropped(storage):
    admin = await register(storage, "Prof", "prof@example.com", "pw", UserRole.ADMIN, "2317", "T1")

    assert admin.role is UserRole.ADMIN
    assert admin.class_group is None


@pytest.mark.asyncio
async def test_duplicate_email_is_rejected(storage):
    await register(storage, "Ana", "ana@example.com", "pw", UserRole.STUDENT, "2026", "T1")

    with pytest.raises(RegistrationError, match="already registered"):
        await register(storage, "Ana 2", "ana@example.com", "x", UserRole.STUDENT, "2026", "T2")


@pytest.mark.asyncio
async def test_registration_fails_when_store_is_down(failing_backend):
    with pytest.raises(RegistrationError):
        await register(
            StorageAdapter(failing_backend), "Ana", "a@b.c", "pw", UserRole.STUDENT, "2026", "T1"
        )


@pytest.mark.asyncio
async def test_wrong_password_is_rejected(storage):
    await register(storage, "Ana", "ana@example.com", "pw", UserRole.STUDENT, "2026", "T1")

    with pytest.raises(AuthenticationError):
        await authenticate(storage, "ana@example.com", "nope")
