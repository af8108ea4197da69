import pytest

from academy.errors import AuthenticationError, NotFoundError
from academy.models.auth import ROLE_ADMIN, ROLE_COACH
from academy.services import auth_service
from academy.services.auth_service import PasswordValidationError

from conftest import PASSWORD


def test_students_and_admins_approved_on_creation(student, admin):
    assert student.approved is True
    assert admin.approved is True
    assert auth_service.authenticate(student.email, PASSWORD).id == student.id


def test_new_coach_cannot_log_in_until_approved(admin):
    coach = auth_service.create_user(
        name="New Coach", email="new.coach@academy.test", password=PASSWORD, role=ROLE_COACH
    )
    assert coach.approved is False
    assert [u.id for u in auth_service.list_pending_users()] == [coach.id]

    with pytest.raises(AuthenticationError, match="pending approval"):
        auth_service.authenticate(coach.email, PASSWORD)

    auth_service.approve_user(coach.id, approved_by=admin.id)

    assert auth_service.authenticate(coach.email, PASSWORD).id == coach.id
    assert auth_service.list_pending_users() == []


def test_approve_unknown_user():
    with pytest.raises(NotFoundError):
        auth_service.approve_user(4040)


def test_password_strength_and_wrong_password(student):
    with pytest.raises(PasswordValidationError):
        auth_service.create_user(name="Weak", email="weak@academy.test", password="letters-only", role=ROLE_ADMIN)
    with pytest.raises(AuthenticationError, match="Invalid email or password"):
        auth_service.authenticate(student.email, "Wrong12345")
