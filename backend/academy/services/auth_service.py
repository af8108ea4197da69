# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication and user directory service.

- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with at least one letter and one digit
- Session tokens managed separately (see session_service.py)
- get_student is the "student exists" lookup the subscription core consumes
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AuthenticationError, NotFoundError
from ..models import User
from ..models.auth import ROLES, ROLE_COACH, ROLE_STUDENT
from ..validation import ValidationError, ConflictError
from academy.time_utils import utcnow

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor BCRYPT_ROUNDS, 12 by default)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in storage
        return False


def normalize_email(email: str | None) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email address")
    return email


def create_user(
    *,
    name: str,
    email: str,
    password: str,
    role: str = ROLE_STUDENT,
    phone: str | None = None,
    approved: bool | None = None,
) -> User:
    """
    Create a user account.

    Coaches start unapproved and cannot log in until an admin approves them;
    students and admins are approved on creation unless `approved` says otherwise.

    Raises:
        ValidationError: invalid name/email/role or weak password
        ConflictError: email already registered
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Please provide your name")
    if role not in ROLES:
        raise ValidationError(f"role must be one of {list(ROLES)}")

    email = normalize_email(email)
    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError(f"Email already registered: {email}")

    user = User(
        name=name,
        email=email,
        phone=(phone or "").strip() or None,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
        approved=(role != ROLE_COACH) if approved is None else bool(approved),
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Email already registered: {email}")
    return user


def authenticate(email: str, password: str) -> User:
    """
    Check credentials and stamp last_login_at.

    Raises AuthenticationError with the same message for unknown email and
    wrong password.
    """
    try:
        email = normalize_email(email)
    except ValidationError:
        raise AuthenticationError("Invalid email or password")

    user = db.session.query(User).filter_by(email=email).first()
    if not user or not verify_password(password or "", user.password_hash):
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")
    if not user.approved:
        raise AuthenticationError("Account is pending approval")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def get_student(student_id: int) -> User:
    """Resolve an active student account or raise NotFoundError."""
    student = db.session.query(User).filter_by(id=student_id, role=ROLE_STUDENT).first()
    if not student or not student.is_active:
        raise NotFoundError(f"Student {student_id} not found")
    return student


def list_pending_users() -> list[User]:
    return db.session.query(User).filter_by(approved=False).order_by(User.created_at.asc(), User.id.asc()).all()


def approve_user(user_id: int, approved_by: int | None = None) -> User:
    """Approve an account so it can log in. Approving twice is a no-op."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if not user.approved:
        user.approved = True
        db.session.commit()
        current_app.logger.info("User %s (%s) approved by %s", user.id, user.role, approved_by)
    return user
