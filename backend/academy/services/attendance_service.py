# Overview: Service-layer operations for attendance; the billable action that consumes session entitlement.

"""
Attendance Service

A present/late record against a subscription consumes one session. The
deduction and the attendance insert commit together: if the subscription is
exhausted or not active, no attendance row is written.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Attendance
from ..models.attendance import (
    ATTENDANCE_STATUSES,
    BILLABLE_STATUSES,
)
from ..validation import ValidationError, ConflictError
from . import auth_service, subscription_service
from academy.time_utils import utcnow


def record_attendance(
    *,
    student_id: int,
    session_date: datetime,
    status: str,
    subscription_id: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Attendance:
    """
    Record one student's attendance for a session date.

    Raises:
        NotFoundError: unknown student or subscription
        ValidationError: bad status, subscription of another student
        ConflictError: attendance already recorded for that date
        InvalidStateError: billable record against a non-active subscription
        EntitlementExhausted: billable record with no sessions left
    """
    now = now or utcnow()
    if status not in ATTENDANCE_STATUSES:
        raise ValidationError(f"status must be one of {list(ATTENDANCE_STATUSES)}")

    student = auth_service.get_student(student_id)

    if subscription_id is not None:
        subscription = subscription_service.get_subscription(subscription_id)
        if subscription.student_id != student.id:
            raise ValidationError(f"Subscription {subscription_id} does not belong to student {student.id}")

    duplicate = db.session.query(Attendance.id).filter_by(
        student_id=student.id, session_date=session_date
    ).first()
    if duplicate:
        raise ConflictError(f"Attendance already recorded for student {student.id} on {session_date.isoformat()}")

    deducted = False
    try:
        if subscription_id is not None and status in BILLABLE_STATUSES:
            _, deducted = subscription_service.deduct_session_in_transaction(subscription_id, now)

        record = Attendance(
            student_id=student.id,
            subscription_id=subscription_id,
            session_date=session_date,
            status=status,
            notes=notes,
            session_deducted=deducted,
            recorded_by_user_id=user_id,
            created_at=now,
        )
        db.session.add(record)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Attendance already recorded for student {student_id} on {session_date.isoformat()}")
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Recorded %s attendance for student %s on %s (session deducted: %s)",
        status, student_id, session_date.date().isoformat(), deducted,
    )
    return record


def compute_attendance_stats(student_id: int) -> dict:
    """Counts per status and attendance rate, recomputed from the records."""
    student = auth_service.get_student(student_id)

    rows = (
        db.session.query(Attendance.status, db.func.count(Attendance.id))
        .filter(Attendance.student_id == student.id)
        .group_by(Attendance.status)
        .all()
    )
    counts = {s: 0 for s in ATTENDANCE_STATUSES}
    for status, count in rows:
        counts[status] = count

    total = sum(counts.values())
    attended = sum(counts[s] for s in BILLABLE_STATUSES)
    rate = round(attended / total * 100, 2) if total else 0.0

    return {
        "student_id": student.id,
        "total_sessions": total,
        "attended_sessions": attended,
        "counts": counts,
        "attendance_rate": rate,
    }
