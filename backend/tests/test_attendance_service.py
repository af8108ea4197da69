from datetime import datetime

import pytest

from academy.errors import EntitlementExhausted, InvalidStateError, NotFoundError
from academy.extensions import db
from academy.models import Attendance
from academy.services import attendance_service, subscription_service
from academy.validation import ValidationError, ConflictError


MON = datetime(2024, 3, 4, 17, 0)
WED = datetime(2024, 3, 6, 17, 0)
FRI = datetime(2024, 3, 8, 17, 0)


def test_present_consumes_a_session(make_active_subscription, student, coach):
    subscription = make_active_subscription()

    record = attendance_service.record_attendance(
        student_id=student.id,
        session_date=MON,
        status="present",
        subscription_id=subscription.id,
        user_id=coach.id,
    )

    assert record.session_deducted is True
    assert subscription_service.get_subscription(subscription.id).remaining_sessions == 3


def test_absent_and_excused_do_not_consume(make_active_subscription, student):
    subscription = make_active_subscription()

    absent = attendance_service.record_attendance(
        student_id=student.id, session_date=MON, status="absent", subscription_id=subscription.id
    )
    excused = attendance_service.record_attendance(
        student_id=student.id, session_date=WED, status="excused", subscription_id=subscription.id
    )

    assert not absent.session_deducted and not excused.session_deducted
    assert subscription_service.get_subscription(subscription.id).remaining_sessions == 4


def test_exhausted_entitlement_denies_the_record(make_active_subscription, student):
    subscription = make_active_subscription(max_sessions=1)
    attendance_service.record_attendance(
        student_id=student.id, session_date=MON, status="late", subscription_id=subscription.id
    )

    with pytest.raises(EntitlementExhausted):
        attendance_service.record_attendance(
            student_id=student.id, session_date=WED, status="present", subscription_id=subscription.id
        )

    assert db.session.query(Attendance).filter_by(session_date=WED).count() == 0
    assert subscription_service.get_subscription(subscription.id).remaining_sessions == 0


def test_inactive_subscription_denies_billable_record(make_plan, make_subscription, student):
    pending = make_subscription(make_plan())

    with pytest.raises(InvalidStateError):
        attendance_service.record_attendance(
            student_id=student.id, session_date=MON, status="present", subscription_id=pending.id
        )
    assert db.session.query(Attendance).count() == 0


def test_one_record_per_student_and_date(make_active_subscription, student):
    subscription = make_active_subscription()
    attendance_service.record_attendance(
        student_id=student.id, session_date=MON, status="present", subscription_id=subscription.id
    )

    with pytest.raises(ConflictError):
        attendance_service.record_attendance(
            student_id=student.id, session_date=MON, status="present", subscription_id=subscription.id
        )
    assert subscription_service.get_subscription(subscription.id).remaining_sessions == 3


def test_subscription_must_belong_to_student(make_active_subscription, other_student):
    subscription = make_active_subscription()

    with pytest.raises(ValidationError):
        attendance_service.record_attendance(
            student_id=other_student.id, session_date=MON, status="present", subscription_id=subscription.id
        )


def test_bad_status_and_unknown_student(student):
    with pytest.raises(ValidationError):
        attendance_service.record_attendance(student_id=student.id, session_date=MON, status="asleep")
    with pytest.raises(NotFoundError):
        attendance_service.record_attendance(student_id=31337, session_date=MON, status="absent")


def test_stats_recomputed_from_records(make_active_subscription, student):
    subscription = make_active_subscription(max_sessions=None)
    for day, status in ((MON, "present"), (WED, "late"), (FRI, "absent")):
        attendance_service.record_attendance(
            student_id=student.id, session_date=day, status=status, subscription_id=subscription.id
        )

    stats = attendance_service.compute_attendance_stats(student.id)

    assert stats["total_sessions"] == 3
    assert stats["attended_sessions"] == 2
    assert stats["counts"] == {"present": 1, "late": 1, "absent": 1, "excused": 0}
    assert stats["attendance_rate"] == 66.67
    assert attendance_service.compute_attendance_stats(student.id) == stats


def test_stats_with_no_records(student):
    stats = attendance_service.compute_attendance_stats(student.id)
    assert stats["total_sessions"] == 0
    assert stats["attendance_rate"] == 0.0
