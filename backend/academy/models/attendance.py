from __future__ import annotations

from ..extensions import db
from academy.time_utils import to_utc_z, utcnow

ATTENDANCE_PRESENT = "present"
ATTENDANCE_LATE = "late"
ATTENDANCE_ABSENT = "absent"
ATTENDANCE_EXCUSED = "excused"
ATTENDANCE_STATUSES = (ATTENDANCE_PRESENT, ATTENDANCE_LATE, ATTENDANCE_ABSENT, ATTENDANCE_EXCUSED)

# Statuses that consume one session of entitlement
BILLABLE_STATUSES = (ATTENDANCE_PRESENT, ATTENDANCE_LATE)


class Attendance(db.Model):
    """One student's attendance at one training session date."""
    __tablename__ = "attendance"
    __table_args__ = (
        db.UniqueConstraint("student_id", "session_date", name="uq_attendance_student_session"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)
    session_date = db.Column(db.DateTime, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    # Whether this record consumed a session from the subscription
    session_deducted = db.Column(db.Boolean, nullable=False, default=False)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "subscription_id": self.subscription_id,
            "session_date": to_utc_z(self.session_date),
            "status": self.status,
            "notes": self.notes,
            "session_deducted": self.session_deducted,
            "recorded_by_user_id": self.recorded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
