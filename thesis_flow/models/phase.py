"""
Thesis Flow
Phase calendar model.

Models:
    - Phase: one of the ten ordered periods of the review calendar
"""

from datetime import datetime, timezone

from thesis_flow.models import db


# ── Phase ids ────────────────────────────────────────────────────────────────
# Ordering is by id only; ids are never reused.

PRELIMINARY_UPLOAD = 1
PRELIMINARY_REVIEW = 2
PRELIMINARY_FINAL_REVIEW = 3
MAIN_UPLOAD = 4
MAIN_REVIEW = 5
MAIN_FINAL_REVIEW = 6
REVISION_UPLOAD = 7
REVISION_REVIEW = 8
PERFORMANCE_REPORT = 9
COMPLETED = 10

PHASE_IDS = tuple(range(PRELIMINARY_UPLOAD, COMPLETED + 1))

DEFAULT_PHASE_TITLES = {
    PRELIMINARY_UPLOAD: "Preliminary submission",
    PRELIMINARY_REVIEW: "Preliminary review",
    PRELIMINARY_FINAL_REVIEW: "Preliminary final review",
    MAIN_UPLOAD: "Main submission",
    MAIN_REVIEW: "Main review",
    MAIN_FINAL_REVIEW: "Main final review",
    REVISION_UPLOAD: "Revision submission",
    REVISION_REVIEW: "Revision review",
    PERFORMANCE_REPORT: "Performance report",
    COMPLETED: "Completed",
}


class Phase(db.Model):
    """
    A named period of the review calendar.

    ``start``/``end`` are naive wall-clock values in the phase timezone
    (see ``thesis_flow.utils.dates``). Editing ``start`` must go through
    ``phase_service.update_phase`` so the phase timer is rescheduled.
    """

    __tablename__ = "phases"

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    title = db.Column(db.String(100), unique=True, nullable=False)
    start = db.Column(db.DateTime, nullable=False,
                      comment="Wall-clock start in PHASE_TIMEZONE")
    end = db.Column(db.DateTime, nullable=False,
                    comment="Wall-clock end in PHASE_TIMEZONE")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    processes = db.relationship("Process", back_populates="phase", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }

    def __repr__(self):
        return f"<Phase {self.id}:{self.title}>"
