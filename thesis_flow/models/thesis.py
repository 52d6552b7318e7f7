"""
Thesis Flow
Review case models.

Models:
    - Department: academic department, owns the revision requirement flag
    - Process: one student's progress through the phase calendar
    - ProcessReviewer: reviewer membership of a Process
    - ThesisInfo: one review stage (PRELIMINARY / MAIN / REVISION) of a Process
    - ThesisFile: one required upload slot of a ThesisInfo
    - Review: one reviewer's verdict on a ThesisInfo (plus the head reviewer's
      final verdict, ``is_final=True``)
"""

from datetime import datetime, timezone

from thesis_flow.core.exceptions import GuardEvaluationError
from thesis_flow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STAGE_PRELIMINARY = "PRELIMINARY"
STAGE_MAIN = "MAIN"
STAGE_REVISION = "REVISION"
STAGES = {STAGE_PRELIMINARY, STAGE_MAIN, STAGE_REVISION}

STATUS_UNEXAMINED = "UNEXAMINED"
STATUS_PENDING = "PENDING"
STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUSES = {STATUS_UNEXAMINED, STATUS_PENDING, STATUS_PASS, STATUS_FAIL}
DECIDED_STATUSES = {STATUS_PASS, STATUS_FAIL}

FILE_THESIS = "THESIS"
FILE_PRESENTATION = "PRESENTATION"
FILE_REVISION_REPORT = "REVISION_REPORT"
FILE_TYPES = {FILE_THESIS, FILE_PRESENTATION, FILE_REVISION_REPORT}

REQUIRED_FILES = {
    STAGE_PRELIMINARY: (FILE_THESIS, FILE_PRESENTATION),
    STAGE_MAIN: (FILE_THESIS, FILE_PRESENTATION),
    STAGE_REVISION: (FILE_THESIS, FILE_REVISION_REPORT),
}


def _utcnow():
    return datetime.now(timezone.utc)


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    modification_flag = db.Column(db.Boolean, nullable=False, default=False,
                                  comment="Revision round required after main review")

    processes = db.relationship("Process", back_populates="department", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "modification_flag": self.modification_flag,
            "process_count": self.processes.count(),
        }

    def __repr__(self):
        return f"<Department {self.name}>"


class Process(db.Model):
    """
    A student's review process.

    ``phase_id`` only ever increases; the transition engine is the sole
    writer once the process exists.
    """

    __tablename__ = "processes"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, unique=True, nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)
    phase_id = db.Column(db.Integer, db.ForeignKey("phases.id"), nullable=False, index=True)
    current_stage = db.Column(db.String(20), nullable=False, default=STAGE_PRELIMINARY)
    is_lock = db.Column(db.Boolean, nullable=False, default=False,
                        comment="Administrative freeze; suppresses automatic advance")
    head_reviewer_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    phase = db.relationship("Phase", back_populates="processes")
    department = db.relationship("Department", back_populates="processes")
    reviewers = db.relationship(
        "ProcessReviewer",
        back_populates="process",
        cascade="all, delete-orphan",
    )
    thesis_infos = db.relationship(
        "ThesisInfo",
        back_populates="process",
        cascade="all, delete-orphan",
    )

    @property
    def reviewer_ids(self) -> set[int]:
        return {link.reviewer_id for link in self.reviewers}

    @property
    def department_modification_required(self) -> bool:
        if self.department is None:
            raise GuardEvaluationError(self.id, "process has no department")
        return bool(self.department.modification_flag)

    def thesis_info_for(self, stage: str) -> "ThesisInfo":
        """Return the ThesisInfo of ``stage``; guards treat absence as bad data."""
        for info in self.thesis_infos:
            if info.stage == stage:
                return info
        raise GuardEvaluationError(self.id, f"missing {stage} thesis info")

    def has_stage(self, stage: str) -> bool:
        return any(info.stage == stage for info in self.thesis_infos)

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "department_id": self.department_id,
            "phase_id": self.phase_id,
            "current_stage": self.current_stage,
            "is_lock": self.is_lock,
            "head_reviewer_id": self.head_reviewer_id,
            "reviewer_ids": sorted(self.reviewer_ids),
            "thesis_infos": [info.to_dict() for info in self.thesis_infos],
        }

    def __repr__(self):
        return f"<Process student={self.student_id} phase={self.phase_id}>"


class ProcessReviewer(db.Model):
    __tablename__ = "process_reviewers"
    __table_args__ = (
        db.UniqueConstraint("process_id", "reviewer_id", name="uq_process_reviewer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"),
                           nullable=False)
    reviewer_id = db.Column(db.Integer, nullable=False, index=True)

    process = db.relationship("Process", back_populates="reviewers")


class ThesisInfo(db.Model):
    __tablename__ = "thesis_infos"
    __table_args__ = (
        db.UniqueConstraint("process_id", "stage", name="uq_thesis_info_stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"),
                           nullable=False)
    stage = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(500), nullable=True)
    abstract = db.Column(db.Text, nullable=True)
    summary = db.Column(db.String(20), nullable=False, default=STATUS_UNEXAMINED,
                        comment="Aggregated verdict of the stage reviews")

    process = db.relationship("Process", back_populates="thesis_infos")
    thesis_files = db.relationship(
        "ThesisFile",
        back_populates="thesis_info",
        cascade="all, delete-orphan",
    )
    reviews = db.relationship(
        "Review",
        back_populates="thesis_info",
        cascade="all, delete-orphan",
    )

    def is_submission_complete(self) -> bool:
        """True when every required upload slot of this stage has a file."""
        required = REQUIRED_FILES.get(self.stage)
        if required is None:
            raise GuardEvaluationError(self.process_id, f"unknown stage {self.stage!r}")
        uploaded = {f.type for f in self.thesis_files if f.file_id is not None}
        return all(file_type in uploaded for file_type in required)

    def to_dict(self):
        return {
            "id": self.id,
            "stage": self.stage,
            "title": self.title,
            "summary": self.summary,
            "files": {f.type: f.file_id for f in self.thesis_files},
        }


class ThesisFile(db.Model):
    __tablename__ = "thesis_files"
    __table_args__ = (
        db.UniqueConstraint("thesis_info_id", "type", name="uq_thesis_file_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    thesis_info_id = db.Column(db.Integer, db.ForeignKey("thesis_infos.id", ondelete="CASCADE"),
                               nullable=False)
    type = db.Column(db.String(30), nullable=False)
    file_id = db.Column(db.String(64), nullable=True,
                        comment="Storage id; NULL until uploaded")

    thesis_info = db.relationship("ThesisInfo", back_populates="thesis_files")


class Review(db.Model):
    __tablename__ = "reviews"

    id = db.Column(db.Integer, primary_key=True)
    thesis_info_id = db.Column(db.Integer, db.ForeignKey("thesis_infos.id", ondelete="CASCADE"),
                               nullable=False, index=True)
    reviewer_id = db.Column(db.Integer, nullable=False)
    content_status = db.Column(db.String(20), nullable=False, default=STATUS_UNEXAMINED)
    presentation_status = db.Column(db.String(20), nullable=True,
                                    comment="NULL where no presentation verdict applies")
    comment = db.Column(db.Text, nullable=True)
    file_id = db.Column(db.String(64), nullable=True)
    is_final = db.Column(db.Boolean, nullable=False, default=False)

    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    thesis_info = db.relationship("ThesisInfo", back_populates="reviews")

    def to_dict(self):
        return {
            "id": self.id,
            "thesis_info_id": self.thesis_info_id,
            "reviewer_id": self.reviewer_id,
            "content_status": self.content_status,
            "presentation_status": self.presentation_status,
            "comment": self.comment,
            "file_id": self.file_id,
            "is_final": self.is_final,
        }

    def __repr__(self):
        kind = "final" if self.is_final else "review"
        return f"<Review {kind} reviewer={self.reviewer_id} {self.content_status}/{self.presentation_status}>"
