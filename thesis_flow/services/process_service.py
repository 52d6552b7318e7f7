"""
Thesis Flow
Process creation service.

A student's review case is created in one transaction: the Process, its
reviewer set, the PRELIMINARY and MAIN ThesisInfo records, their empty
upload slots and one Review per reviewer plus the head reviewer's final
Review on each stage. The REVISION stage is opened later by the transition
engine, only for departments that require it; a process created directly on
a revision phase gets it at creation.

Administrators move a process forward by hand with ``advance_process``
(phase 1 has no automatic rule). The move goes through the same
compare-and-set write as the engine and never goes backwards.

Usage:
    from thesis_flow.services.process_service import create_process

    process = create_process(
        student_id=2024001,
        department_id=3,
        reviewer_ids=[11, 12, 13, 14, 15],
        head_reviewer_id=11,
    )
"""

from __future__ import annotations

import logging

import sqlalchemy as sa

from thesis_flow.core.exceptions import (
    ConflictError,
    GuardEvaluationError,
    NotFoundError,
    ValidationError,
)
from thesis_flow.models import db
from thesis_flow.models.phase import (
    MAIN_UPLOAD,
    PERFORMANCE_REPORT,
    PRELIMINARY_UPLOAD,
    REVISION_UPLOAD,
    Phase,
)
from thesis_flow.models.thesis import (
    STAGE_MAIN,
    STAGE_PRELIMINARY,
    STAGE_REVISION,
    Department,
    Process,
    ProcessReviewer,
    ThesisFile,
)
from thesis_flow.services.case_store import SqlCaseStore, build_thesis_info

logger = logging.getLogger(__name__)


def stage_for_phase(phase_id: int, revision_required: bool) -> str:
    """Review stage a process is in while on ``phase_id``.

    Raises ValidationError for a revision phase when the department has no
    revision round.
    """
    if phase_id < MAIN_UPLOAD:
        return STAGE_PRELIMINARY
    if phase_id < REVISION_UPLOAD:
        return STAGE_MAIN
    if phase_id < PERFORMANCE_REPORT and not revision_required:
        raise ValidationError("Department has no revision round",
                              details={"phase_id": phase_id})
    return STAGE_REVISION if revision_required else STAGE_MAIN


def _commit(what: str) -> None:
    try:
        db.session.commit()
    except sa.exc.SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not save %s", what)
        raise


def create_process(
    student_id: int,
    department_id: int,
    reviewer_ids: list[int],
    head_reviewer_id: int,
    *,
    phase_id: int = PRELIMINARY_UPLOAD,
    title: str | None = None,
    abstract: str | None = None,
    is_lock: bool = False,
) -> Process:
    """Create a student's Process with all stage records.

    ``current_stage`` follows ``phase_id``.

    Raises:
        NotFoundError: department or phase does not exist
        ValidationError: reviewer set is empty, has duplicates, or misses
            the head reviewer; revision phase for a department without a
            revision round
        ConflictError: the student already has a process
    """
    if not reviewer_ids:
        raise ValidationError("At least one reviewer is required")
    if len(set(reviewer_ids)) != len(reviewer_ids):
        raise ValidationError("Reviewer ids must be unique",
                              details={"reviewer_ids": reviewer_ids})
    if head_reviewer_id not in reviewer_ids:
        raise ValidationError("Head reviewer must be one of the reviewers",
                              details={"head_reviewer_id": head_reviewer_id})

    department = db.session.get(Department, department_id)
    if department is None:
        raise NotFoundError(resource="Department", resource_id=department_id)
    if db.session.get(Phase, phase_id) is None:
        raise NotFoundError(resource="Phase", resource_id=phase_id)
    stage = stage_for_phase(phase_id, bool(department.modification_flag))

    existing = db.session.execute(
        sa.select(Process.id).where(Process.student_id == student_id)
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(resource="Process", field="student_id", value=str(student_id))

    process = Process(
        student_id=student_id,
        department_id=department_id,
        phase_id=phase_id,
        current_stage=stage,
        is_lock=is_lock,
        head_reviewer_id=head_reviewer_id,
    )
    for reviewer_id in reviewer_ids:
        process.reviewers.append(ProcessReviewer(reviewer_id=reviewer_id))
    stages = [STAGE_PRELIMINARY, STAGE_MAIN]
    if stage == STAGE_REVISION:
        stages.append(STAGE_REVISION)
    for info_stage in stages:
        process.thesis_infos.append(build_thesis_info(
            info_stage,
            reviewer_ids=reviewer_ids,
            head_reviewer_id=head_reviewer_id,
            title=title,
            abstract=abstract,
        ))

    db.session.add(process)
    try:
        db.session.commit()
    except sa.exc.IntegrityError as exc:
        db.session.rollback()
        logger.warning("Process for student %s not created: %s", student_id, exc.orig)
        raise ConflictError(resource="Process", field="student_id", value=str(student_id)) from exc
    except sa.exc.SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Created process %s for student %s (%d reviewers)",
                process.id, student_id, len(reviewer_ids),
                extra={"process_id": process.id, "phase_id": phase_id})
    return process


def get_process(process_id: int) -> Process:
    process = db.session.get(Process, process_id)
    if process is None:
        raise NotFoundError(resource="Process", resource_id=process_id)
    return process


def set_lock(process_id: int, locked: bool) -> Process:
    """Freeze or unfreeze automatic advance of one process."""
    process = get_process(process_id)
    process.is_lock = locked
    _commit(f"lock of process {process_id}")
    logger.info("Process %s lock=%s", process_id, locked, extra={"process_id": process_id})
    return process


def advance_process(process_id: int, to_phase_id: int) -> Process:
    """Move one process forward to ``to_phase_id`` by administrative decision.

    Applies to locked processes too; the lock only stops the engine.
    Entering a revision phase opens the REVISION stage.

    Raises:
        NotFoundError: process or target phase does not exist
        ValidationError: target is not after the current phase, the
            department does not allow it, or the process moved meanwhile
    """
    process = get_process(process_id)
    if db.session.get(Phase, to_phase_id) is None:
        raise NotFoundError(resource="Phase", resource_id=to_phase_id)

    from_phase_id = process.phase_id
    if to_phase_id <= from_phase_id:
        raise ValidationError("A process can only move forward",
                              details={"phase_id": from_phase_id, "to_phase_id": to_phase_id})
    try:
        revision_required = process.department_modification_required
    except GuardEvaluationError as exc:
        raise ValidationError(exc.reason, details={"process_id": process_id}) from exc
    stage = stage_for_phase(to_phase_id, revision_required)

    store = SqlCaseStore()
    with store.transaction():
        moved = store.bulk_update_phase(
            [process_id], to_phase_id,
            stage if stage != process.current_stage else None,
            from_phase_id=from_phase_id,
        )
    if moved == 0:
        raise ValidationError("Process is no longer on its phase",
                              details={"phase_id": from_phase_id})

    logger.info("Process %s moved from phase %s to %s by administrator",
                process_id, from_phase_id, to_phase_id,
                extra={"event_type": "manual_advance", "process_id": process_id,
                       "phase_id": to_phase_id})
    return get_process(process_id)


def record_upload(thesis_info_id: int, file_type: str, file_id: str):
    """Attach an uploaded file id to a ThesisInfo upload slot."""
    slot = db.session.execute(
        sa.select(ThesisFile).where(
            ThesisFile.thesis_info_id == thesis_info_id,
            ThesisFile.type == file_type,
        )
    ).scalar_one_or_none()
    if slot is None:
        raise NotFoundError(resource=f"ThesisFile[{file_type}]", resource_id=thesis_info_id)
    slot.file_id = file_id
    _commit(f"upload slot {file_type} of thesis info {thesis_info_id}")
    return slot
