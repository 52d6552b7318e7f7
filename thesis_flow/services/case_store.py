"""
Thesis Flow
Case Store: persistence seam of the transition engine.

``CaseStore`` is the contract the engine and scheduler depend on;
``SqlCaseStore`` implements it on the Flask-SQLAlchemy session.

Writes made through ``bulk_update_phase`` are not committed by the store;
callers wrap them in ``transaction()`` so a whole phase run commits or rolls
back as one unit.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import sqlalchemy as sa
from sqlalchemy.orm import selectinload

from thesis_flow.core.exceptions import BulkWriteError
from thesis_flow.models import db
from thesis_flow.models.phase import Phase
from thesis_flow.models.thesis import (
    REQUIRED_FILES,
    STAGE_MAIN,
    STAGE_REVISION,
    STATUS_UNEXAMINED,
    Process,
    Review,
    ThesisFile,
    ThesisInfo,
)

logger = logging.getLogger(__name__)

ProcessPredicate = Callable[[Process], bool]


class CaseStore(abc.ABC):
    """What the phase transition core needs from persistence."""

    @abc.abstractmethod
    def list_phases(self) -> list[Phase]:
        ...

    @abc.abstractmethod
    def get_phase(self, phase_id: int) -> Phase | None:
        ...

    @abc.abstractmethod
    def find_processes(self, phase_id: int,
                       extra_predicate: ProcessPredicate | None = None) -> list[Process]:
        """Processes on ``phase_id`` with thesis infos, files and reviews loaded."""

    @abc.abstractmethod
    def bulk_update_phase(self, process_ids: list[int], new_phase_id: int,
                          new_stage: str | None = None, *, from_phase_id: int) -> int:
        """Move processes still on ``from_phase_id`` to ``new_phase_id``.

        Returns the number of processes moved.
        """

    @abc.abstractmethod
    def get_reviews(self, thesis_info_id: int) -> list[Review]:
        ...

    @abc.abstractmethod
    def transaction(self):
        """Context manager: commit on success, roll back on error."""


class SqlCaseStore(CaseStore):
    """CaseStore backed by ``db.session``."""

    def __init__(self, session=None):
        self.session = session or db.session

    def list_phases(self) -> list[Phase]:
        return self.session.execute(sa.select(Phase).order_by(Phase.id)).scalars().all()

    def get_phase(self, phase_id: int) -> Phase | None:
        return self.session.get(Phase, phase_id)

    def find_processes(self, phase_id, extra_predicate=None):
        stmt = (
            sa.select(Process)
            .where(Process.phase_id == phase_id)
            .options(
                selectinload(Process.department),
                selectinload(Process.reviewers),
                selectinload(Process.thesis_infos).selectinload(ThesisInfo.thesis_files),
                selectinload(Process.thesis_infos).selectinload(ThesisInfo.reviews),
            )
            .order_by(Process.id)
        )
        processes = self.session.execute(stmt).scalars().all()
        if extra_predicate is None:
            return list(processes)
        return [p for p in processes if extra_predicate(p)]

    def bulk_update_phase(self, process_ids, new_phase_id, new_stage=None, *, from_phase_id):
        if not process_ids:
            return 0
        if new_phase_id <= from_phase_id:
            raise BulkWriteError(from_phase_id, f"refusing to move back to phase {new_phase_id}")

        values = {"phase_id": new_phase_id}
        if new_stage is not None:
            values["current_stage"] = new_stage

        # Compare-and-set on phase_id: a process already moved by another
        # run is not matched again.
        stmt = (
            sa.update(Process)
            .where(Process.id.in_(process_ids), Process.phase_id == from_phase_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
        except sa.exc.SQLAlchemyError as exc:
            raise BulkWriteError(from_phase_id, str(exc)) from exc

        moved = result.rowcount
        if moved != len(process_ids):
            logger.warning(
                "Phase %s: %d of %d processes were no longer on the phase",
                from_phase_id, len(process_ids) - moved, len(process_ids),
                extra={"phase_id": from_phase_id},
            )

        if new_stage == STAGE_REVISION:
            self._open_revision_stage(process_ids, new_phase_id)
        return moved

    def _open_revision_stage(self, process_ids, new_phase_id):
        """Create the REVISION thesis info, files and reviews where missing."""
        processes = self.session.execute(
            sa.select(Process)
            .where(Process.id.in_(process_ids), Process.phase_id == new_phase_id)
            .options(selectinload(Process.thesis_infos), selectinload(Process.reviewers))
        ).scalars().all()

        for process in processes:
            if process.has_stage(STAGE_REVISION):
                continue
            main = next((i for i in process.thesis_infos if i.stage == STAGE_MAIN), None)
            info = build_thesis_info(
                STAGE_REVISION,
                reviewer_ids=sorted(process.reviewer_ids),
                head_reviewer_id=process.head_reviewer_id,
                title=main.title if main else None,
                abstract=main.abstract if main else None,
            )
            process.thesis_infos.append(info)
        try:
            self.session.flush()
        except sa.exc.SQLAlchemyError as exc:
            raise BulkWriteError(new_phase_id, str(exc)) from exc

    def get_reviews(self, thesis_info_id: int) -> list[Review]:
        return self.session.execute(
            sa.select(Review).where(Review.thesis_info_id == thesis_info_id).order_by(Review.id)
        ).scalars().all()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


def build_thesis_info(stage: str, *, reviewer_ids, head_reviewer_id,
                      title=None, abstract=None) -> ThesisInfo:
    """Build a ThesisInfo with its empty upload slots and review records.

    One review per reviewer plus one final review by the head reviewer.
    Revision reviews and final reviews carry no presentation verdict.
    """
    presentation = STATUS_UNEXAMINED if stage != STAGE_REVISION else None
    info = ThesisInfo(stage=stage, title=title, abstract=abstract, summary=STATUS_UNEXAMINED)
    for file_type in REQUIRED_FILES[stage]:
        info.thesis_files.append(ThesisFile(type=file_type))
    for reviewer_id in reviewer_ids:
        info.reviews.append(Review(
            reviewer_id=reviewer_id,
            is_final=False,
            content_status=STATUS_UNEXAMINED,
            presentation_status=presentation,
        ))
    info.reviews.append(Review(
        reviewer_id=head_reviewer_id,
        is_final=True,
        content_status=STATUS_UNEXAMINED,
        presentation_status=None,
    ))
    return info
