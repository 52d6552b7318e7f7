"""
Thesis Flow
Phase administration service.

Listing, current-phase lookup and administrative edits of the phase
calendar. An edit of start/end is committed first and then handed to the
PhaseScheduler, which replaces the phase's timer.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import sqlalchemy as sa
from flask import current_app

from thesis_flow.core.exceptions import NotFoundError, SchedulingError, ValidationError
from thesis_flow.models import db
from thesis_flow.models.phase import DEFAULT_PHASE_TITLES, Phase
from thesis_flow.utils.dates import end_of_day, localize, now_in, phase_zone, to_storage

logger = logging.getLogger(__name__)


def list_phases() -> list[Phase]:
    return db.session.execute(sa.select(Phase).order_by(Phase.id)).scalars().all()


def get_phase(phase_id: int) -> Phase:
    phase = db.session.get(Phase, phase_id)
    if phase is None:
        raise NotFoundError(resource="Phase", resource_id=phase_id)
    return phase


def get_current_phases(now: datetime | None = None) -> list[Phase]:
    """Phases whose [start, end] window contains ``now`` (phase timezone)."""
    zone = phase_zone()
    moment = to_storage(now or now_in(zone), zone)
    stmt = (
        sa.select(Phase)
        .where(Phase.start <= moment, Phase.end >= moment)
        .order_by(Phase.id)
    )
    return db.session.execute(stmt).scalars().all()


def update_phase(phase_id: int, start: datetime, end: datetime) -> Phase:
    """Change a phase's window and rearm its timer.

    ``end`` is snapped to 23:59:59 of its day in the phase timezone.

    Raises:
        NotFoundError, ValidationError
    """
    phase = get_phase(phase_id)
    zone = phase_zone()

    start_local = localize(start, zone)
    end_local = localize(end, zone)
    if end_local <= start_local:
        raise ValidationError("Phase end must be after its start",
                              details={"start": start_local.isoformat(),
                                       "end": end_local.isoformat()})
    end_local = end_of_day(end_local)

    phase.start = start_local.replace(tzinfo=None)
    phase.end = end_local.replace(tzinfo=None)
    try:
        db.session.commit()
    except sa.exc.SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Phase %s window set to %s .. %s", phase.id, phase.start, phase.end,
                extra={"event_type": "phase_update", "phase_id": phase.id})
    _reschedule(phase)
    return phase


def _reschedule(phase: Phase) -> None:
    scheduler = current_app.extensions.get("phase_scheduler")
    if scheduler is None:
        return
    try:
        scheduler.reschedule(phase)
    except SchedulingError as exc:
        logger.error("Configuration error, phase %s is not automated: %s",
                     exc.phase_id, exc.reason,
                     extra={"event_type": "phase_schedule", "phase_id": exc.phase_id})


def seed_phases(start: datetime | None = None) -> int:
    """Create the ten default phases that do not exist yet.

    New phases get back-to-back one-day windows from ``start``; the
    administrator sets the real calendar afterwards.
    """
    zone = phase_zone()
    base = to_storage(start or now_in(zone), zone).replace(hour=0, minute=0, second=0,
                                                            microsecond=0)
    created = 0
    for offset, (phase_id, title) in enumerate(sorted(DEFAULT_PHASE_TITLES.items())):
        if db.session.get(Phase, phase_id) is not None:
            continue
        day = base + timedelta(days=offset)
        db.session.add(Phase(id=phase_id, title=title, start=day, end=end_of_day(day)))
        created += 1
    if created:
        db.session.commit()
    return created
