"""
Thesis Flow
Phase Scheduler.

Arms one timer per Phase that fires at the phase's start instant, read in
the configured phase timezone (``PHASE_TIMEZONE``, Asia/Seoul by default)
whatever the host timezone is. A firing runs
``transition_engine.advance_into_phase`` inside an application context.

Architecture:
    - PhaseTimer: a single-shot timer on a daemon thread.
      States: scheduled -> fired | cancelled. Both end states are final;
      a changed start time always gets a brand-new PhaseTimer.
    - PhaseScheduler: Flask extension holding the timer registry, keyed
      by Phase id. Titles are still required to be unique.

Cancelling a timer waits for a firing already in progress to finish and
guarantees it never fires afterwards, so ``reschedule`` cannot double-fire.

Usage:
    scheduler = PhaseScheduler()
    scheduler.init_app(app)
    scheduler.start()                 # arm every Phase row
    scheduler.reschedule(phase)       # after an administrative edit
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from flask import Flask

from thesis_flow.core.exceptions import SchedulingError
from thesis_flow.utils.dates import localize, now_in, phase_zone

logger = logging.getLogger(__name__)

SCHEDULED = "scheduled"
FIRED = "fired"
CANCELLED = "cancelled"


class PhaseTimer:
    """Single-shot timer for one Phase start instant."""

    def __init__(self, phase_id: int, title: str, fire_at: datetime,
                 delay: float, callback: Callable[[], None]):
        self.phase_id = phase_id
        self.title = title
        self.fire_at = fire_at
        self.delay = delay
        self.state = SCHEDULED
        self._callback = callback
        self._state_lock = threading.RLock()
        self._cancelled = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"phase-timer-{phase_id}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        if self._cancelled.wait(self.delay):
            return
        with self._state_lock:
            if self.state != SCHEDULED:
                return
            try:
                self._callback()
            except Exception:
                logger.exception("Phase timer %s (%s) callback failed", self.phase_id, self.title,
                                 extra={"event_type": "phase_timer", "phase_id": self.phase_id})
            finally:
                self.state = FIRED

    def cancel(self) -> bool:
        """Stop the timer. Returns True if it had not fired yet."""
        self._cancelled.set()
        with self._state_lock:
            if self.state == SCHEDULED:
                self.state = CANCELLED
                return True
            return False

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def to_dict(self):
        return {
            "phase_id": self.phase_id,
            "title": self.title,
            "fire_at": self.fire_at.isoformat(),
            "state": self.state,
        }


class PhaseScheduler:
    """Timer registry for the phase calendar."""

    def __init__(self, app: Flask | None = None,
                 fire: Callable[[int], object] | None = None,
                 clock: Callable[[], datetime] | None = None):
        self.app = app
        self._fire = fire
        self._clock = clock
        self._timers: dict[int, PhaseTimer] = {}
        self._lock = threading.Lock()
        self.zone = phase_zone("Asia/Seoul")
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.app = app
        self.zone = phase_zone(app.config.get("PHASE_TIMEZONE", "Asia/Seoul"))
        app.extensions["phase_scheduler"] = self
        logger.info("PhaseScheduler initialized (timezone=%s)", self.zone.key)

    # ── Arming ───────────────────────────────────────────────────────────

    def start(self, store=None) -> int:
        """Arm a timer for every Phase row. Returns how many were armed."""
        from thesis_flow.services.case_store import SqlCaseStore

        with self.app.app_context():
            phase_rows = (store or SqlCaseStore()).list_phases()
            armed = 0
            for phase in phase_rows:
                try:
                    if self.schedule(phase) is not None:
                        armed += 1
                except SchedulingError as exc:
                    logger.error("Configuration error, phase %s is not automated: %s",
                                 exc.phase_id, exc.reason,
                                 extra={"event_type": "phase_schedule", "phase_id": exc.phase_id})
        logger.info("PhaseScheduler armed %d of %d phase timer(s)", armed, len(phase_rows))
        return armed

    def schedule(self, phase) -> PhaseTimer | None:
        """Arm a timer for ``phase``. Returns None when its start has passed."""
        with self._lock:
            return self._schedule_locked(phase)

    def reschedule(self, phase) -> PhaseTimer | None:
        """Replace the timer of ``phase`` after its start time changed."""
        with self._lock:
            old = self._timers.pop(phase.id, None)
            if old is not None:
                old.cancel()
            return self._schedule_locked(phase)

    def cancel(self, phase_id: int) -> bool:
        with self._lock:
            timer = self._timers.pop(phase_id, None)
        return timer.cancel() if timer is not None else False

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _schedule_locked(self, phase) -> PhaseTimer | None:
        if phase.start is None:
            raise SchedulingError(phase.id, "start time is missing")
        if not isinstance(phase.start, datetime):
            raise SchedulingError(phase.id, f"invalid start time {phase.start!r}")

        current = self._timers.get(phase.id)
        if current is not None and current.state == SCHEDULED:
            raise SchedulingError(phase.id, "a timer is already scheduled; use reschedule")
        for other in self._timers.values():
            if other.phase_id != phase.id and other.title == phase.title:
                raise SchedulingError(phase.id, f"duplicate timer name {phase.title!r}")

        fire_at = localize(phase.start, self.zone)
        delay = (fire_at - self._now()).total_seconds()
        if delay < 0:
            logger.info("Phase %s (%s) started at %s; timer not armed",
                        phase.id, phase.title, fire_at.isoformat(),
                        extra={"event_type": "phase_schedule", "phase_id": phase.id})
            return None

        phase_id = phase.id
        timer = PhaseTimer(phase_id, phase.title, fire_at, delay,
                           lambda: self._on_fire(phase_id))
        self._timers[phase_id] = timer
        timer.start()
        logger.info("Phase %s (%s) scheduled at %s", phase_id, phase.title, fire_at.isoformat(),
                    extra={"event_type": "phase_schedule", "phase_id": phase_id,
                           "phase_title": phase.title})
        return timer

    # ── Firing ───────────────────────────────────────────────────────────

    def _now(self) -> datetime:
        if self._clock is not None:
            return localize(self._clock(), self.zone)
        return now_in(self.zone)

    def _on_fire(self, phase_id: int) -> None:
        logger.info("Phase %s timer fired", phase_id,
                    extra={"event_type": "phase_timer", "phase_id": phase_id})
        with self.app.app_context():
            if self._fire is not None:
                self._fire(phase_id)
            else:
                from thesis_flow.services.transition_engine import advance_into_phase
                advance_into_phase(phase_id)

    # ── Introspection ────────────────────────────────────────────────────

    def get_timer(self, phase_id: int) -> PhaseTimer | None:
        with self._lock:
            return self._timers.get(phase_id)

    def list_timers(self) -> list[dict]:
        with self._lock:
            timers = sorted(self._timers.values(), key=lambda t: t.phase_id)
        return [t.to_dict() for t in timers]
