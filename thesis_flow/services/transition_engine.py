"""
Thesis Flow
Phase Transition Engine.

Moves processes forward through the phase calendar. Each source phase maps
to an ordered tuple of ``TransitionRule``; the first rule whose guard holds
for a process decides where it goes:

     1 preliminary upload       (administrative only)
     2 preliminary review       PRELIMINARY files complete         -> 3
     3 preliminary final review time only                          -> 4 (stage MAIN)
     4 main upload              MAIN files complete                -> 5
     5 main review              time only                          -> 6
     6 main final review        revision required, MAIN PASS       -> 7 (stage REVISION)
                                no revision required, MAIN PASS    -> 9
     7 revision upload          REVISION files complete            -> 8
     8 revision review          REVISION PASS                      -> 9
     9 performance report       time only                          -> 10
    10 completed                (terminal)

Locked processes are never advanced.

A run for one phase evaluates every guard first, then writes all advances
inside a single store transaction. Guard errors skip the offending process;
a write failure rolls the whole phase back and the run reports 0.

Usage:
    from thesis_flow.services.transition_engine import apply_phase

    advanced = apply_phase(2)
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from thesis_flow.core.exceptions import GuardEvaluationError
from thesis_flow.models import phase as phases
from thesis_flow.models.thesis import (
    STAGE_MAIN,
    STAGE_PRELIMINARY,
    STAGE_REVISION,
    STATUS_PASS,
    Process,
)
from thesis_flow.services.case_store import CaseStore, SqlCaseStore
from thesis_flow.services.review_aggregator import aggregate

logger = logging.getLogger(__name__)

Guard = Callable[[Process, CaseStore], bool]


@dataclass(frozen=True)
class TransitionRule:
    name: str
    guard: Guard
    next_phase: int
    new_stage: str | None = None


# ── Guards ───────────────────────────────────────────────────────────────────


def always(process: Process, store: CaseStore) -> bool:
    return True


def submission_complete(stage: str) -> Guard:
    def guard(process: Process, store: CaseStore) -> bool:
        return process.thesis_info_for(stage).is_submission_complete()
    guard.__name__ = f"submission_complete_{stage.lower()}"
    return guard


def stage_passed(stage: str) -> Guard:
    def guard(process: Process, store: CaseStore) -> bool:
        info = process.thesis_info_for(stage)
        try:
            return aggregate(store.get_reviews(info.id)) == STATUS_PASS
        except ValueError as exc:
            raise GuardEvaluationError(process.id, str(exc)) from exc
    guard.__name__ = f"stage_passed_{stage.lower()}"
    return guard


def revision_required(required: bool) -> Guard:
    def guard(process: Process, store: CaseStore) -> bool:
        return process.department_modification_required is required
    return guard


def all_of(*guards: Guard) -> Guard:
    def guard(process: Process, store: CaseStore) -> bool:
        return all(g(process, store) for g in guards)
    return guard


# ── Transition table ─────────────────────────────────────────────────────────

TRANSITION_TABLE: dict[int, tuple[TransitionRule, ...]] = {
    phases.PRELIMINARY_REVIEW: (
        TransitionRule("preliminary_submitted", submission_complete(STAGE_PRELIMINARY),
                       phases.PRELIMINARY_FINAL_REVIEW),
    ),
    phases.PRELIMINARY_FINAL_REVIEW: (
        TransitionRule("preliminary_closed", always, phases.MAIN_UPLOAD, STAGE_MAIN),
    ),
    phases.MAIN_UPLOAD: (
        TransitionRule("main_submitted", submission_complete(STAGE_MAIN), phases.MAIN_REVIEW),
    ),
    phases.MAIN_REVIEW: (
        TransitionRule("main_review_closed", always, phases.MAIN_FINAL_REVIEW),
    ),
    phases.MAIN_FINAL_REVIEW: (
        TransitionRule(
            "main_passed_revision_required",
            all_of(revision_required(True), stage_passed(STAGE_MAIN)),
            phases.REVISION_UPLOAD,
            STAGE_REVISION,
        ),
        TransitionRule(
            "main_passed",
            all_of(revision_required(False), stage_passed(STAGE_MAIN)),
            phases.PERFORMANCE_REPORT,
        ),
    ),
    phases.REVISION_UPLOAD: (
        TransitionRule("revision_submitted", submission_complete(STAGE_REVISION),
                       phases.REVISION_REVIEW),
    ),
    phases.REVISION_REVIEW: (
        TransitionRule("revision_passed", stage_passed(STAGE_REVISION), phases.PERFORMANCE_REPORT),
    ),
    phases.PERFORMANCE_REPORT: (
        TransitionRule("report_closed", always, phases.COMPLETED),
    ),
}

for _source, _rules in TRANSITION_TABLE.items():
    for _rule in _rules:
        if _rule.next_phase <= _source:
            raise RuntimeError(f"Transition {_rule.name} does not move forward from {_source}")


def rules_for(phase_id: int) -> tuple[TransitionRule, ...]:
    return TRANSITION_TABLE.get(phase_id, ())


def select_rule(phase_id: int, process: Process, store: CaseStore) -> TransitionRule | None:
    """First rule of ``phase_id`` whose guard holds for ``process``.

    Raises GuardEvaluationError when the process data cannot be evaluated.
    """
    if process.is_lock:
        return None
    for rule in rules_for(phase_id):
        try:
            if rule.guard(process, store):
                return rule
        except GuardEvaluationError:
            raise
        except (AttributeError, KeyError, TypeError) as exc:
            raise GuardEvaluationError(process.id, f"{rule.name}: {exc}") from exc
    return None


# ── Per-phase serialisation ──────────────────────────────────────────────────

_phase_locks: dict[int, threading.Lock] = defaultdict(threading.Lock)
_phase_locks_guard = threading.Lock()


def _lock_for(phase_id: int) -> threading.Lock:
    with _phase_locks_guard:
        return _phase_locks[phase_id]


# ── Entry points ─────────────────────────────────────────────────────────────


def _run(phase_id: int, store: CaseStore) -> tuple[int, str | None]:
    """One transition run for ``phase_id``: (processes advanced, failure reason)."""
    log_extra = {"event_type": "phase_transition", "phase_id": phase_id}
    rules = rules_for(phase_id)
    if not rules:
        logger.info("Phase %s has no automatic transitions", phase_id, extra=log_extra)
        return 0, None

    with _lock_for(phase_id):
        try:
            with store.transaction():
                phase = store.get_phase(phase_id)
                log_extra["phase_title"] = phase.title if phase else None

                plan: dict[tuple[int, str | None], list[int]] = defaultdict(list)
                skipped = 0
                for process in store.find_processes(phase_id):
                    try:
                        rule = select_rule(phase_id, process, store)
                    except GuardEvaluationError as exc:
                        skipped += 1
                        logger.warning("Skipping process %s: %s", process.id, exc.reason,
                                       extra={**log_extra, "process_id": process.id})
                        continue
                    if rule is not None:
                        plan[(rule.next_phase, rule.new_stage)].append(process.id)

                advanced = 0
                for (next_phase, new_stage), process_ids in plan.items():
                    advanced += store.bulk_update_phase(
                        process_ids, next_phase, new_stage, from_phase_id=phase_id,
                    )
        except Exception as exc:
            logger.exception("Transition run for phase %s failed, no process advanced: %s",
                             phase_id, exc, extra={**log_extra, "advanced": 0})
            return 0, str(exc)

    logger.info("Phase %s (%s): advanced %d process(es), skipped %d",
                phase_id, log_extra["phase_title"], advanced, skipped,
                extra={**log_extra, "advanced": advanced})
    return advanced, None


def apply_phase(phase_id: int, store: CaseStore | None = None) -> int:
    """Advance every eligible process on ``phase_id``. Returns the count moved."""
    advanced, _error = _run(phase_id, store or SqlCaseStore())
    return advanced


def advance_into_phase(phase_id: int, store: CaseStore | None = None) -> int:
    """Fired when phase ``phase_id`` starts: apply the phase right before it."""
    previous = phase_id - 1
    if previous not in TRANSITION_TABLE:
        logger.info("Phase %s started; nothing to advance", phase_id,
                    extra={"event_type": "phase_start", "phase_id": phase_id})
        return 0
    return apply_phase(previous, store)


def run_phase_transition(phase_id: int, store: CaseStore | None = None) -> dict:
    """Administrative re-evaluation of one phase.

    Returns:
        Dict with phase_id, status, advanced, duration_ms and error.
    """
    if phase_id not in phases.PHASE_IDS:
        return {"phase_id": phase_id, "status": "error", "advanced": 0,
                "duration_ms": 0, "error": f"Unknown phase: {phase_id}"}

    start = time.monotonic()
    advanced, error = _run(phase_id, store or SqlCaseStore())
    duration_ms = int((time.monotonic() - start) * 1000)
    return {
        "phase_id": phase_id,
        "status": "failed" if error else "success",
        "advanced": advanced,
        "duration_ms": duration_ms,
        "error": error,
    }
