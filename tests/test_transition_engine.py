"""
Tests for the Phase Transition Engine.

Covers:
    1. Every row of the transition table (DB-backed, SqlCaseStore)
    2. Locked processes and guard evaluation errors
    3. Bulk write failure -> whole phase rolled back
    4. advance_into_phase / run_phase_transition entry points
    5. Concurrent runs: per-phase serialisation, no double advance
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from types import SimpleNamespace

import pytest

from thesis_flow.core.exceptions import BulkWriteError
from thesis_flow.models import db
from thesis_flow.models.thesis import (
    STAGE_MAIN,
    STAGE_PRELIMINARY,
    STAGE_REVISION,
    STATUS_FAIL,
    FILE_PRESENTATION,
    FILE_REVISION_REPORT,
    FILE_THESIS,
    Process,
    ThesisInfo,
)
from thesis_flow.services.case_store import CaseStore, SqlCaseStore, build_thesis_info
from thesis_flow.services.transition_engine import (
    TRANSITION_TABLE,
    advance_into_phase,
    apply_phase,
    rules_for,
    run_phase_transition,
)


def _phase_of(process_id):
    return db.session.get(Process, process_id).phase_id


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionTable:

    def test_every_rule_moves_forward(self):
        for source, rules in TRANSITION_TABLE.items():
            for rule in rules:
                assert rule.next_phase > source, rule.name

    def test_first_and_last_phase_have_no_rules(self):
        assert rules_for(1) == ()
        assert rules_for(10) == ()

    def test_main_final_review_branches(self):
        targets = [rule.next_phase for rule in rules_for(6)]
        assert targets == [7, 9]


# ═════════════════════════════════════════════════════════════════════════════
# Phase runs (DB-backed)
# ═════════════════════════════════════════════════════════════════════════════


class TestApplyPhase:

    def test_preliminary_review_requires_complete_submission(self, make_process):
        complete = make_process(2, uploads=(STAGE_PRELIMINARY,))
        missing = make_process(2)
        partial = make_process(2)
        partial.thesis_info_for(STAGE_PRELIMINARY).thesis_files[0].file_id = "only-one"
        db.session.commit()

        assert apply_phase(2) == 1
        assert _phase_of(complete.id) == 3
        assert _phase_of(missing.id) == 2
        assert _phase_of(partial.id) == 2

    def test_only_processes_on_the_phase_are_touched(self, make_process):
        on_phase = make_process(2, uploads=(STAGE_PRELIMINARY,))
        elsewhere = make_process(4, uploads=(STAGE_PRELIMINARY, STAGE_MAIN))

        assert apply_phase(2) == 1
        assert _phase_of(on_phase.id) == 3
        assert _phase_of(elsewhere.id) == 4

    def test_locked_process_is_skipped(self, make_process):
        locked = make_process(2, uploads=(STAGE_PRELIMINARY,), locked=True)
        assert apply_phase(2) == 0
        assert _phase_of(locked.id) == 2

    def test_locked_process_is_skipped_by_time_only_rule(self, make_process):
        locked = make_process(9, locked=True)
        assert apply_phase(9) == 0
        assert _phase_of(locked.id) == 9

    def test_preliminary_final_review_opens_main_stage(self, make_process):
        process = make_process(3)
        assert apply_phase(3) == 1
        process = db.session.get(Process, process.id)
        assert process.phase_id == 4
        assert process.current_stage == STAGE_MAIN

    def test_main_upload(self, make_process):
        done = make_process(4, uploads=(STAGE_MAIN,))
        waiting = make_process(4, uploads=(STAGE_PRELIMINARY,))
        assert apply_phase(4) == 1
        assert _phase_of(done.id) == 5
        assert _phase_of(waiting.id) == 4

    def test_main_review_is_time_only(self, make_process):
        processes = [make_process(5) for _ in range(3)]
        assert apply_phase(5) == 3
        assert {_phase_of(p.id) for p in processes} == {6}

    def test_main_pass_without_revision_skips_to_report(self, make_process):
        passed = make_process(6, passed=(STAGE_MAIN,))
        undecided = make_process(6)
        assert apply_phase(6) == 1
        assert _phase_of(passed.id) == 9
        assert _phase_of(undecided.id) == 6

    def test_main_fail_stays(self, make_process):
        failed = make_process(6, passed=(STAGE_MAIN,))
        failed.thesis_info_for(STAGE_MAIN).reviews[0].content_status = STATUS_FAIL
        db.session.commit()
        assert apply_phase(6) == 0
        assert _phase_of(failed.id) == 6

    def test_main_pass_with_revision_opens_revision_stage(self, make_process, revision_department):
        process = make_process(6, department=revision_department, passed=(STAGE_MAIN,))
        assert apply_phase(6) == 1

        process = db.session.get(Process, process.id)
        assert process.phase_id == 7
        assert process.current_stage == STAGE_REVISION
        revision = process.thesis_info_for(STAGE_REVISION)
        assert revision.title == process.thesis_info_for(STAGE_MAIN).title
        assert {f.type for f in revision.thesis_files} == {FILE_THESIS, FILE_REVISION_REPORT}
        assert all(f.file_id is None for f in revision.thesis_files)
        assert len(revision.reviews) == 4
        assert all(r.presentation_status is None for r in revision.reviews)

    def test_main_final_review_routes_by_department(self, make_process, revision_department):
        plain = make_process(6, passed=(STAGE_MAIN,))
        revising = make_process(6, department=revision_department, passed=(STAGE_MAIN,))
        assert apply_phase(6) == 2
        assert _phase_of(plain.id) == 9
        assert _phase_of(revising.id) == 7

    def test_revision_upload(self, make_process, revision_department):
        done = make_process(7, department=revision_department, uploads=(STAGE_REVISION,))
        waiting = make_process(7, department=revision_department)
        assert apply_phase(7) == 1
        assert _phase_of(done.id) == 8
        assert _phase_of(waiting.id) == 7

    def test_revision_review(self, make_process, revision_department):
        passed = make_process(8, department=revision_department, passed=(STAGE_REVISION,))
        pending = make_process(8, department=revision_department)
        assert apply_phase(8) == 1
        assert _phase_of(passed.id) == 9
        assert _phase_of(pending.id) == 8

    def test_performance_report_completes(self, make_process):
        process = make_process(9)
        assert apply_phase(9) == 1
        assert _phase_of(process.id) == 10

    def test_phases_without_rules(self, make_process):
        first = make_process(1, uploads=(STAGE_PRELIMINARY,))
        last = make_process(10)
        assert apply_phase(1) == 0
        assert apply_phase(10) == 0
        assert _phase_of(first.id) == 1
        assert _phase_of(last.id) == 10

    def test_rerun_is_a_no_op(self, make_process):
        make_process(2, uploads=(STAGE_PRELIMINARY,))
        assert apply_phase(2) == 1
        assert apply_phase(2) == 0


class TestMonotonicity:

    def test_phase_never_decreases_over_repeated_sweeps(self, make_process, revision_department):
        population = [
            make_process(1, uploads=(STAGE_PRELIMINARY,)),
            make_process(2, uploads=(STAGE_PRELIMINARY,)),
            make_process(2),
            make_process(3),
            make_process(4, uploads=(STAGE_MAIN,)),
            make_process(5, locked=True),
            make_process(6, passed=(STAGE_MAIN,)),
            make_process(6, department=revision_department, passed=(STAGE_MAIN,)),
            make_process(7, department=revision_department, uploads=(STAGE_REVISION,)),
            make_process(8, department=revision_department, passed=(STAGE_REVISION,)),
            make_process(9),
            make_process(10),
        ]
        ids = [p.id for p in population]
        seen = {process_id: _phase_of(process_id) for process_id in ids}

        for _sweep in range(3):
            for phase_id in range(1, 11):
                apply_phase(phase_id)
                db.session.expire_all()
                for process_id in ids:
                    current = _phase_of(process_id)
                    assert current >= seen[process_id], (process_id, phase_id)
                    seen[process_id] = current

        final = [seen[process_id] for process_id in ids]
        assert final == [1, 4, 2, 4, 6, 5, 10, 7, 8, 10, 10, 10]


class TestGuardErrors:

    def test_missing_department_skips_only_that_process(self, make_process):
        broken = make_process(6, passed=(STAGE_MAIN,))
        broken.department_id = None
        healthy = make_process(6, passed=(STAGE_MAIN,))
        db.session.commit()

        assert apply_phase(6) == 1
        assert _phase_of(broken.id) == 6
        assert _phase_of(healthy.id) == 9

    def test_missing_revision_info_skips(self, make_process, revision_department):
        broken = make_process(7, department=revision_department)
        broken.thesis_infos.remove(broken.thesis_info_for(STAGE_REVISION))
        db.session.commit()
        healthy = make_process(7, department=revision_department, uploads=(STAGE_REVISION,))
        assert apply_phase(7) == 1
        assert _phase_of(broken.id) == 7
        assert _phase_of(healthy.id) == 8

    def test_unknown_review_status_skips(self, make_process):
        broken = make_process(6, passed=(STAGE_MAIN,))
        broken.thesis_info_for(STAGE_MAIN).reviews[1].content_status = "LOST"
        db.session.commit()
        assert apply_phase(6) == 0
        assert _phase_of(broken.id) == 6


# ═════════════════════════════════════════════════════════════════════════════
# Write failures
# ═════════════════════════════════════════════════════════════════════════════


class FailingSecondWriteStore(SqlCaseStore):
    """Fails the second bulk update of a run."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def bulk_update_phase(self, process_ids, new_phase_id, new_stage=None, *, from_phase_id):
        self.calls += 1
        if self.calls == 2:
            raise BulkWriteError(from_phase_id, "disk full")
        return super().bulk_update_phase(process_ids, new_phase_id, new_stage,
                                         from_phase_id=from_phase_id)


class TestBulkWriteFailure:

    def test_whole_phase_is_rolled_back(self, make_process, revision_department):
        plain = make_process(6, passed=(STAGE_MAIN,))
        revising = make_process(6, department=revision_department, passed=(STAGE_MAIN,))

        assert apply_phase(6, FailingSecondWriteStore()) == 0
        assert _phase_of(plain.id) == 6
        assert _phase_of(revising.id) == 6
        assert db.session.query(ThesisInfo).filter_by(stage=STAGE_REVISION).count() == 0

    def test_run_reports_failure(self, make_process, revision_department):
        make_process(6, passed=(STAGE_MAIN,))
        make_process(6, department=revision_department, passed=(STAGE_MAIN,))

        result = run_phase_transition(6, FailingSecondWriteStore())
        assert result["status"] == "failed"
        assert result["advanced"] == 0
        assert "disk full" in result["error"]

    def test_next_run_succeeds(self, make_process, revision_department):
        make_process(6, passed=(STAGE_MAIN,))
        make_process(6, department=revision_department, passed=(STAGE_MAIN,))
        apply_phase(6, FailingSecondWriteStore())
        assert apply_phase(6) == 2

    def test_backwards_move_is_refused(self, make_process):
        process = make_process(5)
        with pytest.raises(BulkWriteError):
            SqlCaseStore().bulk_update_phase([process.id], 4, from_phase_id=5)


# ═════════════════════════════════════════════════════════════════════════════
# Entry points
# ═════════════════════════════════════════════════════════════════════════════


class TestEntryPoints:

    def test_advance_into_phase_applies_previous_phase(self, make_process):
        process = make_process(2, uploads=(STAGE_PRELIMINARY,))
        assert advance_into_phase(3) == 1
        assert _phase_of(process.id) == 3

    def test_advance_into_first_phases_is_a_no_op(self, make_process):
        process = make_process(1)
        assert advance_into_phase(1) == 0
        assert advance_into_phase(2) == 0
        assert _phase_of(process.id) == 1

    def test_run_phase_transition_success(self, make_process):
        make_process(9)
        make_process(9)
        result = run_phase_transition(9)
        assert result["phase_id"] == 9
        assert result["status"] == "success"
        assert result["advanced"] == 2
        assert result["error"] is None
        assert result["duration_ms"] >= 0

    def test_run_phase_transition_unknown_phase(self):
        result = run_phase_transition(42)
        assert result["status"] == "error"
        assert result["advanced"] == 0


# ═════════════════════════════════════════════════════════════════════════════
# Concurrency (in-memory store)
# ═════════════════════════════════════════════════════════════════════════════


class MemoryStore(CaseStore):
    """Thread-safe in-memory CaseStore over transient model instances."""

    def __init__(self, processes, read_delay=0.0):
        self.processes = {p.id: p for p in processes}
        self.read_delay = read_delay
        self.writes = []
        self._lock = threading.Lock()

    def list_phases(self):
        return []

    def get_phase(self, phase_id):
        return SimpleNamespace(id=phase_id, title=f"Phase {phase_id}")

    def find_processes(self, phase_id, extra_predicate=None):
        with self._lock:
            found = [p for p in self.processes.values() if p.phase_id == phase_id]
        # widen the window between read and write
        time.sleep(self.read_delay)
        if extra_predicate is not None:
            found = [p for p in found if extra_predicate(p)]
        return found

    def bulk_update_phase(self, process_ids, new_phase_id, new_stage=None, *, from_phase_id):
        moved = 0
        with self._lock:
            for process_id in process_ids:
                process = self.processes[process_id]
                if process.phase_id != from_phase_id:
                    continue
                process.phase_id = new_phase_id
                if new_stage is not None:
                    process.current_stage = new_stage
                self.writes.append(process_id)
                moved += 1
        return moved

    def get_reviews(self, thesis_info_id):
        return []

    @contextmanager
    def transaction(self):
        yield


def _memory_process(process_id, phase_id, *, uploaded=False):
    process = Process(id=process_id, student_id=9000 + process_id, phase_id=phase_id,
                      current_stage=STAGE_PRELIMINARY, is_lock=False, head_reviewer_id=1)
    info = build_thesis_info(STAGE_PRELIMINARY, reviewer_ids=[1, 2], head_reviewer_id=1)
    if uploaded:
        for slot in info.thesis_files:
            slot.file_id = f"file-{process_id}-{slot.type}"
    process.thesis_infos.append(info)
    return process


class TestConcurrentRuns:

    def test_concurrent_runs_never_double_advance(self):
        on_two = [_memory_process(i, 2, uploaded=True) for i in range(1, 21)]
        on_nine = [_memory_process(i, 9) for i in range(21, 41)]
        on_four = [_memory_process(i, 4, uploaded=True) for i in range(41, 46)]
        store = MemoryStore(on_two + on_nine + on_four, read_delay=0.01)

        jobs = [2, 9] * 4
        with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
            results = list(pool.map(lambda phase_id: (phase_id, apply_phase(phase_id, store)), jobs))

        assert sum(n for phase_id, n in results if phase_id == 2) == 20
        assert sum(n for phase_id, n in results if phase_id == 9) == 20
        assert sorted(store.writes) == list(range(1, 41))
        assert {p.phase_id for p in on_two} == {3}
        assert {p.phase_id for p in on_nine} == {10}
        assert {p.phase_id for p in on_four} == {4}

    def test_same_phase_runs_are_serialised(self):
        processes = [_memory_process(i, 2, uploaded=True) for i in range(1, 6)]
        store = MemoryStore(processes, read_delay=0.05)

        with ThreadPoolExecutor(max_workers=2) as pool:
            first, second = pool.map(lambda _: apply_phase(2, store), range(2))

        # the second run reads after the first one wrote
        assert sorted([first, second]) == [0, 5]
        assert len(store.writes) == 5


def test_presentation_slot_is_required_for_preliminary(make_process):
    process = make_process(2)
    info = process.thesis_info_for(STAGE_PRELIMINARY)
    for slot in info.thesis_files:
        if slot.type != FILE_PRESENTATION:
            slot.file_id = "thesis-only"
    db.session.commit()
    assert apply_phase(2) == 0
    assert _phase_of(process.id) == 2
