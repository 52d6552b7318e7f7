"""
Shared pytest fixtures for the Thesis Flow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - phases: the ten default Phase rows
    - department / revision_department: departments without / with a
      revision round
    - make_process: factory for a Process on an arbitrary phase
    - upload / approve: fill upload slots / pass every review of a stage
"""

from datetime import datetime

import pytest

from thesis_flow import create_app
from thesis_flow.models import db as _db
from thesis_flow.models.phase import DEFAULT_PHASE_TITLES, Phase
from thesis_flow.models.thesis import STATUS_PASS, Department
from thesis_flow.services.process_service import create_process

REVIEWERS = [101, 102, 103]
HEAD_REVIEWER = 101


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        # Timers armed by phase edits must not outlive the test.
        app.extensions["phase_scheduler"].shutdown()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def phases():
    """The ten default phases, one day each, starting 2025-03-01 (Seoul)."""
    rows = []
    for phase_id, title in sorted(DEFAULT_PHASE_TITLES.items()):
        rows.append(Phase(
            id=phase_id,
            title=title,
            start=datetime(2025, 3, phase_id, 0, 0, 0),
            end=datetime(2025, 3, phase_id, 23, 59, 59),
        ))
    _db.session.add_all(rows)
    _db.session.commit()
    return rows


@pytest.fixture()
def department():
    d = Department(name="Computer Science", modification_flag=False)
    _db.session.add(d)
    _db.session.commit()
    return d


@pytest.fixture()
def revision_department():
    d = Department(name="Architecture", modification_flag=True)
    _db.session.add(d)
    _db.session.commit()
    return d


def upload_all(process, stage):
    """Fill every upload slot of ``stage``."""
    info = process.thesis_info_for(stage)
    for slot in info.thesis_files:
        slot.file_id = f"{stage.lower()}-{slot.type.lower()}-{process.student_id}"


def pass_all(process, stage):
    """Set every applicable verdict of ``stage`` (final review included) to PASS."""
    info = process.thesis_info_for(stage)
    for review in info.reviews:
        review.content_status = STATUS_PASS
        if review.presentation_status is not None:
            review.presentation_status = STATUS_PASS
    info.summary = STATUS_PASS


@pytest.fixture()
def make_process(phases, department):
    """Factory: ``make_process(phase_id, **options)`` -> committed Process.

    Options:
        department: Department to use (defaults to the no-revision one)
        uploads: stages whose upload slots are all filled
        passed: stages whose reviews are all PASS
        locked: administrative lock
    """
    counter = {"student": 2025000}

    def _make(phase_id, *, department=department, uploads=(), passed=(),
              locked=False):
        counter["student"] += 1
        process = create_process(
            counter["student"],
            department.id,
            REVIEWERS,
            HEAD_REVIEWER,
            phase_id=phase_id,
            title=f"Thesis {counter['student']}",
            is_lock=locked,
        )
        for stage in uploads:
            upload_all(process, stage)
        for stage in passed:
            pass_all(process, stage)
        _db.session.commit()
        return process

    return _make


@pytest.fixture()
def upload():
    """The upload_all helper, for tests that change a process after creation."""
    return upload_all


@pytest.fixture()
def approve():
    """The pass_all helper."""
    return pass_all
