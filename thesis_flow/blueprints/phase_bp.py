"""
Thesis Flow
Phase administration Blueprint.

Provides:
    - Phase calendar listing and current-phase lookup
    - Administrative phase window edits (rearms the phase timer)
    - Manual "force re-evaluate" of a phase's transitions
    - Phase timer status
    - Read-only process and summary views for operators
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from thesis_flow.core.exceptions import NotFoundError
from thesis_flow.models import db
from thesis_flow.models.thesis import ThesisInfo
from thesis_flow.services import phase_service, process_service
from thesis_flow.services.review_aggregator import aggregate
from thesis_flow.services.transition_engine import run_phase_transition
from thesis_flow.utils.dates import parse_datetime
from thesis_flow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

phase_bp = Blueprint("phase_bp", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  PHASES
# ═══════════════════════════════════════════════════════════════════════════

@phase_bp.route("/phases", methods=["GET"])
def list_phases():
    """List the phase calendar."""
    phases = phase_service.list_phases()
    return jsonify({"phases": [p.to_dict() for p in phases], "total": len(phases)})


@phase_bp.route("/phases/current", methods=["GET"])
def current_phases():
    """Phases whose window contains the current time."""
    phases = phase_service.get_current_phases()
    return jsonify({"phases": [p.to_dict() for p in phases]})


@phase_bp.route("/phases/<int:phase_id>", methods=["PUT"])
def update_phase(phase_id):
    """Change a phase window; the phase timer is rescheduled."""
    data = request.get_json(silent=True) or {}
    missing = [f for f in ("start", "end") if not data.get(f)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} required",
                         details={f: "required" for f in missing})
    try:
        start = parse_datetime(data["start"])
        end = parse_datetime(data["end"])
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "start and end must be ISO-8601 timestamps")

    phase = phase_service.update_phase(phase_id, start, end)
    return jsonify(phase.to_dict())


@phase_bp.route("/phases/<int:phase_id>/apply", methods=["POST"])
def apply_phase(phase_id):
    """Re-evaluate the transitions of one phase now."""
    phase_service.get_phase(phase_id)
    result = run_phase_transition(phase_id)
    status = 500 if result["status"] == "failed" else 200
    return jsonify(result), status


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULER
# ═══════════════════════════════════════════════════════════════════════════

@phase_bp.route("/scheduler/timers", methods=["GET"])
def list_timers():
    """Phase timers currently held by the scheduler."""
    scheduler = current_app.extensions.get("phase_scheduler")
    timers = scheduler.list_timers() if scheduler else []
    return jsonify({"timers": timers, "total": len(timers)})


# ═══════════════════════════════════════════════════════════════════════════
#  PROCESSES
# ═══════════════════════════════════════════════════════════════════════════

@phase_bp.route("/processes/<int:process_id>", methods=["GET"])
def get_process(process_id):
    process = process_service.get_process(process_id)
    return jsonify(process.to_dict())


@phase_bp.route("/thesis-infos/<int:thesis_info_id>/summary", methods=["GET"])
def thesis_info_summary(thesis_info_id):
    """Stored and freshly aggregated summary of one thesis info."""
    info = db.session.get(ThesisInfo, thesis_info_id)
    if info is None:
        raise NotFoundError(resource="ThesisInfo", resource_id=thesis_info_id)
    return jsonify({
        "thesis_info_id": info.id,
        "stage": info.stage,
        "summary": info.summary,
        "aggregate": aggregate(info.reviews),
    })
