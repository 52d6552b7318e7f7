"""
Thesis Flow
Review case Blueprint.

Provides the write operations that feed the transition guards:
    - Process creation (with all stage records), administrative lock and
      administrative phase advance
    - Upload slot registration
    - Reviewer and head-reviewer verdicts
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from thesis_flow.models.thesis import FILE_TYPES
from thesis_flow.services import process_service, review_service
from thesis_flow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

review_bp = Blueprint("review_bp", __name__, url_prefix="/api/v1")


@review_bp.route("/processes", methods=["POST"])
def create_process():
    """Create a student's process, thesis infos, upload slots and reviews."""
    data = request.get_json(silent=True) or {}
    required = ("student_id", "department_id", "reviewer_ids", "head_reviewer_id")
    missing = [f for f in required if data.get(f) in (None, "", [])]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} required",
                         details={f: "required" for f in missing})
    if not isinstance(data["reviewer_ids"], list):
        return api_error(E.VALIDATION_INVALID, "reviewer_ids must be a list")

    kwargs = {k: data[k] for k in ("phase_id", "title", "abstract", "is_lock") if k in data}
    process = process_service.create_process(
        data["student_id"],
        data["department_id"],
        data["reviewer_ids"],
        data["head_reviewer_id"],
        **kwargs,
    )
    return jsonify(process.to_dict()), 201


@review_bp.route("/processes/<int:process_id>/lock", methods=["PATCH"])
def lock_process(process_id):
    data = request.get_json(silent=True) or {}
    if "locked" not in data:
        return api_error(E.VALIDATION_REQUIRED, "'locked' field is required (true/false)")
    if not isinstance(data["locked"], bool):
        return api_error(E.VALIDATION_INVALID, "'locked' must be true or false")
    process = process_service.set_lock(process_id, data["locked"])
    return jsonify(process.to_dict())


@review_bp.route("/processes/<int:process_id>/phase", methods=["PATCH"])
def advance_process(process_id):
    """Move a process forward to a later phase (administrative advance)."""
    data = request.get_json(silent=True) or {}
    to_phase_id = data.get("phase_id")
    if to_phase_id is None:
        return api_error(E.VALIDATION_REQUIRED, "phase_id is required",
                         details={"phase_id": "required"})
    if not isinstance(to_phase_id, int) or isinstance(to_phase_id, bool):
        return api_error(E.VALIDATION_INVALID, "phase_id must be an integer")
    process = process_service.advance_process(process_id, to_phase_id)
    return jsonify(process.to_dict())


@review_bp.route("/thesis-infos/<int:thesis_info_id>/files/<file_type>", methods=["PUT"])
def record_upload(thesis_info_id, file_type):
    """Register the storage id of an uploaded file."""
    data = request.get_json(silent=True) or {}
    if file_type not in FILE_TYPES:
        return api_error(E.VALIDATION_INVALID, f"Invalid file type. Must be one of: {sorted(FILE_TYPES)}")
    if not data.get("file_id"):
        return api_error(E.VALIDATION_REQUIRED, "file_id is required")
    slot = process_service.record_upload(thesis_info_id, file_type, str(data["file_id"]))
    return jsonify({"thesis_info_id": thesis_info_id, "type": slot.type, "file_id": slot.file_id})


@review_bp.route("/reviews/<int:review_id>", methods=["PUT"])
def update_review(review_id):
    data = request.get_json(silent=True) or {}
    review = review_service.update_review(
        review_id,
        content_status=data.get("content_status"),
        presentation_status=data.get("presentation_status"),
        comment=data.get("comment"),
        file_id=data.get("file_id"),
        reviewer_id=data.get("reviewer_id"),
    )
    return jsonify(review.to_dict())


@review_bp.route("/reviews/<int:review_id>/final", methods=["PUT"])
def update_final_review(review_id):
    data = request.get_json(silent=True) or {}
    if not data.get("content_status"):
        return api_error(E.VALIDATION_REQUIRED, "content_status is required")
    review = review_service.update_final_review(
        review_id,
        content_status=data["content_status"],
        comment=data.get("comment"),
    )
    return jsonify(review.to_dict())
