"""
Thesis Flow
Department Blueprint.

Departments own the revision round flag read by the main final review
transition.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from thesis_flow.services import department_service
from thesis_flow.utils.errors import E, api_error

department_bp = Blueprint("department_bp", __name__, url_prefix="/api/v1")


@department_bp.route("/departments", methods=["GET"])
def list_departments():
    departments = department_service.list_departments()
    return jsonify({"departments": [d.to_dict() for d in departments],
                    "total": len(departments)})


@department_bp.route("/departments", methods=["POST"])
def create_department():
    """Create a department; ``modification_flag`` defaults to false."""
    data = request.get_json(silent=True) or {}
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required", details={"name": "required"})
    flag = data.get("modification_flag", False)
    if not isinstance(flag, bool):
        return api_error(E.VALIDATION_INVALID, "modification_flag must be true or false")

    department = department_service.create_department(str(data["name"]), flag)
    return jsonify(department.to_dict()), 201


@department_bp.route("/departments/<int:department_id>", methods=["DELETE"])
def delete_department(department_id):
    department_service.delete_department(department_id)
    return "", 204
