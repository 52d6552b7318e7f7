"""
Thesis Flow
Department service.

A department's ``modification_flag`` decides whether its processes go
through the revision round after the main final review.
"""

from __future__ import annotations

import logging

import sqlalchemy as sa

from thesis_flow.core.exceptions import ConflictError, NotFoundError, ValidationError
from thesis_flow.models import db
from thesis_flow.models.thesis import Department, Process

logger = logging.getLogger(__name__)


def list_departments() -> list[Department]:
    return db.session.execute(sa.select(Department).order_by(Department.id)).scalars().all()


def get_department(department_id: int) -> Department:
    department = db.session.get(Department, department_id)
    if department is None:
        raise NotFoundError(resource="Department", resource_id=department_id)
    return department


def create_department(name: str, modification_flag: bool = False) -> Department:
    """Create a department; names are unique."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Department name is required", details={"name": "required"})

    existing = db.session.execute(
        sa.select(Department.id).where(Department.name == name)
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(resource="Department", field="name", value=name)

    department = Department(name=name, modification_flag=modification_flag)
    db.session.add(department)
    try:
        db.session.commit()
    except sa.exc.IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(resource="Department", field="name", value=name) from exc
    except sa.exc.SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Created department %s (revision round: %s)", name, modification_flag)
    return department


def delete_department(department_id: int) -> None:
    """Delete a department that no process belongs to."""
    department = get_department(department_id)
    in_use = db.session.execute(
        sa.select(sa.func.count(Process.id)).where(Process.department_id == department_id)
    ).scalar_one()
    if in_use:
        raise ValidationError("Department still has processes",
                              details={"process_count": in_use})

    db.session.delete(department)
    try:
        db.session.commit()
    except sa.exc.SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("Deleted department %s", department.name)
