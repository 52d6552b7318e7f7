"""
Thesis Flow
Shared SQLAlchemy handle.

Models live in sibling modules and import ``db`` from here:
    from thesis_flow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
