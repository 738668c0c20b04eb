"""
caseflow — Case Workflow Engine
SQLAlchemy models package.

All models share the single ``db`` instance below; ``create_app`` imports
every model module so metadata is complete before ``db.create_all()``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
