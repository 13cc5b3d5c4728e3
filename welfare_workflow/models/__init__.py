"""
Welfare Case Workflow Engine
Shared SQLAlchemy handle.

Every model module imports ``db`` from here; ``create_app`` binds it to the
application with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
