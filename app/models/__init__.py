"""
Project Workflow Platform
Shared SQLAlchemy handle.

All model modules import ``db`` from here:

    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
