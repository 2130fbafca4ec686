"""
Configuration entities read by the governance engine.

All models share one Flask-SQLAlchemy handle; import modules from here so
``db.create_all()`` and Flask-Migrate see every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
