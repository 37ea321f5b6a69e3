"""
Quality Process Designer
Model package - shared SQLAlchemy handle.

Usage:
    from qpd.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
