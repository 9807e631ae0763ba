"""
Document Approval Workflow Engine
SQLAlchemy database instance shared by all models.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
