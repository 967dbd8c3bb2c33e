"""
Database module.
Contains database connection, models, and the job repository.
"""

from queuectl.db.connection import Database, create_engine
from queuectl.db.models import Base, Job
from queuectl.db.repository import JobRepository

__all__ = [
    "Database",
    "create_engine",
    "Job",
    "Base",
    "JobRepository",
]
