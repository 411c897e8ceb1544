"""Database models and storage layer."""

from .database import Base, Database, create_database_engine
from .models import AuditEventModel
from .audit import SqlAuditSink

__all__ = [
    "Base",
    "Database",
    "create_database_engine",
    "AuditEventModel",
    "SqlAuditSink",
]
