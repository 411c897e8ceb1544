"""SQLAlchemy database models for the agent cooperation engine."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON, Integer
from .database import Base


class AuditEventModel(Base):
    """Database model for audit trail events."""
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False, index=True)
    event_type = Column(String)  # workflow_created, workflow_completed
    text = Column(Text, nullable=False)
    event_metadata = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "event_type": self.event_type,
            "text": self.text,
            "metadata": self.event_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None
        }
