"""SQL-backed audit trail for workflow events."""

from typing import Any, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import StorageError
from ..core.logging import get_logger
from .database import Database
from .models import AuditEventModel

logger = get_logger(__name__)


class SqlAuditSink:
    """Audit sink that stores one row per event."""

    def __init__(self, database: Database):
        self.database = database

    def append_event(self, owner_id: str, text: str, metadata: Dict[str, Any]) -> None:
        """
        Persist an audit event.

        Raises:
            StorageError: If the insert fails
        """
        metadata = dict(metadata or {})
        db = self.database.SessionLocal()
        try:
            db.add(AuditEventModel(
                owner_id=str(owner_id),
                event_type=metadata.get("type"),
                text=text,
                event_metadata=metadata
            ))
            db.commit()
            logger.debug(f"Recorded audit event for owner {owner_id}: {text}")
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record audit event: {str(e)}", operation="insert",
                               table=AuditEventModel.__tablename__)
        finally:
            db.close()

    def list_events(self, owner_id: str, event_type: Optional[str] = None,
                    limit: int = 100) -> List[Dict[str, Any]]:
        """Return an owner's events, newest first."""
        db = self.database.SessionLocal()
        try:
            query = db.query(AuditEventModel).filter(AuditEventModel.owner_id == str(owner_id))
            if event_type:
                query = query.filter(AuditEventModel.event_type == event_type)
            rows = query.order_by(AuditEventModel.id.desc()).limit(limit).all()
            return [row.to_dict() for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read audit events: {str(e)}", operation="select",
                               table=AuditEventModel.__tablename__)
        finally:
            db.close()
