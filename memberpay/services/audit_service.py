from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog
from ..utils.context import RequestContext

class AuditService:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        ctx: Optional[RequestContext],
        action: str,
        subject_type: Optional[str] = None,
        subject_id: Optional[int] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Record an audit entry inside the caller's transaction.

        Args:
            ctx: Who performed the action; None for system actions
            action: Dotted action name (e.g., 'payment.paid', 'subscription.cancelled')
            subject_type: Kind of record the action applies to
            subject_id: ID of that record
            description: Optional human readable description
            metadata: Optional additional data related to the action
        """
        entry = AuditLog(
            action=action,
            subject_type=subject_type,
            subject_id=subject_id,
            description=description,
            audit_metadata=metadata,
        )

        if ctx:
            entry.user_id = ctx.user_id
            entry.ip_address = ctx.ip_address
            entry.user_agent = ctx.user_agent
            entry.correlation_id = ctx.correlation_id

        # Flushed, not committed: the caller owns the transaction
        self.db.add(entry)
        self.db.flush()
        return entry

    def for_subject(self, subject_type: str, subject_id: int) -> list[AuditLog]:
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.subject_type == subject_type, AuditLog.subject_id == subject_id)
            .order_by(AuditLog.id)
            .all()
        )
