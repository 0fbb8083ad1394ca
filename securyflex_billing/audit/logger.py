import logging

from sqlalchemy.exc import SQLAlchemyError

from securyflex_billing.extensions import db
from securyflex_billing.models.audit_log import AuditLog
from securyflex_billing.utils.clock import utcnow
from securyflex_billing.utils.serialization import jsonable

logger = logging.getLogger("audit")


class AuditLogger:
    """
    Append-only audit sink.

    Every state transition, authentication decision and batch run is written
    to the ``audit_logs`` table and mirrored to the ``audit`` logger.
    """

    def __init__(self, clock=utcnow):
        self.clock = clock

    def record(self, action: str, subject_id=None, details=None, actor_id=None) -> AuditLog:
        payload = jsonable(details or {})
        entry = AuditLog(
            actor_id=actor_id,
            subject_id=subject_id,
            action=action,
            details=payload,
            created_at=self.clock(),
        )
        try:
            db.session.add(entry)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Audit write failed", extra={"action": action, "subject": subject_id})
            raise

        logger.info(f"[AUDIT] {action}", extra={"subject": subject_id, "details": payload})
        return entry

    def transition(self, subscription_id, from_status, to_status, **details) -> AuditLog:
        return self.record(
            "subscription.transition",
            subject_id=subscription_id,
            details={"from": from_status, "to": to_status, **details},
        )

    def entries_for(self, subject_id, action=None):
        query = AuditLog.query.filter_by(subject_id=subject_id)
        if action:
            query = query.filter_by(action=action)
        return query.order_by(AuditLog.id.asc()).all()

    def entries_between(self, actions, start, end):
        return (
            AuditLog.query
            .filter(AuditLog.action.in_(tuple(actions)))
            .filter(AuditLog.created_at >= start)
            .filter(AuditLog.created_at < end)
            .order_by(AuditLog.id.asc())
            .all()
        )
