from securyflex_billing.extensions import db
from securyflex_billing.utils.clock import utcnow


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.String(64), nullable=True)
    subject_id = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(255), nullable=False)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Indexes
    __table_args__ = (
        db.Index("idx_audit_subject_action", "subject_id", "action"),
        db.Index("idx_audit_created_at", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "subject_id": self.subject_id,
            "action": self.action,
            "details": self.details or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
