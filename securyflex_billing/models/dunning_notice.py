from securyflex_billing.extensions import db


class DunningNoticeRecord(db.Model):
    __tablename__ = "dunning_notices"

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.String(64), nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    level = db.Column(db.Integer, nullable=False)
    template = db.Column(db.String(40), nullable=False)
    sent_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("subscription_id", "due_date", "level", name="uq_dunning_notice_level"),
    )
