from securyflex_billing.extensions import db


class TrialReminderRecord(db.Model):
    __tablename__ = "trial_reminders"

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.String(64), nullable=False)
    trial_end_date = db.Column(db.DateTime, nullable=False)
    days_before = db.Column(db.Integer, nullable=False)
    sent_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint(
            "subscription_id", "trial_end_date", "days_before", name="uq_trial_reminder_days"
        ),
    )
