from securyflex_billing.extensions import db


class UserSecurityProfile(db.Model):
    """Factors a user has enrolled for strong customer authentication."""

    __tablename__ = "user_security_profiles"

    user_id = db.Column(db.String(64), primary_key=True)
    sms_verified = db.Column(db.Boolean, nullable=False, default=False)
    phone_number = db.Column(db.String(32), nullable=True)
    totp_secret = db.Column(db.String(64), nullable=True)
    biometric_key = db.Column(db.String(128), nullable=True)
    risk_factor = db.Column(db.Integer, nullable=False, default=10)
