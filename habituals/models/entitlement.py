"""Entitlement models.

- UserEntitlement: server-authoritative record of what a user owns (the
  "pro" subscription flag and the map of unlocked cosmetics). Only the
  RevenueCat webhook handler writes to this table.
- RcUserMap: first-seen binding of our user_id to the RevenueCat app user
  id. Used by the webhook handler to reject events forged for another user.
"""

from habituals.extensions import db


class UserEntitlement(db.Model):
    __tablename__ = "user_entitlements"

    user_id = db.Column(db.String(255), primary_key=True)
    pro = db.Column(db.Boolean, nullable=False, default=False)
    cosmetics = db.Column(db.JSON, nullable=False, default=dict)  # {"teal_nebula": true}
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "pro": bool(self.pro),
            "cosmetics": dict(self.cosmetics or {}),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<UserEntitlement {self.user_id} pro={self.pro}>"


class RcUserMap(db.Model):
    __tablename__ = "rc_user_map"

    user_id = db.Column(db.String(255), primary_key=True)
    rc_app_user_id = db.Column(db.String(255), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<RcUserMap {self.user_id} -> {self.rc_app_user_id}>"
