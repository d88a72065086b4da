"""Wallet model.

Consumable balances per user. Mutated only by the claim service:
streakshield_count only ever goes up, xp_booster_until only ever moves
forward.
"""

from datetime import timezone

from habituals.extensions import db


def as_utc(value):
    """Return a timezone-aware UTC datetime (SQLite hands back naive ones)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserWallet(db.Model):
    __tablename__ = "user_wallet_balances"

    user_id = db.Column(db.String(255), primary_key=True)
    streakshield_count = db.Column(db.Integer, nullable=False, default=0)
    xp_booster_until = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "streakshield_count >= 0", name="ck_wallet_streakshield_non_negative"
        ),
    )

    def to_dict(self):
        until = as_utc(self.xp_booster_until)
        updated = as_utc(self.updated_at)
        return {
            "user_id": self.user_id,
            "streakshield_count": self.streakshield_count or 0,
            "xp_booster_until": until.isoformat() if until else None,
            "updated_at": updated.isoformat() if updated else None,
        }

    def __repr__(self):
        return f"<UserWallet {self.user_id} shields={self.streakshield_count}>"
