"""Purchase models.

- AuditPurchase: every purchase event observed by the RevenueCat webhook,
  keyed by tx_id (idempotent upsert). A claim must reference a row here
  with a matching SKU.
- PurchaseClaim: append-only ledger of claimed consumables. The existence
  of a row for a tx_id is the idempotency witness for /claim.
"""

from datetime import datetime, timezone

from habituals.extensions import db


class AuditPurchase(db.Model):
    __tablename__ = "audit_purchases"

    tx_id = db.Column(db.String(255), primary_key=True)
    user_id = db.Column(db.String(255), nullable=False, index=True)
    sku = db.Column(db.String(255), nullable=False)
    platform = db.Column(db.String(20), nullable=False, default="unknown")  # ios | android | unknown
    status = db.Column(db.String(50), nullable=True)  # INITIAL_PURCHASE | RENEWAL | CANCELLATION | ...
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=True)
    raw = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<AuditPurchase {self.tx_id} {self.sku} ({self.status})>"


class PurchaseClaim(db.Model):
    __tablename__ = "purchase_claims"

    tx_id = db.Column(db.String(255), primary_key=True)
    user_id = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(255), nullable=False)
    claimed_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_purchase_claims_user_sku_claimed", "user_id", "sku", "claimed_at"),
    )

    def __repr__(self):
        return f"<PurchaseClaim {self.tx_id} {self.sku}>"
