"""Claim service — consumable purchase claims against the user wallet.

Responsible for:
- Validating a claim against the audited purchase (tx_id + matching SKU)
- Idempotent replay: a tx_id that was already claimed returns the wallet unchanged
- Streakshield caps (1 per UTC week starting Sunday, 3 per UTC calendar month)
- XP booster expiry (later of the current expiry and now + 7 days)
- Writing the wallet change and the purchase_claims row in one transaction

Claims for the same user are serialized by locking the wallet row
(SELECT ... FOR UPDATE) before the cap check. purchase_claims.tx_id is the
primary key, so a concurrent claim of the same tx_id fails on commit and is
answered as a replay.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from habituals.extensions import db
from habituals.models.purchase import AuditPurchase, PurchaseClaim
from habituals.models.wallet import UserWallet, as_utc

logger = logging.getLogger(__name__)

STREAKSHIELD_SKU = "consumable_streakshield_1"
XP_BOOSTER_SKU = "consumable_xp_booster_7d"
CLAIMABLE_SKUS = (STREAKSHIELD_SKU, XP_BOOSTER_SKU)

STREAKSHIELD_WEEKLY_CAP = 1
STREAKSHIELD_MONTHLY_CAP = 3
XP_BOOSTER_DURATION = timedelta(days=7)


class ClaimError(Exception):
    """A claim rejected with a specific HTTP status and body."""

    def __init__(self, status_code, message, error_code):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error_code = error_code


def week_start(now):
    """Sunday 00:00 UTC of the week containing now."""
    now = as_utc(now)
    days_since_sunday = (now.weekday() + 1) % 7
    day = now - timedelta(days=days_since_sunday)
    return day.replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(now):
    """First day of now's UTC calendar month, 00:00 UTC."""
    now = as_utc(now)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_booster_expiry(current_until, now):
    """Later of the active expiry and now + 7 days. Never moves backwards."""
    new_until = now + XP_BOOSTER_DURATION
    current_until = as_utc(current_until)
    if current_until and current_until > now:
        return max(current_until, new_until)
    return new_until


def get_wallet_snapshot(user_id):
    """Current wallet as a dict (zero balances if the user has no row yet)."""
    wallet = db.session.get(UserWallet, user_id)
    if wallet is None:
        return {
            "user_id": user_id,
            "streakshield_count": 0,
            "xp_booster_until": None,
            "updated_at": None,
        }
    return wallet.to_dict()


def count_claims_since(user_id, sku, since):
    return PurchaseClaim.query.filter(
        PurchaseClaim.user_id == user_id,
        PurchaseClaim.sku == sku,
        PurchaseClaim.claimed_at >= since,
    ).count()


def _lock_wallet(user_id):
    """Load the wallet row FOR UPDATE, creating it when missing.

    A concurrent first claim may insert the same user_id first; the flush
    then raises IntegrityError and the caller retries the transaction.
    """
    stmt = select(UserWallet).filter_by(user_id=user_id).with_for_update()
    wallet = db.session.execute(stmt).scalar_one_or_none()
    if wallet is None:
        db.session.add(UserWallet(user_id=user_id, streakshield_count=0))
        db.session.flush()
        wallet = db.session.execute(stmt).scalar_one()
    return wallet


def claim_purchase(sku, tx_id, now=None):
    """Apply a consumable purchase to the buyer's wallet.

    Returns the wallet dict. Raises ClaimError for 400 / 404 / 409 outcomes;
    any other exception is a persistence failure (the session is rolled back).
    """
    if not sku or not tx_id:
        raise ClaimError(400, "missing sku or tx_id", "missing_parameters")
    if not isinstance(sku, str) or not isinstance(tx_id, str):
        raise ClaimError(400, "sku and tx_id must be strings", "invalid_parameters")

    now = as_utc(now) if now else datetime.now(timezone.utc)

    audit = db.session.get(AuditPurchase, tx_id)
    if audit is None or audit.sku != sku:
        logger.warning(f"Claim for unknown purchase tx={tx_id} sku={sku}")
        raise ClaimError(404, "purchase not found", "purchase_not_found")

    user_id = audit.user_id

    if db.session.get(PurchaseClaim, tx_id) is not None:
        logger.info(f"Purchase {tx_id} already claimed, returning wallet")
        return get_wallet_snapshot(user_id)

    if sku not in CLAIMABLE_SKUS:
        raise ClaimError(400, "sku not claimable", "sku_not_claimable")

    # One retry covers losing the race to create the wallet row.
    for attempt in range(2):
        try:
            return _apply_claim(user_id, sku, tx_id, now)
        except IntegrityError:
            db.session.rollback()
            if db.session.get(PurchaseClaim, tx_id) is not None:
                logger.info(f"Purchase {tx_id} claimed concurrently, returning wallet")
                return get_wallet_snapshot(user_id)
            if attempt == 1:
                raise
        except Exception:
            db.session.rollback()
            raise


def _apply_claim(user_id, sku, tx_id, now):
    """Critical section: lock wallet, check caps, credit, insert claim, commit."""
    wallet = _lock_wallet(user_id)

    # Re-check under the lock: a concurrent claim may have committed first.
    if db.session.get(PurchaseClaim, tx_id) is not None:
        db.session.rollback()
        return get_wallet_snapshot(user_id)

    if sku == STREAKSHIELD_SKU:
        week_count = count_claims_since(user_id, sku, week_start(now))
        month_count = count_claims_since(user_id, sku, month_start(now))
        if (week_count >= STREAKSHIELD_WEEKLY_CAP
                or month_count >= STREAKSHIELD_MONTHLY_CAP):
            db.session.rollback()
            logger.info(
                f"Cap exceeded for {user_id}: week={week_count}, month={month_count}"
            )
            raise ClaimError(409, "cap exceeded", "cap_exceeded")
        wallet.streakshield_count = (wallet.streakshield_count or 0) + 1
        logger.info(
            f"Added streakshield for {user_id}, count now: {wallet.streakshield_count}"
        )
    else:
        wallet.xp_booster_until = next_booster_expiry(wallet.xp_booster_until, now)
        logger.info(
            f"Added XP booster for {user_id}, until: {wallet.xp_booster_until.isoformat()}"
        )

    wallet.updated_at = now
    db.session.add(PurchaseClaim(
        tx_id=tx_id,
        user_id=user_id,
        sku=sku,
        claimed_at=now,
    ))
    db.session.commit()

    logger.info(f"Successfully claimed {sku} for {user_id}")
    return get_wallet_snapshot(user_id)
