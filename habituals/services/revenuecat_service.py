"""RevenueCat service — webhook verification and entitlement fulfillment.

Responsible for:
- Verifying the X-RevenueCat-Signature header (base64 HMAC-SHA256 of the raw body)
- Parsing RevenueCat events into the fields we persist
- Spoofing guard via rc_user_map (first-seen user_id -> rc_app_user_id binding)
- Idempotent audit_purchases upsert keyed by tx_id
- Fulfilling subscriptions (pro) and cosmetics immediately

Consumables are audited only. They reach the wallet through /claim, which
checks caps synchronously for the claiming user.

Every write below is an upsert keyed by a natural id, so a webhook that is
redelivered (or retried after a 500) converges to the same state. All
writes of one event are committed together.
"""

import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone

from flask import current_app

from habituals.extensions import db
from habituals.models.entitlement import RcUserMap, UserEntitlement
from habituals.models.purchase import AuditPurchase

logger = logging.getLogger(__name__)

PRO_SKUS = ("pro_month", "pro_year")
COSMETIC_SKUS = {
    "cos_theme_teal_nebula": "teal_nebula",
}
CONSUMABLE_PREFIX = "consumable_"
REVOKING_STATUSES = ("CANCELLATION", "REFUND")

PLATFORMS = {
    "APP_STORE": "ios",
    "PLAY_STORE": "android",
}


class WebhookError(Exception):
    """A webhook rejected with a specific HTTP status and body."""

    def __init__(self, status_code, message, error_code):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error_code = error_code


def compute_signature(raw_body, secret):
    """base64(HMAC-SHA256(secret, raw_body)), as sent in X-RevenueCat-Signature."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(raw_body, sig_header):
    """Return True when sig_header matches the configured secret."""
    secret = current_app.config.get("REVENUECAT_WEBHOOK_SECRET")
    if not secret or not sig_header:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, sig_header.strip())


def parse_event(raw_body):
    """Decode the JSON body into the fields the handler needs.

    Accepts a bare event or RevenueCat's {"event": {...}} envelope.
    Raises WebhookError(400) for anything that isn't a usable event.
    """
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        raise WebhookError(400, "invalid json", "invalid_json")

    if isinstance(payload, dict) and isinstance(payload.get("event"), dict):
        payload = payload["event"]
    if not isinstance(payload, dict):
        raise WebhookError(400, "invalid json", "invalid_json")

    tx_id = payload.get("id")
    rc_app_user_id = payload.get("app_user_id")
    sku = payload.get("product_id")
    if not tx_id or not rc_app_user_id or not sku:
        raise WebhookError(400, "missing event fields", "missing_fields")
    user_id = payload.get("user_id") or rc_app_user_id
    if not all(isinstance(v, str) for v in (tx_id, rc_app_user_id, sku, user_id)):
        raise WebhookError(400, "event fields must be strings", "invalid_fields")

    purchased_at = datetime.now(timezone.utc)
    purchased_at_ms = payload.get("purchased_at_ms")
    if purchased_at_ms:
        try:
            purchased_at = datetime.fromtimestamp(
                int(purchased_at_ms) / 1000, tz=timezone.utc
            )
        except (TypeError, ValueError, OverflowError):
            raise WebhookError(400, "invalid purchased_at_ms", "invalid_fields")

    return {
        "tx_id": tx_id,
        "user_id": user_id,
        "rc_app_user_id": rc_app_user_id,
        "sku": sku,
        "status": payload.get("type"),
        "platform": PLATFORMS.get(payload.get("store"), "unknown"),
        "purchased_at": purchased_at,
        "raw": payload,
    }


def handle_webhook_event(event):
    """Process a verified, parsed RevenueCat event.

    Raises WebhookError(403) on a user mapping mismatch (nothing written).
    Any other exception is a persistence failure; the session is rolled
    back so no partial state is left behind.
    """
    user_id = event["user_id"]
    sku = event["sku"]

    try:
        _check_user_mapping(user_id, event["rc_app_user_id"], event)
        _upsert_audit(event)

        if sku in PRO_SKUS:
            _set_pro(user_id, event["status"])
        elif sku in COSMETIC_SKUS:
            _grant_cosmetic(user_id, COSMETIC_SKUS[sku])
        elif sku.startswith(CONSUMABLE_PREFIX):
            logger.info(f"Consumable purchase recorded: {sku} for {user_id}")

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Processed webhook event: {event['status']} for {sku} ({user_id})")


def _check_user_mapping(user_id, rc_app_user_id, event):
    """Bind user_id to rc_app_user_id on first sight; reject a different one later."""
    mapping = db.session.get(RcUserMap, user_id)
    if mapping is None:
        db.session.add(RcUserMap(user_id=user_id, rc_app_user_id=rc_app_user_id))
        db.session.flush()
        logger.info(f"Created rc_user_map: {user_id} -> {rc_app_user_id}")
        return

    if mapping.rc_app_user_id != rc_app_user_id:
        logger.error(
            f"rc_user_map mismatch - possible spoofing attempt: "
            f"user={user_id} tx={event['tx_id']} "
            f"expected={mapping.rc_app_user_id} received={rc_app_user_id}"
        )
        raise WebhookError(403, "user mapping mismatch", "user_mapping_mismatch")


def _upsert_audit(event):
    audit = db.session.get(AuditPurchase, event["tx_id"])
    if audit is None:
        audit = AuditPurchase(tx_id=event["tx_id"])
        db.session.add(audit)

    audit.user_id = event["user_id"]
    audit.sku = event["sku"]
    audit.platform = event["platform"]
    audit.status = event["status"]
    audit.purchased_at = event["purchased_at"]
    audit.raw = event["raw"]
    db.session.flush()


def _get_or_create_entitlement(user_id):
    entitlement = db.session.get(UserEntitlement, user_id)
    if entitlement is None:
        entitlement = UserEntitlement(user_id=user_id, pro=False, cosmetics={})
        db.session.add(entitlement)
    return entitlement


def _set_pro(user_id, status):
    """Any event other than cancellation/refund (re)asserts pro."""
    entitlement = _get_or_create_entitlement(user_id)
    entitlement.pro = status not in REVOKING_STATUSES
    db.session.flush()
    logger.info(f"Updated pro entitlement for {user_id}: {entitlement.pro}")


def _grant_cosmetic(user_id, cosmetic):
    """Additive merge: previously granted cosmetics are never dropped."""
    entitlement = _get_or_create_entitlement(user_id)
    cosmetics = dict(entitlement.cosmetics or {})
    cosmetics[cosmetic] = True
    # New dict so SQLAlchemy sees the JSON column change.
    entitlement.cosmetics = cosmetics
    db.session.flush()
    logger.info(f"Updated cosmetics for {user_id}: {cosmetics}")
