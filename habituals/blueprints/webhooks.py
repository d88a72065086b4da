"""Webhooks blueprint — /revenuecat-webhook

Receives RevenueCat purchase events.
Raw body is required for signature verification.
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from habituals.services.metrics_service import get_request_id, record_metric
from habituals.services.revenuecat_service import (
    WebhookError,
    handle_webhook_event,
    parse_event,
    verify_webhook_signature,
)

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)

FUNCTION_NAME = "revenuecat-webhook"
SLO_TAG = "webhook"


@webhooks_bp.route("/revenuecat-webhook", methods=["GET"])
def webhook_health():
    """Liveness probe. Anything but ?health=1 is a wrong method."""
    if request.args.get("health") == "1":
        return jsonify(
            ok=True,
            service=FUNCTION_NAME,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
    return "POST only", 405


@webhooks_bp.route("/revenuecat-webhook", methods=["POST"])
def revenuecat_webhook():
    """Receive and process a RevenueCat webhook event.

    1. Get raw body (required for signature verification)
    2. Verify X-RevenueCat-Signature with REVENUECAT_WEBHOOK_SECRET
    3. Parse the event
    4. Pass to handle_webhook_event (idempotent upserts)
    5. Return 200 "ok" to acknowledge receipt
    """
    started_at = time.monotonic()
    request_id = get_request_id()

    raw = request.get_data()
    sig_header = request.headers.get("X-RevenueCat-Signature")

    # --- Verify signature ---
    if not verify_webhook_signature(raw, sig_header):
        logger.warning("Invalid webhook signature")
        record_metric(FUNCTION_NAME, request_id, 401, started_at,
                      "signature_invalid", SLO_TAG)
        return "invalid signature", 401

    # --- Parse + process ---
    try:
        event = parse_event(raw)
        handle_webhook_event(event)
    except WebhookError as e:
        record_metric(FUNCTION_NAME, request_id, e.status_code, started_at,
                      e.error_code, SLO_TAG)
        return e.message, e.status_code
    except Exception as e:
        logger.error(f"Webhook processing error: {e}", exc_info=True)
        record_metric(FUNCTION_NAME, request_id, 500, started_at,
                      "internal_error", SLO_TAG)
        return "internal error", 500

    record_metric(FUNCTION_NAME, request_id, 200, started_at, slo_tag=SLO_TAG)
    return "ok", 200
