"""Claim blueprint — /claim

Clients call this after a consumable purchase to apply it to their wallet.

Routes:
- POST /claim          — body {sku, tx_id}; returns the wallet JSON
- GET  /claim?health=1 — liveness probe
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from habituals.extensions import limiter
from habituals.services.claim_service import ClaimError, claim_purchase
from habituals.services.metrics_service import get_request_id, record_metric

logger = logging.getLogger(__name__)

claim_bp = Blueprint("claim", __name__)

FUNCTION_NAME = "claim"


def _claim_rate_limit():
    return current_app.config.get("CLAIM_RATE_LIMIT", "30 per minute")


@claim_bp.route("/claim", methods=["GET"])
def claim_health():
    """Liveness probe. Anything but ?health=1 is a wrong method."""
    if request.args.get("health") == "1":
        return jsonify(
            ok=True,
            service=FUNCTION_NAME,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
    return "POST only", 405


@claim_bp.route("/claim", methods=["POST"])
@limiter.limit(_claim_rate_limit)
def claim():
    """Claim a consumable purchase.

    200 wallet JSON | 400 bad input / unclaimable sku | 404 purchase not
    found | 409 cap exceeded | 500 persistence failure.
    """
    started_at = time.monotonic()
    request_id = get_request_id()

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        record_metric(FUNCTION_NAME, request_id, 400, started_at, "invalid_json")
        return "invalid json", 400

    try:
        wallet = claim_purchase(body.get("sku"), body.get("tx_id"))
    except ClaimError as e:
        record_metric(FUNCTION_NAME, request_id, e.status_code, started_at, e.error_code)
        return e.message, e.status_code
    except Exception as e:
        logger.error(f"Claim processing error: {e}", exc_info=True)
        record_metric(FUNCTION_NAME, request_id, 500, started_at, "internal_error")
        return "internal error", 500

    record_metric(FUNCTION_NAME, request_id, 200, started_at)
    return jsonify(wallet), 200
