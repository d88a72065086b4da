"""Store repository: entitlements, wallet and consumable claims.

Reads go through PostgREST like the habits repository. Claims POST to the
claim function, whose rejections carry their own meaning (409 cap, 404
unknown purchase, 400 unclaimable sku), so failures are classified with
to_store_error() instead of the generic data classifier.
"""

import logging

from habituals.offline.errors import (
    CAP_EXCEEDED,
    INVALID_SKU,
    NETWORK_ERROR,
    PURCHASE_NOT_FOUND,
    VALIDATION_FAILED,
    DataError,
    _message_of,
    _status_of,
)
from habituals.offline.repository import PostgrestClient, _expect_record

logger = logging.getLogger(__name__)

DEFAULT_CAPS = {"week": 1, "month": 3}

_STATUS_CODES = {
    409: CAP_EXCEEDED,
    404: PURCHASE_NOT_FOUND,
    400: INVALID_SKU,
}

_MESSAGE_CODES = (
    ("cap exceeded", CAP_EXCEEDED),
    ("purchase not found", PURCHASE_NOT_FOUND),
    ("sku not claimable", INVALID_SKU),
)


def to_store_error(err):
    """Classify a claim failure; anything unrecognised is E.NETWORK_ERROR."""
    if isinstance(err, DataError):
        return err

    message = _message_of(err)
    status = _status_of(err)
    meta = {"status": status} if status is not None else {}

    if status in _STATUS_CODES:
        return DataError(_STATUS_CODES[status], message, meta)
    lowered = message.lower()
    for needle, code in _MESSAGE_CODES:
        if needle in lowered:
            return DataError(code, message, meta)
    return DataError(NETWORK_ERROR, message, meta)


class StoreRepository(PostgrestClient):
    """Client side of the purchase flow."""

    def __init__(self, url, anon_key, claim_url=None, **kwargs):
        super().__init__(url, anon_key, **kwargs)
        self.claim_url = claim_url or f"{self.url}/functions/v1/claim"

    @classmethod
    def from_config(cls, config, **kwargs):
        kwargs.setdefault("claim_url", config.get("CLAIM_URL"))
        return super().from_config(config, **kwargs)

    def _classify(self, exc):
        return to_store_error(exc)

    def _maybe_single(self, table):
        """The caller's row of table, or None when it is missing or unreadable."""
        try:
            data = self._request("GET", table, params={"select": "*", "limit": "1"})
        except DataError as e:
            logger.warning(f"Reading {table} failed, using defaults: {e.code}")
            return None
        if isinstance(data, list):
            data = data[0] if data else None
        return data if isinstance(data, dict) else None

    def get_entitlements(self):
        return self._maybe_single("user_entitlements")

    def get_wallet(self):
        return self._maybe_single("user_wallet_balances")

    def claim_purchase(self, sku, tx_id):
        """POST {sku, tx_id} to the claim function and return the wallet."""
        if not isinstance(sku, str) or not isinstance(tx_id, str) or not sku or not tx_id:
            raise DataError(VALIDATION_FAILED, "claim requires string sku and tx_id")
        data = self._request(
            "POST", "claim", json={"sku": sku, "tx_id": tx_id}, url=self.claim_url,
        )
        return _expect_record(data, ("user_id", "streakshield_count"), "wallet")

    def get_caps_remaining(self, user_id):
        """Streakshield claims left this week / month; the full caps when unknown."""
        try:
            data = self._request(
                "POST", "rpc/caps_remaining_streakshield", json={"p_user": user_id},
            )
        except DataError as e:
            logger.warning(f"Reading streakshield caps failed: {e.code}")
            return dict(DEFAULT_CAPS)
        if not isinstance(data, dict) or "week" not in data or "month" not in data:
            return dict(DEFAULT_CAPS)
        return {"week": data["week"], "month": data["month"]}
