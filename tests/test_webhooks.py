"""Tests for the RevenueCat webhook blueprint and event handling.

Covers:
- Signature verification (missing, invalid, valid)
- Body validation (invalid json, missing fields)
- Spoofing guard via rc_user_map
- Pro subscription grant / revoke
- Cosmetic grants (additive)
- Consumables (audited only, no wallet change)
- Redelivery idempotency
- Persistence failures roll back
"""

import json
from unittest.mock import patch

import pytest

from habituals.extensions import db
from habituals.models.entitlement import RcUserMap, UserEntitlement
from habituals.models.function_metric import FunctionMetric
from habituals.models.purchase import AuditPurchase
from habituals.models.wallet import UserWallet
from habituals.services.revenuecat_service import compute_signature


def _event(tx_id="tx_1", user_id="u1", rc_app_user_id="rc1",
           product_id="pro_month", event_type="INITIAL_PURCHASE", **extra):
    event = {
        "id": tx_id,
        "type": event_type,
        "app_user_id": rc_app_user_id,
        "user_id": user_id,
        "product_id": product_id,
        "store": "APP_STORE",
        "purchased_at_ms": 1792000000000,
    }
    event.update(extra)
    return event


class TestWebhookSignature:
    """Signature verification happens before anything else."""

    def test_missing_signature_returns_401(self, client):
        resp = client.post(
            "/revenuecat-webhook",
            data=b"{}",
            content_type="application/json",
        )
        assert resp.status_code == 401
        assert resp.data == b"invalid signature"

    def test_invalid_signature_returns_401(self, post_webhook):
        resp = post_webhook(_event(), signature="bm90LWEtc2lnbmF0dXJl")
        assert resp.status_code == 401
        assert AuditPurchase.query.count() == 0

    def test_signature_for_other_secret_returns_401(self, post_webhook):
        raw = json.dumps(_event()).encode("utf-8")
        resp = post_webhook(raw, signature=compute_signature(raw, "other_secret"))
        assert resp.status_code == 401

    def test_valid_signature_returns_200(self, post_webhook):
        resp = post_webhook(_event())
        assert resp.status_code == 200
        assert resp.data == b"ok"

    def test_failed_signature_records_metric(self, post_webhook):
        post_webhook(_event(), signature="bad", headers={"X-Request-Id": "req-sig"})
        metric = FunctionMetric.query.filter_by(request_id="req-sig").one()
        assert metric.status_code == 401
        assert metric.error_code == "signature_invalid"
        assert metric.slo_tag == "webhook"


class TestWebhookValidation:
    """Well-signed bodies that are not usable events."""

    def test_invalid_json_returns_400(self, post_webhook):
        resp = post_webhook("{not json")
        assert resp.status_code == 400
        assert resp.data == b"invalid json"

    def test_missing_fields_returns_400(self, post_webhook):
        event = _event()
        del event["product_id"]
        resp = post_webhook(event)
        assert resp.status_code == 400
        assert AuditPurchase.query.count() == 0

    @pytest.mark.parametrize("field,value", [
        ("product_id", 123),
        ("id", {"a": 1}),
        ("app_user_id", ["rc1"]),
        ("user_id", 42),
    ])
    def test_non_string_fields_return_400(self, post_webhook, field, value):
        event = _event()
        event[field] = value
        resp = post_webhook(event)
        assert resp.status_code == 400
        assert resp.data == b"event fields must be strings"
        assert AuditPurchase.query.count() == 0

    def test_envelope_is_unwrapped(self, post_webhook):
        resp = post_webhook({"api_version": "1.0", "event": _event(tx_id="tx_env")})
        assert resp.status_code == 200
        assert db.session.get(AuditPurchase, "tx_env") is not None

    def test_user_id_falls_back_to_app_user_id(self, post_webhook):
        event = _event(rc_app_user_id="rc_only")
        del event["user_id"]
        post_webhook(event)
        audit = db.session.get(AuditPurchase, "tx_1")
        assert audit.user_id == "rc_only"


class TestWebhookSpoofingGuard:
    """rc_user_map binds user_id to the first rc_app_user_id seen."""

    def test_first_event_creates_mapping(self, post_webhook):
        post_webhook(_event())
        mapping = db.session.get(RcUserMap, "u1")
        assert mapping.rc_app_user_id == "rc1"

    def test_mismatch_returns_403_and_changes_nothing(self, post_webhook):
        post_webhook(_event(tx_id="tx_1", product_id="pro_month"))

        resp = post_webhook(_event(
            tx_id="tx_2",
            rc_app_user_id="rc2",
            product_id="cos_theme_teal_nebula",
        ))
        assert resp.status_code == 403
        assert resp.data == b"user mapping mismatch"

        entitlement = db.session.get(UserEntitlement, "u1")
        assert entitlement.pro is True
        assert entitlement.cosmetics == {}
        assert db.session.get(AuditPurchase, "tx_2") is None
        assert db.session.get(RcUserMap, "u1").rc_app_user_id == "rc1"


class TestWebhookEntitlements:
    """Subscriptions and cosmetics are applied immediately."""

    def test_pro_purchase_grants_pro(self, post_webhook):
        post_webhook(_event(product_id="pro_year"))
        entitlement = db.session.get(UserEntitlement, "u1")
        assert entitlement.pro is True

    def test_cancellation_revokes_pro(self, post_webhook):
        post_webhook(_event(tx_id="tx_1"))
        post_webhook(_event(tx_id="tx_1", event_type="CANCELLATION"))

        entitlement = db.session.get(UserEntitlement, "u1")
        assert entitlement.pro is False
        assert db.session.get(AuditPurchase, "tx_1").status == "CANCELLATION"

    def test_refund_revokes_pro(self, post_webhook):
        post_webhook(_event(tx_id="tx_1"))
        post_webhook(_event(tx_id="tx_2", event_type="REFUND"))
        assert db.session.get(UserEntitlement, "u1").pro is False

    def test_renewal_reasserts_pro(self, post_webhook):
        post_webhook(_event(tx_id="tx_1", event_type="CANCELLATION"))
        post_webhook(_event(tx_id="tx_2", event_type="RENEWAL"))
        assert db.session.get(UserEntitlement, "u1").pro is True

    def test_cosmetic_is_granted(self, post_webhook):
        post_webhook(_event(product_id="cos_theme_teal_nebula"))
        entitlement = db.session.get(UserEntitlement, "u1")
        assert entitlement.cosmetics == {"teal_nebula": True}
        assert entitlement.pro is False

    def test_cosmetics_are_additive(self, post_webhook):
        db.session.add(UserEntitlement(
            user_id="u1", pro=False, cosmetics={"aurora": True},
        ))
        db.session.commit()

        post_webhook(_event(product_id="cos_theme_teal_nebula"))

        entitlement = db.session.get(UserEntitlement, "u1")
        assert entitlement.cosmetics == {"aurora": True, "teal_nebula": True}

    def test_consumable_is_audited_only(self, post_webhook):
        resp = post_webhook(_event(product_id="consumable_streakshield_1",
                                   event_type="NON_RENEWING_PURCHASE"))
        assert resp.status_code == 200

        audit = db.session.get(AuditPurchase, "tx_1")
        assert audit.sku == "consumable_streakshield_1"
        assert audit.platform == "ios"
        assert db.session.get(UserWallet, "u1") is None
        assert db.session.get(UserEntitlement, "u1") is None

    def test_redelivery_converges(self, post_webhook):
        event = _event(product_id="cos_theme_teal_nebula")
        assert post_webhook(event).status_code == 200
        assert post_webhook(event).status_code == 200

        assert AuditPurchase.query.count() == 1
        assert RcUserMap.query.count() == 1
        assert db.session.get(UserEntitlement, "u1").cosmetics == {"teal_nebula": True}


class TestWebhookFailures:
    """Persistence failures answer 500 and leave no partial state."""

    @patch("habituals.services.revenuecat_service._set_pro")
    def test_failure_rolls_back_audit(self, mock_set_pro, post_webhook):
        mock_set_pro.side_effect = RuntimeError("db down")

        resp = post_webhook(_event())
        assert resp.status_code == 500
        assert resp.data == b"internal error"
        assert db.session.get(AuditPurchase, "tx_1") is None
        assert db.session.get(RcUserMap, "u1") is None

    def test_health_probe(self, client):
        resp = client.get("/revenuecat-webhook?health=1")
        assert resp.status_code == 200
        assert resp.get_json()["service"] == "revenuecat-webhook"

    def test_get_without_health_returns_405(self, client):
        resp = client.get("/revenuecat-webhook")
        assert resp.status_code == 405
