"""Shared test fixtures for the Habituals test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limiting off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- audited_purchase: factory inserting AuditPurchase rows
- post_webhook: POSTs a correctly signed RevenueCat webhook
- repo: in-memory stand-in for the Supabase habits repository
"""

import json
from datetime import datetime, timezone

import pytest

from habituals import create_app
from habituals.extensions import db as _db
from habituals.models.purchase import AuditPurchase
from habituals.offline.errors import DataError
from habituals.services.revenuecat_service import compute_signature

TEST_WEBHOOK_SECRET = "rc_whsec_test_fake"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def audited_purchase(db_session):
    """Insert an audited purchase. Returns the tx_id."""

    def _create(tx_id, user_id="u1", sku="consumable_streakshield_1"):
        db_session.add(AuditPurchase(
            tx_id=tx_id,
            user_id=user_id,
            sku=sku,
            platform="ios",
            status="NON_RENEWING_PURCHASE",
            purchased_at=datetime.now(timezone.utc),
            raw={},
        ))
        db_session.commit()
        return tx_id

    return _create


@pytest.fixture
def post_webhook(client):
    """POST an event to /revenuecat-webhook with a valid signature."""

    def _post(event, signature=None, headers=None):
        raw = event if isinstance(event, (str, bytes)) else json.dumps(event)
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        all_headers = {
            "X-RevenueCat-Signature": signature or compute_signature(raw, TEST_WEBHOOK_SECRET),
        }
        all_headers.update(headers or {})
        return client.post(
            "/revenuecat-webhook",
            data=raw,
            content_type="application/json",
            headers=all_headers,
        )

    return _post


class FakeHabitsRepository:
    """Records every call; fails from a scripted per-method list of errors.

    failures["mark_done"] = [DataError(...), ...] raises those in order on
    the next calls. hooks[name](*args) runs before the call returns.
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.hooks = {}
        self.habits = []
        self.streaks = {}

    def _enter(self, name, *args):
        self.calls.append((name,) + args)
        hook = self.hooks.get(name)
        if hook is not None:
            hook(*args)
        pending = self.failures.get(name)
        if pending:
            raise pending.pop(0)

    def fail(self, name, *errors):
        self.failures.setdefault(name, []).extend(errors)

    def names(self):
        return [call[0] for call in self.calls]

    def list_habits(self):
        self._enter("list_habits")
        return [dict(h) for h in self.habits]

    def get_streak(self, habit_id):
        self._enter("get_streak", habit_id)
        return self.streaks.get(
            habit_id, {"habit_id": habit_id, "current": 0, "longest": 0}
        )

    def create_habit(self, habit_input):
        self._enter("create_habit", habit_input)
        return {"id": "h-new", **habit_input}

    def update_habit(self, habit_id, patch):
        self._enter("update_habit", habit_id, patch)
        return {"id": habit_id, **patch}

    def delete_habit(self, habit_id):
        self._enter("delete_habit", habit_id)
        return {"id": habit_id}

    def mark_done(self, mark_input):
        self._enter("mark_done", mark_input)
        return {"id": f"evt-{mark_input['habit_id']}", "habit_id": mark_input["habit_id"]}

    def undo_event(self, event_id):
        self._enter("undo_event", event_id)
        return {"id": event_id, "habit_id": "h1"}


@pytest.fixture
def repo():
    """Fake habits repository."""
    return FakeHabitsRepository()


@pytest.fixture
def timeout_error():
    return DataError("E.TIMEOUT", "request timed out")
