"""Habits repository — the remote side of every queued mutation.

HabitsRepository is the interface the offline queue and the mutation
pipeline depend on. SupabaseHabitsRepository implements it over the
PostgREST HTTP API (tables + RPC functions) with requests.

Every failure leaves this module as a DataError; raw requests exceptions
never leak past it.
"""

import logging

import requests

from habituals.offline.errors import VALIDATION_FAILED, DataError, to_data_error

logger = logging.getLogger(__name__)


class HabitsRepository:
    """Remote habit operations. Each raises DataError on failure."""

    def create_habit(self, habit_input):
        raise NotImplementedError

    def update_habit(self, habit_id, patch):
        raise NotImplementedError

    def delete_habit(self, habit_id):
        raise NotImplementedError

    def mark_done(self, mark_input):
        raise NotImplementedError

    def undo_event(self, event_id):
        raise NotImplementedError


def _expect_record(data, required, what):
    """Return data if it is a dict carrying every required key."""
    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    if not isinstance(data, dict) or any(k not in data for k in required):
        raise DataError(VALIDATION_FAILED, f"unexpected {what} payload", {"payload": data})
    return data


def validate_mark_done_input(mark_input):
    """{habit_id, idempotency_key, occurred_at_tz: {tz, at}} or E.VALIDATION_FAILED."""
    if not isinstance(mark_input, dict):
        raise DataError(VALIDATION_FAILED, "mark_done input must be an object")
    missing = [k for k in ("habit_id", "idempotency_key") if not mark_input.get(k)]
    occurred = mark_input.get("occurred_at_tz")
    if not isinstance(occurred, dict) or not occurred.get("tz") or not occurred.get("at"):
        missing.append("occurred_at_tz")
    if missing:
        raise DataError(
            VALIDATION_FAILED,
            f"mark_done input missing: {', '.join(missing)}",
            {"missing": missing},
        )
    return mark_input


class PostgrestClient:
    """requests wrapper for a Supabase project's PostgREST API.

    Failures are turned into DataError by _classify(), which subclasses
    override when an endpoint speaks its own error vocabulary.
    """

    def __init__(self, url, anon_key, access_token=None, timeout=15,
                 session=None, is_online=None):
        self.url = url.rstrip("/")
        self.base_url = self.url + "/rest/v1"
        self.anon_key = anon_key
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.is_online = is_online

    @classmethod
    def from_config(cls, config, **kwargs):
        """Build from a Flask-style config mapping."""
        return cls(
            url=config["SUPABASE_URL"],
            anon_key=config["SUPABASE_ANON_KEY"],
            access_token=config.get("SUPABASE_ACCESS_TOKEN"),
            timeout=config.get("SUPABASE_TIMEOUT", 15),
            **kwargs,
        )

    def _headers(self, single=False):
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if single:
            headers["Accept"] = "application/vnd.pgrst.object+json"
        return headers

    def _classify(self, exc):
        return to_data_error(exc, self.is_online)

    def _request(self, method, path, json=None, params=None, single=False, url=None):
        url = url or f"{self.base_url}/{path}"
        try:
            resp = self.session.request(
                method,
                url,
                headers=self._headers(single=single),
                json=json,
                params=params,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            error = self._classify(e)
            logger.warning(f"{method} {path} failed: {error.code} ({error.message})")
            raise error from e

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            raise DataError(VALIDATION_FAILED, f"{method} {path} returned invalid JSON")


class SupabaseHabitsRepository(PostgrestClient, HabitsRepository):
    """PostgREST-backed repository. Row-level security scopes every call to the user."""

    # --- Reads ---

    def list_habits(self):
        data = self._request("GET", "habits", params={"select": "*"})
        if not isinstance(data, list):
            raise DataError(VALIDATION_FAILED, "unexpected habits payload")
        return [_expect_record(h, ("id",), "habit") for h in data]

    def get_streak(self, habit_id):
        data = self._request("POST", "rpc/get_streak_summary", json={"habit_id": habit_id})
        return _expect_record(data, ("habit_id", "current", "longest"), "streak")

    # --- Writes ---

    def create_habit(self, habit_input):
        if not isinstance(habit_input, dict) or not habit_input.get("title"):
            raise DataError(VALIDATION_FAILED, "create_habit requires a title")
        data = self._request("POST", "habits", json=habit_input, single=True)
        return _expect_record(data, ("id",), "habit")

    def update_habit(self, habit_id, patch):
        data = self._request(
            "PATCH", "habits", json=patch or {},
            params={"id": f"eq.{habit_id}"}, single=True,
        )
        return _expect_record(data, ("id",), "habit")

    def delete_habit(self, habit_id):
        data = self._request(
            "DELETE", "habits", params={"id": f"eq.{habit_id}"}, single=True,
        )
        return _expect_record(data, ("id",), "habit")

    def mark_done(self, mark_input):
        validate_mark_done_input(mark_input)
        data = self._request("POST", "rpc/mark_habit_done", json=mark_input)
        return _expect_record(data, ("id", "habit_id"), "habit event")

    def undo_event(self, event_id):
        data = self._request("POST", "rpc/undo_habit_event", json={"event_id": event_id})
        return _expect_record(data, ("id", "habit_id"), "habit event")
