"""Data-layer error taxonomy.

DataError is the only exception that crosses the repository boundary.
to_data_error() classifies raw transport failures into one of the codes
below; the offline queue and the mutation pipeline only ever look at
the code.
"""

import requests

NETWORK_OFFLINE = "E.NETWORK_OFFLINE"
TIMEOUT = "E.TIMEOUT"
RLS_FORBIDDEN = "E.RLS_FORBIDDEN"
VALIDATION_FAILED = "E.VALIDATION_FAILED"
CONFLICT_VERSION = "E.CONFLICT_VERSION"
CAP_EXCEEDED = "E.CAP_EXCEEDED"
PURCHASE_NOT_FOUND = "E.PURCHASE_NOT_FOUND"
INVALID_SKU = "E.INVALID_SKU"
NETWORK_ERROR = "E.NETWORK_ERROR"
UNKNOWN = "E.UNKNOWN"

ERROR_CODES = frozenset({
    NETWORK_OFFLINE,
    TIMEOUT,
    RLS_FORBIDDEN,
    VALIDATION_FAILED,
    CONFLICT_VERSION,
    CAP_EXCEEDED,
    PURCHASE_NOT_FOUND,
    INVALID_SKU,
    NETWORK_ERROR,
    UNKNOWN,
})

# Never retried by the queue; the caller must change the request.
PERMANENT_CODES = frozenset({RLS_FORBIDDEN, VALIDATION_FAILED})


class DataError(Exception):
    """A classified data-layer failure."""

    def __init__(self, code, message="", meta=None):
        if code not in ERROR_CODES:
            code = UNKNOWN
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.meta = meta or {}

    def __repr__(self):
        return f"<DataError {self.code}: {self.message}>"


def is_permanent(code):
    return bool(code) and code in PERMANENT_CODES


def _status_of(err):
    """HTTP status carried by err, if any (requests errors keep it on .response)."""
    response = getattr(err, "response", None)
    if response is not None and getattr(response, "status_code", None) is not None:
        return int(response.status_code)
    for attr in ("status", "status_code"):
        value = getattr(err, attr, None)
        if value is not None:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    if isinstance(err, dict):
        value = err.get("status") or err.get("status_code")
        if value is not None:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


def _message_of(err):
    if isinstance(err, dict):
        return str(err.get("message") or "Unknown error")
    return str(err) or "Unknown error"


def to_data_error(err, is_online=None):
    """Classify a raw failure.

    Rules, first match wins:
      401/403 -> RLS_FORBIDDEN, 409 -> CONFLICT_VERSION,
      408 or "timeout" in the message -> TIMEOUT,
      device offline -> NETWORK_OFFLINE, other 4xx -> VALIDATION_FAILED,
      5xx -> UNKNOWN, connection failure while online -> NETWORK_ERROR,
      anything else -> UNKNOWN.

    is_online is a zero-argument probe; when omitted the device is
    assumed online.
    """
    if isinstance(err, DataError):
        return err

    message = _message_of(err)
    code = getattr(err, "code", None)
    if isinstance(code, str) and code in ERROR_CODES:
        return DataError(code, message)

    status = _status_of(err)
    meta = {"status": status} if status is not None else {}

    if status in (401, 403):
        return DataError(RLS_FORBIDDEN, message, meta)
    if status == 409:
        return DataError(CONFLICT_VERSION, message, meta)
    if (status == 408 or isinstance(err, requests.Timeout)
            or "timeout" in message.lower()):
        return DataError(TIMEOUT, message, meta)
    if is_online is not None and not is_online():
        return DataError(NETWORK_OFFLINE, message, meta)
    if status is not None and 400 <= status < 500:
        return DataError(VALIDATION_FAILED, message, meta)
    if status is not None and status >= 500:
        return DataError(UNKNOWN, message, meta)
    if isinstance(err, requests.ConnectionError):
        return DataError(NETWORK_ERROR, message, meta)
    return DataError(UNKNOWN, message, meta)
