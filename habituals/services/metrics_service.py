"""Metrics service — per-request function metrics for claim and webhook.

Each request emits one JSON log line and one function_metrics row.
Recording is best-effort: a failure here never changes the response.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone

from flask import request

from habituals.extensions import db
from habituals.models.function_metric import FunctionMetric

logger = logging.getLogger(__name__)


def get_request_id():
    """Use the caller's X-Request-Id when present, else generate one."""
    return request.headers.get("X-Request-Id") or str(uuid.uuid4())


def record_metric(function_name, request_id, status_code, started_at,
                  error_code=None, slo_tag=None):
    """Log and persist a metric for one request.

    started_at is a time.monotonic() reading taken when the request began.
    """
    duration_ms = int((time.monotonic() - started_at) * 1000)
    entry = {
        "function_name": function_name,
        "request_id": request_id,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "error_code": error_code,
        "slo_tag": slo_tag or function_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    logger.info(json.dumps(entry))

    try:
        db.session.add(FunctionMetric(
            function_name=function_name,
            request_id=request_id,
            status_code=status_code,
            duration_ms=duration_ms,
            error_code=error_code,
            slo_tag=entry["slo_tag"],
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.warning(f"Failed to record metric for {function_name}: {e}")
