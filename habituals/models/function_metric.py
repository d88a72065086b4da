"""Function metric model.

One row per claim / webhook request: status, latency and the error code
that decided the response. Written best-effort by metrics_service.
"""

import uuid

from habituals.extensions import db


class FunctionMetric(db.Model):
    __tablename__ = "function_metrics"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    function_name = db.Column(db.String(100), nullable=False)  # claim | revenuecat-webhook
    request_id = db.Column(db.String(255), nullable=False)
    status_code = db.Column(db.Integer, nullable=False)
    duration_ms = db.Column(db.Integer, nullable=False)
    error_code = db.Column(db.String(100), nullable=True)  # e.g. "cap_exceeded"
    slo_tag = db.Column(db.String(50), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<FunctionMetric {self.function_name} {self.status_code}>"
