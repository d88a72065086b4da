import os
import logging

import click
from flask import Flask, jsonify

from habituals.config import config_by_name
from habituals.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from habituals import models  # noqa: F401

    # --- Register blueprints ---
    from habituals.blueprints.claim import claim_bp
    from habituals.blueprints.webhooks import webhooks_bp

    app.register_blueprint(claim_bp)
    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="not found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="method not allowed"), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error="too many requests"), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(error="internal error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-purchase")
    @click.option("--user", "user_id", required=True, help="Buyer user_id")
    @click.option("--sku", required=True, help="Product id, e.g. consumable_streakshield_1")
    @click.option("--tx", "tx_id", default=None, help="Transaction id (random if omitted)")
    def seed_purchase(user_id, sku, tx_id):
        """Insert an audited purchase so /claim can be exercised locally.

        Usage:
            flask seed-purchase --user u1 --sku consumable_streakshield_1
        """
        import uuid
        from datetime import datetime, timezone

        from habituals.models.purchase import AuditPurchase

        tx_id = tx_id or f"tx_{uuid.uuid4().hex[:16]}"
        existing = db.session.get(AuditPurchase, tx_id)
        if existing:
            click.echo(f"Purchase already audited: {tx_id}")
            return

        db.session.add(AuditPurchase(
            tx_id=tx_id,
            user_id=user_id,
            sku=sku,
            platform="unknown",
            status="INITIAL_PURCHASE",
            purchased_at=datetime.now(timezone.utc),
            raw={"source": "seed-purchase"},
        ))
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Audited purchase created!")
        click.echo("=" * 60)
        click.echo(f"  User:  {user_id}")
        click.echo(f"  SKU:   {sku}")
        click.echo(f"  TX:    {tx_id}")
        click.echo("")
        click.echo("Claim it with:")
        click.echo(f'  curl -X POST localhost:5001/claim -H "Content-Type: application/json" '
                   f'-d \'{{"sku": "{sku}", "tx_id": "{tx_id}"}}\'')
        click.echo("=" * 60)

    @app.cli.command("sign-webhook")
    @click.argument("payload_file", type=click.File("rb"))
    def sign_webhook(payload_file):
        """Print the X-RevenueCat-Signature header value for a payload file.

        Uses REVENUECAT_WEBHOOK_SECRET from the app config.
        """
        from habituals.services.revenuecat_service import compute_signature

        secret = app.config.get("REVENUECAT_WEBHOOK_SECRET")
        if not secret:
            click.echo("ERROR: REVENUECAT_WEBHOOK_SECRET is not set.")
            return
        click.echo(compute_signature(payload_file.read(), secret))

    @app.cli.group("queue")
    def queue_group():
        """Inspect and operate the local offline mutation queue."""

    @queue_group.command("status")
    def queue_status():
        """List pending ops, head first."""
        from habituals.offline import build_storage

        snapshot = build_storage(app.config).read()
        if not snapshot.ops:
            click.echo("Queue is empty.")
            return
        click.echo(f"{len(snapshot.ops)} pending op(s):")
        for op in snapshot.ops:
            click.echo(
                f"  {op.id}  {op.kind:<12} attempt={op.attempt}  key={op.idempotency_key}"
            )

    @queue_group.command("drain")
    def queue_drain():
        """Deliver pending ops through the Supabase repository."""
        from habituals.offline import build_queue

        if not app.config.get("SUPABASE_URL") or not app.config.get("SUPABASE_ANON_KEY"):
            click.echo("ERROR: SUPABASE_URL and SUPABASE_ANON_KEY must be set.")
            return

        result = build_queue(app.config).drain()
        click.echo(
            f"Delivered {result.delivered}, dropped {result.dropped}, "
            f"retried {result.retried}."
        )

    @queue_group.command("clear")
    @click.confirmation_option(prompt="Discard every pending op?")
    def queue_clear():
        """Wipe the persisted queue (debug / reset only)."""
        from habituals.offline import build_storage

        build_storage(app.config).clear()
        click.echo("Queue cleared.")
