# storefront/main.py
import logging
import os

import click
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy import text

from .config import Config
from .errors import StorefrontError
from .gateways import EXTENSION_KEY, GatewayRegistry
from .models import db, PaymentMethod
from .utils.debug_routes import register_debug_routes

logger = logging.getLogger(__name__)


def _engine_options(uri: str) -> dict:
    if uri.startswith("sqlite"):
        # writers wait on the file lock instead of failing straight away
        return {"connect_args": {"timeout": 15}}
    return {"pool_pre_ping": True}


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # CORS only for the storefront domain on /api/*
    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})

    # Database
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", _engine_options(uri))
    db.init_app(app)

    with app.app_context():
        if uri.startswith("sqlite:///"):
            db_path = uri[len("sqlite:///"):]
            if os.path.dirname(db_path):
                os.makedirs(os.path.dirname(db_path), exist_ok=True)
        db.create_all()
        if app.config.get("AUTO_SEED_PAYMENT_METHODS", True) and not PaymentMethod.query.first():
            from .services import PaymentMethodService
            PaymentMethodService.seed_defaults()

    app.extensions[EXTENSION_KEY] = GatewayRegistry.from_config(app.config)

    @app.errorhandler(StorefrontError)
    def _storefront_error(e: StorefrontError):
        return jsonify(e.to_dict()), e.http_status

    # Blueprints
    from .blueprints.orders import orders_bp
    from .blueprints.payment_methods import payment_methods_bp
    from .blueprints.payments import payments_bp
    from .blueprints.stats import stats_bp

    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(payment_methods_bp)
    app.register_blueprint(stats_bp)

    # Health check
    @app.get("/api/health")
    def health_check():
        try:
            db.session.execute(text("SELECT 1"))
            database = "ok"
        except Exception as e:
            logger.error("Health check database error: %s", e)
            database = "unavailable"
        status = 200 if database == "ok" else 503
        return jsonify({"status": "healthy" if status == 200 else "degraded",
                        "service": "Maison Darin Backend", "database": database}), status

    register_debug_routes(app)

    @app.cli.command("seed-payment-methods")
    def seed_payment_methods():
        """Insert the built-in payment methods that are missing."""
        from .services import PaymentMethodService
        created = PaymentMethodService.seed_defaults()
        click.echo(f"{created} payment methods created")

    return app
