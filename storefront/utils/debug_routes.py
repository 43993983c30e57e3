# storefront/utils/debug_routes.py
import os

from flask import jsonify

SAFE_ENV_KEYS = {"RENDER", "PYTHON_VERSION"}
SAFE_CONFIG_KEYS = (
    "ORDER_NUMBER_PREFIX",
    "DEFAULT_CURRENCY",
    "ALLOWED_CURRENCIES",
    "PAYMENT_TIMEOUT_MINUTES",
    "IDENTIFIER_MAX_ATTEMPTS",
)


def register_debug_routes(app):
    """
    Diagnostics endpoints, only when DEBUG_ROUTES is on.
    Turn the flag off again once done.
    """
    if not app.config.get("DEBUG_ROUTES"):
        return

    @app.get("/api/_routes")
    def _routes():
        out = []
        for rule in app.url_map.iter_rules():
            methods = sorted(m for m in rule.methods if m in {
                "GET", "POST", "PUT", "DELETE", "PATCH",
            })
            out.append({"rule": str(rule), "endpoint": rule.endpoint, "methods": methods})
        out.sort(key=lambda r: r["rule"])
        return jsonify(out)

    @app.get("/api/health/full")
    def _health_full():
        registry = app.extensions.get("payment_gateways")
        return jsonify({
            "status": "ok",
            "blueprints": sorted(app.blueprints.keys()),
            "gateways": registry.providers() if registry else [],
            "config": {k: app.config.get(k) for k in SAFE_CONFIG_KEYS},
            "env": {k: os.getenv(k) for k in SAFE_ENV_KEYS if os.getenv(k)},
        })
