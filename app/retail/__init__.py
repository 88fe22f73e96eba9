from __future__ import annotations

import logging
import uuid

from flask import Flask, g, render_template, request
from dotenv import load_dotenv

from app.retail.config import load_config
from app.retail.logging_config import configure_logging
from app.retail.routes import bp as routes_bp
from app.retail.modules.customers.admin import bp as customers_bp
from app.retail.stores import Stores, stores_from_config

_UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz", "/media/")


def create_app(stores: Stores | None = None) -> Flask:
    """
    Build the web app. `stores` replaces the configured collaborators (tests pass in-memory ones).
    """
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    configure_logging(app)

    # CSRF protection (minimal)
    from app.retail.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d %H:%M:%S") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _assign_request_id():
        g.request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if not validate_csrf(request):
                app.logger.warning("CSRF check failed path=%s request_id=%s", request.path, g.request_id)
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    backend = app.config.get("STORAGE_BACKEND")
    if env in ("prod", "production") and stores is None:
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if backend == "memory":
            raise RuntimeError("STORAGE_BACKEND=memory loses data on restart; not allowed in production.")
        if backend in ("local", "s3") and str(app.config.get("DATABASE_URL") or "").startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")

    if backend == "s3":
        missing_s3 = [k for k in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
    if backend == "azure" and not (app.config.get("AZURE_STORAGE_CONNECTION_STRING") or app.config.get("AZURE_STORAGE_ACCOUNT")):
        app.logger.error("STORAGE CONFIG ERROR: set AZURE_STORAGE_CONNECTION_STRING or AZURE_STORAGE_ACCOUNT")

    app.extensions["retail_stores"] = stores if stores is not None else stores_from_config(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(customers_bp, url_prefix="/customers")

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return render_template("errors/500.html", request_id=rid), 500

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return render_template("errors/400.html", message=f"File too large. Maximum size is {limit_mb}MB."), 413

    logging.getLogger(__name__).info("create_app() complete; backend=%s", backend)

    return app
