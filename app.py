from models.base import init_engine_and_session, Base
import os
import logging
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, current_app, g, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from dotenv import load_dotenv
from sqlalchemy import text
from controllers.admin import admin_bp
from controllers.auth import auth_bp, login_manager
from controllers.orders import orders_bp
from controllers.payments import payments_bp
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY
from services.payments.errors import PaymentError
from services.payments.registry import init_app as init_payments

# --- Load .env exactly once, here ---
load_dotenv()

# error code -> HTTP status for PaymentError subclasses
ERROR_STATUS = {
    "unknown_provider": 400,
    "cart_empty": 400,
    "contact_required": 400,
    "refund_too_large": 400,
    "refund_amount_invalid": 400,
    "cart_not_found": 404,
    "order_not_found": 404,
    "order_not_payable": 409,
    "invalid_transition": 409,
    "unsupported_operation": 422,
    "refund_declined": 502,
    "provider_unavailable": 503,
}


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _configure_logging():
    # default on in containers
    log_to_stdout = os.getenv("LOG_TO_STDOUT", "1") == "1"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    if log_to_stdout:
        handler = logging.StreamHandler()
    else:
        log_dir = os.path.join(os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            # If file logging fails (e.g., read-only container), fall back to stdout
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


def create_app(test_config: dict | None = None):
    app = Flask(__name__, instance_relative_config=True)

    # ---- Base config from environment (no hardcoded secrets) ----
    APP_ENV = os.getenv("APP_ENV", "development").lower()

    # SECRET_KEY:
    # - In production: must be provided
    # - In dev: fall back to a random key each run (sessions will reset on restart)
    secret_key = os.getenv("FLASK_SECRET_KEY")
    if not secret_key and APP_ENV == "production":
        raise RuntimeError("FLASK_SECRET_KEY must be set in production (.env)")
    if not secret_key:
        secret_key = os.urandom(32)  # dev-only fallback

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        APP_ENV=APP_ENV,
        APP_URL=os.getenv("APP_URL", "http://localhost:3000"),

        # Payments (credentials are read env-first by the adapters)
        PAYMENT_CURRENCY=os.getenv("PAYMENT_CURRENCY", "AMD"),
        PAYMENT_PROVIDERS=os.getenv("PAYMENT_PROVIDERS", "idram,arca"),
        PAYMENT_INTENT_TTL_SEC=int(os.getenv("PAYMENT_INTENT_TTL_SEC", "1800")),
        PAYMENT_HTTP_TIMEOUT_SEC=float(os.getenv("PAYMENT_HTTP_TIMEOUT_SEC", "10")),
        PAYMENT_LOG_THROTTLE_SEC=int(os.getenv("PAYMENT_LOG_THROTTLE_SEC", "300")),
    )
    if test_config:
        app.config.update(test_config)

    # ---- CSRF ----
    csrf = CSRFProtect()
    csrf.init_app(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF failed: %s", getattr(e, "description", ""))
        return jsonify({"error": "csrf_failed"}), 400

    # ---- Logging ----
    _configure_logging()
    app.logger.setLevel(logging.INFO)

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # ---- DB & users init ----
    from models.users_db import get_user, create_user
    engine, _Session = init_engine_and_session()

    if _env_bool("AUTO_CREATE_SCHEMA", True):
        Base.metadata.create_all(engine, checkfirst=True)

    with app.app_context():
        # seed admin (optional)
        admin_pwd = os.getenv("ADMIN_PASSWORD")
        admin_name = os.getenv("ADMIN_USERNAME", "admin")
        if admin_pwd and not get_user(admin_name):
            create_user(admin_name, admin_pwd, role="admin")
            app.logger.info("Seeded admin user from .env")

    login_manager.init_app(app)

    # ---- Blueprints ----
    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(admin_bp)

    # Providers call the webhook and never carry a CSRF token
    csrf.exempt(payments_bp)

    init_payments(app)

    # Prometheus
    if _env_bool("METRICS_ENABLED", True):
        init_metrics(app)

    # ---- Errors ----

    @app.errorhandler(PaymentError)
    def payment_error(e: PaymentError):
        status = ERROR_STATUS.get(e.code, 400)
        if e.code == "provider_unavailable":
            # never echo provider internals or credential names to the client
            detail = "Payment provider unavailable, please retry later"
        else:
            detail = str(e)
        app.logger.warning("%s %s -> %s (%s)", request.method, request.path, status, e.code)
        return jsonify({"error": e.code, "detail": detail, "retryable": e.retryable}), status

    @app.errorhandler(404)
    def not_found(e):
        app.logger.warning("404 %s %s", request.method, request.path)
        return jsonify({"error": "not_found", "path": request.path}), 404

    @app.errorhandler(405)
    def not_allowed(e):
        app.logger.warning("405 %s %s", request.method, request.path)
        return jsonify({"error": "method_not_allowed", "path": request.path}), 405

    # ---- Routes ----
    @app.before_request
    def _start_timer():
        g._t0 = time()

    @app.after_request
    def _log_request(resp):
        ms = (time() - getattr(g, "_t0", time())) * 1000
        app.logger.info("%s %s %s %s %.1fms",
                        request.remote_addr, request.method, request.full_path, resp.status_code, ms)

        # --- Skip self-scrapes to keep series clean ---
        ep = request.endpoint or ""
        if (request.path or "").startswith("/metrics"):
            return resp

        endpoint = ep.replace(".", "_") or "unknown"
        REQUEST_COUNT.labels(
            method=request.method, endpoint=endpoint, status=str(resp.status_code)).inc()
        REQUEST_LATENCY.labels(
            endpoint=endpoint, method=request.method).observe(ms / 1000.0)
        return resp

    @app.get("/healthz")
    def healthz():
        # Liveness: process is up, Flask can serve a simple request
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # Readiness: app can talk to the DB
        try:
            engine, _ = init_engine_and_session()
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return jsonify(status="ok"), 200
        except Exception:
            current_app.logger.exception("Readiness check failed")
            return jsonify(status="error"), 500

    return app


if __name__ == "__main__":
    # TIP: use APP_ENV=production FLASK_SECRET_KEY=... when deploying
    app = create_app()
    app.run(host="0.0.0.0", port=8000, debug=(
        app.config["APP_ENV"] != "production"))
