from models.base import init_engine_and_session, Base
import os
import uuid
import logging
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, current_app, g, jsonify
from dotenv import load_dotenv
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException
from flask_limiter.errors import RateLimitExceeded
from controllers.admin import admin_bp
from controllers.auth import auth_bp, login_manager
from controllers.payments import payments_bp
from controllers.webhook import webhook_bp, limiter, rate_limited
from models.store import CatalogEntry, StoreUnavailable
from services import data_sources
from services.data_sources import DataSource, get_store
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY
from services.payments.errors import PaymentError

# --- Load .env exactly once, here ---
# If you run "python app.py", this ensures variables are loaded.
# If you use "flask run", Flask will also load .env automatically (when python-dotenv is installed).
load_dotenv()

DEMO_CATALOG = [
    CatalogEntry("course", "algebra-101", "Algebra Foundations", 49900),
    CatalogEntry("course", "calculus-201", "Calculus II", 79900),
    CatalogEntry("book", "number-theory", "Elementary Number Theory", 29900),
    CatalogEntry("live_class", "olympiad-prep", "Olympiad Prep (live)", 19900),
]


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _parse_demo_users(env_val: str) -> dict[str, tuple[str, str]]:
    """
    Parse DEMO_USERS in .env like:
      "alice:alice:user,bob:bob:user,tutor:12345:admin"
    Returns {username: (password, role)}; role defaults to "user" if omitted.
    Invalid entries are ignored.
    """
    out: dict[str, tuple[str, str]] = {}
    if not env_val:
        return out
    for item in env_val.split(","):
        item = item.strip()
        if not item:
            continue
        parts = [p.strip() for p in item.split(":")]
        if len(parts) == 3:
            u, pwd, role = parts
        elif len(parts) == 2:
            u, pwd = parts
            role = "user"
        else:
            continue
        if u and pwd:
            out[u] = (pwd, role or "user")
    return out


def _error(message: str, code: str, status: int, retryable: bool = False, **extra):
    body = {"success": False, "message": message, "error": code, "retryable": retryable}
    body.update(extra)
    return jsonify(body), status


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
        JSON_SORT_KEYS=False,

        # Storage
        PAYMENTS_DATA_SOURCE=os.getenv(
            "PAYMENTS_DATA_SOURCE", "live" if APP_ENV == "production" else "auto"),
        AUTO_CREATE_SCHEMA=_env_bool("AUTO_CREATE_SCHEMA", True),

        # Payments
        PAYMENT_PROVIDER=os.getenv("PAYMENT_PROVIDER", "razorpay"),
        PAYMENT_CURRENCY=os.getenv("PAYMENT_CURRENCY", "INR"),
        RAZORPAY_ENABLED=_env_bool("RAZORPAY_ENABLED", True),
        RAZORPAY_KEY_ID=os.getenv("RAZORPAY_KEY_ID"),
        RAZORPAY_KEY_SECRET=os.getenv("RAZORPAY_KEY_SECRET"),
        RAZORPAY_WEBHOOK_SECRET=os.getenv("RAZORPAY_WEBHOOK_SECRET"),
        RAZORPAY_TIMEOUT_SEC=float(os.getenv("RAZORPAY_TIMEOUT_SEC", "5")),
        FULFILLMENT_SYNC=_env_bool("FULFILLMENT_SYNC", False),

        # Webhook rate limiting (flask-limiter)
        WEBHOOK_RATE_LIMIT=os.getenv("WEBHOOK_RATE_LIMIT", "30 per minute"),
        WEBHOOK_RATE_LIMIT_ENABLED=_env_bool("WEBHOOK_RATE_LIMIT_ENABLED", True),
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        RATELIMIT_HEADERS_ENABLED=True,

        # Seeding
        SEED_DEMO_USERS=_env_bool("SEED_DEMO_USERS", True),
        SEED_DEMO_CATALOG=_env_bool("SEED_DEMO_CATALOG", True),

        METRICS_ENABLED=_env_bool("METRICS_ENABLED", True),
    )
    if test_config:
        app.config.update(test_config)

    # ---- Logging ----
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
            # If file logging fails (e.g., in a container), fall back to stdout
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # ---- Store & seed data ----
    source = data_sources.init_app(app)
    if source is DataSource.LIVE and app.config["AUTO_CREATE_SCHEMA"]:
        engine, _Session = init_engine_and_session()
        Base.metadata.create_all(engine, checkfirst=True)

    with app.app_context():
        store = get_store()

        # seed admin (optional)
        admin_pwd = os.getenv("ADMIN_PASSWORD")
        if admin_pwd and not store.get_user("admin"):
            store.create_user("admin", admin_pwd, role="admin")
            app.logger.info("Seeded admin user from .env")

        # seed demo users + catalog in dev (optional)
        if app.config["APP_ENV"] == "development" and app.config["SEED_DEMO_USERS"]:
            demo = _parse_demo_users(os.getenv("DEMO_USERS", "")) or {
                "alice": ("alice", "user"),
                "bob": ("bob", "user"),
            }
            for u, (pwd, role) in demo.items():
                if u == "admin":
                    continue
                if not store.get_user(u):
                    store.create_user(u, pwd, role)
            app.logger.info("Seeded demo users (development only)")

        if app.config["APP_ENV"] == "development" and app.config["SEED_DEMO_CATALOG"]:
            for item in DEMO_CATALOG:
                if store.get_catalog_item(item.item_type, item.item_id) is None:
                    store.upsert_catalog_item(item)

    login_manager.init_app(app)
    limiter.init_app(app)

    # ---- Blueprints ----
    app.register_blueprint(auth_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(admin_bp)

    # Prometheus
    if app.config["METRICS_ENABLED"]:
        init_metrics(app)

    # ---- Errors ----

    @app.errorhandler(PaymentError)
    def payment_error(e: PaymentError):
        level = logging.ERROR if e.status_code >= 500 else logging.WARNING
        app.logger.log(level, "%s %s -> %s %s: %s", request.method, request.path,
                       e.status_code, e.error_code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(StoreUnavailable)
    def store_unavailable(e):
        app.logger.error("Store unavailable on %s %s: %s", request.method, request.path, e)
        return _error("Storage is temporarily unavailable", "STORE_UNAVAILABLE", 503,
                      retryable=True)

    @app.errorhandler(ValidationError)
    def validation_error(e: ValidationError):
        details = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                   for err in e.errors()]
        app.logger.warning("400 %s %s invalid body: %s", request.method, request.path, details)
        return _error("Invalid request", "VALIDATION_ERROR", 400, details=details)

    app.register_error_handler(RateLimitExceeded, rate_limited)

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        app.logger.warning("%s %s %s", e.code, request.method, request.path)
        code = (e.name or "error").upper().replace(" ", "_")
        return _error(e.description or e.name, code, e.code or 500)

    @app.errorhandler(Exception)
    def unhandled(e):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error("Internal server error", "INTERNAL_ERROR", 500)

    # ---- Routes ----
    @app.before_request
    def _start_timer():
        g._t0 = time()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def _log_request(resp):
        try:
            ms = (time() - getattr(g, "_t0", time())) * 1000
            app.logger.info("%s %s %s %s %.1fms",
                            request.remote_addr, request.method, request.full_path, resp.status_code, ms)
            resp.headers.setdefault("X-Request-ID", getattr(g, "request_id", ""))

            # --- Skip self-scrapes to keep series clean ---
            ep = request.endpoint or ""
            path = request.path or ""
            if path.startswith("/metrics"):
                return resp

            endpoint = ep.replace(".", "_") or "unknown"
            method = request.method
            status = str(resp.status_code)

            REQUEST_COUNT.labels(
                method=method, endpoint=endpoint, status=status).inc()
            REQUEST_LATENCY.labels(
                endpoint=endpoint, method=method).observe(ms / 1000.0)
        except Exception:
            app.logger.exception("Failed to log request")
        return resp

    @app.get("/healthz")
    def healthz():
        # Liveness: process is up, Flask can serve a simple request
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # Readiness: the active store answers
        store = get_store()
        try:
            store.ping()
            return jsonify(status="ok", store=store.name,
                           dataSource=data_sources.get_data_source().value), 200
        except StoreUnavailable as e:
            current_app.logger.exception("Readiness check failed")
            return jsonify(status="error", store=store.name, error=str(e)), 503

    return app


if __name__ == "__main__":
    # TIP: use APP_ENV=production FLASK_SECRET_KEY=... when deploying
    app = create_app()
    app.run(host="0.0.0.0", port=8000, debug=(
        app.config["APP_ENV"] != "production"))
