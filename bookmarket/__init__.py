import os
import traceback
from pathlib import Path

import click
from flask import Flask, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from bookmarket.errors import OrderFlowError
from bookmarket.extensions import db, migrate, cors
from bookmarket.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from bookmarket.segments.segment_orders_api import orders_bp
from bookmarket.segments.segment_payments import payments_bp
from bookmarket.segments.segment_banking import banking_bp
from bookmarket.segments.segment_notifications import notifications_bp
from bookmarket.segments.segment_admin_jobs import admin_jobs_bp
from bookmarket.integrations.payments.factory import payment_health
from bookmarket.utils.observability import get_request_id, init_sentry, install_request_observers
from bookmarket.utils.settings import get_settings

PROD_ENVS = ("prod", "production")


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        heads = ScriptDirectory.from_config(cfg).get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else float(default)
    except ValueError:
        return float(default)


def _load_business_config(app: Flask) -> None:
    app.config["INTEGRATIONS_MODE"] = (os.getenv("INTEGRATIONS_MODE") or "disabled").strip().lower()
    app.config["PAYMENTS_PROVIDER"] = (os.getenv("PAYMENTS_PROVIDER") or "mock").strip().lower()
    app.config["PAYSTACK_SECRET_KEY"] = (os.getenv("PAYSTACK_SECRET_KEY") or "").strip()
    app.config["PAYSTACK_CALLBACK_URL"] = (os.getenv("PAYSTACK_CALLBACK_URL") or "").strip()
    app.config["PAYSTACK_WEBHOOK_SECRET"] = (os.getenv("PAYSTACK_WEBHOOK_SECRET") or "").strip()
    app.config["COURIER_PROVIDER"] = (os.getenv("COURIER_PROVIDER") or "mock").strip().lower()
    app.config["COURIER_GUY_API_KEY"] = (os.getenv("COURIER_GUY_API_KEY") or "").strip()
    app.config["COURIER_GUY_API_URL"] = (os.getenv("COURIER_GUY_API_URL") or "").strip()
    app.config["RESCHEDULE_FEE"] = _env_float("RESCHEDULE_FEE", 65.0)
    app.config["PLATFORM_FEE_RATE"] = _env_float("PLATFORM_FEE_RATE", 0.05)


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("BOOKMARKET_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in PROD_ENVS:
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["BOOKMARKET_ENV"] = env
    _load_business_config(app)

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))

    # Database config
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        os.makedirs(instance_dir, exist_ok=True)
        database_url = f"sqlite:///{os.path.join(instance_dir, 'bookmarket.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and env not in PROD_ENVS:
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db, directory=str(Path(__file__).resolve().parents[1] / "migrations"))
    install_request_observers(app)

    def _with_trace(payload: dict) -> dict:
        rid = (get_request_id() or "").strip()
        if rid:
            payload["trace_id"] = rid
        return payload

    @app.errorhandler(OrderFlowError)
    def _order_flow_error(error: OrderFlowError):
        if error.status_code >= 500:
            app.logger.warning("upstream_failure path=%s err=%s", request.path, error.message)
        return jsonify(_with_trace(error.to_payload())), error.status_code

    @app.errorhandler(IntegrationDisabledError)
    @app.errorhandler(IntegrationMisconfiguredError)
    def _integration_error(error: RuntimeError):
        app.logger.warning("integration_unavailable path=%s err=%s", request.path, error)
        payload = {"success": False, "error": "Integration unavailable", "code": "INTEGRATION_UNAVAILABLE", "details": {"reason": str(error)}}
        return jsonify(_with_trace(payload)), 503

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only.
        if not request.path.startswith("/api/"):
            return error
        payload = {"success": False, "error": error.description or error.name, "code": error.name.upper().replace(" ", "_")}
        return jsonify(_with_trace(payload)), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}
        if env not in PROD_ENVS:
            payload["details"] = {"exception": repr(error), "trace": traceback.format_exc().splitlines()[-20:]}
        return jsonify(_with_trace(payload)), 500

    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(banking_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_jobs_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            app.logger.warning("health_db_check_failed err=%s", e)
        return jsonify(
            {
                "success": True,
                "data": {
                    "service": "bookmarket-backend",
                    "env": env,
                    "db": db_state,
                    "alembic_head": _resolve_alembic_head(),
                    "integrations_mode": app.config["INTEGRATIONS_MODE"],
                    "payments": payment_health(get_settings()),
                },
            }
        )

    @app.cli.command("run-sweep")
    @click.argument("name", type=click.Choice(["commit_expiry", "commit_reminders", "tracking_sync"]))
    def run_sweep(name):
        """Run one scheduled sweep immediately."""
        from bookmarket.segments.segment_admin_jobs import JOBS

        click.echo(JOBS[name]())

    @app.cli.command("seed-user")
    @click.option("--email", required=True)
    @click.option("--name", default="")
    @click.option("--role", type=click.Choice(["buyer", "seller", "admin"]), default="buyer")
    def seed_user(email, name, role):
        """Create a marketplace profile row (credentials live with the auth provider)."""
        from bookmarket.models import User

        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None:
            user = User(email=email.strip().lower())
            db.session.add(user)
        user.name = name or user.name or ""
        user.role = role
        db.session.commit()
        click.echo(f"user_id={user.id} role={user.role}")

    return app
