import os
import subprocess
from pathlib import Path

import click
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from dropcart.extensions import db, migrate, cors
from dropcart.integrations.messaging.factory import messaging_health
from dropcart.integrations.payments.factory import payment_health
from dropcart.models import User
from dropcart.segments.segment_auth import auth_bp
from dropcart.segments.segment_tenants import tenants_bp
from dropcart.segments.segment_catalog import catalog_bp
from dropcart.segments.segment_inventory import inventory_bp
from dropcart.segments.segment_orders import orders_bp
from dropcart.segments.segment_checkout import checkout_bp
from dropcart.segments.segment_payment_webhooks import webhooks_bp
from dropcart.utils.errors import ServiceError
from dropcart.utils.observability import get_request_id, init_sentry, install_request_observers
from dropcart.utils.settings import IntegrationSettings


MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        cfg = Config()
        cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
        heads = ScriptDirectory.from_config(cfg).get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(MIGRATIONS_DIR.parent),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("DROPCART_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{os.path.join(instance_dir, 'dropcart.db').replace(os.sep, '/')}"
    # Older hosting providers still hand out the deprecated scheme.
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url

    engine_options = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and env not in ("prod", "production"):
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR))
    install_request_observers(app)

    settings = IntegrationSettings.from_env()
    app.config["INTEGRATION_SETTINGS"] = settings
    if settings.queue_enabled:
        from dropcart.celery_app import create_celery_app

        create_celery_app(app)

    @app.errorhandler(ServiceError)
    def _service_error(error: ServiceError):
        db.session.rollback()
        if error.status >= 500:
            app.logger.error("service_error code=%s path=%s message=%s", error.code, request.path, error.message)
        return jsonify(error.to_dict(get_request_id())), int(error.status)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        return jsonify(
            {
                "ok": False,
                "error": "INTERNAL",
                "code": "INTERNAL",
                "message": "Internal server error",
                "status": 500,
                "trace_id": get_request_id(),
                "details": {},
            }
        ), 500

    app.register_blueprint(auth_bp)
    app.register_blueprint(tenants_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            db_error = str(e)[:300]
        payload = {
            "ok": True,
            "service": "dropcart",
            "env": env,
            "db": db_state,
            "queue_enabled": bool(settings.queue_enabled),
            "integrations": {
                "payments": payment_health(settings),
                "messaging": messaging_health(settings),
            },
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/api/version")
    def version():
        return jsonify({
            "ok": True,
            "alembic_head": _resolve_alembic_head(),
            "git_sha": _resolve_git_sha(),
        })

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("bootstrap-superadmin")
    def bootstrap_superadmin():
        allow = (os.getenv("ALLOW_ADMIN_BOOTSTRAP") or "").strip() == "1"
        if env not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Superadmin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or DROPCART_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        u = User.query.filter_by(email=email).first()
        if u:
            u.set_password(password)
            u.role = "superadmin"
        else:
            u = User(name=email.split("@")[0], email=email, role="superadmin")
            u.set_password(password)
            db.session.add(u)
        db.session.commit()
        click.echo(f"superadmin_bootstrap_ok {u.email}")

    return app
