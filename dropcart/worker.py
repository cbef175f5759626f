"""Celery entry point: ``celery -A dropcart.worker:celery worker``."""

from dropcart import create_app
from dropcart.celery_app import create_celery_app

flask_app = create_app()
celery = flask_app.extensions.get("celery") or create_celery_app(flask_app)
