"""Worker/beat entrypoint: ``celery -A celery_app.celery worker -B``."""

from bookmarket import create_app
from bookmarket.celery_app import create_celery_app

flask_app = create_app()
celery = create_celery_app(flask_app)
