from celery import Celery
import os

from . import config

# Celery configuration
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

celery_app = Celery(
    "keydrop",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["app.cleanup"],
)

celery_app.conf.beat_schedule = {
    # Remove expired or fully downloaded transfers together with their blobs
    "cleanup-expired-transfers": {
        "task": "app.cleanup.cleanup_expired",
        "schedule": config.CLEANUP_INTERVAL_SECONDS,
    },
}
