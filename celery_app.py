from celery import Celery

from config import load_settings

settings = load_settings()

celery = Celery(
    "addon_manager",
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=["tasks"],
)

celery.conf.task_routes = {
    "tasks.sync_all_users": {"queue": "sync"}
}
