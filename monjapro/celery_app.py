from celery import Celery

from monjapro.config import settings

celery_app = Celery("monjapro")
celery_app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    timezone="UTC",
    task_acks_late=True,
)
celery_app.autodiscover_tasks(["monjapro.tasks"])
