from app.tasks.celery_app import celery
from app.tasks import worker_jobs


@celery.task(name="app.tasks.jobs.relay_outbox")
def relay_outbox(limit: int = 100):
    return worker_jobs.relay_outbox(limit=limit)
