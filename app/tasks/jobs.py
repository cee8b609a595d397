from app.tasks.celery_app import celery
from app.tasks import worker_jobs

@celery.task(name="app.tasks.jobs.expire_stale_holds")
def expire_stale_holds():
    return worker_jobs.expire_stale_holds()
