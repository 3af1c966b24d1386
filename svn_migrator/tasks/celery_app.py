from celery import Celery
from celery.schedules import crontab
from svn_migrator.core.config import settings

celery_app = Celery("svn_migrator", broker=settings.redis_url, backend=settings.redis_url, include=["svn_migrator.tasks.jobs"])
celery_app.conf.update(task_track_started=True, result_expires=3600, broker_connection_retry_on_startup=True,
                       task_acks_late=True, worker_prefetch_multiplier=1,)
celery_app.conf.beat_schedule = {
    "schedule-incremental-syncs": {"task": "schedule_incremental_syncs", "schedule": crontab(minute=0)},
}
