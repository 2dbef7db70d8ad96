from celery import Celery
from celery import signals
import time
from prometheus_client import Counter, Histogram
from idea_recommender.config import get_settings

settings = get_settings()

celery_app = Celery(
    "idea_recommender",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "idea_recommender.tasks.preferences",
        "idea_recommender.tasks.experiments",
    ],
)

celery_app.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"], timezone="UTC", enable_utc=True)

TASK_SUCCESS = Counter('celery_task_success_total', 'Celery task successes', ['task'])
TASK_FAILURE = Counter('celery_task_failure_total', 'Celery task failures', ['task'])
TASK_DURATION = Histogram('celery_task_duration_seconds', 'Celery task runtime', ['task'], buckets=(0.05,0.1,0.25,0.5,1,2,5,10,30,60))

_task_start_times = {}

@signals.task_prerun.connect
def _task_prerun(sender=None, task_id=None, **kwargs):  # noqa
    _task_start_times[task_id] = time.time()

@signals.task_postrun.connect
def _task_postrun(sender=None, task_id=None, state=None, **kwargs):  # noqa
    name = sender.name if sender else 'unknown'
    start = _task_start_times.pop(task_id, None)
    if start is not None:
        TASK_DURATION.labels(task=name).observe(time.time() - start)
    if state == 'SUCCESS':
        TASK_SUCCESS.labels(task=name).inc()
    elif state is not None:
        TASK_FAILURE.labels(task=name).inc()

# Periodic tasks (beat). Requires worker with -B or separate beat service.
celery_app.conf.beat_schedule = {
    "refresh-item-features": {
        "task": "idea_recommender.tasks.preferences.refresh_item_feature_summaries",
        "schedule": settings.item_feature_refresh_minutes * 60.0,
    },
    "analyze-active-experiments": {
        "task": "idea_recommender.tasks.experiments.analyze_active_experiments",
        "schedule": settings.experiment_analysis_interval_minutes * 60.0,
    },
}
