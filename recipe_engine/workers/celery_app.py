"""
Celery Application Configuration for the Recipe Engine

Recipe executions run on Celery workers so the API returns immediately and
clients poll the execution record.

Architecture:
- Message Broker: Redis
- Result Backend: Redis
- Queues: recipes (executions), recipes_low (maintenance)

Start a worker (and beat, for the daily cleanup):
    celery -A recipe_engine.workers.celery_app worker -Q recipes,recipes_low
    celery -A recipe_engine.workers.celery_app beat
"""

import logging

from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue

from ..config import Settings
from ..core.logging_config import setup_logging

settings = Settings.from_env()

# Initialize structured logging for Celery workers
setup_logging(level=settings.log_level, json_logs=settings.json_logs, log_file=settings.log_file)

logger = logging.getLogger(__name__)

celery_app = Celery("recipe_engine")

celery_app.conf.update(
    # ============================================================================
    # BROKER & BACKEND
    # ============================================================================
    broker_url=settings.redis_url,
    result_backend=settings.redis_url,

    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,

    # ============================================================================
    # SERIALIZATION
    # ============================================================================
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # ============================================================================
    # TIMEZONE
    # ============================================================================
    timezone="UTC",
    enable_utc=True,

    # ============================================================================
    # TASK EXECUTION
    # ============================================================================
    task_track_started=True,

    # Acknowledge tasks AFTER execution (ensures no lost tasks)
    task_acks_late=True,

    # One execution per worker process at a time
    worker_prefetch_multiplier=1,

    # Recipes with per-item image generation or video polling run long
    task_time_limit=1800,
    task_soft_time_limit=1740,

    # ============================================================================
    # RESULTS
    # ============================================================================
    result_expires=86400,
    result_extended=True,

    # ============================================================================
    # TASK ROUTING
    # ============================================================================
    task_default_queue="recipes",
    task_default_exchange="recipes",
    task_default_routing_key="recipe.execute",

    task_queues=(
        Queue(
            "recipes",
            Exchange("recipes"),
            routing_key="recipe.execute",
            priority=5,
        ),
        # Maintenance (cleanup)
        Queue(
            "recipes_low",
            Exchange("recipes"),
            routing_key="recipe.low",
            priority=1,
        ),
    ),

    task_routes={
        "execute_recipe_task": {
            "queue": "recipes",
            "routing_key": "recipe.execute",
        },
        "cleanup_old_executions_task": {
            "queue": "recipes_low",
            "routing_key": "recipe.low",
        },
    },

    # ============================================================================
    # WORKER CONFIGURATION
    # ============================================================================
    worker_pool="prefork",
    worker_concurrency=2,
    worker_max_tasks_per_child=1000,

    # ============================================================================
    # MONITORING & LOGGING
    # ============================================================================
    worker_send_task_events=True,
    task_send_sent_event=True,
    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
)

# ============================================================================
# BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

celery_app.conf.beat_schedule = {
    "cleanup-old-executions": {
        "task": "cleanup_old_executions_task",
        "schedule": crontab(hour=2, minute=0),
        "kwargs": {"days_old": 30},
    },
}

broker = settings.redis_url.split("@")[1] if "@" in settings.redis_url else settings.redis_url
logger.info(f"Celery app configured (broker: {broker}, default queue: recipes)")

# ============================================================================
# IMPORT TASKS (so they get registered when worker starts)
# ============================================================================
# This import MUST come AFTER celery_app is configured
from . import tasks  # noqa: F401, E402
