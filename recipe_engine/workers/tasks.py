"""
Celery Tasks for the Recipe Engine

Main Tasks:
- execute_recipe_task: Run the walk of a pending execution
- cleanup_old_executions_task: Delete old terminal executions (daily, via beat)

The execution record is created by the API before the task is queued; the
task only runs it. A task retried after a persistence failure finds the
record still pending (and runs it), left running by the interrupted walk
(and marks it failed with error_type "infrastructure"), or already terminal
(and returns).
"""

import asyncio
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from ..config import Settings
from ..core.exceptions import PersistenceError
from ..core.providers import ProviderRegistry
from ..database import create_session_factory, session_scope
from ..services import build_services
from .celery_app import celery_app, settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    """One engine per worker process"""
    return create_session_factory(settings.database_url)


def run_execution(
    execution_id: str,
    session_factory: sessionmaker,
    settings: Settings,
    providers: Optional[ProviderRegistry] = None,
    progress_listener=None
) -> Dict[str, Any]:
    """
    Run one execution in a fresh session and return its summary.

    Raises:
        ExecutionNotFoundError: Unknown execution id
        PersistenceError: Execution state could not be written
    """
    with session_scope(session_factory) as db:
        services = build_services(db, settings, providers=providers, progress_listener=progress_listener)
        asyncio.run(services.orchestrator.run_execution(execution_id))
        return services.orchestrator.get_execution_summary(execution_id)


@celery_app.task(
    bind=True,
    name="execute_recipe_task",
    autoretry_for=(PersistenceError,),
    retry_kwargs={"max_retries": 3},
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def execute_recipe_task(self, execution_id: str) -> Dict[str, Any]:
    """
    Execute a pending recipe execution.

    Args:
        execution_id: Id returned by POST /api/recipes/{id}/execute

    Returns:
        Execution summary (see ExecutionStore.summarize)

    Task Metadata:
        - Retries: only on PersistenceError (max 3, exponential backoff)
        - Queue: recipes
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: Starting execution {execution_id} (retry {self.request.retries})")

    def on_progress(exec_id: str, node_id: str, event: Dict[str, Any]) -> None:
        self.update_state(
            state="PROGRESS",
            meta={"execution_id": exec_id, "node_id": node_id, **event}
        )

    summary = run_execution(
        execution_id, get_session_factory(), settings, progress_listener=on_progress
    )

    logger.info(
        f"Task {task_id}: Execution {execution_id} finished with status {summary['status']} "
        f"({summary['completedNodeCount']}/{summary['nodeCount']} nodes completed)"
    )
    return summary


def cleanup_old_executions(session_factory: sessionmaker, settings: Settings, days_old: int = 30) -> Dict[str, Any]:
    with session_scope(session_factory) as db:
        deleted = build_services(db, settings, providers=ProviderRegistry()).store.cleanup_old_executions(days_old)
    return {"deleted": deleted, "days_old": days_old}


@celery_app.task(
    name="cleanup_old_executions_task",
    autoretry_for=(PersistenceError,),
    retry_kwargs={"max_retries": 3},
    retry_backoff=True,
)
def cleanup_old_executions_task(days_old: int = 30) -> Dict[str, Any]:
    """Delete terminal executions older than days_old days"""
    logger.info(f"Cleaning up executions older than {days_old} days")
    return cleanup_old_executions(get_session_factory(), settings, days_old=days_old)
