"""
Execution Store

Persists RecipeExecution records. The persisted record is the source of
truth for an execution: every state transition is committed before the
orchestrator moves on.

Writes (and reads) are retried a bounded number of times with exponential
backoff; failures that outlast the retries surface as PersistenceError.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models.execution import (
    CANCELLED,
    COMPLETED,
    FAILED,
    PENDING,
    RUNNING,
    TERMINAL_STATUSES,
    RecipeExecution,
)
from .exceptions import ExecutionNotFoundError, ExecutionStateError, PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Allowed status transitions
TRANSITIONS = {
    PENDING: {RUNNING, FAILED, CANCELLED},
    RUNNING: {COMPLETED, FAILED, CANCELLED},
    COMPLETED: set(),
    FAILED: set(),
    CANCELLED: set(),
}


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4()}"


class ExecutionStore:
    """
    Repository for execution records.

    Args:
        session: SQLAlchemy session (owned by the caller)
        max_attempts: Attempts per operation before raising PersistenceError
        backoff_seconds: Multiplier for the exponential wait between attempts
    """

    def __init__(self, session: Session, max_attempts: int = 3, backoff_seconds: float = 0.5):
        self.session = session
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    # ------------------------------------------------------------------
    # Retry plumbing
    # ------------------------------------------------------------------

    def _run(self, operation: str, fn: Callable[[], T], commit: bool = True) -> T:
        def before_sleep(retry_state) -> None:
            logger.warning(
                f"⚠️  Persistence operation '{operation}' failed "
                f"(attempt {retry_state.attempt_number}/{self.max_attempts}), retrying: "
                f"{retry_state.outcome.exception()}"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=10),
            retry=retry_if_exception_type(PersistenceError),
            before_sleep=before_sleep,
            reraise=True,
        )

        result = None
        for attempt in retrying:
            with attempt:
                try:
                    result = fn()
                    if commit:
                        self.session.commit()
                except SQLAlchemyError as e:
                    self.session.rollback()
                    raise PersistenceError(f"{operation} failed: {e}", operation=operation)
        return result

    def _load(self, execution_id: str) -> RecipeExecution:
        execution = self.session.get(RecipeExecution, execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    @staticmethod
    def _transition(execution: RecipeExecution, status: str) -> None:
        if status not in TRANSITIONS.get(execution.status, set()):
            raise ExecutionStateError(
                f"Execution {execution.id} cannot move from {execution.status} to {status}",
                status=execution.status
            )
        execution.status = status

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, execution_id: str) -> Optional[RecipeExecution]:
        return self._run(
            "get_execution",
            lambda: self.session.get(RecipeExecution, execution_id),
            commit=False
        )

    def require(self, execution_id: str) -> RecipeExecution:
        """
        Raises:
            ExecutionNotFoundError: If the id is unknown
        """
        execution = self.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def refresh(self, execution_id: str) -> RecipeExecution:
        """Re-read the record from the database, discarding cached state"""
        def load() -> RecipeExecution:
            execution = self._load(execution_id)
            self.session.refresh(execution)
            return execution
        return self._run("refresh_execution", load, commit=False)

    def is_cancel_requested(self, execution_id: str) -> bool:
        # Column query so a flag set by another process is always seen
        flag = self._run(
            "read_cancel_flag",
            lambda: self.session.query(RecipeExecution.cancel_requested)
            .filter(RecipeExecution.id == execution_id)
            .scalar(),
            commit=False
        )
        return bool(flag)

    def list_for_recipe(self, recipe_id: str, limit: int = 10) -> List[RecipeExecution]:
        return self._run(
            "list_executions",
            lambda: self.session.query(RecipeExecution)
            .filter(RecipeExecution.recipe_id == recipe_id)
            .order_by(RecipeExecution.created_at.desc())
            .limit(limit)
            .all(),
            commit=False
        )

    def list_for_project(self, project_id: str, limit: int = 50) -> List[RecipeExecution]:
        """Executions of any recipe started for a project, newest first"""
        return self._run(
            "list_project_executions",
            lambda: self.session.query(RecipeExecution)
            .filter(RecipeExecution.project_id == project_id)
            .order_by(RecipeExecution.created_at.desc())
            .limit(limit)
            .all(),
            commit=False
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        recipe_id: str,
        input: Optional[Dict[str, Any]],
        recipe_version: Optional[int] = None,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        stage_id: Optional[str] = None,
        retry_of_execution_id: Optional[str] = None,
        resumed_from_node_id: Optional[str] = None,
        execution_context: Optional[Dict[str, Any]] = None
    ) -> RecipeExecution:
        execution_id = new_execution_id()

        def insert() -> RecipeExecution:
            execution = RecipeExecution(
                id=execution_id,
                recipe_id=recipe_id,
                recipe_version=recipe_version,
                status=PENDING,
                input=input,
                execution_context=dict(execution_context or {}),
                user_id=user_id,
                project_id=project_id,
                stage_id=stage_id,
                retry_of_execution_id=retry_of_execution_id,
                resumed_from_node_id=resumed_from_node_id,
                cancel_requested=False,
                created_at=datetime.utcnow(),
            )
            self.session.add(execution)
            return execution

        execution = self._run("create_execution", insert)
        logger.info(f"Created execution {execution_id} for recipe {recipe_id}")
        return execution

    def mark_running(self, execution_id: str, execution_order: List[str]) -> RecipeExecution:
        def update() -> RecipeExecution:
            execution = self._load(execution_id)
            self._transition(execution, RUNNING)
            execution.started_at = datetime.utcnow()
            execution.execution_order = list(execution_order)
            return execution
        return self._run("mark_running", update)

    def record_node(self, execution_id: str, node_id: str, entry: Dict[str, Any]) -> RecipeExecution:
        """Replace executionContext[node_id] with entry"""
        def update() -> RecipeExecution:
            execution = self._load(execution_id)
            context = dict(execution.execution_context or {})
            context[node_id] = entry
            execution.execution_context = context
            return execution
        return self._run("record_node", update)

    def mark_completed(self, execution_id: str, result: Dict[str, Any]) -> RecipeExecution:
        def update() -> RecipeExecution:
            execution = self._load(execution_id)
            self._transition(execution, COMPLETED)
            execution.result = result
            execution.completed_at = datetime.utcnow()
            return execution
        return self._run("mark_completed", update)

    def mark_failed(
        self,
        execution_id: str,
        error: Dict[str, Any],
        error_type: str,
        failed_node_id: Optional[str] = None
    ) -> RecipeExecution:
        def update() -> RecipeExecution:
            execution = self._load(execution_id)
            self._transition(execution, FAILED)
            execution.error = error
            execution.error_type = error_type
            execution.failed_node_id = failed_node_id
            execution.completed_at = datetime.utcnow()
            return execution
        return self._run("mark_failed", update)

    def mark_cancelled(self, execution_id: str) -> RecipeExecution:
        def update() -> RecipeExecution:
            execution = self._load(execution_id)
            self._transition(execution, CANCELLED)
            execution.completed_at = datetime.utcnow()
            return execution
        return self._run("mark_cancelled", update)

    def request_cancel(self, execution_id: str) -> RecipeExecution:
        """
        Set the cooperative cancellation flag.

        Raises:
            ExecutionNotFoundError: Unknown id
            ExecutionStateError: Execution already terminal
        """
        def update() -> RecipeExecution:
            execution = self._load(execution_id)
            if execution.status in TERMINAL_STATUSES:
                raise ExecutionStateError(
                    f"Execution {execution_id} is already {execution.status}",
                    status=execution.status
                )
            execution.cancel_requested = True
            return execution
        return self._run("request_cancel", update)

    def cleanup_old_executions(self, days_old: int = 30) -> int:
        """Delete terminal executions created more than days_old days ago"""
        cutoff = datetime.utcnow() - timedelta(days=days_old)

        def delete() -> int:
            return (
                self.session.query(RecipeExecution)
                .filter(RecipeExecution.created_at < cutoff)
                .filter(RecipeExecution.status.in_(TERMINAL_STATUSES))
                .delete(synchronize_session=False)
            )

        deleted = self._run("cleanup_executions", delete)
        logger.info(f"🧹 Deleted {deleted} executions older than {days_old} days")
        return deleted

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @staticmethod
    def summarize(execution: RecipeExecution) -> Dict[str, Any]:
        """Read-only summary of an execution (counts, timing, per-node results)"""
        context = execution.execution_context or {}
        order = execution.execution_order or list(context.keys())

        node_results = []
        counts = {"completed": 0, "failed": 0, "skipped": 0}
        for node_id in order:
            entry = context.get(node_id)
            if entry is None:
                continue
            status = entry.get("status")
            if status in counts:
                counts[status] += 1
            node_results.append({
                "nodeId": node_id,
                "status": status,
                "durationMs": entry.get("duration_ms"),
                "error": entry.get("error"),
                "reusedFrom": entry.get("reused_from"),
            })

        duration_ms = None
        if execution.started_at and execution.completed_at:
            duration_ms = int((execution.completed_at - execution.started_at).total_seconds() * 1000)

        return {
            "executionId": execution.id,
            "recipeId": execution.recipe_id,
            "status": execution.status,
            "nodeCount": len(order),
            "completedNodeCount": counts["completed"],
            "failedNodeCount": counts["failed"],
            "skippedNodeCount": counts["skipped"],
            "durationMs": duration_ms,
            "startedAt": execution.started_at.isoformat() if execution.started_at else None,
            "completedAt": execution.completed_at.isoformat() if execution.completed_at else None,
            "failedNodeId": execution.failed_node_id,
            "error": execution.error,
            "errorType": execution.error_type,
            "retryOf": execution.retry_of_execution_id,
            "resumedFromNodeId": execution.resumed_from_node_id,
            "nodeResults": node_results,
        }
