"""
Execution Model
Database model for recipe execution records
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from datetime import datetime
from . import Base

# Status values
PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)


class RecipeExecution(Base):
    """
    Execution Model

    One run of a recipe against an input. Written incrementally by the
    orchestrator (one writer); read concurrently by status pollers.

    JSON columns are always reassigned with a new object, never mutated in
    place, so every change is flushed.
    """
    __tablename__ = "recipe_executions"

    id = Column(String(255), primary_key=True, index=True)
    recipe_id = Column(String(255), nullable=False, index=True)
    recipe_version = Column(Integer, nullable=True)

    # Status: pending, running, completed, failed, cancelled
    status = Column(String(50), nullable=False, default=PENDING, index=True)

    input = Column(JSON, nullable=True)

    # Topological order computed once when the walk starts
    execution_order = Column(JSON, nullable=True)

    # Per-node results as they accrue
    # Example: {"gen_text": {"status": "completed", "outputs": {"output": "..."}, "duration_ms": 812}}
    execution_context = Column(JSON, nullable=False, default=dict)

    # Final outputs keyed by node id (only on completion)
    result = Column(JSON, nullable=True)

    # {"message": ..., "code": ..., "node_id": ...}
    error = Column(JSON, nullable=True)
    # node | validation | infrastructure
    error_type = Column(String(50), nullable=True)
    failed_node_id = Column(String(255), nullable=True)

    # Caller correlation metadata
    user_id = Column(String(255), nullable=True, index=True)
    project_id = Column(String(255), nullable=True, index=True)
    stage_id = Column(String(255), nullable=True)

    # Retry lineage
    retry_of_execution_id = Column(String(255), nullable=True, index=True)
    resumed_from_node_id = Column(String(255), nullable=True)

    # Cooperative cancellation flag, checked between nodes
    cancel_requested = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "recipeId": self.recipe_id,
            "recipeVersion": self.recipe_version,
            "status": self.status,
            "input": self.input,
            "executionOrder": self.execution_order,
            "executionContext": self.execution_context or {},
            "result": self.result,
            "error": self.error,
            "errorType": self.error_type,
            "failedNodeId": self.failed_node_id,
            "userId": self.user_id,
            "projectId": self.project_id,
            "stageId": self.stage_id,
            "retryOfExecutionId": self.retry_of_execution_id,
            "resumedFromNodeId": self.resumed_from_node_id,
            "cancelRequested": bool(self.cancel_requested),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<RecipeExecution(id='{self.id}', recipe_id='{self.recipe_id}', status='{self.status}')>"
