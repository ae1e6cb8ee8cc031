"""
Tests for ExecutionStore

Tests cover:
- Status transitions (and rejected transitions)
- Incremental node recording
- Cancellation flag
- Persistence retries and PersistenceError
- Cleanup of old executions
- Summaries
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from recipe_engine.core.exceptions import (
    ExecutionNotFoundError,
    ExecutionStateError,
    PersistenceError,
)
from recipe_engine.core.store import ExecutionStore
from recipe_engine.models import RecipeExecution


def flaky_commit(session, failures):
    """Replace session.commit with one that fails `failures` times first"""
    real_commit = session.commit
    state = {"remaining": failures, "calls": 0}

    def commit():
        state["calls"] += 1
        if state["remaining"] > 0:
            state["remaining"] -= 1
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        real_commit()

    session.commit = commit
    return state


# =============================================================================
# Transitions
# =============================================================================

@pytest.mark.unit
def test_create_pending(store):
    execution = store.create("recipe_1", {"topic": "owls"}, recipe_version=2, user_id="user_1")

    assert execution.id.startswith("exec_")
    assert execution.status == "pending"
    assert execution.recipe_version == 2
    assert execution.execution_context == {}
    assert execution.cancel_requested is False


@pytest.mark.unit
def test_lifecycle_to_completed(store):
    execution = store.create("recipe_1", {})

    store.mark_running(execution.id, ["a", "b"])
    store.record_node(execution.id, "a", {"status": "completed", "outputs": {"output": 1}})
    store.record_node(execution.id, "b", {"status": "completed", "outputs": {"output": 2}})
    done = store.mark_completed(execution.id, {"b": {"output": 2}})

    assert done.status == "completed"
    assert done.execution_order == ["a", "b"]
    assert set(done.execution_context) == {"a", "b"}
    assert done.result == {"b": {"output": 2}}
    assert done.started_at is not None
    assert done.completed_at >= done.started_at


@pytest.mark.unit
def test_record_node_replaces_entry(store):
    execution = store.create("recipe_1", {})
    store.mark_running(execution.id, ["a"])

    store.record_node(execution.id, "a", {"status": "running"})
    store.record_node(execution.id, "a", {"status": "completed", "outputs": {}})

    assert store.refresh(execution.id).execution_context["a"]["status"] == "completed"


@pytest.mark.unit
def test_mark_failed_records_error(store):
    execution = store.create("recipe_1", {})
    store.mark_running(execution.id, ["a"])

    failed = store.mark_failed(execution.id, {"message": "boom"}, "node", failed_node_id="a")

    assert failed.status == "failed"
    assert failed.error == {"message": "boom"}
    assert failed.error_type == "node"
    assert failed.failed_node_id == "a"


@pytest.mark.unit
def test_terminal_status_is_final(store):
    execution = store.create("recipe_1", {})
    store.mark_running(execution.id, [])
    store.mark_completed(execution.id, {})

    with pytest.raises(ExecutionStateError) as exc_info:
        store.mark_failed(execution.id, {"message": "late"}, "node")
    assert exc_info.value.status == "completed"

    with pytest.raises(ExecutionStateError):
        store.mark_running(execution.id, [])


@pytest.mark.unit
def test_pending_cannot_complete_directly(store):
    execution = store.create("recipe_1", {})
    with pytest.raises(ExecutionStateError, match="cannot move from pending to completed"):
        store.mark_completed(execution.id, {})


@pytest.mark.unit
def test_unknown_execution(store):
    assert store.get("exec_missing") is None
    with pytest.raises(ExecutionNotFoundError):
        store.require("exec_missing")
    with pytest.raises(ExecutionNotFoundError):
        store.mark_running("exec_missing", [])


# =============================================================================
# Cancellation
# =============================================================================

@pytest.mark.unit
def test_request_cancel_sets_flag(store):
    execution = store.create("recipe_1", {})
    assert store.is_cancel_requested(execution.id) is False

    store.request_cancel(execution.id)

    assert store.is_cancel_requested(execution.id) is True
    assert store.require(execution.id).status == "pending"


@pytest.mark.unit
def test_request_cancel_on_terminal_rejected(store):
    execution = store.create("recipe_1", {})
    store.mark_cancelled(execution.id)

    with pytest.raises(ExecutionStateError, match="already cancelled"):
        store.request_cancel(execution.id)


@pytest.mark.unit
def test_cancel_flag_seen_across_sessions(session_factory):
    writer = ExecutionStore(session_factory(), backoff_seconds=0)
    reader = ExecutionStore(session_factory(), backoff_seconds=0)
    execution = writer.create("recipe_1", {})
    assert reader.is_cancel_requested(execution.id) is False

    writer.request_cancel(execution.id)

    assert reader.is_cancel_requested(execution.id) is True


# =============================================================================
# Persistence retries
# =============================================================================

@pytest.mark.unit
def test_transient_commit_failure_retried(store, db_session):
    execution = store.create("recipe_1", {})
    state = flaky_commit(db_session, failures=1)

    store.mark_running(execution.id, ["a"])

    assert state["calls"] == 2
    assert store.refresh(execution.id).status == "running"


@pytest.mark.unit
def test_persistent_commit_failure_raises(store, db_session):
    execution = store.create("recipe_1", {})
    state = flaky_commit(db_session, failures=10)

    with pytest.raises(PersistenceError) as exc_info:
        store.record_node(execution.id, "a", {"status": "running"})

    assert exc_info.value.operation == "record_node"
    assert exc_info.value.retry_allowed is True
    assert state["calls"] == 3


# =============================================================================
# Cleanup / summaries
# =============================================================================

@pytest.mark.unit
def test_cleanup_deletes_only_old_terminal_executions(store, db_session):
    old_done = store.create("recipe_1", {})
    store.mark_cancelled(old_done.id)
    old_pending = store.create("recipe_1", {})
    recent_done = store.create("recipe_1", {})
    store.mark_cancelled(recent_done.id)

    long_ago = datetime.utcnow() - timedelta(days=45)
    for execution in (old_done, old_pending):
        db_session.get(RecipeExecution, execution.id).created_at = long_ago
    db_session.commit()

    deleted = store.cleanup_old_executions(days_old=30)

    assert deleted == 1
    assert store.get(old_done.id) is None
    assert store.get(old_pending.id) is not None
    assert store.get(recent_done.id) is not None


@pytest.mark.unit
def test_list_for_recipe_newest_first(store, db_session):
    first = store.create("recipe_1", {})
    second = store.create("recipe_1", {})
    store.create("recipe_2", {})
    db_session.get(RecipeExecution, first.id).created_at = datetime.utcnow() - timedelta(minutes=5)
    db_session.commit()

    listed = store.list_for_recipe("recipe_1")

    assert [e.id for e in listed] == [second.id, first.id]
    assert len(store.list_for_recipe("recipe_1", limit=1)) == 1


@pytest.mark.unit
def test_list_for_project_newest_first(store, db_session):
    first = store.create("recipe_1", {}, project_id="proj_1")
    second = store.create("recipe_2", {}, project_id="proj_1")
    store.create("recipe_1", {}, project_id="proj_2")
    store.create("recipe_1", {})
    db_session.get(RecipeExecution, first.id).created_at = datetime.utcnow() - timedelta(minutes=5)
    db_session.commit()

    listed = store.list_for_project("proj_1")

    assert [e.id for e in listed] == [second.id, first.id]
    assert [e.id for e in store.list_for_project("proj_1", limit=1)] == [second.id]
    assert store.list_for_project("proj_missing") == []


@pytest.mark.unit
def test_summarize(store):
    execution = store.create("recipe_1", {})
    store.mark_running(execution.id, ["a", "b", "c"])
    store.record_node(execution.id, "a", {"status": "completed", "duration_ms": 12, "reused_from": "exec_old"})
    store.record_node(execution.id, "b", {"status": "skipped", "error": {"message": "x"}})
    store.record_node(execution.id, "c", {"status": "failed", "error": {"message": "y"}})
    failed = store.mark_failed(execution.id, {"message": "y"}, "node", failed_node_id="c")

    summary = ExecutionStore.summarize(failed)

    assert summary["status"] == "failed"
    assert summary["nodeCount"] == 3
    assert summary["completedNodeCount"] == 1
    assert summary["skippedNodeCount"] == 1
    assert summary["failedNodeCount"] == 1
    assert summary["failedNodeId"] == "c"
    assert summary["errorType"] == "node"
    assert summary["durationMs"] is not None
    assert summary["nodeResults"][0] == {
        "nodeId": "a", "status": "completed", "durationMs": 12, "error": None, "reusedFrom": "exec_old",
    }
