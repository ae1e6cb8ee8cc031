"""
Tests for RecipeOrchestrator

Tests cover:
- End-to-end execution (text → image)
- Fan-in and result aggregation
- Halt on node failure, skip policy
- Cooperative cancellation at node boundaries
- Full and resume retries (lineage, reuse, recipe version changes)
- Validation and infrastructure failures
"""

import copy
from datetime import datetime

import pytest

from recipe_engine.core.exceptions import (
    ExecutionNotFoundError,
    ExecutionStateError,
    PermissionDeniedError,
    PersistenceError,
    RecipeNotFoundError,
)
from recipe_engine.core.orchestrator import RecipeOrchestrator, make_json_serializable


# =============================================================================
# Happy path
# =============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_text_then_image(orchestrator, stored_recipe, text_to_image_recipe, fake_provider):
    stored_recipe(text_to_image_recipe)

    execution_id = await orchestrator.execute("recipe_text_image", {"topic": "a lighthouse"}, user_id="user_1")

    execution = orchestrator.get_execution_status(execution_id)
    assert execution.status == "completed"
    assert execution.execution_order == ["gen_text", "gen_image"]
    assert fake_provider.prompts("text") == ["Describe a lighthouse"]
    assert fake_provider.prompts("image") == ["Illustrate: TEXT[Describe a lighthouse]"]

    text_entry = execution.execution_context["gen_text"]
    assert text_entry["status"] == "completed"
    assert text_entry["output"] == "TEXT[Describe a lighthouse]"
    assert text_entry["metadata"]["provider"] == "fake"
    assert text_entry["duration_ms"] is not None

    image = execution.result["gen_image"]["output"]
    assert image["url"].startswith(f"https://assets.example.com/{execution_id}/gen_image_")
    assert set(execution.result) == {"gen_image"}
    assert execution.recipe_version == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_fan_in_and_final_nodes(orchestrator, stored_recipe, fan_in_recipe):
    stored_recipe(fan_in_recipe)

    execution_id = await orchestrator.execute("recipe_fan_in", {})

    execution = orchestrator.get_execution_status(execution_id)
    assert execution.status == "completed"
    assert execution.execution_order == ["left", "right", "join", "extra"]
    assert execution.result == {
        "join": {"output": {"l": "TEXT[left side]", "r": "TEXT[right side]"}}
    }
    assert execution.execution_context["extra"]["output"] == "extra TEXT[left side]"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_result_without_final_nodes(orchestrator, stored_recipe, linear_recipe):
    del linear_recipe["nodes"][2]["final"]
    stored_recipe(linear_recipe)

    execution_id = await orchestrator.execute("recipe_linear", {"topic": "x"})

    assert set(orchestrator.get_execution_status(execution_id).result) == {"a", "b", "c"}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_progress_listener_receives_item_events(store, recipes, executor, stored_recipe, fake_provider):
    fake_provider.text_response = '[{"name": "Ana"}, {"name": "Ben"}]'
    stored_recipe({
        "id": "recipe_portraits",
        "name": "Portraits",
        "nodes": [
            {"id": "people", "type": "text_generation", "prompt": "list people", "responseFormat": "json",
             "aiModel": {"provider": "fake", "modelName": "m"}},
            {"id": "portraits", "type": "image_generation", "inputs": ["people"], "prompt": "Portrait of {name}",
             "forEach": "people", "aiModel": {"provider": "fake", "modelName": "m"}, "final": True},
        ],
        "edges": [{"from": "people", "to": "portraits", "toInput": "people"}],
    })
    events = []
    orchestrator = RecipeOrchestrator(store, recipes, executor, progress_listener=lambda *args: events.append(args))

    execution_id = await orchestrator.execute("recipe_portraits", {})

    execution = orchestrator.get_execution_status(execution_id)
    assert [(node_id, event["completed"]) for _, node_id, event in events] == [("portraits", 1), ("portraits", 2)]
    assert execution.execution_context["portraits"]["progress"]["completed"] == 2
    assert len(execution.result["portraits"]["output"]) == 2


# =============================================================================
# Failures
# =============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_node_failure_halts_execution(orchestrator, stored_recipe, linear_recipe, fake_provider):
    fake_provider.fail_on.append("B TEXT")
    stored_recipe(linear_recipe)

    execution_id = await orchestrator.execute("recipe_linear", {"topic": "x"})

    execution = orchestrator.get_execution_status(execution_id)
    assert execution.status == "failed"
    assert execution.error_type == "node"
    assert execution.failed_node_id == "b"
    assert execution.error["code"] == "NODE_EXECUTION"
    assert execution.execution_context["a"]["status"] == "completed"
    assert execution.execution_context["b"]["status"] == "failed"
    assert "c" not in execution.execution_context
    assert execution.result is None
    assert len(fake_provider.prompts("text")) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_missing_external_input_fails_first_node(orchestrator, stored_recipe, linear_recipe):
    stored_recipe(linear_recipe)

    execution_id = await orchestrator.execute("recipe_linear", {"subject": "x"})

    execution = orchestrator.get_execution_status(execution_id)
    assert execution.status == "failed"
    assert execution.failed_node_id == "a"
    assert execution.error["code"] == "MISSING_INPUT"
    assert execution.error["slot"] == "topic"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_skip_policy_uses_default_output(orchestrator, stored_recipe, linear_recipe, fake_provider):
    fake_provider.fail_on.append("B TEXT")
    linear_recipe["nodes"][1]["errorHandling"] = {"onError": "skip", "defaultOutput": "fallback"}
    stored_recipe(linear_recipe)

    execution_id = await orchestrator.execute("recipe_linear", {"topic": "x"})

    execution = orchestrator.get_execution_status(execution_id)
    assert execution.status == "completed"
    assert execution.execution_context["b"]["status"] == "skipped"
    assert execution.execution_context["b"]["error"]["code"] == "NODE_EXECUTION"
    assert execution.result == {"c": {"output": "TEXT[C fallback]"}}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invalid_stored_recipe_fails_validation(orchestrator, stored_recipe, linear_recipe, db_session):
    recipe = stored_recipe(linear_recipe)
    execution_id = orchestrator.start_execution("recipe_linear", {"topic": "x"})

    # Corrupt the stored definition behind the manager's back
    recipe.edges = recipe.edges + [{"from": "c", "to": "a", "toInput": "loop"}]
    db_session.commit()

    execution = await orchestrator.run_execution(execution_id)

    assert execution.status == "failed"
    assert execution.error_type == "validation"
    assert execution.error["code"] == "INVALID_GRAPH"
    assert execution.execution_context == {}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_persistence_failure_marks_infrastructure(orchestrator, store, stored_recipe, linear_recipe,
                                                        monkeypatch):
    stored_recipe(linear_recipe)
    execution_id = orchestrator.start_execution("recipe_linear", {"topic": "x"})

    def broken_record_node(*args, **kwargs):
        raise PersistenceError("record_node failed: disk full", operation="record_node")

    monkeypatch.setattr(store, "record_node", broken_record_node)

    with pytest.raises(PersistenceError):
        await orchestrator.run_execution(execution_id)

    execution = store.refresh(execution_id)
    assert execution.status == "failed"
    assert execution.error_type == "infrastructure"
    assert execution.error["code"] == "PERSISTENCE"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_task_retry_fails_execution_left_running(orchestrator, store, stored_recipe, linear_recipe,
                                                       fake_provider, monkeypatch):
    stored_recipe(linear_recipe)
    execution_id = orchestrator.start_execution("recipe_linear", {"topic": "x"}, user_id="user_1")

    def unavailable(*args, **kwargs):
        raise PersistenceError("database unavailable", operation="record_node")

    # Database down for every write after the walk started
    with monkeypatch.context() as patched:
        patched.setattr(store, "record_node", unavailable)
        patched.setattr(store, "mark_failed", unavailable)
        with pytest.raises(PersistenceError):
            await orchestrator.run_execution(execution_id)

    assert store.refresh(execution_id).status == "running"
    fake_provider.calls.clear()

    # What a Celery autoretry does once the database is back
    execution = await orchestrator.run_execution(execution_id)

    assert execution.status == "failed"
    assert execution.error_type == "infrastructure"
    assert execution.error["code"] == "INTERRUPTED"
    assert fake_provider.calls == []
    retry_id = orchestrator.retry_execution(execution_id, user_id="user_1")
    assert (await orchestrator.run_execution(retry_id)).status == "completed"


@pytest.mark.unit
def test_start_unknown_recipe(orchestrator):
    with pytest.raises(RecipeNotFoundError):
        orchestrator.start_execution("recipe_missing", {})


@pytest.mark.unit
def test_start_inactive_recipe(orchestrator, recipes, stored_recipe, linear_recipe):
    stored_recipe(linear_recipe)
    recipes.delete_recipe("recipe_linear", "user_1")

    with pytest.raises(ExecutionStateError, match="inactive"):
        orchestrator.start_execution("recipe_linear", {"topic": "x"})


@pytest.mark.integration
@pytest.mark.asyncio
async def test_terminal_execution_is_not_rerun(orchestrator, stored_recipe, linear_recipe, fake_provider):
    stored_recipe(linear_recipe)
    execution_id = await orchestrator.execute("recipe_linear", {"topic": "x"})
    calls = len(fake_provider.calls)

    execution = await orchestrator.run_execution(execution_id)

    assert execution.status == "completed"
    assert len(fake_provider.calls) == calls


# =============================================================================
# Cancellation
# =============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_cancel_stops_at_next_node_boundary(orchestrator, stored_recipe, linear_recipe, fake_provider):
    stored_recipe(linear_recipe)
    execution_id = orchestrator.start_execution("recipe_linear", {"topic": "x"}, user_id="user_1")

    def cancel_during_first_node(prompt):
        if prompt.startswith("A "):
            orchestrator.cancel_execution(execution_id, user_id="user_1")
        return f"TEXT[{prompt}]"

    fake_provider.text_response = cancel_during_first_node

    execution = await orchestrator.run_execution(execution_id)

    assert execution.status == "cancelled"
    # In-flight node finishes and is recorded
    assert execution.execution_context["a"]["status"] == "completed"
    assert "b" not in execution.execution_context
    assert fake_provider.prompts("text") == ["A x"]


@pytest.mark.unit
def test_cancel_pending_execution(orchestrator, stored_recipe, linear_recipe):
    stored_recipe(linear_recipe)
    execution_id = orchestrator.start_execution("recipe_linear", {"topic": "x"})

    execution = orchestrator.cancel_execution(execution_id)

    assert execution.status == "cancelled"
    assert execution.cancel_requested is True


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cancel_terminal_execution_rejected(orchestrator, stored_recipe, linear_recipe):
    stored_recipe(linear_recipe)
    execution_id = await orchestrator.execute("recipe_linear", {"topic": "x"})

    with pytest.raises(ExecutionStateError):
        orchestrator.cancel_execution(execution_id)


@pytest.mark.unit
def test_cancel_requires_owner(orchestrator, stored_recipe, linear_recipe):
    stored_recipe(linear_recipe)
    execution_id = orchestrator.start_execution("recipe_linear", {"topic": "x"}, user_id="owner")

    with pytest.raises(PermissionDeniedError):
        orchestrator.cancel_execution(execution_id, user_id="intruder")


@pytest.mark.unit
def test_cancel_unknown_execution(orchestrator):
    with pytest.raises(ExecutionNotFoundError):
        orchestrator.cancel_execution("exec_missing")


# =============================================================================
# Retry
# =============================================================================

async def _failed_linear_execution(orchestrator, stored_recipe, linear_recipe, fake_provider):
    fake_provider.fail_on.append("B TEXT")
    stored_recipe(linear_recipe)
    execution_id = await orchestrator.execute("recipe_linear", {"topic": "x"}, user_id="user_1")
    fake_provider.fail_on.clear()
    fake_provider.calls.clear()
    return execution_id


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_retry_reruns_every_node(orchestrator, stored_recipe, linear_recipe, fake_provider):
    failed_id = await _failed_linear_execution(orchestrator, stored_recipe, linear_recipe, fake_provider)

    retry_id = orchestrator.retry_execution(failed_id, user_id="user_1")
    retry = await orchestrator.run_execution(retry_id)

    assert retry_id != failed_id
    assert retry.status == "completed"
    assert retry.retry_of_execution_id == failed_id
    assert retry.resumed_from_node_id is None
    assert retry.input == {"topic": "x"}
    assert retry.user_id == "user_1"
    assert len(fake_provider.prompts("text")) == 3
    # The original stays failed
    assert orchestrator.get_execution_status(failed_id).status == "failed"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_resume_retry_reuses_completed_nodes(orchestrator, stored_recipe, linear_recipe, fake_provider):
    failed_id = await _failed_linear_execution(orchestrator, stored_recipe, linear_recipe, fake_provider)

    retry_id = orchestrator.retry_execution(failed_id, user_id="user_1", mode="resume")
    retry = await orchestrator.run_execution(retry_id)

    assert retry.status == "completed"
    assert retry.resumed_from_node_id == "b"
    assert retry.execution_context["a"]["reused_from"] == failed_id
    assert fake_provider.prompts("text") == ["B TEXT[A x]", "C TEXT[B TEXT[A x]]"]
    summary = orchestrator.get_execution_summary(retry_id)
    assert summary["nodeResults"][0]["reusedFrom"] == failed_id
    assert summary["retryOf"] == failed_id


@pytest.mark.integration
@pytest.mark.asyncio
async def test_resume_reruns_nodes_downstream_of_rerun_nodes(orchestrator, stored_recipe, linear_recipe,
                                                             fake_provider):
    # a falls back to its default, b builds on it, c fails
    linear_recipe["nodes"][0]["errorHandling"] = {"onError": "skip", "defaultOutput": "DEFAULT"}
    fake_provider.fail_on.extend(["A x", "C TEXT"])
    stored_recipe(linear_recipe)
    failed_id = await orchestrator.execute("recipe_linear", {"topic": "x"}, user_id="user_1")
    failed = orchestrator.get_execution_status(failed_id)
    assert failed.failed_node_id == "c"
    assert failed.execution_context["b"]["output"] == "TEXT[B DEFAULT]"
    fake_provider.fail_on.clear()
    fake_provider.calls.clear()

    retry_id = orchestrator.retry_execution(failed_id, user_id="user_1", mode="resume")
    retry = await orchestrator.run_execution(retry_id)

    assert retry.status == "completed"
    assert retry.resumed_from_node_id is None
    assert "reused_from" not in retry.execution_context["b"]
    assert fake_provider.prompts("text") == ["A x", "B TEXT[A x]", "C TEXT[B TEXT[A x]]"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_resume_after_recipe_change_runs_everything(orchestrator, recipes, stored_recipe, linear_recipe,
                                                          fake_provider):
    failed_id = await _failed_linear_execution(orchestrator, stored_recipe, linear_recipe, fake_provider)
    nodes = copy.deepcopy(linear_recipe["nodes"])
    nodes[0]["prompt"] = "Alpha {topic}"
    recipes.update_recipe("recipe_linear", {"nodes": nodes}, "user_1")

    retry_id = orchestrator.retry_execution(failed_id, user_id="user_1", mode="resume")
    retry = await orchestrator.run_execution(retry_id)

    assert retry.status == "completed"
    assert retry.resumed_from_node_id is None
    assert retry.recipe_version == 2
    assert fake_provider.prompts("text")[0] == "Alpha x"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_retry_only_failed_executions(orchestrator, stored_recipe, linear_recipe):
    stored_recipe(linear_recipe)
    execution_id = await orchestrator.execute("recipe_linear", {"topic": "x"})

    with pytest.raises(ExecutionStateError, match="Only failed executions"):
        orchestrator.retry_execution(execution_id)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_retry_rejects_unknown_mode_and_other_users(orchestrator, stored_recipe, linear_recipe, fake_provider):
    failed_id = await _failed_linear_execution(orchestrator, stored_recipe, linear_recipe, fake_provider)

    with pytest.raises(ExecutionStateError, match="Unknown retry mode"):
        orchestrator.retry_execution(failed_id, user_id="user_1", mode="partial")
    with pytest.raises(PermissionDeniedError):
        orchestrator.retry_execution(failed_id, user_id="intruder")


# =============================================================================
# History / helpers
# =============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_execution_history(orchestrator, stored_recipe, linear_recipe):
    stored_recipe(linear_recipe)
    await orchestrator.execute("recipe_linear", {"topic": "x"})
    await orchestrator.execute("recipe_linear", {"topic": "y"})

    history = orchestrator.get_execution_history("recipe_linear", limit=5)

    assert len(history) == 2
    assert all(item["status"] == "completed" for item in history)
    assert all(item["completedNodeCount"] == 3 for item in history)


@pytest.mark.unit
def test_make_json_serializable():
    value = {"when": datetime(2026, 1, 2, 3, 4, 5), "raw": b"\x00\x01", "ids": ("a", "b"), 1: {1}}
    assert make_json_serializable(value) == {
        "when": "2026-01-02T03:04:05",
        "raw": "AAE=",
        "ids": ["a", "b"],
        "1": [1],
    }
