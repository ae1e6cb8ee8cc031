"""
Recipe Orchestrator

Walks a recipe DAG in topological order for one execution:

1. Load the execution record and the recipe, re-validate, compute the order once
2. Mark the execution running
3. For each node: cancellation check → resolve inputs → execute → persist entry
4. Aggregate the result from the final nodes and mark the execution completed

The persisted execution record is the source of truth. Every node entry is
written before the walk moves to the next node, so pollers always see the
latest progress.

Node-level errors never propagate out of the walk: they are recorded on the
failing node and the execution becomes failed. Persistence errors do
propagate (after the store's bounded retries).
"""

import asyncio
import base64
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models.execution import COMPLETED, FAILED, PENDING, RUNNING, RecipeExecution
from ..models.recipe import Recipe
from .context import READABLE_STATUSES, resolve_node_input
from .dag import get_ancestors, topological_order
from .exceptions import (
    ExecutionStateError,
    InvalidGraphError,
    NodeError,
    PermissionDeniedError,
    PersistenceError,
    RecipeNotFoundError,
)
from .executors import NodeExecutor
from .logging_config import execution_logging_context
from .nodes import BaseNode, Edge
from .recipes import RecipeManager, load_recipe_graph, merge_execution_config
from .store import ExecutionStore

logger = logging.getLogger(__name__)

ProgressListener = Callable[[str, str, Dict[str, Any]], None]

RETRY_MODES = ("full", "resume")


def make_json_serializable(obj: Any) -> Any:
    """
    Recursively convert values to something a JSON column accepts.

    Handles:
    - datetime → ISO 8601 string
    - bytes → base64 string
    - tuples, sets → lists
    - other objects → str(obj)
    """
    if isinstance(obj, dict):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [make_json_serializable(item) for item in obj]
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, (bytes, bytearray)):
        return base64.b64encode(bytes(obj)).decode("ascii")
    elif obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    else:
        return str(obj)


def _now() -> str:
    return datetime.utcnow().isoformat()


class RecipeOrchestrator:
    """
    Runs recipe executions.

    Args:
        store: Execution store (owns the session used for execution records)
        recipes: Recipe manager (recipe reads and validation)
        executor: Node executor
        progress_listener: Optional callback(execution_id, node_id, event)
            for per-item progress events
    """

    def __init__(
        self,
        store: ExecutionStore,
        recipes: RecipeManager,
        executor: NodeExecutor,
        progress_listener: Optional[ProgressListener] = None
    ):
        self.store = store
        self.recipes = recipes
        self.executor = executor
        self.progress_listener = progress_listener

    # ------------------------------------------------------------------
    # Starting executions
    # ------------------------------------------------------------------

    def start_execution(
        self,
        recipe_id: str,
        input: Optional[Dict[str, Any]],
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        stage_id: Optional[str] = None
    ) -> str:
        """
        Validate the recipe and create a pending execution.

        Returns:
            The new execution id (the walk itself is started separately)

        Raises:
            RecipeNotFoundError: Unknown recipe
            ExecutionStateError: Recipe is inactive
            InvalidGraphError: Stored recipe is not a valid DAG
        """
        recipe = self.recipes.require_recipe(recipe_id)
        if not recipe.is_active:
            raise ExecutionStateError(f"Recipe {recipe_id} is inactive and cannot be executed")
        load_recipe_graph(recipe)

        execution = self.store.create(
            recipe_id,
            input or {},
            recipe_version=recipe.version,
            user_id=user_id,
            project_id=project_id,
            stage_id=stage_id,
        )
        logger.info(f"🚀 Queued execution {execution.id} for recipe {recipe_id} (user: {user_id})")
        return execution.id

    async def execute(
        self,
        recipe_id: str,
        input: Optional[Dict[str, Any]],
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        stage_id: Optional[str] = None
    ) -> str:
        """Start an execution and run it to a terminal state"""
        execution_id = self.start_execution(
            recipe_id, input, user_id=user_id, project_id=project_id, stage_id=stage_id
        )
        await self.run_execution(execution_id)
        return execution_id

    # ------------------------------------------------------------------
    # The walk
    # ------------------------------------------------------------------

    async def run_execution(self, execution_id: str) -> RecipeExecution:
        """
        Run a pending execution to a terminal state.

        Returns:
            The execution record in its terminal state

        Raises:
            ExecutionNotFoundError: Unknown execution id
            PersistenceError: Execution state could not be written
        """
        with execution_logging_context(execution_id):
            try:
                return await self._walk(execution_id)
            except PersistenceError as e:
                logger.error(f"❌ Persistence failure during execution {execution_id}: {e}")
                self._mark_infrastructure_failure(execution_id, e)
                raise

    async def _walk(self, execution_id: str) -> RecipeExecution:
        execution = self.store.require(execution_id)
        if execution.status == RUNNING:
            # Walks only start from pending, so a running record here was left
            # behind by a walk that died (e.g. the task is being retried)
            logger.error(f"❌ Execution {execution_id} was interrupted mid-walk, marking it failed")
            return self.store.mark_failed(
                execution_id,
                {
                    "message": "Execution was interrupted before reaching a terminal state",
                    "code": "INTERRUPTED",
                },
                error_type="infrastructure"
            )
        if execution.status != PENDING:
            logger.warning(f"Execution {execution_id} is {execution.status}, not running it")
            return execution

        if self.store.is_cancel_requested(execution_id):
            logger.info(f"🛑 Execution {execution_id} cancelled before start")
            return self.store.mark_cancelled(execution_id)

        # The recipe is read once; edits made during the walk do not affect it
        recipe = self.recipes.get_recipe(execution.recipe_id)
        try:
            if recipe is None:
                raise RecipeNotFoundError(execution.recipe_id)
            nodes, edges = load_recipe_graph(recipe)
            order = topological_order(nodes, edges)
        except (InvalidGraphError, RecipeNotFoundError) as e:
            logger.error(f"❌ Execution {execution_id} failed validation: {e.message}")
            return self.store.mark_failed(
                execution_id,
                {"message": e.message, "code": "INVALID_GRAPH"},
                error_type="validation"
            )

        execution_config = merge_execution_config(recipe.execution_config)
        external_input = dict(execution.input or {})
        context: Dict[str, Any] = dict(execution.execution_context or {})
        nodes_by_id = {node.id: node for node in nodes}

        self.store.mark_running(execution_id, order)
        logger.info(f"▶️  Running recipe {recipe.id} v{recipe.version}: {len(order)} nodes {order}")

        delay = execution_config.get("inter_node_delay_seconds") or 0
        for position, node_id in enumerate(order):
            node = nodes_by_id[node_id]

            if (context.get(node_id) or {}).get("reused_from"):
                logger.info(f"⏭️  Node {node_id}: reusing output of {context[node_id]['reused_from']}")
                continue

            # Cooperative cancellation, checked at node boundaries only
            if self.store.is_cancel_requested(execution_id):
                logger.info(f"🛑 Execution {execution_id} cancelled before node {node_id}")
                return self.store.mark_cancelled(execution_id)

            error = await self._run_node(execution_id, node, edges, context, external_input, execution_config)
            if error is not None:
                logger.error(f"❌ Execution {execution_id} halted at node {node_id}: {error['message']}")
                return self.store.mark_failed(
                    execution_id, error, error_type="node", failed_node_id=node_id
                )

            if delay and position < len(order) - 1:
                await asyncio.sleep(delay)

        result = self._collect_result(nodes, context)
        execution = self.store.mark_completed(execution_id, make_json_serializable(result))
        logger.info(f"✅ Execution {execution_id} completed ({len(order)} nodes)")
        return execution

    async def _run_node(
        self,
        execution_id: str,
        node: BaseNode,
        edges: Sequence[Edge],
        context: Dict[str, Any],
        external_input: Dict[str, Any],
        execution_config: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Run one node and persist its entry.

        Returns:
            None when the walk may continue, else the error that halts it
        """
        started_at = _now()
        self._record(execution_id, context, node.id, {"status": "running", "started_at": started_at})
        logger.info(f"Executing node: {node.id} ({node.type})")

        try:
            resolved = resolve_node_input(node, edges, context, external_input)
            result = await self.executor.execute_node(
                node,
                resolved,
                execution_config,
                progress_callback=self._progress_callback(execution_id, context, node.id),
                namespace=execution_id,
            )
        except NodeError as e:
            return self._record_node_error(execution_id, context, node, e, started_at)

        entry = {
            "status": COMPLETED,
            "outputs": result.outputs,
            "output": result.outputs.get(node.primary_output),
            "started_at": started_at,
            "completed_at": _now(),
            "duration_ms": result.metadata.get("duration_ms"),
            "metadata": result.metadata,
        }
        progress = context[node.id].get("progress")
        if progress:
            entry["progress"] = progress
        self._record(execution_id, context, node.id, entry)

        logger.info(f"Node {node.id} completed in {entry['duration_ms']}ms")
        return None

    def _record_node_error(
        self,
        execution_id: str,
        context: Dict[str, Any],
        node: BaseNode,
        error: NodeError,
        started_at: str
    ) -> Optional[Dict[str, Any]]:
        details = error.to_dict()
        entry: Dict[str, Any] = {
            "status": FAILED,
            "error": details,
            "started_at": started_at,
            "completed_at": _now(),
        }

        if node.error_handling.on_error == "skip":
            default = node.error_handling.default_output
            entry.update({
                "status": "skipped",
                "outputs": {node.primary_output: default},
                "output": default,
            })
            self._record(execution_id, context, node.id, entry)
            logger.warning(f"⚠️  Node {node.id} failed and was skipped: {error.message}")
            return None

        self._record(execution_id, context, node.id, entry)
        logger.error(f"Node {node.id} execution failed: {error.message}")
        return details

    def _record(self, execution_id: str, context: Dict[str, Any], node_id: str, entry: Dict[str, Any]) -> None:
        entry = make_json_serializable(entry)
        context[node_id] = entry
        self.store.record_node(execution_id, node_id, entry)

    def _progress_callback(self, execution_id: str, context: Dict[str, Any], node_id: str):
        def on_progress(event: Dict[str, Any]) -> None:
            entry = dict(context.get(node_id) or {})
            entry["progress"] = make_json_serializable(event)
            try:
                self._record(execution_id, context, node_id, entry)
            except PersistenceError as e:
                # Progress is advisory; the node entry written afterwards is not
                logger.warning(f"Could not persist progress for node {node_id}: {e}")

            if self.progress_listener:
                self.progress_listener(execution_id, node_id, event)
        return on_progress

    @staticmethod
    def _collect_result(nodes: Sequence[BaseNode], context: Dict[str, Any]) -> Dict[str, Any]:
        """Outputs of final nodes keyed by node id; all completed nodes when none is final"""
        final_ids = [node.id for node in nodes if node.final]
        if not final_ids:
            final_ids = [node.id for node in nodes if (context.get(node.id) or {}).get("status") == COMPLETED]

        result = {}
        for node_id in final_ids:
            entry = context.get(node_id) or {}
            if entry.get("status") in READABLE_STATUSES:
                result[node_id] = entry.get("outputs")
        return result

    def _mark_infrastructure_failure(self, execution_id: str, error: PersistenceError) -> None:
        """Best effort: the database may still be unreachable"""
        try:
            self.store.session.rollback()
            execution = self.store.get(execution_id)
            if execution is None or execution.is_terminal:
                return
            self.store.mark_failed(
                execution_id,
                {"message": error.message, "code": "PERSISTENCE", "operation": error.operation},
                error_type="infrastructure"
            )
        except (PersistenceError, ExecutionStateError) as e:
            logger.error(f"Could not mark execution {execution_id} as failed: {e}")

    # ------------------------------------------------------------------
    # Execution management
    # ------------------------------------------------------------------

    def get_execution_status(self, execution_id: str) -> Optional[RecipeExecution]:
        return self.store.get(execution_id)

    def get_execution_summary(self, execution_id: str) -> Dict[str, Any]:
        """
        Raises:
            ExecutionNotFoundError: Unknown execution id
        """
        return self.store.summarize(self.store.require(execution_id))

    def get_execution_history(self, recipe_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        return [self.store.summarize(e) for e in self.store.list_for_recipe(recipe_id, limit=limit)]

    def get_project_executions(self, project_id: str, limit: int = 50) -> List[RecipeExecution]:
        return self.store.list_for_project(project_id, limit=limit)

    @staticmethod
    def _check_owner(execution: RecipeExecution, user_id: Optional[str]) -> None:
        if execution.user_id and user_id and execution.user_id != user_id:
            raise PermissionDeniedError(f"User {user_id} does not own execution {execution.id}")

    def cancel_execution(self, execution_id: str, user_id: Optional[str] = None) -> RecipeExecution:
        """
        Request cooperative cancellation.

        A running walk stops at the next node boundary; in-flight capability
        calls finish. A pending execution is cancelled immediately.

        Raises:
            ExecutionNotFoundError: Unknown execution id
            PermissionDeniedError: Caller does not own the execution
            ExecutionStateError: Execution already terminal
        """
        execution = self.store.require(execution_id)
        self._check_owner(execution, user_id)

        execution = self.store.request_cancel(execution_id)
        if execution.status == PENDING:
            execution = self.store.mark_cancelled(execution_id)

        logger.info(f"🛑 Cancellation requested for execution {execution_id} (status: {execution.status})")
        return execution

    def retry_execution(self, execution_id: str, user_id: Optional[str] = None, mode: str = "full") -> str:
        """
        Create a new execution from a failed one.

        Args:
            execution_id: The failed execution
            user_id: Caller (must own the execution)
            mode: "full" re-runs every node; "resume" reuses the completed
                entries of nodes that ran before the failed node

        Returns:
            The new execution id (pending)

        Raises:
            ExecutionNotFoundError: Unknown execution id
            PermissionDeniedError: Caller does not own the execution
            ExecutionStateError: Execution is not failed, or unknown mode
        """
        if mode not in RETRY_MODES:
            raise ExecutionStateError(f"Unknown retry mode '{mode}' (expected one of {', '.join(RETRY_MODES)})")

        original = self.store.require(execution_id)
        self._check_owner(original, user_id)
        if original.status != FAILED:
            raise ExecutionStateError(
                f"Only failed executions can be retried (execution {execution_id} is {original.status})",
                status=original.status
            )

        recipe: Recipe = self.recipes.require_recipe(original.recipe_id)
        load_recipe_graph(recipe)

        reused: Dict[str, Any] = {}
        resumed_from = None
        if mode == "resume":
            reused = self._reusable_entries(original, recipe)
            resumed_from = original.failed_node_id if reused else None

        retry = self.store.create(
            original.recipe_id,
            dict(original.input or {}),
            recipe_version=recipe.version,
            user_id=original.user_id,
            project_id=original.project_id,
            stage_id=original.stage_id,
            retry_of_execution_id=original.id,
            resumed_from_node_id=resumed_from,
            execution_context=reused,
        )
        logger.info(
            f"🔄 Retry of {execution_id} created as {retry.id} "
            f"(mode={mode}, reused nodes={list(reused.keys())})"
        )
        return retry.id

    @staticmethod
    def _reusable_entries(original: RecipeExecution, recipe: Recipe) -> Dict[str, Any]:
        # Reuse is only sound against the same recipe version
        if original.recipe_version is not None and original.recipe_version != recipe.version:
            logger.warning(
                f"Recipe {recipe.id} changed since execution {original.id} "
                f"(v{original.recipe_version} → v{recipe.version}), resuming as a full re-run"
            )
            return {}

        _, edges = load_recipe_graph(recipe)
        context = original.execution_context or {}
        order = original.execution_order or []
        reused = {}
        for node_id in order:
            if node_id == original.failed_node_id:
                break
            entry = context.get(node_id) or {}
            if entry.get("status") != COMPLETED:
                continue
            # An entry built on an upstream node that will re-run would be stale
            stale = [a for a in get_ancestors(node_id, edges) if a not in reused]
            if stale:
                logger.info(f"Not reusing node {node_id}: upstream {sorted(stale)} will re-run")
                continue
            reused[node_id] = {**entry, "reused_from": original.id}
        return reused
