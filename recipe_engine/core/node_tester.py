"""
Single-node test runs.

Runs one node of a stored recipe in isolation: only the node's ancestors
(in topological order) may run before it, siblings and descendants never do,
and nothing is written to the execution store.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from .context import ResolvedInput, resolve_node_input
from .dag import get_ancestors, topological_order
from .exceptions import NodeError, NodeNotFoundError
from .executors import NodeExecutor
from .nodes import BaseNode, Edge
from .orchestrator import make_json_serializable
from .recipes import RecipeManager, load_recipe_graph, merge_execution_config

logger = logging.getLogger(__name__)


def mock_entry(node: BaseNode, value: Any) -> Dict[str, Any]:
    """
    Turn a mocked value into a context entry for node.

    A dict whose keys are all declared outputs is taken as the outputs
    mapping; anything else becomes the primary output.
    """
    if isinstance(value, dict) and value and set(value).issubset(node.outputs):
        outputs = dict(value)
    else:
        outputs = {node.primary_output: value}
    return {
        "status": "completed",
        "outputs": outputs,
        "output": outputs.get(node.primary_output),
        "mocked": True,
    }


class NodeTester:
    """
    Args:
        recipes: Recipe manager used to load and validate the recipe
        executor: Node executor shared with the orchestrator
    """

    def __init__(self, recipes: RecipeManager, executor: NodeExecutor):
        self.recipes = recipes
        self.executor = executor

    async def test_single_node(
        self,
        recipe_id: str,
        node_id: str,
        external_input: Optional[Dict[str, Any]],
        execute_dependencies: bool = True,
        mock_outputs: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Run one node (and, optionally, its ancestors).

        Args:
            recipe_id: Recipe containing the node
            node_id: Node to test
            external_input: External input object for the run
            execute_dependencies: Run unmocked ancestors for real
            mock_outputs: {node_id: value} used instead of running ancestors

        Returns:
            {success, nodeId, nodeName, nodeType, input, prompt, nodeOutput,
             outputs, error, durationMs, dependencyResults}

        Raises:
            RecipeNotFoundError: Unknown recipe
            NodeNotFoundError: Node not in the recipe
            InvalidGraphError: Stored recipe is not a valid DAG
        """
        recipe = self.recipes.require_recipe(recipe_id)
        nodes, edges = load_recipe_graph(recipe)
        nodes_by_id = {node.id: node for node in nodes}
        if node_id not in nodes_by_id:
            raise NodeNotFoundError(recipe_id, node_id)

        target = nodes_by_id[node_id]
        execution_config = merge_execution_config(recipe.execution_config)
        external_input = external_input or {}
        mock_outputs = mock_outputs or {}

        ancestors = get_ancestors(node_id, edges)
        unused = set(mock_outputs) - ancestors
        if unused:
            logger.warning(f"Ignoring mocks for nodes that are not ancestors of {node_id}: {sorted(unused)}")

        logger.info(
            f"🧪 Testing node {node_id} of recipe {recipe_id} "
            f"({len(ancestors)} ancestors, execute_dependencies={execute_dependencies})"
        )

        context: Dict[str, Any] = {}
        dependency_results: List[Dict[str, Any]] = []

        for dep_id in topological_order(nodes, edges):
            if dep_id not in ancestors:
                continue
            dep = nodes_by_id[dep_id]

            if dep_id in mock_outputs:
                context[dep_id] = mock_entry(dep, mock_outputs[dep_id])
                dependency_results.append({"nodeId": dep_id, "status": "mocked"})
                continue
            if not execute_dependencies:
                dependency_results.append({"nodeId": dep_id, "status": "not_executed"})
                continue

            entry = await self._run(dep, edges, context, external_input, execution_config)
            context[dep_id] = entry
            dependency_results.append({
                "nodeId": dep_id,
                "status": entry["status"],
                "durationMs": entry.get("duration_ms"),
                "error": entry.get("error"),
                "input": entry.get("input"),
            })
            if entry["status"] == "failed":
                logger.warning(f"Dependency {dep_id} failed, not running {node_id}")
                return self._response(target, {
                    "status": "failed",
                    "error": {
                        "message": f"Dependency '{dep_id}' failed: {entry['error']['message']}",
                        "code": "DEPENDENCY_FAILED",
                        "node_id": dep_id,
                    },
                }, dependency_results)

        entry = await self._run(target, edges, context, external_input, execution_config)
        return self._response(target, entry, dependency_results)

    async def _run(
        self,
        node: BaseNode,
        edges: List[Edge],
        context: Dict[str, Any],
        external_input: Dict[str, Any],
        execution_config: Dict[str, Any]
    ) -> Dict[str, Any]:
        start_time = time.time()
        resolved = None
        try:
            resolved = resolve_node_input(node, edges, context, external_input)
            result = await self.executor.execute_node(node, resolved, execution_config, namespace="test")
        except NodeError as e:
            entry: Dict[str, Any] = {
                "status": "failed",
                "error": e.to_dict(),
                "duration_ms": int((time.time() - start_time) * 1000),
                **self._input_fields(resolved),
            }
            if node.error_handling.on_error == "skip":
                default = node.error_handling.default_output
                entry.update({"status": "skipped", "outputs": {node.primary_output: default}, "output": default})
            return entry

        return {
            "status": "completed",
            "outputs": result.outputs,
            "output": result.outputs.get(node.primary_output),
            "duration_ms": result.metadata.get("duration_ms"),
            "metadata": result.metadata,
            **self._input_fields(resolved),
        }

    @staticmethod
    def _input_fields(resolved: Optional[ResolvedInput]) -> Dict[str, Any]:
        """The node's resolved input slots and rendered prompt (None when resolution failed)"""
        if resolved is None:
            return {"input": None, "prompt": None}
        return {"input": resolved.values, "prompt": resolved.prompt}

    @staticmethod
    def _response(node: BaseNode, entry: Dict[str, Any], dependency_results: List[Dict[str, Any]]) -> Dict[str, Any]:
        success = entry["status"] == "completed"
        return make_json_serializable({
            "success": success,
            "nodeId": node.id,
            "nodeName": node.label,
            "nodeType": node.type,
            "input": entry.get("input"),
            "prompt": entry.get("prompt"),
            "nodeOutput": entry.get("output"),
            "outputs": entry.get("outputs"),
            "error": entry.get("error"),
            "durationMs": entry.get("duration_ms"),
            "dependencyResults": dependency_results,
        })
