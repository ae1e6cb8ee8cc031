"""
Node Executor

Runs ONE node against its resolved input and returns its named outputs.

Dispatch is by node class (exhaustive isinstance chain):
- TextGenerationNode → provider.generate_text (+ JSON parsing)
- ImageGenerationNode → provider.generate_image (bytes stored via AssetStore)
- VideoGenerationNode → provider.generate_video
- DataTransformNode → core.transforms (pure)
- CombineNode → core.transforms.combine (pure)

The executor never touches the execution store. Recording results is the
orchestrator's job, which is what lets test-node runs reuse this class.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .assets import AssetStore, detect_image_type
from .context import ResolvedInput, render_template
from .exceptions import NodeError, NodeExecutionError
from .nodes import (
    AIModelConfig,
    BaseNode,
    CombineNode,
    DataTransformNode,
    ImageGenerationNode,
    TextGenerationNode,
    VideoGenerationNode,
)
from .providers.base import GenerationProvider
from .providers.registry import ProviderRegistry
from .transforms import TRANSFORMS, combine, parse_json_text

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


@dataclass
class NodeResult:
    """Outputs keyed by declared output name, plus execution metadata"""

    outputs: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)


def _is_retryable(exc: BaseException) -> bool:
    if not isinstance(exc, NodeExecutionError):
        return False
    return getattr(exc.cause, "retry_allowed", True)


class NodeExecutor:
    """
    Executes nodes using the configured providers.

    Args:
        providers: Registry resolving ai_model.provider to a provider
        asset_store: Where generated image bytes are written (required for
            providers that return bytes)
    """

    def __init__(self, providers: ProviderRegistry, asset_store: Optional[AssetStore] = None):
        self.providers = providers
        self.asset_store = asset_store

    async def execute_node(
        self,
        node: BaseNode,
        resolved: ResolvedInput,
        execution_config: Optional[Dict[str, Any]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        namespace: Optional[str] = None
    ) -> NodeResult:
        """
        Execute a single node.

        Args:
            node: Node to execute
            resolved: Output of resolve_node_input()
            execution_config: Recipe execution config (timeouts, default models, retry policy)
            progress_callback: Called after each item of a per-item node
            namespace: Prefix for stored assets (usually the execution id)

        Returns:
            NodeResult

        Raises:
            NodeExecutionError: Capability failed, timed out or returned malformed data
            TemplateResolutionError: Per-item prompt could not be rendered
        """
        execution_config = execution_config or {}
        namespace = namespace or "adhoc"
        start_time = time.time()

        try:
            if isinstance(node, TextGenerationNode):
                outputs, metadata = await self._run_text(node, resolved, execution_config)
            elif isinstance(node, ImageGenerationNode):
                outputs, metadata = await self._run_image(
                    node, resolved, execution_config, progress_callback, namespace
                )
            elif isinstance(node, VideoGenerationNode):
                outputs, metadata = await self._run_video(node, resolved, execution_config)
            elif isinstance(node, DataTransformNode):
                outputs, metadata = self._run_transform(node, resolved)
            elif isinstance(node, CombineNode):
                outputs, metadata = self._run_combine(node, resolved)
            else:
                raise NodeExecutionError(node.id, f"Unsupported node type: {type(node).__name__}")
        except NodeError:
            raise
        except Exception as e:
            logger.error(f"Node {node.id} raised unexpected error: {e}")
            raise NodeExecutionError(node.id, e)

        metadata["duration_ms"] = int((time.time() - start_time) * 1000)
        metadata["node_type"] = node.type
        return NodeResult(outputs=outputs, metadata=metadata)

    # ------------------------------------------------------------------
    # Generation nodes
    # ------------------------------------------------------------------

    def _model_settings(
        self,
        node: BaseNode,
        execution_config: Dict[str, Any]
    ) -> Tuple[GenerationProvider, Dict[str, Any]]:
        ai_model = node.ai_model
        if ai_model is None:
            default = (execution_config.get("default_models") or {}).get(node.type)
            if not default:
                raise NodeExecutionError(
                    node.id,
                    f"no aiModel configured and no default model for {node.type}"
                )
            ai_model = AIModelConfig.model_validate(default)

        try:
            provider = self.providers.get(ai_model.provider)
        except Exception as e:
            raise NodeExecutionError(node.id, e)

        config: Dict[str, Any] = {**node.parameters, **ai_model.options}
        config["model"] = ai_model.model_name
        if ai_model.temperature is not None:
            config["temperature"] = ai_model.temperature
        if ai_model.max_tokens is not None:
            config["max_tokens"] = ai_model.max_tokens
        return provider, config

    async def _invoke(
        self,
        node: BaseNode,
        call: Callable[[], Awaitable[Any]],
        execution_config: Dict[str, Any],
        counter: Dict[str, int]
    ) -> Any:
        """Run one capability call with timeout and the node's retry policy"""
        timeout = node.timeout_seconds or execution_config.get("timeout_seconds")

        async def once() -> Any:
            counter["attempts"] += 1
            try:
                if timeout:
                    return await asyncio.wait_for(call(), timeout)
                return await call()
            except asyncio.TimeoutError:
                raise NodeExecutionError(node.id, f"capability call timed out after {timeout}s")
            except NodeError:
                raise
            except Exception as e:
                raise NodeExecutionError(node.id, e)

        if node.error_handling.on_error != "retry":
            return await once()

        policy = execution_config.get("retry_policy") or {}
        retrying = AsyncRetrying(
            stop=stop_after_attempt(node.error_handling.max_retries + 1),
            wait=wait_exponential(multiplier=policy.get("backoff_seconds", 1.0), max=30),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"🔄 Retrying node {node.id} (attempt {attempt.retry_state.attempt_number})")
                result = await once()
        return result

    async def _run_text(
        self,
        node: TextGenerationNode,
        resolved: ResolvedInput,
        execution_config: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        provider, config = self._model_settings(node, execution_config)
        config["response_format"] = node.response_format
        if resolved.system_prompt:
            config["system_prompt"] = resolved.system_prompt

        counter = {"attempts": 0}
        text = await self._invoke(
            node, lambda: provider.generate_text(resolved.prompt, config), execution_config, counter
        )

        value: Any = text
        if node.response_format == "json":
            try:
                value = parse_json_text(text)
            except ValueError as e:
                raise NodeExecutionError(node.id, f"malformed JSON response: {e}")

        metadata = {"provider": provider.name, "model": config["model"], "attempts": counter["attempts"]}
        return self._map_outputs(node, value), metadata

    async def _store_image(self, node: BaseNode, image: Any, namespace: str, name: str) -> Dict[str, Any]:
        if isinstance(image, str):
            return {"url": image}
        if not isinstance(image, (bytes, bytearray)):
            raise NodeExecutionError(node.id, f"image capability returned {type(image).__name__}")
        if self.asset_store is None:
            raise NodeExecutionError(node.id, "provider returned image bytes but no asset store is configured")

        content_type = detect_image_type(bytes(image))
        url = self.asset_store.save(bytes(image), namespace=namespace, name=name, content_type=content_type)
        return {"url": url, "content_type": content_type}

    async def _run_image(
        self,
        node: ImageGenerationNode,
        resolved: ResolvedInput,
        execution_config: Dict[str, Any],
        progress_callback: Optional[ProgressCallback],
        namespace: str
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        provider, config = self._model_settings(node, execution_config)
        counter = {"attempts": 0}
        metadata: Dict[str, Any] = {"provider": provider.name, "model": config["model"]}

        if not node.for_each:
            image = await self._invoke(
                node, lambda: provider.generate_image(resolved.prompt, config), execution_config, counter
            )
            reference = await self._store_image(node, image, namespace, node.id)
            metadata["attempts"] = counter["attempts"]
            return self._map_outputs(node, reference), metadata

        if node.for_each not in resolved.values:
            raise NodeExecutionError(node.id, f"forEach slot '{node.for_each}' is not an input of this node")
        items = resolved.values[node.for_each]
        if not isinstance(items, list):
            raise NodeExecutionError(
                node.id, f"forEach slot '{node.for_each}' must hold a list, got {type(items).__name__}"
            )

        logger.info(f"🖼️  Node {node.id}: generating {len(items)} images")
        references = []
        for index, item in enumerate(items):
            prompt = render_template(node.prompt, resolved.scope.with_item(item), node.id)
            image = await self._invoke(
                node, lambda: provider.generate_image(prompt, config), execution_config, counter
            )
            reference = await self._store_image(node, image, namespace, f"{node.id}_{index}")
            references.append({"index": index, **reference})

            if progress_callback:
                progress_callback({
                    "completed": index + 1,
                    "total": len(items),
                    "index": index,
                    "item": item,
                    "url": reference["url"],
                })

            if node.item_delay_seconds and index < len(items) - 1:
                await asyncio.sleep(node.item_delay_seconds)

        metadata["attempts"] = counter["attempts"]
        metadata["items"] = len(items)
        return self._map_outputs(node, references), metadata

    async def _run_video(
        self,
        node: VideoGenerationNode,
        resolved: ResolvedInput,
        execution_config: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        provider, config = self._model_settings(node, execution_config)
        if node.aspect_ratio:
            config["aspect_ratio"] = node.aspect_ratio
        if node.duration_seconds:
            config["duration_seconds"] = node.duration_seconds

        counter = {"attempts": 0}
        url = await self._invoke(
            node, lambda: provider.generate_video(resolved.prompt, config), execution_config, counter
        )
        metadata = {"provider": provider.name, "model": config["model"], "attempts": counter["attempts"]}
        return self._map_outputs(node, {"url": url}), metadata

    # ------------------------------------------------------------------
    # Pure nodes
    # ------------------------------------------------------------------

    def _run_transform(
        self,
        node: DataTransformNode,
        resolved: ResolvedInput
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        if node.operation == "template":
            template = node.parameters.get("template")
            if not template:
                raise NodeExecutionError(node.id, "template operation requires a 'template' parameter")
            value = render_template(template, resolved.scope, node.id)
        else:
            try:
                value = TRANSFORMS[node.operation](resolved.values, node.parameters)
            except (ValueError, TypeError, KeyError) as e:
                raise NodeExecutionError(node.id, f"{node.operation} failed: {e}")

        return self._map_outputs(node, value), {"operation": node.operation}

    def _run_combine(
        self,
        node: CombineNode,
        resolved: ResolvedInput
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        try:
            value = combine(resolved.values, node.mode, node.separator)
        except ValueError as e:
            raise NodeExecutionError(node.id, e)
        return self._map_outputs(node, value), {"mode": node.mode, "inputs": len(resolved.values)}

    @staticmethod
    def _map_outputs(node: BaseNode, value: Any) -> Dict[str, Any]:
        """Primary output gets the whole value; other declared outputs read its fields"""
        outputs = {node.primary_output: value}
        for name in node.outputs[1:]:
            if not isinstance(value, dict) or name not in value:
                raise NodeExecutionError(node.id, f"result has no field '{name}' for declared output")
            outputs[name] = value[name]
        return outputs
