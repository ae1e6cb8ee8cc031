"""
Execution Context Resolver

Assembles the input of a node before it runs:
- follows each incoming edge back to the external input or to an upstream
  node's completed output
- applies slot defaults / raises MissingInputError
- substitutes {placeholders} in the node's prompt

The execution context is the per-node record persisted on the execution:
    {node_id: {"status": "completed", "outputs": {...}, ...}}
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .exceptions import MissingInputError, TemplateResolutionError
from .nodes import BaseNode, Edge, ImageGenerationNode, TextGenerationNode

# {name} or {dotted.path}; JSON braces like {"a": 1} never match
PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)\}")

# Statuses whose outputs downstream nodes may read
READABLE_STATUSES = ("completed", "skipped")


class _Missing:
    def __repr__(self) -> str:
        return "<MISSING>"


MISSING = _Missing()


def lookup_path(data: Any, path: str) -> Any:
    """
    Walk a dotted path through dicts (by key) and lists (by index).

    Returns MISSING instead of raising when any segment is absent.

    Example:
        >>> lookup_path({"a": {"b": [10, 20]}}, "a.b.1")
        20
    """
    if not path:
        return data

    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            position = int(segment)
            if position >= len(current):
                return MISSING
            current = current[position]
        else:
            return MISSING
    return current


def read_node_output(execution_context: Mapping[str, Any], node_id: str, output_name: str) -> Any:
    """Completed (or skipped) output of an upstream node, or MISSING"""
    entry = execution_context.get(node_id)
    if not entry or entry.get("status") not in READABLE_STATUSES:
        return MISSING
    outputs = entry.get("outputs") or {}
    if output_name not in outputs:
        return MISSING
    return outputs[output_name]


class TemplateScope:
    """
    Name lookup for prompt placeholders.

    Precedence: current item (for per-item rendering) > resolved inputs >
    upstream node outputs ({node_id.output_name}) > external input fields.
    """

    def __init__(
        self,
        values: Mapping[str, Any],
        execution_context: Mapping[str, Any],
        external_input: Mapping[str, Any],
        item: Any = MISSING
    ):
        self.values = values
        self.execution_context = execution_context
        self.external_input = external_input
        self.item = item

    def with_item(self, item: Any) -> "TemplateScope":
        return TemplateScope(self.values, self.execution_context, self.external_input, item)

    def lookup(self, name: str) -> Any:
        head, _, rest = name.partition(".")

        if self.item is not MISSING:
            if head == "item":
                return lookup_path(self.item, rest)
            if isinstance(self.item, Mapping):
                value = lookup_path(self.item, name)
                if value is not MISSING:
                    return value

        if head in self.values:
            return lookup_path(self.values[head], rest)

        if rest and head in self.execution_context:
            output_name, _, deeper = rest.partition(".")
            value = read_node_output(self.execution_context, head, output_name)
            if value is not MISSING:
                return lookup_path(value, deeper)

        return lookup_path(self.external_input, name)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, indent=2, default=str)
    return str(value)


def render_template(template: str, scope: TemplateScope, node_id: str) -> str:
    """
    Substitute every {placeholder} in template.

    Raises:
        TemplateResolutionError: Listing each placeholder that could not be resolved
    """
    unresolved: List[str] = []

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        value = scope.lookup(name)
        if value is MISSING:
            if name not in unresolved:
                unresolved.append(name)
            return match.group(0)
        return _stringify(value)

    rendered = PLACEHOLDER_PATTERN.sub(replace, template)
    if unresolved:
        raise TemplateResolutionError(node_id, unresolved)
    return rendered


@dataclass
class ResolvedInput:
    """Everything a node needs to run, produced by resolve_node_input()"""

    values: Dict[str, Any]
    scope: TemplateScope
    prompt: Optional[str] = None
    system_prompt: Optional[str] = None
    sources: Dict[str, List[str]] = field(default_factory=dict)


def _slot_names(node: BaseNode, incoming: Sequence[Edge]) -> List[str]:
    names = [slot.name for slot in node.inputs]
    for edge in incoming:
        if edge.target_input not in names:
            names.append(edge.target_input)
    return names


def _read_edge(edge: Edge, execution_context: Mapping[str, Any], external_input: Mapping[str, Any]) -> Any:
    if edge.from_external:
        return lookup_path(external_input, edge.source_output)
    return read_node_output(execution_context, edge.source, edge.source_output)


def resolve_node_input(
    node: BaseNode,
    edges: Sequence[Edge],
    execution_context: Mapping[str, Any],
    external_input: Optional[Mapping[str, Any]]
) -> ResolvedInput:
    """
    Resolve the input slots and prompt of a node.

    Args:
        node: Node about to run
        edges: All edges of the recipe
        execution_context: Per-node results recorded so far
        external_input: The execution's input object

    Returns:
        ResolvedInput with values keyed by slot name

    Raises:
        MissingInputError: Required slot has no value and no default
        TemplateResolutionError: Prompt placeholders left unresolved
    """
    external_input = external_input or {}
    incoming = [edge for edge in edges if edge.target == node.id]

    values: Dict[str, Any] = {}
    sources: Dict[str, List[str]] = {}

    for slot_name in _slot_names(node, incoming):
        slot = node.get_input_slot(slot_name)
        slot_edges = [edge for edge in incoming if edge.target_input == slot_name]

        collected = []
        missing_from = []
        for edge in slot_edges:
            value = _read_edge(edge, execution_context, external_input)
            if value is MISSING:
                missing_from.append(f"{edge.source}.{edge.source_output}")
            else:
                collected.append(value)

        if slot_edges and not missing_from:
            # Fan-in to a single slot keeps edge declaration order
            values[slot_name] = collected[0] if len(collected) == 1 else collected
            sources[slot_name] = [f"{e.source}.{e.source_output}" for e in slot_edges]
        elif slot is not None and slot.has_default:
            values[slot_name] = slot.default
        elif slot is not None and not slot.required:
            values[slot_name] = None
        else:
            detail = f"no value from {', '.join(missing_from)}" if missing_from else "no incoming edge"
            raise MissingInputError(node.id, slot_name, detail)

    scope = TemplateScope(values, execution_context, external_input)
    resolved = ResolvedInput(values=values, scope=scope, sources=sources)

    # Per-item prompts are rendered by the executor, once per item
    if isinstance(node, ImageGenerationNode) and node.for_each:
        return resolved

    prompt = getattr(node, "prompt", None)
    if prompt:
        resolved.prompt = render_template(prompt, scope, node.id)
    if isinstance(node, TextGenerationNode) and node.system_prompt:
        resolved.system_prompt = render_template(node.system_prompt, scope, node.id)

    return resolved
