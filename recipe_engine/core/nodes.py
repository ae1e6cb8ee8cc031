"""
Node System for the Recipe Engine

This module defines the node kinds that compose a recipe:
- TextGenerationNode: Prompt -> text (or parsed JSON)
- ImageGenerationNode: Prompt -> image reference, optionally one per list item
- VideoGenerationNode: Prompt -> video URL
- DataTransformNode: Pure transformation of upstream values
- CombineNode: Aggregates several inputs into one value

plus the Edge model wiring one node's named output to another's input slot.

Nodes are immutable (frozen) Pydantic models. `Node` is a discriminated union
on the `type` field, so parsing a dict yields the right class directly.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

# Pseudo-node id for edges that read from the execution's external input
EXTERNAL_INPUT = "external_input"

DEFAULT_OUTPUT = "output"


class AIModelConfig(BaseModel):
    """Provider + model selection for generation nodes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, protected_namespaces=())

    provider: str = Field(..., min_length=1)
    model_name: str = Field(..., min_length=1, alias="modelName")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, ge=1, alias="maxTokens")
    options: Dict[str, Any] = Field(default_factory=dict)


class InputSlot(BaseModel):
    """
    Declared input of a node.

    A slot with an explicit `default` is satisfied even without an incoming edge.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    required: bool = True
    default: Any = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class ErrorHandling(BaseModel):
    """What the orchestrator does when this node fails."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    on_error: Literal["fail", "skip", "retry"] = Field("fail", alias="onError")
    max_retries: int = Field(2, ge=0, le=10, alias="maxRetries")
    default_output: Any = Field(None, alias="defaultOutput")


class BaseNode(BaseModel):
    """
    Fields shared by every node kind.

    - id: Unique within the recipe
    - inputs: Declared input slots (edges may also target undeclared slots)
    - outputs: Declared output names; the first is the primary output
    - final: Contributes its outputs to the execution result
    """

    # extra="allow": stored recipes carry UI fields (order, metadata)
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1, description="Unique node identifier")
    name: Optional[str] = Field(None, description="Human-readable label")
    description: Optional[str] = None
    inputs: List[InputSlot] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=lambda: [DEFAULT_OUTPUT], min_length=1)
    dependencies: Optional[List[str]] = None
    final: bool = False
    timeout_seconds: Optional[float] = Field(None, gt=0, le=1800, alias="timeoutSeconds")
    error_handling: ErrorHandling = Field(default_factory=ErrorHandling, alias="errorHandling")
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ensure ID is not blank and not the external input pseudo-node"""
        if not v.strip():
            raise ValueError("Node ID cannot be empty")
        if v == EXTERNAL_INPUT:
            raise ValueError(f"'{EXTERNAL_INPUT}' is a reserved node ID")
        return v

    @field_validator("inputs", mode="before")
    @classmethod
    def coerce_input_names(cls, v: Any) -> Any:
        """Allow inputs declared as plain slot names"""
        if isinstance(v, list):
            return [{"name": item} if isinstance(item, str) else item for item in v]
        return v

    @property
    def label(self) -> str:
        return self.name or self.id

    @property
    def primary_output(self) -> str:
        return self.outputs[0]

    def get_input_slot(self, name: str) -> Optional[InputSlot]:
        for slot in self.inputs:
            if slot.name == name:
                return slot
        return None


class TextGenerationNode(BaseNode):
    """
    Calls a text-completion capability with the rendered prompt.

    With response_format="json" the response is parsed; extra declared outputs
    are then read as keys of the parsed object.
    """

    type: Literal["text_generation"] = "text_generation"
    prompt: str = Field(..., min_length=1)
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    ai_model: Optional[AIModelConfig] = Field(None, alias="aiModel")
    response_format: Literal["text", "json"] = Field("text", alias="responseFormat")


class ImageGenerationNode(BaseNode):
    """
    Calls an image capability. With `for_each` set to an input slot holding a
    list, one image is generated per item and the prompt is rendered against
    each item's fields.
    """

    type: Literal["image_generation"] = "image_generation"
    prompt: str = Field(..., min_length=1)
    ai_model: Optional[AIModelConfig] = Field(None, alias="aiModel")
    for_each: Optional[str] = Field(None, alias="forEach")
    item_delay_seconds: float = Field(0.0, ge=0, le=60, alias="itemDelaySeconds")


class VideoGenerationNode(BaseNode):
    type: Literal["video_generation"] = "video_generation"
    prompt: str = Field(..., min_length=1)
    ai_model: Optional[AIModelConfig] = Field(None, alias="aiModel")
    duration_seconds: Optional[int] = Field(None, ge=1, le=60, alias="durationSeconds")
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")


class DataTransformNode(BaseNode):
    """Pure transformation, no external call. See core.transforms."""

    type: Literal["data_transform"] = "data_transform"
    operation: Literal[
        "identity", "pick", "flatten", "json_parse", "merge_by_index", "template"
    ] = "identity"


class CombineNode(BaseNode):
    """Aggregates all input slots into a single value."""

    type: Literal["combine"] = "combine"
    mode: Literal["object", "list", "concat"] = "object"
    separator: str = "\n\n"


Node = Annotated[
    Union[
        TextGenerationNode,
        ImageGenerationNode,
        VideoGenerationNode,
        DataTransformNode,
        CombineNode,
    ],
    Field(discriminator="type"),
]

GenerationNode = (TextGenerationNode, ImageGenerationNode, VideoGenerationNode)

_node_adapter = TypeAdapter(Node)


class Edge(BaseModel):
    """
    Directed data dependency: `source.source_output` feeds `target.target_input`.

    Serialized with the camelCase keys used by stored recipes:
        {"from": "a", "to": "b", "fromOutput": "output", "toInput": "input"}
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str = Field(..., min_length=1, alias="from")
    target: str = Field(..., min_length=1, alias="to")
    source_output: str = Field(DEFAULT_OUTPUT, min_length=1, alias="fromOutput")
    target_input: str = Field("input", min_length=1, alias="toInput")

    @property
    def from_external(self) -> bool:
        return self.source == EXTERNAL_INPUT

    def to_dict(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


def create_node_from_dict(node_data: Dict[str, Any]) -> BaseNode:
    """
    Factory function: Creates the appropriate node type from a dictionary.

    Args:
        node_data: Dictionary with node fields (must include 'type')

    Returns:
        Node instance of the matching kind

    Raises:
        ValueError: If node type is unknown or validation fails

    Example:
        >>> node = create_node_from_dict({
        ...     "id": "gen_text",
        ...     "type": "text_generation",
        ...     "prompt": "Describe {topic}",
        ... })
        >>> isinstance(node, TextGenerationNode)
        True
    """
    if not isinstance(node_data, dict):
        raise ValueError(f"Node definition must be an object, got {type(node_data).__name__}")

    try:
        return _node_adapter.validate_python(node_data)
    except Exception as e:
        node_id = node_data.get("id", "<unknown>")
        raise ValueError(f"Invalid node '{node_id}': {e}")


def create_edge_from_dict(edge_data: Dict[str, Any]) -> Edge:
    if not isinstance(edge_data, dict):
        raise ValueError(f"Edge definition must be an object, got {type(edge_data).__name__}")

    # populate_by_name also accepts the snake_case field names
    try:
        return Edge.model_validate(edge_data)
    except Exception as e:
        raise ValueError(f"Invalid edge {edge_data}: {e}")
