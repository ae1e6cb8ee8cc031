"""
Custom Exceptions for the Recipe Engine

This module defines the exception types raised by validation, execution and
persistence, and whether the operation that raised them may be retried.

Exception Hierarchy:
- RecipeEngineException (base)
  - RecipeError
    - InvalidGraphError (don't retry)
    - RecipeNotFoundError
    - RecipeExistsError
    - NodeNotFoundError
  - ExecutionError
    - ExecutionNotFoundError
    - ExecutionStateError (don't retry)
  - PermissionDeniedError
  - NodeError (recorded on the failing node, never propagated by the orchestrator)
    - MissingInputError
    - TemplateResolutionError
    - NodeExecutionError
  - ProviderError
    - CapabilityNotSupportedError
  - PersistenceError (retry)
"""

from typing import Any, Dict, List, Optional


class RecipeEngineException(Exception):
    """Base exception for all recipe engine errors"""

    def __init__(self, message: str, retry_allowed: bool = True):
        super().__init__(message)
        self.message = message
        self.retry_allowed = retry_allowed


# ============================================================================
# RECIPE ERRORS
# ============================================================================

class RecipeError(RecipeEngineException):
    """Base class for recipe definition errors"""
    pass


class InvalidGraphError(RecipeError):
    """
    Recipe structure is invalid (cycle, dangling edge, empty node set).
    Should NOT be retried - fix the recipe definition.
    """

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=False)


class RecipeNotFoundError(RecipeError):
    """Recipe id does not exist."""

    def __init__(self, recipe_id: str):
        super().__init__(f"Recipe not found: {recipe_id}", retry_allowed=False)
        self.recipe_id = recipe_id


class RecipeExistsError(RecipeError):
    """A recipe with the requested id already exists."""

    def __init__(self, recipe_id: str):
        super().__init__(f"Recipe already exists: {recipe_id}", retry_allowed=False)
        self.recipe_id = recipe_id


class NodeNotFoundError(RecipeError):
    """Node id does not exist in the recipe."""

    def __init__(self, recipe_id: str, node_id: str):
        super().__init__(
            f"Node '{node_id}' not found in recipe {recipe_id}",
            retry_allowed=False
        )
        self.recipe_id = recipe_id
        self.node_id = node_id


# ============================================================================
# EXECUTION ERRORS
# ============================================================================

class ExecutionError(RecipeEngineException):
    """Base class for execution lifecycle errors"""
    pass


class ExecutionNotFoundError(ExecutionError):
    """Execution id does not exist. Surfaced as 404."""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}", retry_allowed=False)
        self.execution_id = execution_id


class ExecutionStateError(ExecutionError):
    """
    Requested transition is not allowed from the current state
    (e.g. cancelling a completed execution, retrying a running one).
    """

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.status = status


class PermissionDeniedError(RecipeEngineException):
    """Caller does not own the recipe or execution."""

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=False)


# ============================================================================
# NODE ERRORS
# ============================================================================

class NodeError(RecipeEngineException):
    """
    Base class for failures scoped to a single node.

    The orchestrator records these on executionContext[node_id].error and
    transitions the execution to failed.
    """

    code = "NODE_ERROR"

    def __init__(self, message: str, node_id: str, retry_allowed: bool = True):
        super().__init__(message, retry_allowed=retry_allowed)
        self.node_id = node_id

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "node_id": self.node_id}


class MissingInputError(NodeError):
    """Required input slot has no satisfying edge and no default."""

    code = "MISSING_INPUT"

    def __init__(self, node_id: str, slot: str, detail: Optional[str] = None):
        message = f"Node '{node_id}' is missing required input '{slot}'"
        if detail:
            message += f": {detail}"
        super().__init__(message, node_id, retry_allowed=False)
        self.slot = slot

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["slot"] = self.slot
        return data


class TemplateResolutionError(NodeError):
    """Prompt still contains placeholders after substitution."""

    code = "TEMPLATE_RESOLUTION"

    def __init__(self, node_id: str, placeholders: List[str]):
        names = ", ".join(f"{{{p}}}" for p in placeholders)
        super().__init__(
            f"Node '{node_id}' has unresolved template placeholders: {names}",
            node_id,
            retry_allowed=False
        )
        self.placeholders = placeholders

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["placeholders"] = self.placeholders
        return data


class NodeExecutionError(NodeError):
    """
    Capability call failed (provider error, timeout, malformed response).
    Retryable: the same node may succeed on a later run.
    """

    code = "NODE_EXECUTION"

    def __init__(self, node_id: str, cause: Any):
        super().__init__(f"Node '{node_id}' failed: {cause}", node_id, retry_allowed=True)
        self.cause = cause


# ============================================================================
# PROVIDER ERRORS
# ============================================================================

class ProviderError(RecipeEngineException):
    """Generation provider returned an error or could not be reached."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message, retry_allowed=True)
        self.provider = provider


class CapabilityNotSupportedError(ProviderError):
    """Provider does not offer the requested capability (e.g. video on Anthropic)."""

    def __init__(self, provider: str, capability: str):
        super().__init__(
            f"Provider '{provider}' does not support {capability}",
            provider=provider
        )
        self.retry_allowed = False
        self.capability = capability


# ============================================================================
# PERSISTENCE ERRORS
# ============================================================================

class PersistenceError(RecipeEngineException):
    """
    Failure writing or reading execution state.
    Retried with bounded attempts; surfaces as an infrastructure failure.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message, retry_allowed=True)
        self.operation = operation
