"""
Pydantic schemas for API request bodies

Bodies use the camelCase keys of the stored recipe format. Fields the API
validates itself (to return 400 with a specific message) are optional here.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# RECIPE SCHEMAS
# ============================================================================

class RecipeCreate(BaseModel):
    """Schema for creating a recipe"""
    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "name": "Tagline + Hero Image",
                "stageType": "stage_2_personas",
                "nodes": [
                    {"id": "gen_text", "type": "text_generation", "inputs": ["productDescription"],
                     "prompt": "Write a tagline for {productDescription}",
                     "aiModel": {"provider": "gemini", "modelName": "gemini-2.5-flash"}},
                    {"id": "gen_image", "type": "image_generation", "inputs": ["tagline"],
                     "prompt": "Poster illustrating: {tagline}", "final": True,
                     "aiModel": {"provider": "gemini", "modelName": "gemini-2.5-flash-image"}},
                ],
                "edges": [
                    {"from": "external_input", "fromOutput": "productDescription",
                     "to": "gen_text", "toInput": "productDescription"},
                    {"from": "gen_text", "to": "gen_image", "toInput": "tagline"},
                ],
            }
        },
    )

    id: Optional[str] = Field(None, description="Optional caller-chosen recipe id")
    name: Optional[str] = Field(None, description="Recipe name (required)")
    description: Optional[str] = None
    stageType: Optional[str] = Field(None, description="Pipeline stage this recipe belongs to")
    nodes: Optional[Any] = Field(None, description="Node definitions (at least one)")
    edges: Optional[Any] = Field(None, description="Edge definitions")
    executionConfig: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class RecipeUpdate(BaseModel):
    """Schema for a partial recipe update; only provided fields change"""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    description: Optional[str] = None
    stageType: Optional[str] = None
    nodes: Optional[Any] = None
    edges: Optional[Any] = None
    executionConfig: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


# ============================================================================
# EXECUTION SCHEMAS
# ============================================================================

class ExecuteRequest(BaseModel):
    """Schema for executing a recipe"""
    input: Optional[Dict[str, Any]] = Field(None, description="External input object (required)")
    projectId: Optional[str] = None
    stageId: Optional[str] = None


class TestNodeRequest(BaseModel):
    """Schema for a single-node test run"""
    # Not a pytest test class
    __test__ = False

    nodeId: Optional[str] = Field(None, description="Node to run (required)")
    externalInput: Optional[Dict[str, Any]] = Field(None, description="External input (required)")
    executeDependencies: bool = Field(True, description="Run unmocked ancestors for real")
    mockOutputs: Optional[Dict[str, Any]] = Field(None, description="{nodeId: output} used instead of running ancestors")


class RetryRequest(BaseModel):
    """Schema for retrying a failed execution"""
    mode: Literal["full", "resume"] = Field("full", description="'full' re-runs everything, 'resume' reuses completed nodes")
