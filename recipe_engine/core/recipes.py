"""
Recipe Manager

CRUD for recipe definitions. Every create and every structural update is
validated with core.dag before it is persisted.
"""

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.recipe import Recipe
from .dag import parse_graph, validate_dag
from .exceptions import (
    InvalidGraphError,
    PermissionDeniedError,
    PersistenceError,
    RecipeExistsError,
    RecipeNotFoundError,
)
from .nodes import BaseNode, Edge
from .seed_data import SEED_RECIPES

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"

DEFAULT_EXECUTION_CONFIG: Dict[str, Any] = {
    "timeout_seconds": 120,
    "retry_policy": {"max_retries": 1, "backoff_seconds": 1.0},
    "inter_node_delay_seconds": 0,
    "default_models": {},
}


def merge_execution_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = copy.deepcopy(DEFAULT_EXECUTION_CONFIG)
    for key, value in (config or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_recipe_graph(recipe: Recipe) -> Tuple[List[BaseNode], List[Edge]]:
    """
    Parse and validate a stored recipe.

    Raises:
        InvalidGraphError: If the stored definition is (no longer) a valid DAG
    """
    nodes, edges = parse_graph(recipe.nodes, recipe.edges)
    validate_dag(nodes, edges)
    return nodes, edges


def _validate_definition(nodes_data: Any, edges_data: Any) -> None:
    nodes, edges = parse_graph(nodes_data, edges_data)
    validate_dag(nodes, edges)


class RecipeManager:
    """
    Repository + validation for recipes.

    Args:
        session: SQLAlchemy session (owned by the caller)
    """

    def __init__(self, session: Session):
        self.session = session

    def _commit(self, operation: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"{operation} failed: {e}", operation=operation)

    @staticmethod
    def _check_owner(recipe: Recipe, user_id: Optional[str]) -> None:
        # Seeded recipes are shared and editable by any authenticated user
        if recipe.created_by in (None, SYSTEM_USER):
            return
        if recipe.created_by != user_id:
            raise PermissionDeniedError(f"User {user_id} does not own recipe {recipe.id}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        return self.session.get(Recipe, recipe_id)

    def require_recipe(self, recipe_id: str) -> Recipe:
        recipe = self.get_recipe(recipe_id)
        if recipe is None:
            raise RecipeNotFoundError(recipe_id)
        return recipe

    def list_recipes(
        self,
        stage_type: Optional[str] = None,
        search: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        include_inactive: bool = False
    ) -> List[Recipe]:
        """
        List recipes, newest first.

        Args:
            stage_type: Only recipes of this pipeline stage
            search: Case-insensitive substring of name or description
            tags: Recipe must carry every tag
            include_inactive: Include soft-deleted recipes
        """
        query = self.session.query(Recipe)
        if not include_inactive:
            query = query.filter(Recipe.is_active.is_(True))
        if stage_type:
            query = query.filter(Recipe.stage_type == stage_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Recipe.name.ilike(pattern), Recipe.description.ilike(pattern)))

        recipes = query.order_by(Recipe.created_at.desc()).all()

        # Tags live in a JSON column; filter in Python
        if tags:
            wanted = set(tags)
            recipes = [r for r in recipes if wanted.issubset(set(r.tags or []))]
        return recipes

    def get_recipes_by_stage_type(self, stage_type: str) -> List[Recipe]:
        return self.list_recipes(stage_type=stage_type)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_recipe(self, data: Dict[str, Any], user_id: Optional[str]) -> Recipe:
        """
        Validate and store a new recipe.

        Raises:
            InvalidGraphError: Missing name/nodes/edges or invalid DAG
            RecipeExistsError: Caller-provided id already used
        """
        if not data.get("name"):
            raise InvalidGraphError("Recipe name is required")
        _validate_definition(data.get("nodes"), data.get("edges"))

        recipe_id = data.get("id") or f"recipe_{uuid.uuid4()}"
        if self.get_recipe(recipe_id) is not None:
            raise RecipeExistsError(recipe_id)

        metadata = data.get("metadata") or {}
        recipe = Recipe(
            id=recipe_id,
            name=data["name"],
            description=data.get("description"),
            stage_type=data.get("stageType"),
            version=1,
            nodes=data["nodes"],
            edges=data["edges"],
            execution_config=merge_execution_config(data.get("executionConfig")),
            tags=list(data.get("tags") or metadata.get("tags") or []),
            is_active=metadata.get("isActive", True),
            created_by=user_id or SYSTEM_USER,
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
        )
        self.session.add(recipe)
        self._commit("create_recipe")

        logger.info(f"✅ Created recipe {recipe_id} ({recipe.name}) with {len(recipe.nodes)} nodes")
        return recipe

    def update_recipe(self, recipe_id: str, updates: Dict[str, Any], user_id: Optional[str]) -> Recipe:
        """
        Apply a partial update. When nodes or edges change, the merged graph
        is re-validated and the version is incremented.
        """
        recipe = self.require_recipe(recipe_id)
        self._check_owner(recipe, user_id)

        if "name" in updates and not updates["name"]:
            raise InvalidGraphError("Recipe name is required")

        structural = "nodes" in updates or "edges" in updates
        if structural:
            nodes = updates.get("nodes", recipe.nodes)
            edges = updates.get("edges", recipe.edges)
            _validate_definition(nodes, edges)
            recipe.nodes = nodes
            recipe.edges = edges
            recipe.version = (recipe.version or 1) + 1

        if "name" in updates:
            recipe.name = updates["name"]
        if "description" in updates:
            recipe.description = updates["description"]
        if "stageType" in updates:
            recipe.stage_type = updates["stageType"]
        if "executionConfig" in updates:
            recipe.execution_config = merge_execution_config(updates["executionConfig"])

        metadata = updates.get("metadata") or {}
        if "tags" in updates or "tags" in metadata:
            recipe.tags = list(updates.get("tags", metadata.get("tags")) or [])
        if "isActive" in metadata:
            recipe.is_active = bool(metadata["isActive"])

        recipe.updated_at = datetime.utcnow()
        self._commit("update_recipe")

        logger.info(f"Updated recipe {recipe_id} (version {recipe.version}, structural={structural})")
        return recipe

    def delete_recipe(self, recipe_id: str, user_id: Optional[str]) -> Recipe:
        """Soft delete: the recipe is deactivated, executions are kept"""
        recipe = self.require_recipe(recipe_id)
        self._check_owner(recipe, user_id)

        recipe.is_active = False
        recipe.updated_at = datetime.utcnow()
        self._commit("delete_recipe")

        logger.info(f"🗑️  Deactivated recipe {recipe_id}")
        return recipe

    def seed_initial_recipes(self, user_id: Optional[str] = None) -> Dict[str, List[str]]:
        """
        Insert the built-in recipes that are not present yet.

        Idempotent: recipes whose id already exists are skipped.
        """
        created: List[str] = []
        skipped: List[str] = []

        for seed in SEED_RECIPES:
            if self.get_recipe(seed["id"]) is not None:
                skipped.append(seed["id"])
                continue
            # Seeds are shared defaults, owned by the system user
            self.create_recipe(copy.deepcopy(seed), SYSTEM_USER)
            created.append(seed["id"])

        logger.info(f"🌱 Seeded recipes (requested by {user_id}): created={created} skipped={skipped}")
        return {"created": created, "skipped": skipped}
