"""
FastAPI main application
REST API endpoints for the Recipe Engine

Run with:
    uvicorn recipe_engine.api.main:create_app --factory
"""

import asyncio
import logging
import uuid
from typing import Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings
from ..core.assets import AssetStore
from ..core.exceptions import (
    ExecutionNotFoundError,
    ExecutionStateError,
    InvalidGraphError,
    NodeNotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ProviderError,
    RecipeEngineException,
    RecipeExistsError,
    RecipeNotFoundError,
)
from ..core.logging_config import clear_request_id, set_request_id, setup_logging
from ..core.providers import ProviderRegistry, build_default_registry
from ..database import create_session_factory, init_db, session_scope
from ..services import Services, build_asset_store, build_services
from .auth import AllowAllVerifier, StaticTokenVerifier, TokenVerifier, require_user
from .schemas import ExecuteRequest, RecipeCreate, RecipeUpdate, RetryRequest, TestNodeRequest

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

# Checked against the exception's MRO, most specific first
ERROR_STATUS = {
    InvalidGraphError: 400,
    PermissionDeniedError: 403,
    RecipeNotFoundError: 404,
    NodeNotFoundError: 404,
    ExecutionNotFoundError: 404,
    RecipeExistsError: 409,
    ExecutionStateError: 409,
    ProviderError: 502,
    PersistenceError: 503,
}

Dispatcher = Callable[[FastAPI, str, BackgroundTasks], None]


# ============================================================================
# EXECUTION DISPATCH
# ============================================================================

def celery_dispatcher(app: FastAPI, execution_id: str, background_tasks: BackgroundTasks) -> None:
    """Queue the walk on the Celery worker"""
    from ..workers.tasks import execute_recipe_task

    task = execute_recipe_task.delay(execution_id)
    logger.info(f"Queued execution {execution_id} as Celery task {task.id}")


def run_execution_inline(app: FastAPI, execution_id: str) -> None:
    """
    Run the walk after the response, in a session of its own.

    Starlette runs sync background tasks in its threadpool, off the server's
    event loop.
    """
    with session_scope(app.state.session_factory) as db:
        services = build_services(
            db, app.state.settings, providers=app.state.providers, asset_store=app.state.asset_store
        )
        try:
            asyncio.run(services.orchestrator.run_execution(execution_id))
        except RecipeEngineException as e:
            # Already recorded on the execution when it could be; nobody awaits this task
            logger.exception(f"Inline execution {execution_id} aborted: {e.message}")


def inline_dispatcher(app: FastAPI, execution_id: str, background_tasks: BackgroundTasks) -> None:
    background_tasks.add_task(run_execution_inline, app, execution_id)
    logger.info(f"Scheduled execution {execution_id} as a background task")


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_db(request: Request):
    """Dependency for database session"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_services(request: Request, db: Session = Depends(get_db)) -> Services:
    return build_services(
        db,
        request.app.state.settings,
        providers=request.app.state.providers,
        asset_store=request.app.state.asset_store,
    )


def dispatch(request: Request, execution_id: str, background_tasks: BackgroundTasks) -> None:
    request.app.state.dispatcher(request.app, execution_id, background_tasks)


# ============================================================================
# RECIPES
# ============================================================================

router = APIRouter(prefix="/api/recipes")


@router.get(
    "",
    tags=["recipes"],
    summary="List recipes",
    description="""
    List active recipes, newest first.

    Filters:
    - **stageType**: only recipes of this pipeline stage
    - **search**: case-insensitive substring of name or description
    - **tags**: comma-separated; recipes must carry every tag
    """
)
def list_recipes(
    stageType: Optional[str] = None,
    search: Optional[str] = None,
    tags: Optional[str] = None,
    services: Services = Depends(get_services)
):
    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    recipes = services.recipes.list_recipes(stage_type=stageType, search=search, tags=tag_list)
    return {"success": True, "count": len(recipes), "recipes": [r.to_dict() for r in recipes]}


@router.post(
    "",
    status_code=201,
    tags=["recipes"],
    summary="Create recipe",
    description="""
    Create a recipe. The graph is validated before it is stored:
    unique node ids, edges referencing existing nodes, no cycles,
    declared outputs.

    Edges read `{"from", "to", "fromOutput", "toInput"}`; use
    `"from": "external_input"` to feed fields of the execution input.
    """
)
def create_recipe(
    body: RecipeCreate,
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    if not body.name:
        raise HTTPException(status_code=400, detail="Recipe name is required")
    if not isinstance(body.nodes, list) or not body.nodes:
        raise HTTPException(status_code=400, detail="Recipe must have at least one node")
    if not isinstance(body.edges, list):
        raise HTTPException(status_code=400, detail="Recipe must have edges array")

    recipe = services.recipes.create_recipe(body.model_dump(exclude_none=True), user_id)
    return {"success": True, "recipe": recipe.to_dict()}


@router.get(
    "/executions/project/{project_id}",
    tags=["executions"],
    summary="Project executions",
    description="Executions of every recipe started for a project, newest first."
)
def get_project_executions(project_id: str, limit: int = 50, services: Services = Depends(get_services)):
    executions = services.orchestrator.get_project_executions(project_id, limit=limit)
    return {"success": True, "count": len(executions), "executions": [e.to_dict() for e in executions]}


@router.get(
    "/executions/{execution_id}",
    tags=["executions"],
    summary="Get execution",
    description="Full execution record, including the per-node executionContext. Poll this for progress."
)
def get_execution(execution_id: str, services: Services = Depends(get_services)):
    execution = services.orchestrator.get_execution_status(execution_id)
    if execution is None:
        raise ExecutionNotFoundError(execution_id)
    return {"success": True, "execution": execution.to_dict()}


@router.get(
    "/executions/{execution_id}/summary",
    tags=["executions"],
    summary="Execution summary",
    description="Node counts, timing and per-node status of an execution."
)
def get_execution_summary(execution_id: str, services: Services = Depends(get_services)):
    return {"success": True, "summary": services.orchestrator.get_execution_summary(execution_id)}


@router.post(
    "/executions/{execution_id}/cancel",
    tags=["executions"],
    summary="Cancel execution",
    description="""
    Request cancellation of a pending or running execution.

    Cancellation is cooperative: a running walk stops before its next node.
    Terminal executions return 409.
    """
)
def cancel_execution(
    execution_id: str,
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    execution = services.orchestrator.cancel_execution(execution_id, user_id=user_id)
    return {
        "success": True,
        "executionId": execution.id,
        "status": execution.status,
        "message": "Cancellation requested",
    }


@router.post(
    "/executions/{execution_id}/retry",
    tags=["executions"],
    summary="Retry execution",
    description="""
    Create a new execution from a failed one (only failed executions can be retried).

    - **mode=full** (default): every node runs again
    - **mode=resume**: completed nodes before the failing node are reused and
      marked `reused_from` in the new executionContext
    """
)
def retry_execution(
    execution_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[RetryRequest] = None,
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    mode = body.mode if body else "full"
    new_id = services.orchestrator.retry_execution(execution_id, user_id=user_id, mode=mode)
    dispatch(request, new_id, background_tasks)
    return {"success": True, "executionId": new_id, "retryOf": execution_id, "mode": mode}


@router.get(
    "/stage/{stage_type}",
    tags=["recipes"],
    summary="Recipes by stage",
    description="Active recipes for a pipeline stage."
)
def get_recipes_by_stage(stage_type: str, services: Services = Depends(get_services)):
    recipes = services.recipes.get_recipes_by_stage_type(stage_type)
    return {"success": True, "count": len(recipes), "recipes": [r.to_dict() for r in recipes]}


@router.post(
    "/seed/initial",
    tags=["recipes"],
    summary="Seed built-in recipes",
    description="Insert the built-in pipeline recipes. Idempotent: existing recipes are skipped."
)
def seed_recipes(
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    result = services.recipes.seed_initial_recipes(user_id)
    return {"success": True, **result}


@router.get(
    "/{recipe_id}",
    tags=["recipes"],
    summary="Get recipe"
)
def get_recipe(recipe_id: str, services: Services = Depends(get_services)):
    return {"success": True, "recipe": services.recipes.require_recipe(recipe_id).to_dict()}


@router.put(
    "/{recipe_id}",
    tags=["recipes"],
    summary="Update recipe",
    description="Partial update. Changing nodes or edges re-validates the graph and bumps the version."
)
def update_recipe(
    recipe_id: str,
    body: RecipeUpdate,
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    updates = body.model_dump(exclude_unset=True)
    if "name" in updates and not updates["name"]:
        raise HTTPException(status_code=400, detail="Recipe name is required")
    if "nodes" in updates and (not isinstance(updates["nodes"], list) or not updates["nodes"]):
        raise HTTPException(status_code=400, detail="Recipe must have at least one node")
    if "edges" in updates and not isinstance(updates["edges"], list):
        raise HTTPException(status_code=400, detail="Recipe must have edges array")

    recipe = services.recipes.update_recipe(recipe_id, updates, user_id)
    return {"success": True, "recipe": recipe.to_dict()}


@router.delete(
    "/{recipe_id}",
    tags=["recipes"],
    summary="Delete recipe",
    description="Soft delete: the recipe is deactivated; its executions are kept."
)
def delete_recipe(
    recipe_id: str,
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    services.recipes.delete_recipe(recipe_id, user_id)
    return {"success": True, "message": f"Recipe {recipe_id} deleted"}


@router.post(
    "/{recipe_id}/execute",
    tags=["executions"],
    summary="Execute recipe",
    description="""
    Create a pending execution and hand it to the execution backend
    (Celery worker, or an in-process background task with EXECUTION_BACKEND=inline).

    Returns the execution id immediately; poll GET /api/recipes/executions/{id}.
    """
)
def execute_recipe(
    recipe_id: str,
    body: ExecuteRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    if body.input is None:
        raise HTTPException(status_code=400, detail="Input data is required")

    execution_id = services.orchestrator.start_execution(
        recipe_id, body.input, user_id=user_id, project_id=body.projectId, stage_id=body.stageId
    )
    dispatch(request, execution_id, background_tasks)
    return {
        "success": True,
        "executionId": execution_id,
        "status": "pending",
        "message": "Recipe execution started",
    }


@router.post(
    "/{recipe_id}/test-node",
    tags=["executions"],
    summary="Test a single node",
    description="""
    Run one node in isolation. Its ancestors run first (unless mocked, or
    executeDependencies=false); siblings and descendants never run.
    Nothing is persisted.
    """
)
async def test_node(
    recipe_id: str,
    body: TestNodeRequest,
    user_id: str = Depends(require_user),
    services: Services = Depends(get_services)
):
    if not body.nodeId:
        raise HTTPException(status_code=400, detail="nodeId is required")
    if body.externalInput is None:
        raise HTTPException(status_code=400, detail="externalInput data is required")

    result = await services.tester.test_single_node(
        recipe_id,
        body.nodeId,
        body.externalInput,
        execute_dependencies=body.executeDependencies,
        mock_outputs=body.mockOutputs,
    )
    return {"success": True, "result": result}


@router.get(
    "/{recipe_id}/executions",
    tags=["executions"],
    summary="Recipe executions",
    description="Most recent executions of a recipe, newest first."
)
def list_recipe_executions(recipe_id: str, limit: int = 10, services: Services = Depends(get_services)):
    executions = services.store.list_for_recipe(recipe_id, limit=limit)
    return {"success": True, "count": len(executions), "executions": [e.to_dict() for e in executions]}


@router.get(
    "/{recipe_id}/history",
    tags=["executions"],
    summary="Recipe execution history",
    description="Summaries of the most recent executions of a recipe."
)
def get_recipe_history(recipe_id: str, limit: int = 10, services: Services = Depends(get_services)):
    history = services.orchestrator.get_execution_history(recipe_id, limit=limit)
    return {"success": True, "count": len(history), "history": history}


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    providers: Optional[ProviderRegistry] = None,
    asset_store: Optional[AssetStore] = None,
    token_verifier: Optional[TokenVerifier] = None,
    dispatcher: Optional[Dispatcher] = None,
    configure_logging: bool = True
) -> FastAPI:
    """
    Build the API application.

    Every collaborator is injectable; anything not passed is built from
    settings (Settings.from_env() when settings is None).
    """
    settings = settings or Settings.from_env()
    if configure_logging:
        setup_logging(level=settings.log_level, json_logs=settings.json_logs, log_file=settings.log_file)

    if session_factory is None:
        session_factory = create_session_factory(settings.database_url)
        if settings.database_url.startswith("sqlite"):
            # Local development; Postgres schemas are managed by Alembic
            init_db(session_factory.kw["bind"])

    if token_verifier is None:
        token_verifier = AllowAllVerifier() if settings.auth_disabled else StaticTokenVerifier(settings.api_tokens)

    if dispatcher is None:
        dispatcher = inline_dispatcher if settings.execution_backend == "inline" else celery_dispatcher

    app = FastAPI(
        title="Recipe Engine API",
        description="""
# Recipe Engine

Runs content-generation recipes: DAGs of text, image and video generation
steps plus pure data steps, executed in topological order with persisted,
pollable progress.

## Execution Flow

1. **POST /api/recipes/{id}/execute** - returns `executionId` immediately
2. **GET /api/recipes/executions/{executionId}** - poll status and per-node progress
3. **POST /api/recipes/executions/{executionId}/retry** - re-run a failed execution

## Authentication

Mutating endpoints require `Authorization: Bearer <token>`.
        """,
        version=API_VERSION,
        openapi_tags=[
            {"name": "health", "description": "Health checks"},
            {"name": "recipes", "description": "Recipe CRUD. A recipe is a DAG of nodes and data-flow edges."},
            {"name": "executions", "description": "Run recipes, poll, cancel, retry and test single nodes."},
        ]
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.providers = providers if providers is not None else build_default_registry(settings)
    app.state.asset_store = asset_store if asset_store is not None else build_asset_store(settings)
    app.state.token_verifier = token_verifier
    app.state.dispatcher = dispatcher

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """
        Tag every log line of a request with its request id and echo it in
        the X-Request-ID response header.
        """
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        set_request_id(request_id)

        logger.info(
            f"{request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(f"Response {response.status_code}", extra={"status_code": response.status_code})
            return response
        except Exception as e:
            logger.exception("Unhandled exception in request", extra={"error": str(e)})
            raise
        finally:
            clear_request_id()

    # ========================================================================
    # EXCEPTION HANDLERS
    # ========================================================================

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "status_code": exc.status_code}
        )

    @app.exception_handler(RecipeEngineException)
    async def engine_exception_handler(request, exc: RecipeEngineException):
        status_code = 500
        for cls in type(exc).__mro__:
            if cls in ERROR_STATUS:
                status_code = ERROR_STATUS[cls]
                break

        message = exc.message
        if isinstance(exc, InvalidGraphError):
            message = f"Invalid DAG structure: {exc.message}"

        if status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=status_code, content={"error": message, "status_code": status_code})

    # ========================================================================
    # HEALTH
    # ========================================================================

    @app.get("/", tags=["health"], summary="API root")
    def root():
        return {"name": "Recipe Engine API", "version": API_VERSION, "docs": "/docs"}

    @app.get(
        "/health",
        tags=["health"],
        summary="Health check (lightweight)",
        description="Just verifies the API server is running. Use /health/components for dependencies."
    )
    def health_check():
        return {"status": "healthy", "service": "Recipe Engine API", "version": API_VERSION}

    @app.get(
        "/health/components",
        tags=["health"],
        summary="Component health check",
        description="Checks the database connection and reports configured providers and execution backend."
    )
    def health_check_components(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
            db_status = "connected"
        except Exception as e:
            db_status = f"error: {e}"

        providers_configured: List[str] = app.state.providers.names()
        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "database": db_status,
            "providers": providers_configured,
            "execution_backend": settings.execution_backend,
        }

    app.include_router(router)
    logger.info(
        f"Recipe Engine API ready (backend={settings.execution_backend}, "
        f"providers={app.state.providers.names()})"
    )
    return app
