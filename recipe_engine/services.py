"""
Wiring of the engine components for one database session.

Used by the API (per request) and by worker tasks (per task); both own the
session and pass it in.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .config import Settings
from .core.assets import AssetStore, LocalAssetStore
from .core.executors import NodeExecutor
from .core.node_tester import NodeTester
from .core.orchestrator import ProgressListener, RecipeOrchestrator
from .core.providers import ProviderRegistry, build_default_registry
from .core.recipes import RecipeManager
from .core.store import ExecutionStore


@dataclass
class Services:
    recipes: RecipeManager
    store: ExecutionStore
    executor: NodeExecutor
    orchestrator: RecipeOrchestrator
    tester: NodeTester


def build_asset_store(settings: Settings) -> AssetStore:
    return LocalAssetStore(settings.asset_dir, base_url=settings.asset_base_url)


def build_services(
    session: Session,
    settings: Settings,
    providers: Optional[ProviderRegistry] = None,
    asset_store: Optional[AssetStore] = None,
    progress_listener: Optional[ProgressListener] = None
) -> Services:
    providers = providers if providers is not None else build_default_registry(settings)
    asset_store = asset_store if asset_store is not None else build_asset_store(settings)

    recipes = RecipeManager(session)
    store = ExecutionStore(
        session,
        max_attempts=settings.persistence_max_attempts,
        backoff_seconds=settings.persistence_backoff_seconds,
    )
    executor = NodeExecutor(providers, asset_store)
    return Services(
        recipes=recipes,
        store=store,
        executor=executor,
        orchestrator=RecipeOrchestrator(store, recipes, executor, progress_listener=progress_listener),
        tester=NodeTester(recipes, executor),
    )
