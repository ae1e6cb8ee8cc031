"""
Pytest fixtures for Recipe Engine tests

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- FakeProvider (records calls, scripted failures)
- Engine components wired against the fake provider
- Sample recipe definitions
"""

from typing import Any, Callable, Dict, List, Optional, Union

import pytest
from sqlalchemy.orm import sessionmaker

from recipe_engine.core.assets import LocalAssetStore
from recipe_engine.core.exceptions import ProviderError
from recipe_engine.core.executors import NodeExecutor
from recipe_engine.core.node_tester import NodeTester
from recipe_engine.core.orchestrator import RecipeOrchestrator
from recipe_engine.core.providers import IMAGE, TEXT, VIDEO, GenerationProvider, ProviderRegistry
from recipe_engine.core.recipes import RecipeManager
from recipe_engine.core.store import ExecutionStore
from recipe_engine.database import create_db_engine, init_db

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

FAKE_MODEL = {"provider": "fake", "modelName": "fake-1"}


# ============================================================================
# FAKE PROVIDER
# ============================================================================

class FakeProvider(GenerationProvider):
    """
    In-memory provider.

    Args:
        text_response: Fixed text, or callable(prompt) -> text.
            Defaults to "TEXT[<prompt>]".
        fail_on: Prompts containing any of these substrings raise ProviderError
        transient_failures: Number of calls that fail before calls succeed
    """

    name = "fake"
    capabilities = (TEXT, IMAGE, VIDEO)

    def __init__(
        self,
        text_response: Union[str, Callable[[str], str], None] = None,
        fail_on: Optional[List[str]] = None,
        transient_failures: int = 0
    ):
        self.text_response = text_response
        self.fail_on = list(fail_on or [])
        self.transient_failures = transient_failures
        self.calls: List[Dict[str, Any]] = []

    def _record(self, capability: str, prompt: str, config: Dict[str, Any]) -> None:
        self.calls.append({"capability": capability, "prompt": prompt, "config": dict(config)})
        for marker in self.fail_on:
            if marker in prompt:
                raise ProviderError(f"fake failure for prompt containing '{marker}'", provider=self.name)
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise ProviderError("fake transient failure", provider=self.name)

    async def generate_text(self, prompt: str, config: Dict[str, Any]) -> str:
        self._record(TEXT, prompt, config)
        if callable(self.text_response):
            return self.text_response(prompt)
        if self.text_response is not None:
            return self.text_response
        return f"TEXT[{prompt}]"

    async def generate_image(self, prompt: str, config: Dict[str, Any]) -> bytes:
        self._record(IMAGE, prompt, config)
        return PNG_BYTES

    async def generate_video(self, prompt: str, config: Dict[str, Any]) -> str:
        self._record(VIDEO, prompt, config)
        return f"https://videos.example.com/{len(self.calls)}.mp4"

    def prompts(self, capability: Optional[str] = None) -> List[str]:
        return [c["prompt"] for c in self.calls if capability is None or c["capability"] == capability]


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def session_factory():
    """
    In-memory SQLite shared by every session of the test (StaticPool).
    """
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory):
    """
    Create an in-memory SQLite database for testing.
    Each test gets a fresh database that's torn down after the test.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def providers(fake_provider):
    registry = ProviderRegistry()
    registry.register(fake_provider)
    # Seed recipes reference gemini
    registry.register(fake_provider, name="gemini")
    return registry


@pytest.fixture
def asset_store(tmp_path):
    return LocalAssetStore(str(tmp_path / "assets"), base_url="https://assets.example.com")


@pytest.fixture
def executor(providers, asset_store):
    return NodeExecutor(providers, asset_store)


@pytest.fixture
def store(db_session):
    return ExecutionStore(db_session, max_attempts=3, backoff_seconds=0)


@pytest.fixture
def recipes(db_session):
    return RecipeManager(db_session)


@pytest.fixture
def orchestrator(store, recipes, executor):
    return RecipeOrchestrator(store, recipes, executor)


@pytest.fixture
def node_tester(recipes, executor):
    return NodeTester(recipes, executor)


# ============================================================================
# RECIPE DEFINITION FIXTURES
# ============================================================================

@pytest.fixture
def text_to_image_recipe():
    """
    gen_text (external topic) → gen_image (final)
    """
    return {
        "id": "recipe_text_image",
        "name": "Text then image",
        "stageType": "stage_test",
        "nodes": [
            {
                "id": "gen_text",
                "type": "text_generation",
                "inputs": ["topic"],
                "prompt": "Describe {topic}",
                "aiModel": FAKE_MODEL,
            },
            {
                "id": "gen_image",
                "type": "image_generation",
                "inputs": ["description"],
                "prompt": "Illustrate: {description}",
                "aiModel": FAKE_MODEL,
                "final": True,
            },
        ],
        "edges": [
            {"from": "external_input", "fromOutput": "topic", "to": "gen_text", "toInput": "topic"},
            {"from": "gen_text", "to": "gen_image", "toInput": "description"},
        ],
    }


@pytest.fixture
def linear_recipe():
    """
    a → b → c, all text nodes, c is final
    """
    return {
        "id": "recipe_linear",
        "name": "Linear chain",
        "nodes": [
            {"id": "a", "type": "text_generation", "inputs": ["topic"], "prompt": "A {topic}", "aiModel": FAKE_MODEL},
            {"id": "b", "type": "text_generation", "inputs": ["prev"], "prompt": "B {prev}", "aiModel": FAKE_MODEL},
            {"id": "c", "type": "text_generation", "inputs": ["prev"], "prompt": "C {prev}", "aiModel": FAKE_MODEL,
             "final": True},
        ],
        "edges": [
            {"from": "external_input", "fromOutput": "topic", "to": "a", "toInput": "topic"},
            {"from": "a", "to": "b", "toInput": "prev"},
            {"from": "b", "to": "c", "toInput": "prev"},
        ],
    }


@pytest.fixture
def fan_in_recipe():
    """
    left, right → join (combine, final); 'extra' is a sibling of join
    """
    return {
        "id": "recipe_fan_in",
        "name": "Fan in",
        "nodes": [
            {"id": "left", "type": "text_generation", "prompt": "left side", "aiModel": FAKE_MODEL},
            {"id": "right", "type": "text_generation", "prompt": "right side", "aiModel": FAKE_MODEL},
            {"id": "join", "type": "combine", "mode": "object", "inputs": ["l", "r"], "final": True},
            {"id": "extra", "type": "text_generation", "inputs": ["prev"], "prompt": "extra {prev}",
             "aiModel": FAKE_MODEL},
        ],
        "edges": [
            {"from": "left", "to": "join", "toInput": "l"},
            {"from": "right", "to": "join", "toInput": "r"},
            {"from": "left", "to": "extra", "toInput": "prev"},
        ],
    }


@pytest.fixture
def stored_recipe(recipes):
    """Store a recipe definition and return it"""
    def _store(definition: Dict[str, Any], user_id: str = "user_1"):
        return recipes.create_recipe(definition, user_id)
    return _store
