"""Pytest configuration and fixtures."""

import asyncio
import copy
from typing import Any, AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from trackflow.editor import manager as manager_module
from trackflow.editor.manager import EditorSessionManager
from trackflow.llm.workflow_generator import WorkflowDraftGenerator
from trackflow.main import app
from trackflow.models import NodeTemplate, Position, Workflow
from trackflow.services.graph_mutator import GraphMutator
from trackflow.services.layout_adapter import LayoutService
from trackflow.services.template_catalog import TemplateCatalog, get_template_catalog
from trackflow.services.template_resolver import TemplateResolver

SAMPLE_INTENT: dict[str, Any] = {
    "goal": "Exit offer for pricing visitors",
    "triggers": [
        {
            "type": "exit-intent",
            "conditions": {"sensitivity": "high"},
            "description": "Visitor is about to leave the pricing page",
        }
    ],
    "actions": [
        {
            "type": "display-overlay",
            "config": {"content": "<h2>Take 10% off</h2>"},
            "description": "Show a discount popup",
        },
        {
            "type": "custom-event",
            "config": {"eventName": "exit_offer_shown"},
            "description": "Track that the offer was shown",
        },
    ],
    "targetAudience": "Pricing page visitors",
    "expectedImpact": "Recover abandoning visitors",
    "confidence": 0.82,
}


class FakeLayoutService(LayoutService):
    """In-memory layout service.

    By default every node is placed on a diagonal. ``response`` and
    ``error`` override the answer; with ``hold`` set, each call blocks
    until ``release`` is called so tests can interleave requests.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.response: Any = None
        self.error: Exception | None = None
        self.hold = False
        self.pending: list[asyncio.Event] = []

    async def layout(self, graph: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(graph)
        if self.hold:
            gate = asyncio.Event()
            self.pending.append(gate)
            await gate.wait()
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return {
            "children": [
                {"id": child["id"], "x": 100.0 * i, "y": 250.0 * i}
                for i, child in enumerate(graph["children"])
            ]
        }

    async def wait_for_pending(self, count: int) -> None:
        while len(self.pending) < count:
            await asyncio.sleep(0)

    def release(self, index: int) -> None:
        self.pending[index].set()


class FakeLLMClient:
    """Stands in for LLMClient; returns a canned JSON object."""

    def __init__(self, response: dict[str, Any] | None = None, error: Exception | None = None):
        self.response = response if response is not None else SAMPLE_INTENT
        self.error = error
        self.prompts: list[str] = []
        self.systems: list[str | None] = []
        self.hold = False
        self.pending: list[asyncio.Event] = []

    async def generate_json(self, prompt: str, system: str | None = None, **kwargs: Any) -> dict[str, Any]:
        self.prompts.append(prompt)
        self.systems.append(system)
        if self.hold:
            gate = asyncio.Event()
            self.pending.append(gate)
            await gate.wait()
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.response)

    async def wait_for_pending(self, count: int) -> None:
        while len(self.pending) < count:
            await asyncio.sleep(0)

    def release(self, index: int) -> None:
        self.pending[index].set()


@pytest.fixture
def catalog() -> TemplateCatalog:
    return get_template_catalog()


@pytest.fixture
def resolver(catalog: TemplateCatalog) -> TemplateResolver:
    return TemplateResolver(catalog)


@pytest.fixture
def mutator(resolver: TemplateResolver) -> GraphMutator:
    return GraphMutator(resolver)


@pytest.fixture
def trigger_template(catalog: TemplateCatalog) -> NodeTemplate:
    return catalog.get("page-visit")


@pytest.fixture
def other_trigger_template(catalog: TemplateCatalog) -> NodeTemplate:
    return catalog.get("exit-intent")


@pytest.fixture
def action_template(catalog: TemplateCatalog) -> NodeTemplate:
    return catalog.get("replace-text")


@pytest.fixture
def overlay_template(catalog: TemplateCatalog) -> NodeTemplate:
    return catalog.get("display-overlay")


@pytest.fixture
def condition_template(catalog: TemplateCatalog) -> NodeTemplate:
    return catalog.get("url-match")


@pytest.fixture
def linear_workflow(
    mutator: GraphMutator, trigger_template: NodeTemplate, action_template: NodeTemplate
) -> Workflow:
    """Trigger T connected to action A."""
    result = mutator.add_node(Workflow(name="Linear"), trigger_template, position=Position(x=400, y=50))
    trigger_id = result.node_id
    result = mutator.add_node(
        result.workflow, action_template, position=Position(x=400, y=220), connect_from=trigger_id
    )
    return result.workflow


@pytest.fixture
def fake_layout_service() -> FakeLayoutService:
    return FakeLayoutService()


@pytest.fixture
def fake_llm_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def generator(fake_llm_client: FakeLLMClient, catalog: TemplateCatalog) -> WorkflowDraftGenerator:
    return WorkflowDraftGenerator(llm_client=fake_llm_client, catalog=catalog)


@pytest.fixture
def session_manager(
    catalog: TemplateCatalog,
    fake_layout_service: FakeLayoutService,
    generator: WorkflowDraftGenerator,
):
    """Install an isolated session manager as the global one."""
    manager = EditorSessionManager(
        session_timeout_minutes=30,
        catalog=catalog,
        layout_service=fake_layout_service,
        generator=generator,
    )
    manager_module._manager = manager
    yield manager
    manager_module._manager = None


@pytest.fixture
async def client(session_manager: EditorSessionManager) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
