"""Pydantic models for externally generated (untrusted) workflow drafts."""

from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField

from trackflow.models.template import NodeKind
from trackflow.models.workflow import Position


class DraftNode(BaseModel):
    """A node as proposed by the draft generator.

    Only ``type`` and ``name`` are required. Drafts never carry a template
    id; the importer resolves templates by name and type.
    """

    id: str | None = None
    type: NodeKind
    name: str
    category: str | None = None
    description: str | None = None
    icon: str | None = None
    position: Position | None = None
    config: dict[str, Any] = PydanticField(default_factory=dict)

    model_config = {"populate_by_name": True}


class DraftConnection(BaseModel):
    """A connection as proposed by the draft generator (handles may be missing)."""

    id: str | None = None
    source_node_id: str = PydanticField(alias="sourceNodeId")
    target_node_id: str = PydanticField(alias="targetNodeId")
    source_handle: str | None = PydanticField(default=None, alias="sourceHandle")
    target_handle: str | None = PydanticField(default=None, alias="targetHandle")

    model_config = {"populate_by_name": True}


class DraftWorkflow(BaseModel):
    """A partial workflow produced from a natural-language prompt."""

    name: str | None = None
    description: str | None = None
    nodes: list[DraftNode] = PydanticField(default_factory=list)
    connections: list[DraftConnection] = PydanticField(default_factory=list)
    target_url: str | None = PydanticField(default=None, alias="targetUrl")

    model_config = {"populate_by_name": True}


class GenerationResult(BaseModel):
    """Response of the AI generation boundary: a draft plus the generator's confidence.

    ``confidence`` is deliberately unconstrained here so that an out-of-range
    score reaches the importer and is reported as a rejection rather than a
    parse failure.
    """

    workflow: DraftWorkflow
    confidence: float
    intent: dict[str, Any] | None = None
