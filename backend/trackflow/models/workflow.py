"""Pydantic models for the workflow graph (nodes, connections, workflows).

These are the plain, serializable values handed across the persistence
boundary. ``Workflow.model_dump(mode="json", by_alias=True)`` produces the
camelCase shape the builder front end and storage layer expect.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel
from pydantic import Field as PydanticField

from trackflow.models.template import NodeKind

DEFAULT_INPUT_HANDLE = "input"
DEFAULT_OUTPUT_HANDLE = "output"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_node_id() -> str:
    """Allocate a node id unique for the lifetime of the process."""
    return f"node-{uuid.uuid4().hex}"


def new_connection_id() -> str:
    """Allocate a connection id unique for the lifetime of the process."""
    return f"conn-{uuid.uuid4().hex}"


def ports_for(node_type: NodeKind | str) -> tuple[list[str], list[str]]:
    """Return the (inputs, outputs) handle lists for a node type.

    Triggers have no input; every other node has exactly one. All nodes
    have a single output handle which may fan out to many connections.
    """
    if NodeKind(node_type) == NodeKind.TRIGGER:
        return [], [DEFAULT_OUTPUT_HANDLE]
    return [DEFAULT_INPUT_HANDLE], [DEFAULT_OUTPUT_HANDLE]


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    ARCHIVED = "archived"


class Position(BaseModel):
    """Canvas coordinates of a node."""

    x: float = 0
    y: float = 0


class WorkflowNode(BaseModel):
    """A node instance placed in a workflow."""

    id: str = PydanticField(default_factory=new_node_id)
    template_id: str | None = PydanticField(default=None, alias="templateId")
    type: NodeKind
    category: str = ""
    name: str
    description: str = ""
    icon: str = ""
    position: Position = PydanticField(default_factory=Position)
    config: dict[str, Any] = PydanticField(default_factory=dict)
    inputs: list[str] = PydanticField(default_factory=list)
    outputs: list[str] = PydanticField(default_factory=list)

    model_config = {"populate_by_name": True}

    @property
    def is_trigger(self) -> bool:
        return self.type == NodeKind.TRIGGER


class Connection(BaseModel):
    """A directed edge from a node's output handle to another node's input handle."""

    id: str = PydanticField(default_factory=new_connection_id)
    source_node_id: str = PydanticField(alias="sourceNodeId")
    target_node_id: str = PydanticField(alias="targetNodeId")
    source_handle: str = PydanticField(default=DEFAULT_OUTPUT_HANDLE, alias="sourceHandle")
    target_handle: str = PydanticField(default=DEFAULT_INPUT_HANDLE, alias="targetHandle")

    model_config = {"populate_by_name": True}

    @property
    def endpoint_key(self) -> tuple[str, str, str, str]:
        """The (source, handle, target, handle) tuple that identifies a connection."""
        return (
            self.source_node_id,
            self.source_handle,
            self.target_node_id,
            self.target_handle,
        )

    def touches(self, node_id: str) -> bool:
        return self.source_node_id == node_id or self.target_node_id == node_id


class Workflow(BaseModel):
    """A personalization workflow: one trigger followed by actions and conditions."""

    id: str = PydanticField(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Untitled Workflow"
    description: str = ""
    is_active: bool = PydanticField(default=False, alias="isActive")
    status: WorkflowStatus = WorkflowStatus.DRAFT
    nodes: list[WorkflowNode] = PydanticField(default_factory=list)
    connections: list[Connection] = PydanticField(default_factory=list)
    created_at: datetime = PydanticField(default_factory=_utcnow, alias="createdAt")
    updated_at: datetime = PydanticField(default_factory=_utcnow, alias="updatedAt")
    executions: int = 0
    last_run: datetime | None = PydanticField(default=None, alias="lastRun")
    target_url: str | None = PydanticField(default=None, alias="targetUrl")

    model_config = {"populate_by_name": True}

    def touch(self) -> None:
        """Update the ``updated_at`` timestamp."""
        self.updated_at = _utcnow()

    def get_node(self, node_id: str) -> WorkflowNode | None:
        """Find a node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_trigger(self) -> WorkflowNode | None:
        """Return the workflow's trigger node, if any."""
        for node in self.nodes:
            if node.is_trigger:
                return node
        return None

    def get_connection(self, connection_id: str) -> Connection | None:
        for connection in self.connections:
            if connection.id == connection_id:
                return connection
        return None

    def connections_from(self, node_id: str) -> list[Connection]:
        """All connections leaving a node."""
        return [c for c in self.connections if c.source_node_id == node_id]

    def connections_to(self, node_id: str) -> list[Connection]:
        """All connections entering a node."""
        return [c for c in self.connections if c.target_node_id == node_id]

    def find_connection(
        self,
        source_node_id: str,
        source_handle: str,
        target_node_id: str,
        target_handle: str,
    ) -> Connection | None:
        """Find a connection by its full endpoint tuple."""
        key = (source_node_id, source_handle, target_node_id, target_handle)
        for connection in self.connections:
            if connection.endpoint_key == key:
                return connection
        return None

    def to_plain(self) -> dict[str, Any]:
        """Serialize to the plain value handed to the persistence boundary."""
        return self.model_dump(mode="json", by_alias=True)


# ==================== Gallery Templates ====================


class TemplateMeta(BaseModel):
    """Gallery metadata for a starter workflow."""

    group: Literal["generic", "trigger", "industry"]
    category_id: str = PydanticField(alias="categoryId")
    category_label: str = PydanticField(alias="categoryLabel")
    icon: str | None = None
    summary: str | None = None
    difficulty: Literal["Beginner", "Intermediate", "Advanced"] | None = None
    estimated_time: str | None = PydanticField(default=None, alias="estimatedTime")
    tags: list[str] = []

    model_config = {"populate_by_name": True}


class WorkflowTemplate(Workflow):
    """A complete starter workflow offered in the template gallery."""

    template_meta: TemplateMeta = PydanticField(alias="templateMeta")
