"""Pydantic models for the TrackFlow workflow builder."""

from trackflow.models.draft import (
    DraftConnection,
    DraftNode,
    DraftWorkflow,
    GenerationResult,
)
from trackflow.models.template import (
    ConfigField,
    FieldOption,
    FieldType,
    NodeKind,
    NodeTemplate,
)
from trackflow.models.workflow import (
    DEFAULT_INPUT_HANDLE,
    DEFAULT_OUTPUT_HANDLE,
    Connection,
    Position,
    TemplateMeta,
    Workflow,
    WorkflowNode,
    WorkflowStatus,
    WorkflowTemplate,
    new_connection_id,
    new_node_id,
    ports_for,
)

__all__ = [
    # Templates (catalog)
    "NodeKind",
    "FieldType",
    "FieldOption",
    "ConfigField",
    "NodeTemplate",
    # Workflow graph
    "Position",
    "WorkflowNode",
    "Connection",
    "Workflow",
    "WorkflowStatus",
    "DEFAULT_INPUT_HANDLE",
    "DEFAULT_OUTPUT_HANDLE",
    "new_node_id",
    "new_connection_id",
    "ports_for",
    # Gallery
    "TemplateMeta",
    "WorkflowTemplate",
    # Drafts
    "DraftNode",
    "DraftConnection",
    "DraftWorkflow",
    "GenerationResult",
]
