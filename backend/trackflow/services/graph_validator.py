"""Structural validation of workflow graphs.

The same connection rules are applied by the graph mutator (one edge at a
time, raising) and by ``validate_workflow`` (whole graph, collecting), so
the two can never disagree about what a legal edge is.
"""

from __future__ import annotations

import logging
from collections import Counter

from pydantic import BaseModel
from pydantic import Field as PydanticField

from trackflow.errors import (
    SelfConnection,
    StructuralViolation,
    TriggerHasNoInput,
    UnknownNode,
    UnknownPort,
)
from trackflow.models.workflow import Workflow, WorkflowStatus, ports_for
from trackflow.services.template_resolver import TemplateResolver

logger = logging.getLogger(__name__)


class ValidationReport(BaseModel):
    """Result of validating a workflow graph."""

    valid: bool
    """Whether the graph satisfies every structural invariant."""

    errors: list[str] = PydanticField(default_factory=list)
    """Structural invariant breaches."""

    warnings: list[str] = PydanticField(default_factory=list)
    """Non-blocking readiness issues (disconnected nodes, missing required config)."""


def check_connection(
    workflow: Workflow,
    source_node_id: str,
    source_handle: str,
    target_node_id: str,
    target_handle: str,
) -> StructuralViolation | None:
    """Check whether an edge would be legal in a workflow.

    Returns:
        The violation the edge would cause, or None if it is legal.
    """
    source = workflow.get_node(source_node_id)
    if source is None:
        return UnknownNode(f"Source node '{source_node_id}' does not exist", node_id=source_node_id)

    target = workflow.get_node(target_node_id)
    if target is None:
        return UnknownNode(f"Target node '{target_node_id}' does not exist", node_id=target_node_id)

    if source_node_id == target_node_id:
        return SelfConnection(
            f"Node '{source_node_id}' cannot be connected to itself", node_id=source_node_id
        )

    if target.is_trigger:
        return TriggerHasNoInput(
            f"Trigger '{target_node_id}' cannot be the target of a connection",
            node_id=target_node_id,
        )

    if source_handle not in source.outputs:
        return UnknownPort(
            f"Node '{source_node_id}' has no output handle '{source_handle}'",
            node_id=source_node_id,
        )

    if target_handle not in target.inputs:
        return UnknownPort(
            f"Node '{target_node_id}' has no input handle '{target_handle}'",
            node_id=target_node_id,
        )

    return None


def validate_workflow(
    workflow: Workflow,
    resolver: TemplateResolver | None = None,
) -> ValidationReport:
    """Validate a whole workflow graph.

    Args:
        workflow: The graph to check.
        resolver: When given, required config fields are checked against
            each node's template and reported as warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []

    id_counts = Counter(node.id for node in workflow.nodes)
    for node_id, count in id_counts.items():
        if count > 1:
            errors.append(f"Node id '{node_id}' is used by {count} nodes")

    triggers = [node for node in workflow.nodes if node.is_trigger]
    if workflow.nodes and not triggers:
        errors.append("Workflow has nodes but no trigger")
    if len(triggers) > 1:
        ids = ", ".join(node.id for node in triggers)
        errors.append(f"Workflow has {len(triggers)} triggers ({ids}); at most one is allowed")

    for node in workflow.nodes:
        inputs, outputs = ports_for(node.type)
        if node.inputs != inputs or node.outputs != outputs:
            errors.append(
                f"Node '{node.id}' ({node.type.value}) has ports "
                f"inputs={node.inputs} outputs={node.outputs}, expected inputs={inputs} outputs={outputs}"
            )

    connection_ids = Counter(c.id for c in workflow.connections)
    for connection_id, count in connection_ids.items():
        if count > 1:
            errors.append(f"Connection id '{connection_id}' is used by {count} connections")

    seen_endpoints: set[tuple[str, str, str, str]] = set()
    for connection in workflow.connections:
        violation = check_connection(
            workflow,
            connection.source_node_id,
            connection.source_handle,
            connection.target_node_id,
            connection.target_handle,
        )
        if violation is not None:
            errors.append(f"Connection '{connection.id}': {violation}")
            continue

        if connection.endpoint_key in seen_endpoints:
            warnings.append(f"Connection '{connection.id}' duplicates an existing connection")
        seen_endpoints.add(connection.endpoint_key)

    if workflow.is_active != (workflow.status == WorkflowStatus.ACTIVE):
        errors.append(
            f"is_active={workflow.is_active} does not match status '{workflow.status.value}'"
        )

    connected_targets = {c.target_node_id for c in workflow.connections}
    for node in workflow.nodes:
        if not node.is_trigger and node.id not in connected_targets:
            warnings.append(f"Node '{node.name}' ({node.id}) is not connected to the workflow")

    if resolver is not None:
        for node in workflow.nodes:
            missing = resolver.missing_required(node)
            if missing:
                warnings.append(
                    f"Node '{node.name}' ({node.id}) is missing required config: {', '.join(missing)}"
                )

    if errors:
        logger.debug(f"Workflow {workflow.id} failed validation with {len(errors)} error(s)")

    return ValidationReport(valid=not errors, errors=errors, warnings=warnings)
