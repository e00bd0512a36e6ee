"""GraphMutator - structural edits of a workflow graph.

Every operation takes the caller's workflow, applies the edit to a deep
copy and returns a ``MutationResult`` carrying the new graph. A rejected
edit raises a ``StructuralViolation`` subclass before anything is handed
back, so the caller's workflow is never left half-modified.

Supported edits:
- add_node / insert_node: place a node (first node must be a trigger,
  replacing a trigger needs a confirmation decision)
- delete_node: remove a node and every edge touching it
- update_node_config / update_node_config_many / update_node_details / move_node
- connect / disconnect
- merge_draft: fold an imported workflow into an existing one
- instantiate_template: build a fresh workflow from a gallery template
- set_status / cycle_status / rename
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from trackflow.errors import (
    DuplicateNodeId,
    DuplicateTrigger,
    FirstNodeMustBeTrigger,
    NodeNotFound,
    TriggerReplacementRequiresConfirmation,
)
from trackflow.models.template import NodeTemplate
from trackflow.models.workflow import (
    DEFAULT_INPUT_HANDLE,
    DEFAULT_OUTPUT_HANDLE,
    Connection,
    Position,
    Workflow,
    WorkflowNode,
    WorkflowStatus,
    new_connection_id,
    new_node_id,
    ports_for,
)
from trackflow.services.graph_validator import check_connection

if TYPE_CHECKING:
    from trackflow.services.template_resolver import TemplateResolver

logger = logging.getLogger(__name__)

ConfirmReplace = Callable[[WorkflowNode, NodeTemplate | None], bool]
"""Decides whether an existing trigger may be replaced.

Called with the current trigger and the template of the incoming one
(None when the incoming node has no resolvable template).
"""

STATUS_CYCLE: dict[WorkflowStatus, WorkflowStatus] = {
    WorkflowStatus.DRAFT: WorkflowStatus.ACTIVE,
    WorkflowStatus.ACTIVE: WorkflowStatus.PAUSED,
    WorkflowStatus.PAUSED: WorkflowStatus.DRAFT,
}


@dataclass
class MutationResult:
    """Result of applying an edit to a workflow."""

    workflow: Workflow
    applied: bool
    node_id: str | None = None
    edge_id: str | None = None
    removed_node_ids: list[str] = field(default_factory=list)
    removed_edge_ids: list[str] = field(default_factory=list)
    already_applied: bool = False


def node_from_template(template: NodeTemplate, position: Position | None = None) -> WorkflowNode:
    """Instantiate a node from a template.

    The template's default config is deep-copied so edits to the node can
    never reach the template or its other instances.
    """
    inputs, outputs = ports_for(template.type)
    return WorkflowNode(
        id=new_node_id(),
        template_id=template.id,
        type=template.type,
        category=template.category,
        name=template.name,
        description=template.description,
        icon=template.icon,
        position=position.model_copy() if position is not None else Position(),
        config=copy.deepcopy(dict(template.default_config)),
        inputs=inputs,
        outputs=outputs,
    )


class GraphMutator:
    """Applies structural edits to workflow graphs.

    The mutator holds no graph state. A resolver is optional and only used
    to hand the incoming template to the confirmation callback when the
    incoming trigger is an already-built node.
    """

    def __init__(self, resolver: TemplateResolver | None = None) -> None:
        self._resolver = resolver

    # ==================== Nodes ====================

    def add_node(
        self,
        workflow: Workflow,
        template: NodeTemplate,
        position: Position | None = None,
        confirm_replace: ConfirmReplace | None = None,
        connect_from: str | None = None,
    ) -> MutationResult:
        """Add a node instantiated from a template.

        Args:
            workflow: The current graph.
            template: Catalog template to instantiate.
            position: Initial canvas position (defaults to the origin).
            confirm_replace: Decision callback used when a trigger already exists.
            connect_from: Node id to connect to the new node in the same step.

        Returns:
            MutationResult with the new node id. ``applied`` is False when
            the confirmation callback declined the replacement.

        Raises:
            FirstNodeMustBeTrigger: Non-trigger template on an empty workflow.
            TriggerReplacementRequiresConfirmation: A trigger exists and no
                callback was supplied.
            StructuralViolation: ``connect_from`` produced an illegal edge.
        """
        working = workflow.model_copy(deep=True)

        if not working.nodes and not template.is_trigger:
            raise FirstNodeMustBeTrigger(
                f"'{template.name}' is a {template.type.value}; the first node must be a trigger"
            )

        removed_nodes: list[str] = []
        removed_edges: list[str] = []
        if template.is_trigger:
            existing = working.get_trigger()
            if existing is not None:
                if not self._confirm(existing, template, confirm_replace):
                    logger.info(f"Replacement of trigger {existing.id} declined")
                    return MutationResult(workflow=workflow, applied=False)
                removed_nodes, removed_edges = self._remove_in_place(working, existing.id)
                logger.info(f"Replacing trigger {existing.id} with '{template.name}'")

        node = node_from_template(template, position)
        working.nodes.append(node)

        edge_id = None
        if connect_from is not None:
            edge, _ = self._connect_in_place(
                working, connect_from, DEFAULT_OUTPUT_HANDLE, node.id, DEFAULT_INPUT_HANDLE
            )
            edge_id = edge.id

        working.touch()
        logger.debug(f"Added node {node.id} from template '{template.id}' to workflow {working.id}")
        return MutationResult(
            workflow=working,
            applied=True,
            node_id=node.id,
            edge_id=edge_id,
            removed_node_ids=removed_nodes,
            removed_edge_ids=removed_edges,
        )

    def insert_node(
        self,
        workflow: Workflow,
        node: WorkflowNode,
        confirm_replace: ConfirmReplace | None = None,
    ) -> MutationResult:
        """Insert an already-built node under the same rules as ``add_node``.

        The node keeps its id (which must be unused); its ports are reset to
        the canonical ports for its type.

        Raises:
            DuplicateNodeId: The id is already present.
            FirstNodeMustBeTrigger: Non-trigger node on an empty workflow.
            TriggerReplacementRequiresConfirmation: A trigger exists and no
                callback was supplied.
        """
        working = workflow.model_copy(deep=True)
        inserted, removed_nodes, removed_edges = self._insert_in_place(
            working, node, confirm_replace
        )
        if not inserted:
            return MutationResult(workflow=workflow, applied=False)

        working.touch()
        return MutationResult(
            workflow=working,
            applied=True,
            node_id=node.id,
            removed_node_ids=removed_nodes,
            removed_edge_ids=removed_edges,
        )

    def delete_node(self, workflow: Workflow, node_id: str) -> MutationResult:
        """Delete a node and every connection touching it.

        Deleting a node that is not present is a no-op reported as
        ``already_applied``.
        """
        working = workflow.model_copy(deep=True)
        if working.get_node(node_id) is None:
            return MutationResult(
                workflow=working, applied=True, node_id=node_id, already_applied=True
            )

        removed_nodes, removed_edges = self._remove_in_place(working, node_id)
        working.touch()
        logger.debug(
            f"Deleted node {node_id} and {len(removed_edges)} connection(s) from workflow {working.id}"
        )
        return MutationResult(
            workflow=working,
            applied=True,
            node_id=node_id,
            removed_node_ids=removed_nodes,
            removed_edge_ids=removed_edges,
        )

    def update_node_config(
        self, workflow: Workflow, node_id: str, key: str, value: Any
    ) -> MutationResult:
        """Set one config key on a node. Keys unknown to the template are accepted."""
        return self.update_node_config_many(workflow, node_id, {key: value})

    def update_node_config_many(
        self, workflow: Workflow, node_id: str, values: dict[str, Any]
    ) -> MutationResult:
        """Merge several config keys into a node's config."""
        working = workflow.model_copy(deep=True)
        node = self._require_node(working, node_id)

        if all(key in node.config and node.config[key] == value for key, value in values.items()):
            return MutationResult(
                workflow=working, applied=True, node_id=node_id, already_applied=True
            )

        node.config.update(copy.deepcopy(values))
        working.touch()
        return MutationResult(workflow=working, applied=True, node_id=node_id)

    def update_node_details(
        self,
        workflow: Workflow,
        node_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> MutationResult:
        """Change a node's display name and/or description."""
        working = workflow.model_copy(deep=True)
        node = self._require_node(working, node_id)

        if name is not None and name.strip():
            node.name = name.strip()
        if description is not None:
            node.description = description

        working.touch()
        return MutationResult(workflow=working, applied=True, node_id=node_id)

    def move_node(self, workflow: Workflow, node_id: str, position: Position) -> MutationResult:
        working = workflow.model_copy(deep=True)
        node = self._require_node(working, node_id)
        node.position = position.model_copy()
        working.touch()
        return MutationResult(workflow=working, applied=True, node_id=node_id)

    # ==================== Connections ====================

    def connect(
        self,
        workflow: Workflow,
        source_node_id: str,
        source_handle: str,
        target_node_id: str,
        target_handle: str,
    ) -> MutationResult:
        """Connect a node's output handle to another node's input handle.

        Connecting an identical (source, handle, target, handle) tuple twice
        yields a single connection; the second call reports ``already_applied``.

        Raises:
            UnknownNode, TriggerHasNoInput, UnknownPort, SelfConnection
        """
        working = workflow.model_copy(deep=True)
        edge, already = self._connect_in_place(
            working, source_node_id, source_handle, target_node_id, target_handle
        )
        if not already:
            working.touch()
        return MutationResult(
            workflow=working, applied=True, edge_id=edge.id, already_applied=already
        )

    def disconnect(self, workflow: Workflow, connection_id: str) -> MutationResult:
        """Remove a connection by id (idempotent)."""
        working = workflow.model_copy(deep=True)
        before = len(working.connections)
        working.connections = [c for c in working.connections if c.id != connection_id]

        if len(working.connections) == before:
            return MutationResult(
                workflow=working, applied=True, edge_id=connection_id, already_applied=True
            )

        working.touch()
        return MutationResult(
            workflow=working,
            applied=True,
            edge_id=connection_id,
            removed_edge_ids=[connection_id],
        )

    # ==================== Whole graphs ====================

    def merge_draft(
        self,
        workflow: Workflow,
        imported: Workflow,
        confirm_replace: ConfirmReplace | None = None,
    ) -> MutationResult:
        """Merge an imported workflow into an existing one.

        Imported nodes and connections get fresh ids. If both graphs have a
        trigger, ``confirm_replace`` decides: accepting swaps in the imported
        trigger; declining drops it and re-sources its outgoing connections
        from the existing trigger.
        """
        incoming_triggers = [n for n in imported.nodes if n.is_trigger]
        if len(incoming_triggers) > 1:
            raise DuplicateTrigger(
                f"Imported workflow has {len(incoming_triggers)} triggers; at most one is allowed"
            )

        working = workflow.model_copy(deep=True)
        existing_trigger = working.get_trigger()
        incoming_trigger = imported.get_trigger()

        id_map = {node.id: new_node_id() for node in imported.nodes}
        removed_nodes: list[str] = []
        removed_edges: list[str] = []

        nodes = sorted(imported.nodes, key=lambda n: not n.is_trigger)
        for source_node in nodes:
            node = source_node.model_copy(deep=True, update={"id": id_map[source_node.id]})
            if node.is_trigger and existing_trigger is not None:
                if not self._confirm(existing_trigger, self._template_for(node), confirm_replace):
                    # Keep the existing trigger and hang the draft's actions off it
                    id_map[source_node.id] = existing_trigger.id
                    logger.info(
                        f"Kept trigger {existing_trigger.id}; draft trigger '{node.name}' dropped"
                    )
                    continue
                more_nodes, more_edges = self._remove_in_place(working, existing_trigger.id)
                removed_nodes.extend(more_nodes)
                removed_edges.extend(more_edges)
                existing_trigger = None

            self._insert_in_place(working, node, confirm_replace=None)

        for connection in imported.connections:
            self._connect_in_place(
                working,
                id_map[connection.source_node_id],
                connection.source_handle,
                id_map[connection.target_node_id],
                connection.target_handle,
            )

        working.touch()
        logger.info(
            f"Merged {len(imported.nodes)} node(s) into workflow {working.id} "
            f"(incoming trigger: {incoming_trigger.id if incoming_trigger else None})"
        )
        return MutationResult(
            workflow=working,
            applied=True,
            removed_node_ids=removed_nodes,
            removed_edge_ids=removed_edges,
        )

    def instantiate_template(self, template: Workflow) -> Workflow:
        """Build a fresh draft workflow from a gallery template.

        Node and connection ids are regenerated and the graph is replayed
        through the insertion rules, so a malformed template raises a
        ``StructuralViolation`` instead of producing an invalid workflow.
        """
        fresh = Workflow(
            name=template.name,
            description=template.description,
            target_url=template.target_url,
        )
        result = self.merge_draft(fresh, template)
        return result.workflow

    # ==================== Status ====================

    def set_status(self, workflow: Workflow, status: WorkflowStatus | str) -> MutationResult:
        """Set the workflow status, keeping ``is_active`` in step with it."""
        status = WorkflowStatus(status)
        working = workflow.model_copy(deep=True)
        if working.status == status and working.is_active == (status == WorkflowStatus.ACTIVE):
            return MutationResult(workflow=working, applied=True, already_applied=True)

        working.status = status
        working.is_active = status == WorkflowStatus.ACTIVE
        working.touch()
        logger.info(f"Workflow {working.id} status -> {status.value}")
        return MutationResult(workflow=working, applied=True)

    def cycle_status(self, workflow: Workflow) -> MutationResult:
        """Advance draft -> active -> paused -> draft.

        Workflows in ``error`` or ``archived`` restart the cycle at draft.
        """
        return self.set_status(workflow, STATUS_CYCLE.get(workflow.status, WorkflowStatus.DRAFT))

    def rename(
        self, workflow: Workflow, name: str, description: str | None = None
    ) -> MutationResult:
        working = workflow.model_copy(deep=True)
        working.name = name.strip() or "Untitled Workflow"
        if description is not None:
            working.description = description
        working.touch()
        return MutationResult(workflow=working, applied=True)

    # ==================== In-place helpers ====================

    def _confirm(
        self,
        existing: WorkflowNode,
        template: NodeTemplate | None,
        confirm_replace: ConfirmReplace | None,
    ) -> bool:
        if confirm_replace is None:
            raise TriggerReplacementRequiresConfirmation(
                f"Workflow already has trigger '{existing.name}'; replacing it requires confirmation",
                node_id=existing.id,
            )
        return bool(confirm_replace(existing, template))

    def _template_for(self, node: WorkflowNode) -> NodeTemplate | None:
        if self._resolver is None:
            return None
        return self._resolver.resolve(node)

    @staticmethod
    def _require_node(working: Workflow, node_id: str) -> WorkflowNode:
        node = working.get_node(node_id)
        if node is None:
            raise NodeNotFound(f"Node '{node_id}' does not exist", node_id=node_id)
        return node

    def _insert_in_place(
        self,
        working: Workflow,
        node: WorkflowNode,
        confirm_replace: ConfirmReplace | None,
    ) -> tuple[bool, list[str], list[str]]:
        if working.get_node(node.id) is not None:
            raise DuplicateNodeId(f"Node id '{node.id}' is already in use", node_id=node.id)

        if not working.nodes and not node.is_trigger:
            raise FirstNodeMustBeTrigger(
                f"'{node.name}' is a {node.type.value}; the first node must be a trigger",
                node_id=node.id,
            )

        removed_nodes: list[str] = []
        removed_edges: list[str] = []
        if node.is_trigger:
            existing = working.get_trigger()
            if existing is not None:
                if not self._confirm(existing, self._template_for(node), confirm_replace):
                    return False, [], []
                removed_nodes, removed_edges = self._remove_in_place(working, existing.id)

        inputs, outputs = ports_for(node.type)
        working.nodes.append(
            node.model_copy(deep=True, update={"inputs": inputs, "outputs": outputs})
        )
        return True, removed_nodes, removed_edges

    @staticmethod
    def _remove_in_place(working: Workflow, node_id: str) -> tuple[list[str], list[str]]:
        removed_edges = [c.id for c in working.connections if c.touches(node_id)]
        working.connections = [c for c in working.connections if not c.touches(node_id)]
        working.nodes = [n for n in working.nodes if n.id != node_id]
        return [node_id], removed_edges

    @staticmethod
    def _connect_in_place(
        working: Workflow,
        source_node_id: str,
        source_handle: str,
        target_node_id: str,
        target_handle: str,
    ) -> tuple[Connection, bool]:
        violation = check_connection(
            working, source_node_id, source_handle, target_node_id, target_handle
        )
        if violation is not None:
            raise violation

        existing = working.find_connection(
            source_node_id, source_handle, target_node_id, target_handle
        )
        if existing is not None:
            return existing, True

        connection = Connection(
            id=new_connection_id(),
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            source_handle=source_handle,
            target_handle=target_handle,
        )
        working.connections.append(connection)
        return connection, False
