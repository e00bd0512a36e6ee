"""DraftImporter - turn an untrusted AI draft into a valid workflow.

A draft is checked as a whole and then replayed node by node through the
graph mutator's insertion rules on an empty workflow, so an imported graph
is held to exactly the invariants an interactively built one is. A draft
with any violation is refused entirely; partial imports never happen.
"""

from __future__ import annotations

import copy
import logging
import math
import os
from collections import Counter

from trackflow.errors import DraftRejected, StructuralViolation
from trackflow.models.draft import DraftNode, DraftWorkflow, GenerationResult
from trackflow.models.template import NodeKind
from trackflow.models.workflow import (
    DEFAULT_INPUT_HANDLE,
    DEFAULT_OUTPUT_HANDLE,
    Position,
    Workflow,
    WorkflowNode,
    new_node_id,
    ports_for,
)
from trackflow.services.graph_mutator import GraphMutator
from trackflow.services.template_catalog import TemplateCatalog, get_template_catalog

logger = logging.getLogger(__name__)

DEFAULT_DRAFT_NAME = "AI Generated Workflow"


def _min_confidence_from_env() -> float:
    return float(os.getenv("TRACKFLOW_MIN_DRAFT_CONFIDENCE", "0"))


class DraftImporter:
    """Validates and imports workflow drafts produced by the draft generator."""

    def __init__(
        self,
        catalog: TemplateCatalog | None = None,
        mutator: GraphMutator | None = None,
        min_confidence: float | None = None,
    ) -> None:
        self._catalog = catalog or get_template_catalog()
        self._mutator = mutator or GraphMutator()
        self.min_confidence = (
            min_confidence if min_confidence is not None else _min_confidence_from_env()
        )

    def validate_draft(self, draft: DraftWorkflow, confidence: float | None = None) -> list[str]:
        """Collect every reason the draft cannot be imported.

        Returns:
            A list of error messages (empty when the draft is acceptable).
        """
        errors: list[str] = []

        if confidence is not None:
            if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
                errors.append(f"Confidence {confidence} is outside [0, 1]")
            elif confidence < self.min_confidence:
                errors.append(
                    f"Confidence {confidence:.2f} is below the minimum of {self.min_confidence:.2f}"
                )

        if not draft.nodes:
            errors.append("Draft has no nodes")
            return errors

        triggers = [node for node in draft.nodes if node.type == NodeKind.TRIGGER]
        if not triggers:
            errors.append("Draft has no trigger node")
        elif len(triggers) > 1:
            errors.append(f"Draft has {len(triggers)} trigger nodes; exactly one is required")

        id_counts = Counter(node.id for node in draft.nodes if node.id)
        for node_id, count in id_counts.items():
            if count > 1:
                errors.append(f"Node id '{node_id}' is used by {count} nodes")

        nodes_by_id = {node.id: node for node in draft.nodes if node.id}
        for index, connection in enumerate(draft.connections):
            label = connection.id or f"#{index}"
            source = nodes_by_id.get(connection.source_node_id)
            target = nodes_by_id.get(connection.target_node_id)

            if source is None:
                errors.append(
                    f"Connection {label} references unknown source '{connection.source_node_id}'"
                )
            if target is None:
                errors.append(
                    f"Connection {label} references unknown target '{connection.target_node_id}'"
                )
            if source is None or target is None:
                continue

            if connection.source_node_id == connection.target_node_id:
                errors.append(f"Connection {label} connects '{source.id}' to itself")
                continue
            if target.type == NodeKind.TRIGGER:
                errors.append(f"Connection {label} targets trigger '{target.id}'")
                continue

            _, source_outputs = ports_for(source.type)
            target_inputs, _ = ports_for(target.type)
            source_handle = connection.source_handle or DEFAULT_OUTPUT_HANDLE
            target_handle = connection.target_handle or DEFAULT_INPUT_HANDLE
            if source_handle not in source_outputs:
                errors.append(f"Connection {label} uses unknown output handle '{source_handle}'")
            if target_handle not in target_inputs:
                errors.append(f"Connection {label} uses unknown input handle '{target_handle}'")

        return errors

    def import_draft(
        self,
        draft: DraftWorkflow | GenerationResult,
        confidence: float | None = None,
    ) -> Workflow:
        """Import a draft as a new workflow.

        Args:
            draft: The draft, or a generation result carrying draft and confidence.
            confidence: Generator confidence (taken from the result when omitted).

        Raises:
            DraftRejected: The draft violates one or more invariants.
        """
        if isinstance(draft, GenerationResult):
            if confidence is None:
                confidence = draft.confidence
            draft = draft.workflow

        errors = self.validate_draft(draft, confidence)
        if errors:
            logger.warning(f"Draft rejected with {len(errors)} error(s): {errors[0]}")
            raise DraftRejected(errors)

        workflow = Workflow(
            name=draft.name or DEFAULT_DRAFT_NAME,
            description=draft.description or "",
            target_url=draft.target_url,
        )

        ordered = sorted(draft.nodes, key=lambda n: n.type != NodeKind.TRIGGER)
        try:
            for draft_node in ordered:
                node = self._build_node(draft_node)
                workflow = self._mutator.insert_node(workflow, node).workflow

            for connection in draft.connections:
                workflow = self._mutator.connect(
                    workflow,
                    connection.source_node_id,
                    connection.source_handle or DEFAULT_OUTPUT_HANDLE,
                    connection.target_node_id,
                    connection.target_handle or DEFAULT_INPUT_HANDLE,
                ).workflow
        except StructuralViolation as e:
            logger.warning(f"Draft rejected during replay: {e}")
            raise DraftRejected([str(e)]) from e

        logger.info(
            f"Imported draft '{workflow.name}': {len(workflow.nodes)} node(s), "
            f"{len(workflow.connections)} connection(s)"
        )
        return workflow

    def _build_node(self, draft_node: DraftNode) -> WorkflowNode:
        """Build a node from a draft, filling missing metadata from the matching template.

        Imported nodes carry no template id; they are resolved by name and
        type when edited.
        """
        template = self._catalog.find_by_name(draft_node.name, draft_node.type)
        config = copy.deepcopy(dict(template.default_config)) if template is not None else {}
        config.update(draft_node.config)

        inputs, outputs = ports_for(draft_node.type)
        return WorkflowNode(
            id=draft_node.id or new_node_id(),
            type=draft_node.type,
            name=draft_node.name,
            category=draft_node.category or (template.category if template else ""),
            description=draft_node.description or (template.description if template else ""),
            icon=draft_node.icon or (template.icon if template else ""),
            position=draft_node.position or Position(),
            config=config,
            inputs=inputs,
            outputs=outputs,
        )
