"""EditorSession - exclusive owner of one workflow while it is being edited.

All structural edits go through the graph mutator; the session only keeps
the latest graph, per-node config drafts and the bookkeeping for the two
asynchronous collaborators (layout and draft generation). Both follow
last-request-wins: a response is used only if no newer request was issued
and the session is still open.
"""

import logging
import uuid
from datetime import datetime
from typing import Any

from trackflow.editor.models import DraftStatus, EditorSessionInfo, GenerationOutcome
from trackflow.errors import (
    DraftGenerationError,
    ExternalServiceFailure,
    InvalidWorkflow,
    NodeNotFound,
    UnknownTemplate,
)
from trackflow.llm.workflow_generator import WorkflowDraftGenerator
from trackflow.models.draft import DraftWorkflow, GenerationResult
from trackflow.models.template import ConfigField, NodeTemplate
from trackflow.models.workflow import Position, Workflow, WorkflowNode, WorkflowStatus
from trackflow.services.config_editor import ConfigEditSession
from trackflow.services.draft_importer import DraftImporter
from trackflow.services.graph_mutator import ConfirmReplace, GraphMutator, MutationResult
from trackflow.services.graph_validator import ValidationReport, validate_workflow
from trackflow.services.layout_adapter import (
    LayoutAdapter,
    LayoutOutcome,
    LayoutStatus,
    apply_positions,
    suggest_position,
)
from trackflow.services.template_catalog import TemplateCatalog, get_template_catalog
from trackflow.services.template_resolver import TemplateResolver

logger = logging.getLogger(__name__)

# Fields that change on every edit and are ignored when detecting unsaved changes
_VOLATILE_FIELDS = {"updatedAt"}


def _snapshot(workflow: Workflow) -> dict[str, Any]:
    plain = workflow.to_plain()
    for key in _VOLATILE_FIELDS:
        plain.pop(key, None)
    return plain


class EditorSession:
    """An editing session over a single workflow.

    The session:
    - Owns the current graph and replaces it with each applied mutation
    - Buffers config edits per node until they are committed
    - Tracks unsaved changes against the last saved snapshot
    - Issues tokened layout and draft-generation requests
    """

    def __init__(
        self,
        workflow: Workflow | None = None,
        session_id: str | None = None,
        catalog: TemplateCatalog | None = None,
        layout_adapter: LayoutAdapter | None = None,
        generator: WorkflowDraftGenerator | None = None,
        importer: DraftImporter | None = None,
    ):
        """Open a session.

        Raises:
            InvalidWorkflow: The supplied workflow breaks a structural invariant.
        """
        if workflow is not None:
            report = validate_workflow(workflow)
            if not report.valid:
                logger.warning(f"Refusing to open workflow {workflow.id}: {report.errors[0]}")
                raise InvalidWorkflow(report.errors)

        self.session_id = session_id or str(uuid.uuid4())
        self.created_at = datetime.now()
        self.last_activity = datetime.now()

        self._catalog = catalog or get_template_catalog()
        self._resolver = TemplateResolver(self._catalog)
        self._mutator = GraphMutator(self._resolver)
        self._layout = layout_adapter or LayoutAdapter()
        self._generator = generator
        self._importer = importer or DraftImporter(self._catalog, self._mutator)

        self._workflow = workflow.model_copy(deep=True) if workflow is not None else Workflow()
        self._saved = _snapshot(self._workflow)
        self._config_sessions: dict[str, ConfigEditSession] = {}
        self._generation_token = 0
        self._closed = False

    # ==================== State ====================

    @property
    def workflow(self) -> Workflow:
        """The current graph. Treat as read-only; edit through the session."""
        return self._workflow

    @property
    def workflow_id(self) -> str:
        return self._workflow.id

    @property
    def is_active(self) -> bool:
        return not self._closed

    @property
    def has_unsaved_changes(self) -> bool:
        return _snapshot(self._workflow) != self._saved

    def mark_saved(self) -> None:
        """Record the current graph as the saved baseline."""
        self._saved = _snapshot(self._workflow)

    def export(self) -> dict[str, Any]:
        """Plain serializable value for the persistence boundary."""
        return self._workflow.to_plain()

    def info(self) -> EditorSessionInfo:
        return EditorSessionInfo(
            session_id=self.session_id,
            workflow_id=self._workflow.id,
            workflow_name=self._workflow.name,
            created_at=self.created_at,
            last_activity=self.last_activity,
            node_count=len(self._workflow.nodes),
            has_unsaved_changes=self.has_unsaved_changes,
            is_active=self.is_active,
        )

    def validate(self) -> ValidationReport:
        return validate_workflow(self._workflow, self._resolver)

    # ==================== Structural edits ====================

    def add_node(
        self,
        template_id: str,
        position: Position | None = None,
        confirm_replace: ConfirmReplace | None = None,
        connect_from: str | None = None,
        auto_position: bool = False,
    ) -> MutationResult:
        """Add a node from a catalog template.

        Args:
            template_id: Catalog template id.
            position: Explicit position. When omitted and ``auto_position``
                is set, the stacking heuristic picks one.
            confirm_replace: Decision callback for replacing the trigger.
            connect_from: Node to connect the new node from.

        Raises:
            UnknownTemplate: The template id is not in the catalog.
        """
        template = self._require_template(template_id)
        if position is None and auto_position:
            position = suggest_position(self._workflow, template.type)
        return self._apply(
            self._mutator.add_node(
                self._workflow,
                template,
                position=position,
                confirm_replace=confirm_replace,
                connect_from=connect_from,
            )
        )

    def delete_node(self, node_id: str) -> MutationResult:
        return self._apply(self._mutator.delete_node(self._workflow, node_id))

    def connect(
        self,
        source_node_id: str,
        target_node_id: str,
        source_handle: str = "output",
        target_handle: str = "input",
    ) -> MutationResult:
        return self._apply(
            self._mutator.connect(
                self._workflow, source_node_id, source_handle, target_node_id, target_handle
            )
        )

    def disconnect(self, connection_id: str) -> MutationResult:
        return self._apply(self._mutator.disconnect(self._workflow, connection_id))

    def move_node(self, node_id: str, position: Position) -> MutationResult:
        return self._apply(self._mutator.move_node(self._workflow, node_id, position))

    def update_node_details(
        self, node_id: str, name: str | None = None, description: str | None = None
    ) -> MutationResult:
        return self._apply(
            self._mutator.update_node_details(self._workflow, node_id, name, description)
        )

    def update_node_config(self, node_id: str, key: str, value: Any) -> MutationResult:
        """Write a config value directly, bypassing the two-phase buffer."""
        return self._apply(self._mutator.update_node_config(self._workflow, node_id, key, value))

    def rename(self, name: str, description: str | None = None) -> MutationResult:
        return self._apply(self._mutator.rename(self._workflow, name, description))

    def set_status(self, status: WorkflowStatus | str) -> MutationResult:
        return self._apply(self._mutator.set_status(self._workflow, status))

    def cycle_status(self) -> MutationResult:
        return self._apply(self._mutator.cycle_status(self._workflow))

    # ==================== Config editing ====================

    def fields(self, node_id: str) -> list[ConfigField]:
        return self._resolver.fields_for(self._require_node(node_id))

    def field_values(self, node_id: str) -> dict[str, Any]:
        """Display values for a node's fields, with staged drafts layered on top."""
        values = self._resolver.field_values(self._require_node(node_id))
        editor = self._config_sessions.get(node_id)
        if editor is not None:
            values.update(editor.pending)
        return values

    def config_editor(self, node_id: str) -> ConfigEditSession:
        self._require_node(node_id)
        editor = self._config_sessions.get(node_id)
        if editor is None:
            editor = ConfigEditSession(node_id, self._resolver, self._mutator)
            self._config_sessions[node_id] = editor
        return editor

    def stage_config(self, node_id: str, key: str, raw: Any) -> None:
        self._touch()
        self.config_editor(node_id).stage(key, raw)

    def commit_config(self, node_id: str, key: str | None = None) -> MutationResult:
        """Commit one staged key, or all staged keys of the node."""
        editor = self.config_editor(node_id)
        if key is None:
            return self._apply(editor.commit_all(self._workflow))
        return self._apply(editor.commit(self._workflow, key))

    def discard_config(self, node_id: str, key: str | None = None) -> None:
        editor = self._config_sessions.get(node_id)
        if editor is None:
            return
        if key is None:
            editor.discard_all()
        else:
            editor.discard(key)

    # ==================== Drafts ====================

    def import_draft(
        self,
        draft: GenerationResult | DraftWorkflow,
        confirm_replace: ConfirmReplace | None = None,
    ) -> MutationResult:
        """Validate a draft and merge it into the current workflow.

        Raises:
            DraftRejected: The draft violates graph invariants.
        """
        imported = self._importer.import_draft(draft)

        base = self._workflow
        if not base.nodes:
            # An empty workflow adopts the draft's name and description
            base = self._mutator.rename(base, imported.name, imported.description).workflow
        return self._apply(
            self._mutator.merge_draft(base, imported, confirm_replace=confirm_replace)
        )

    # ==================== Async collaborators ====================

    async def auto_layout(self) -> LayoutOutcome:
        """Lay out the current graph via the layout service.

        Positions are applied to the graph as it is when the response
        arrives; nodes added or removed meanwhile are handled by
        ``apply_positions``.
        """
        self._touch()
        if self._closed:
            return LayoutOutcome(status=LayoutStatus.ABANDONED, token=self._layout.latest_token)

        outcome = await self._layout.compute(self._workflow)
        if outcome.status == LayoutStatus.APPLIED and not self._closed:
            self._workflow = apply_positions(self._workflow, outcome.positions)
            logger.debug(f"Session {self.session_id}: applied layout {outcome.token}")
        return outcome

    async def generate_draft(
        self,
        prompt: str,
        confirm_replace: ConfirmReplace | None = None,
    ) -> GenerationOutcome:
        """Generate a draft from a prompt and merge it into the workflow.

        Raises:
            DraftGenerationError: The generator failed.
            DraftRejected: The draft violates graph invariants.
        """
        self._touch()
        self._generation_token += 1
        token = self._generation_token
        if self._closed:
            return GenerationOutcome(status=DraftStatus.ABANDONED, token=token)

        failure: ExternalServiceFailure | None = None
        try:
            generated = await self._get_generator().generate(prompt)
        except ExternalServiceFailure as e:
            failure = e

        # Failures of abandoned or superseded requests are discarded like their drafts
        if self._closed:
            logger.info(f"Session {self.session_id}: discarding draft {token}, session closed")
            return GenerationOutcome(status=DraftStatus.ABANDONED, token=token)
        if token != self._generation_token:
            logger.info(f"Session {self.session_id}: discarding draft {token}, superseded")
            return GenerationOutcome(status=DraftStatus.STALE, token=token)
        if failure is not None:
            raise failure

        result = self.import_draft(generated, confirm_replace=confirm_replace)
        return GenerationOutcome(
            status=DraftStatus.APPLIED,
            token=token,
            result=result,
            confidence=generated.confidence,
            intent=generated.intent,
        )

    def close(self) -> None:
        """Close the session. Responses still in flight will be discarded."""
        if self._closed:
            return
        self._closed = True
        self._layout.abandon()
        self._config_sessions.clear()
        logger.info(f"Editor session {self.session_id} closed")

    # ==================== Helpers ====================

    def _touch(self) -> None:
        self.last_activity = datetime.now()

    def _apply(self, result: MutationResult) -> MutationResult:
        self._touch()
        if result.applied:
            self._workflow = result.workflow
            for removed in result.removed_node_ids:
                self._config_sessions.pop(removed, None)
        return result

    def _require_node(self, node_id: str) -> WorkflowNode:
        node = self._workflow.get_node(node_id)
        if node is None:
            raise NodeNotFound(f"Node '{node_id}' does not exist", node_id=node_id)
        return node

    def _require_template(self, template_id: str) -> NodeTemplate:
        template = self._catalog.get(template_id)
        if template is None:
            raise UnknownTemplate(template_id)
        return template

    def _get_generator(self) -> WorkflowDraftGenerator:
        if self._generator is None:
            try:
                self._generator = WorkflowDraftGenerator(catalog=self._catalog)
            except ValueError as e:
                raise DraftGenerationError(f"Draft generator is not configured: {e}") from e
        return self._generator
