"""Editing session API routes.

Over HTTP the trigger-replacement decision travels with the request as
``replace_trigger``: omitted means "not decided" (409 if a trigger would be
replaced), ``true`` confirms and ``false`` declines.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from pydantic import Field as PydanticField

from trackflow.editor import EditorSession, EditorSessionInfo, get_session_manager
from trackflow.errors import (
    ConfigValueError,
    DraftRejected,
    DuplicateNodeId,
    DuplicateTrigger,
    ExternalServiceFailure,
    InvalidWorkflow,
    NodeNotFound,
    StructuralViolation,
    TriggerReplacementRequiresConfirmation,
    UnknownTemplate,
)
from trackflow.models import ConfigField, GenerationResult, Position, Workflow, WorkflowStatus
from trackflow.services.graph_mutator import ConfirmReplace, MutationResult
from trackflow.services.graph_validator import ValidationReport
from trackflow.services.layout_adapter import LayoutOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


# ==================== Request / response models ====================


class CreateSessionRequest(BaseModel):
    """Request to open an editing session.

    At most one of ``workflow`` and ``template_id`` may be given; with
    neither, the session starts from a blank workflow.
    """

    workflow: Workflow | None = None
    template_id: str | None = None


class SessionState(BaseModel):
    info: EditorSessionInfo
    workflow: Workflow
    validation: ValidationReport


class MutationResponse(BaseModel):
    applied: bool
    already_applied: bool = False
    node_id: str | None = None
    edge_id: str | None = None
    removed_node_ids: list[str] = []
    removed_edge_ids: list[str] = []
    workflow: Workflow

    @classmethod
    def from_result(cls, result: MutationResult, workflow: Workflow) -> "MutationResponse":
        return cls(
            applied=result.applied,
            already_applied=result.already_applied,
            node_id=result.node_id,
            edge_id=result.edge_id,
            removed_node_ids=result.removed_node_ids,
            removed_edge_ids=result.removed_edge_ids,
            workflow=workflow,
        )


class AddNodeRequest(BaseModel):
    template_id: str
    position: Position | None = None
    connect_from: str | None = None
    auto_position: bool = False
    replace_trigger: bool | None = None


class UpdateNodeRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    position: Position | None = None


class ConnectRequest(BaseModel):
    source_node_id: str
    target_node_id: str
    source_handle: str = "output"
    target_handle: str = "input"


class StageConfigRequest(BaseModel):
    value: Any = None


class CommitConfigRequest(BaseModel):
    key: str | None = PydanticField(default=None, description="Commit one key; all staged keys when omitted")


class NodeConfigResponse(BaseModel):
    node_id: str
    fields: list[ConfigField]
    values: dict[str, Any]
    pending: dict[str, Any]


class StatusRequest(BaseModel):
    status: WorkflowStatus | None = PydanticField(
        default=None, description="Target status; cycles draft -> active -> paused when omitted"
    )


class RenameRequest(BaseModel):
    name: str
    description: str | None = None


class LayoutResponse(BaseModel):
    outcome: LayoutOutcome
    workflow: Workflow


class GenerateRequest(BaseModel):
    prompt: str
    replace_trigger: bool | None = None


class ImportRequest(BaseModel):
    draft: GenerationResult
    replace_trigger: bool | None = None


class GenerateResponse(BaseModel):
    status: str
    token: int
    confidence: float | None = None
    intent: dict[str, Any] | None = None
    mutation: MutationResponse | None = None


# ==================== Helpers ====================


def _confirm_from_flag(replace_trigger: bool | None) -> ConfirmReplace | None:
    """Turn the request flag into a confirmation callback (None = undecided)."""
    if replace_trigger is None:
        return None
    return lambda existing, template: replace_trigger


def _http_error(e: Exception) -> HTTPException:
    """Map a domain exception to an HTTP error."""
    if isinstance(e, (NodeNotFound, UnknownTemplate)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (TriggerReplacementRequiresConfirmation, DuplicateTrigger, DuplicateNodeId)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidWorkflow):
        return HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})
    if isinstance(e, StructuralViolation):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ConfigValueError):
        return HTTPException(status_code=422, detail={"key": e.key, "message": str(e)})
    if isinstance(e, DraftRejected):
        return HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})
    if isinstance(e, ExternalServiceFailure):
        logger.warning(f"External service '{e.service}' failed: {e}")
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _get_session(session_id: str) -> EditorSession:
    session = get_session_manager().get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _state(session: EditorSession) -> SessionState:
    return SessionState(
        info=session.info(),
        workflow=session.workflow,
        validation=session.validate(),
    )


# ==================== Sessions ====================


@router.post("/sessions")
async def create_session(request: CreateSessionRequest) -> SessionState:
    """Open an editing session."""
    if request.workflow is not None and request.template_id is not None:
        raise HTTPException(status_code=400, detail="Give either workflow or template_id, not both")

    manager = get_session_manager()
    if request.template_id is not None:
        try:
            session = manager.create_session_from_template(request.template_id)
        except StructuralViolation as e:
            raise _http_error(e) from e
        if session is None:
            raise HTTPException(
                status_code=404, detail=f"Workflow template '{request.template_id}' not found"
            )
    else:
        try:
            session = manager.create_session(request.workflow)
        except InvalidWorkflow as e:
            raise _http_error(e) from e
    return _state(session)


@router.get("/sessions")
async def list_sessions() -> list[EditorSessionInfo]:
    return get_session_manager().list_sessions()


@router.get("/sessions/{session_id}")
async def get_session(session_id: str) -> SessionState:
    return _state(_get_session(session_id))


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str) -> dict[str, str]:
    if not get_session_manager().close_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "closed"}


@router.patch("/sessions/{session_id}")
async def rename_workflow(session_id: str, request: RenameRequest) -> MutationResponse:
    session = _get_session(session_id)
    result = session.rename(request.name, request.description)
    return MutationResponse.from_result(result, session.workflow)


@router.post("/sessions/{session_id}/status")
async def change_status(session_id: str, request: StatusRequest) -> MutationResponse:
    session = _get_session(session_id)
    if request.status is None:
        result = session.cycle_status()
    else:
        result = session.set_status(request.status)
    return MutationResponse.from_result(result, session.workflow)


@router.get("/sessions/{session_id}/validation")
async def validate_session(session_id: str) -> ValidationReport:
    return _get_session(session_id).validate()


@router.get("/sessions/{session_id}/export")
async def export_workflow(session_id: str) -> dict[str, Any]:
    """Plain workflow value for the persistence layer."""
    return _get_session(session_id).export()


@router.post("/sessions/{session_id}/save")
async def mark_saved(session_id: str) -> dict[str, Any]:
    """Mark the current workflow as saved and return it for persistence."""
    session = _get_session(session_id)
    session.mark_saved()
    return session.export()


# ==================== Nodes ====================


@router.post("/sessions/{session_id}/nodes")
async def add_node(session_id: str, request: AddNodeRequest) -> MutationResponse:
    session = _get_session(session_id)
    try:
        result = session.add_node(
            request.template_id,
            position=request.position,
            confirm_replace=_confirm_from_flag(request.replace_trigger),
            connect_from=request.connect_from,
            auto_position=request.auto_position,
        )
    except (StructuralViolation, UnknownTemplate) as e:
        raise _http_error(e) from e
    return MutationResponse.from_result(result, session.workflow)


@router.patch("/sessions/{session_id}/nodes/{node_id}")
async def update_node(session_id: str, node_id: str, request: UpdateNodeRequest) -> MutationResponse:
    session = _get_session(session_id)
    try:
        result = session.update_node_details(node_id, request.name, request.description)
        if request.position is not None:
            result = session.move_node(node_id, request.position)
    except StructuralViolation as e:
        raise _http_error(e) from e
    return MutationResponse.from_result(result, session.workflow)


@router.delete("/sessions/{session_id}/nodes/{node_id}")
async def delete_node(session_id: str, node_id: str) -> MutationResponse:
    session = _get_session(session_id)
    result = session.delete_node(node_id)
    return MutationResponse.from_result(result, session.workflow)


# ==================== Node config ====================


def _config_response(session: EditorSession, node_id: str) -> NodeConfigResponse:
    return NodeConfigResponse(
        node_id=node_id,
        fields=session.fields(node_id),
        values=session.field_values(node_id),
        pending=session.config_editor(node_id).pending,
    )


@router.get("/sessions/{session_id}/nodes/{node_id}/config")
async def get_node_config(session_id: str, node_id: str) -> NodeConfigResponse:
    """Field schema and display values for the configuration panel."""
    session = _get_session(session_id)
    try:
        return _config_response(session, node_id)
    except NodeNotFound as e:
        raise _http_error(e) from e


@router.put("/sessions/{session_id}/nodes/{node_id}/config/{key}")
async def stage_config_value(
    session_id: str, node_id: str, key: str, request: StageConfigRequest
) -> NodeConfigResponse:
    """Stage a provisional value. Nothing is written to the workflow."""
    session = _get_session(session_id)
    try:
        session.stage_config(node_id, key, request.value)
        return _config_response(session, node_id)
    except NodeNotFound as e:
        raise _http_error(e) from e


@router.post("/sessions/{session_id}/nodes/{node_id}/config/commit")
async def commit_config(
    session_id: str, node_id: str, request: CommitConfigRequest
) -> MutationResponse:
    session = _get_session(session_id)
    try:
        result = session.commit_config(node_id, request.key)
    except (StructuralViolation, ConfigValueError) as e:
        raise _http_error(e) from e
    return MutationResponse.from_result(result, session.workflow)


@router.delete("/sessions/{session_id}/nodes/{node_id}/config")
async def discard_config(session_id: str, node_id: str, key: str | None = None) -> NodeConfigResponse:
    session = _get_session(session_id)
    session.discard_config(node_id, key)
    try:
        return _config_response(session, node_id)
    except NodeNotFound as e:
        raise _http_error(e) from e


# ==================== Connections ====================


@router.post("/sessions/{session_id}/connections")
async def connect(session_id: str, request: ConnectRequest) -> MutationResponse:
    session = _get_session(session_id)
    try:
        result = session.connect(
            request.source_node_id,
            request.target_node_id,
            source_handle=request.source_handle,
            target_handle=request.target_handle,
        )
    except StructuralViolation as e:
        raise _http_error(e) from e
    return MutationResponse.from_result(result, session.workflow)


@router.delete("/sessions/{session_id}/connections/{connection_id}")
async def disconnect(session_id: str, connection_id: str) -> MutationResponse:
    session = _get_session(session_id)
    result = session.disconnect(connection_id)
    return MutationResponse.from_result(result, session.workflow)


# ==================== Layout & drafts ====================


@router.post("/sessions/{session_id}/layout")
async def auto_layout(session_id: str) -> LayoutResponse:
    """Run automatic layout. A failing layout service leaves positions unchanged."""
    session = _get_session(session_id)
    outcome = await session.auto_layout()
    return LayoutResponse(outcome=outcome, workflow=session.workflow)


@router.post("/sessions/{session_id}/generate")
async def generate_draft(session_id: str, request: GenerateRequest) -> GenerateResponse:
    """Generate a draft from a prompt and merge it into the session's workflow."""
    session = _get_session(session_id)
    try:
        outcome = await session.generate_draft(
            request.prompt, confirm_replace=_confirm_from_flag(request.replace_trigger)
        )
    except (ExternalServiceFailure, DraftRejected, StructuralViolation) as e:
        raise _http_error(e) from e

    return GenerateResponse(
        status=outcome.status.value,
        token=outcome.token,
        confidence=outcome.confidence,
        intent=outcome.intent,
        mutation=(
            MutationResponse.from_result(outcome.result, session.workflow)
            if outcome.result is not None
            else None
        ),
    )


@router.post("/sessions/{session_id}/import")
async def import_draft(session_id: str, request: ImportRequest) -> MutationResponse:
    """Import an externally produced draft into the session's workflow."""
    session = _get_session(session_id)
    try:
        result = session.import_draft(
            request.draft, confirm_replace=_confirm_from_flag(request.replace_trigger)
        )
    except (DraftRejected, StructuralViolation) as e:
        raise _http_error(e) from e
    return MutationResponse.from_result(result, session.workflow)


@router.get("/editor/stats")
async def editor_stats() -> dict[str, Any]:
    return get_session_manager().get_stats()
