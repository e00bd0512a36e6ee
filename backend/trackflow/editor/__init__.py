"""Editing sessions: exclusive, in-memory ownership of a workflow while it is edited."""

from trackflow.editor.manager import (
    EditorSessionManager,
    get_session_manager,
    init_session_manager,
    shutdown_session_manager,
)
from trackflow.editor.models import DraftStatus, EditorSessionInfo, GenerationOutcome
from trackflow.editor.session import EditorSession

__all__ = [
    "DraftStatus",
    "EditorSession",
    "EditorSessionInfo",
    "EditorSessionManager",
    "GenerationOutcome",
    "get_session_manager",
    "init_session_manager",
    "shutdown_session_manager",
]
