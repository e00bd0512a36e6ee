"""EditorSessionManager handles editing session lifecycle."""

import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Any

from trackflow.editor.models import EditorSessionInfo
from trackflow.editor.session import EditorSession
from trackflow.llm.workflow_generator import WorkflowDraftGenerator
from trackflow.models.workflow import Workflow
from trackflow.services.graph_mutator import GraphMutator
from trackflow.services.layout_adapter import HttpLayoutService, LayoutAdapter, LayoutService
from trackflow.services.template_catalog import TemplateCatalog, get_template_catalog

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT_MINUTES = 60
CLEANUP_INTERVAL_SECONDS = 60

# Singleton manager instance
_manager: "EditorSessionManager | None" = None


def _default_layout_service() -> LayoutService | None:
    """HTTP layout service when LAYOUT_SERVICE_URL is set, otherwise none."""
    if not os.getenv("LAYOUT_SERVICE_URL"):
        logger.info("LAYOUT_SERVICE_URL not set, automatic layout disabled")
        return None
    return HttpLayoutService()


class EditorSessionManager:
    """Manages editing session lifecycle.

    Responsibilities:
    - Create sessions for new, existing or gallery workflows
    - Store active sessions (in-memory)
    - Close sessions idle for longer than the timeout
    """

    def __init__(
        self,
        session_timeout_minutes: int | None = None,
        catalog: TemplateCatalog | None = None,
        layout_service: LayoutService | None = None,
        generator: WorkflowDraftGenerator | None = None,
    ):
        """Initialize the session manager.

        Args:
            session_timeout_minutes: Idle lifetime of a session. If not
                provided, uses EDITOR_SESSION_TIMEOUT_MINUTES env var.
            catalog: Template catalog shared by all sessions.
            layout_service: Layout service shared by all sessions (each
                session keeps its own request tokens).
            generator: Draft generator shared by all sessions. Created lazily
                by each session when omitted.
        """
        if session_timeout_minutes is None:
            session_timeout_minutes = int(
                os.getenv("EDITOR_SESSION_TIMEOUT_MINUTES", str(DEFAULT_SESSION_TIMEOUT_MINUTES))
            )
        self._sessions: dict[str, EditorSession] = {}
        self._session_timeout = timedelta(minutes=session_timeout_minutes)
        self._catalog = catalog or get_template_catalog()
        self._layout_service = layout_service
        self._generator = generator
        self._cleanup_task: asyncio.Task | None = None

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)

    def create_session(self, workflow: Workflow | None = None) -> EditorSession:
        """Open a session over a workflow (a blank one when omitted)."""
        session = EditorSession(
            workflow=workflow,
            catalog=self._catalog,
            layout_adapter=LayoutAdapter(self._layout_service),
            generator=self._generator,
        )
        self._sessions[session.session_id] = session
        logger.info(
            f"Created editor session {session.session_id} for workflow {session.workflow_id} "
            f"(total sessions: {len(self._sessions)})"
        )
        return session

    def create_session_from_template(self, template_id: str) -> EditorSession | None:
        """Open a session over a fresh copy of a gallery template.

        Returns:
            The session, or None if the gallery has no such template.
        """
        template = self._catalog.get_workflow_template(template_id)
        if template is None:
            return None
        workflow = GraphMutator().instantiate_template(template)
        return self.create_session(workflow)

    def get_session(self, session_id: str) -> EditorSession | None:
        """Get a session by ID, refreshing its idle timer."""
        session = self._sessions.get(session_id)
        if session:
            session.last_activity = datetime.now()
        return session

    def list_sessions(self) -> list[EditorSessionInfo]:
        return [s.info() for s in self._sessions.values()]

    def close_session(self, session_id: str) -> bool:
        """Close and remove a session.

        Returns:
            True if the session was found and closed.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.has_unsaved_changes:
            logger.warning(f"Closing editor session {session_id} with unsaved changes")
        session.close()
        return True

    def cleanup_expired(self) -> int:
        """Close sessions that have been idle too long.

        Returns:
            Number of sessions cleaned up.
        """
        now = datetime.now()
        expired_ids = [
            sid for sid, s in self._sessions.items()
            if now - s.last_activity > self._session_timeout
        ]
        for session_id in expired_ids:
            logger.info(f"Cleaning up expired editor session {session_id}")
            self.close_session(session_id)
        return len(expired_ids)

    async def start_cleanup_task(self) -> None:
        """Start the background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Started editor session cleanup background task")

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Stopped editor session cleanup background task")

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
                self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in editor session cleanup task: {e}")

    async def shutdown(self) -> None:
        """Stop the cleanup task and close all sessions."""
        await self.stop_cleanup_task()
        for session_id in list(self._sessions):
            self.close_session(session_id)
        logger.info("Editor session manager shutdown complete")

    def get_stats(self) -> dict[str, Any]:
        now = datetime.now()
        oldest = min((s.created_at for s in self._sessions.values()), default=None)
        return {
            "active_sessions": len(self._sessions),
            "unsaved_sessions": sum(1 for s in self._sessions.values() if s.has_unsaved_changes),
            "oldest_session_age_seconds": (now - oldest).total_seconds() if oldest else None,
            "cleanup_task_running": self._cleanup_task is not None,
        }


def get_session_manager() -> EditorSessionManager:
    """Get the singleton session manager instance."""
    global _manager
    if _manager is None:
        _manager = EditorSessionManager(layout_service=_default_layout_service())
    return _manager


async def init_session_manager() -> EditorSessionManager:
    """Initialize the session manager and start background tasks."""
    manager = get_session_manager()
    await manager.start_cleanup_task()
    return manager


async def shutdown_session_manager() -> None:
    global _manager
    if _manager:
        await _manager.shutdown()
        _manager = None
