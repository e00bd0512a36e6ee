"""Pydantic models for editing sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from trackflow.services.graph_mutator import MutationResult


class DraftStatus(str, Enum):
    """What happened to a generated draft once it arrived."""

    APPLIED = "applied"
    STALE = "stale"  # A newer generation request was issued meanwhile
    ABANDONED = "abandoned"  # The session was closed meanwhile


@dataclass
class GenerationOutcome:
    """Result of a draft generation request issued by a session."""

    status: DraftStatus
    token: int
    result: MutationResult | None = None
    confidence: float | None = None
    intent: dict[str, Any] | None = None


class EditorSessionInfo(BaseModel):
    """Information about an active editing session."""

    session_id: str
    workflow_id: str
    workflow_name: str
    created_at: datetime
    last_activity: datetime
    node_count: int
    has_unsaved_changes: bool
    is_active: bool = True
