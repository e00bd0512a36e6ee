"""LayoutAdapter - automatic node placement via an external layout service.

The adapter never computes a layout itself. It translates the graph into
an ELK-style request, hands it to a ``LayoutService`` and maps the answer
back to node positions. Requests are tokened: only the answer to the most
recently issued request is reported as ``applied``; answers to superseded
requests come back ``stale`` and answers arriving after ``abandon()`` come
back ``abandoned``. A failing service is never fatal.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel
from pydantic import Field as PydanticField

from trackflow.errors import LayoutServiceError
from trackflow.models.template import NodeKind
from trackflow.models.workflow import Position, Workflow

logger = logging.getLogger(__name__)

NODE_WIDTH = 320
NODE_HEIGHT = 200

LAYOUT_OPTIONS: dict[str, str] = {
    "elk.algorithm": "layered",
    "elk.layered.spacing.nodeNodeBetweenLayers": "100",
    "elk.spacing.nodeNode": "80",
    "elk.direction": "DOWN",
}

# Stacking heuristic used when no layout has been computed yet
TRIGGER_ANCHOR = Position(x=400, y=50)
FALLBACK_ANCHOR = Position(x=100, y=100)
STACK_NODE_HEIGHT = 120
STACK_SPACING = 50

DEFAULT_TIMEOUT = 10.0


class LayoutStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    STALE = "stale"
    ABANDONED = "abandoned"


class LayoutOutcome(BaseModel):
    """Outcome of one layout request."""

    status: LayoutStatus
    token: int
    positions: dict[str, Position] = PydanticField(default_factory=dict)
    error: str | None = None


class LayoutService(ABC):
    """Out-of-process layout engine.

    Implementations receive an ELK graph (``id``, ``layoutOptions``,
    ``children``, ``edges``) and return either ``{"children": [{id, x, y}]}``
    or ``{"positions": {id: {x, y}}}``. Failures must be raised as
    ``LayoutServiceError``.
    """

    @abstractmethod
    async def layout(self, graph: dict[str, Any]) -> dict[str, Any]:
        pass


class HttpLayoutService(LayoutService):
    """Layout service reached over HTTP (an ELK server behind a POST endpoint)."""

    def __init__(self, url: str | None = None, timeout: float | None = None):
        """Initialize the service.

        Args:
            url: Endpoint URL. If not provided, uses LAYOUT_SERVICE_URL env var.
            timeout: Request timeout in seconds. If not provided, uses
                LAYOUT_SERVICE_TIMEOUT env var (default 10).
        """
        self.url = url or os.getenv("LAYOUT_SERVICE_URL")
        if not self.url:
            raise ValueError(
                "Layout service URL required. Set LAYOUT_SERVICE_URL environment variable "
                "or pass url parameter."
            )
        self.timeout = timeout or float(os.getenv("LAYOUT_SERVICE_TIMEOUT", str(DEFAULT_TIMEOUT)))

    async def layout(self, graph: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=graph)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise LayoutServiceError(
                f"Layout service returned HTTP {e.response.status_code}",
                retriable=e.response.status_code >= 500,
            ) from e
        except httpx.RequestError as e:
            raise LayoutServiceError(
                f"Failed to reach layout service at {self.url}: {e}", retriable=True
            ) from e
        except ValueError as e:
            raise LayoutServiceError(f"Layout service returned invalid JSON: {e}") from e


def build_layout_request(workflow: Workflow) -> dict[str, Any]:
    """Translate a workflow into an ELK graph."""
    return {
        "id": "root",
        "layoutOptions": dict(LAYOUT_OPTIONS),
        "children": [
            {"id": node.id, "width": NODE_WIDTH, "height": NODE_HEIGHT}
            for node in workflow.nodes
        ],
        "edges": [
            {
                "id": connection.id,
                "sources": [connection.source_node_id],
                "targets": [connection.target_node_id],
            }
            for connection in workflow.connections
        ],
    }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_layout_response(payload: Any) -> dict[str, Position]:
    """Extract node positions from a layout service response.

    Entries without coordinates are skipped (those nodes keep their
    position). Anything else that does not fit either response shape is
    malformed.

    Raises:
        LayoutServiceError: The payload is malformed.
    """
    if not isinstance(payload, dict):
        raise LayoutServiceError(f"Layout response must be an object, got {type(payload).__name__}")

    entries: list[tuple[Any, Any]] = []
    if isinstance(payload.get("children"), list):
        for child in payload["children"]:
            if not isinstance(child, dict) or "id" not in child:
                raise LayoutServiceError("Layout response child without an id")
            entries.append((child["id"], child))
    elif isinstance(payload.get("positions"), dict):
        entries = list(payload["positions"].items())
    else:
        raise LayoutServiceError("Layout response has neither 'children' nor 'positions'")

    positions: dict[str, Position] = {}
    for node_id, coords in entries:
        if not isinstance(coords, dict):
            raise LayoutServiceError(f"Layout response entry for '{node_id}' is not an object")
        x, y = coords.get("x"), coords.get("y")
        if x is None or y is None:
            continue
        if not _is_number(x) or not _is_number(y):
            raise LayoutServiceError(f"Layout response entry for '{node_id}' has non-numeric coordinates")
        positions[str(node_id)] = Position(x=x, y=y)
    return positions


def apply_positions(workflow: Workflow, positions: dict[str, Position]) -> Workflow:
    """Return a copy of the workflow with mapped node positions overwritten.

    Ids that are not in the workflow (e.g. nodes deleted while the layout
    was in flight) are ignored; unmapped nodes keep their position.
    """
    updated = workflow.model_copy(deep=True)
    for node in updated.nodes:
        if node.id in positions:
            node.position = positions[node.id].model_copy()
    return updated


def suggest_position(workflow: Workflow, node_type: NodeKind | str) -> Position:
    """Initial position for a new node before any layout has run.

    Triggers go to the top anchor; other nodes are stacked below the
    trigger in insertion order.
    """
    if NodeKind(node_type) == NodeKind.TRIGGER:
        return TRIGGER_ANCHOR.model_copy()

    trigger = workflow.get_trigger()
    if trigger is None:
        return FALLBACK_ANCHOR.model_copy()

    operations = sum(1 for node in workflow.nodes if not node.is_trigger)
    step = STACK_NODE_HEIGHT + STACK_SPACING
    return Position(x=trigger.position.x, y=trigger.position.y + step + operations * step)


class LayoutAdapter:
    """Issues tokened layout requests with last-request-wins semantics."""

    def __init__(self, service: LayoutService | None = None) -> None:
        self._service = service
        self._latest_token = 0
        self._abandoned_through = 0

    @property
    def latest_token(self) -> int:
        return self._latest_token

    def abandon(self) -> None:
        """Mark every request issued so far as abandoned."""
        self._abandoned_through = self._latest_token

    async def compute(self, workflow: Workflow) -> LayoutOutcome:
        """Request a layout for the workflow as it is now.

        The workflow is not modified; callers apply ``positions`` to their
        current graph only when the outcome is ``applied``.
        """
        self._latest_token += 1
        token = self._latest_token

        positions: dict[str, Position] = {}
        error: str | None = None
        if self._service is None:
            error = "No layout service configured"
        else:
            try:
                payload = await self._service.layout(build_layout_request(workflow))
                positions = parse_layout_response(payload)
            except LayoutServiceError as e:
                error = str(e)
                logger.warning(f"Layout request {token} for workflow {workflow.id} failed: {e}")

        if token <= self._abandoned_through:
            logger.debug(f"Discarding layout response {token}: abandoned")
            return LayoutOutcome(status=LayoutStatus.ABANDONED, token=token)
        if token != self._latest_token:
            logger.debug(f"Discarding layout response {token}: superseded by {self._latest_token}")
            return LayoutOutcome(status=LayoutStatus.STALE, token=token)
        if error is not None:
            return LayoutOutcome(status=LayoutStatus.FAILED, token=token, error=error)

        return LayoutOutcome(status=LayoutStatus.APPLIED, token=token, positions=positions)
