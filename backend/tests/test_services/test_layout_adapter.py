"""Tests for the layout adapter."""

import asyncio

import pytest

from trackflow.errors import LayoutServiceError
from trackflow.models import Position, Workflow
from trackflow.services.layout_adapter import (
    LAYOUT_OPTIONS,
    HttpLayoutService,
    LayoutAdapter,
    LayoutStatus,
    apply_positions,
    build_layout_request,
    parse_layout_response,
    suggest_position,
)


class TestLayoutRequest:
    def test_request_shape(self, linear_workflow):
        request = build_layout_request(linear_workflow)

        assert request["layoutOptions"] == LAYOUT_OPTIONS
        assert [c["id"] for c in request["children"]] == [n.id for n in linear_workflow.nodes]
        assert all(c["width"] == 320 and c["height"] == 200 for c in request["children"])
        edge = request["edges"][0]
        connection = linear_workflow.connections[0]
        assert edge == {
            "id": connection.id,
            "sources": [connection.source_node_id],
            "targets": [connection.target_node_id],
        }


class TestParseLayoutResponse:
    """Tests for reading layout service answers."""

    def test_children_shape(self):
        positions = parse_layout_response({"children": [{"id": "a", "x": 1, "y": 2.5}]})
        assert positions["a"] == Position(x=1, y=2.5)

    def test_positions_shape(self):
        positions = parse_layout_response({"positions": {"a": {"x": 3, "y": 4}}})
        assert positions == {"a": Position(x=3, y=4)}

    def test_entries_without_coordinates_are_skipped(self):
        positions = parse_layout_response({"children": [{"id": "a"}, {"id": "b", "x": 0, "y": 0}]})
        assert list(positions) == ["b"]

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {},
            {"children": "nope"},
            {"children": [{"x": 1, "y": 1}]},
            {"children": [{"id": "a", "x": "1", "y": 2}]},
            {"positions": {"a": [1, 2]}},
            {"children": [{"id": "a", "x": True, "y": 2}]},
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(LayoutServiceError):
            parse_layout_response(payload)


class TestApplyPositions:
    def test_only_mapped_nodes_move(self, linear_workflow):
        trigger, action = linear_workflow.nodes
        updated = apply_positions(
            linear_workflow, {action.id: Position(x=9, y=9), "deleted-node": Position(x=1, y=1)}
        )

        assert updated.get_node(action.id).position == Position(x=9, y=9)
        assert updated.get_node(trigger.id).position == trigger.position
        assert linear_workflow.get_node(action.id).position != Position(x=9, y=9)


class TestSuggestPosition:
    """Tests for the stacking heuristic."""

    def test_trigger_anchor(self):
        assert suggest_position(Workflow(), "trigger") == Position(x=400, y=50)

    def test_no_trigger(self):
        assert suggest_position(Workflow(), "action") == Position(x=100, y=100)

    def test_stacks_below_trigger(self, linear_workflow):
        # one operation already below the trigger at (400, 50)
        assert suggest_position(linear_workflow, "condition") == Position(x=400, y=50 + 170 + 170)


class TestLayoutAdapter:
    """Tests for tokened layout requests."""

    @pytest.mark.asyncio
    async def test_applied(self, fake_layout_service, linear_workflow):
        adapter = LayoutAdapter(fake_layout_service)
        outcome = await adapter.compute(linear_workflow)

        assert outcome.status == LayoutStatus.APPLIED
        assert outcome.token == 1
        action = linear_workflow.nodes[1]
        assert outcome.positions[action.id] == Position(x=100, y=250)
        assert fake_layout_service.requests[0]["children"][0]["id"] == linear_workflow.nodes[0].id

    @pytest.mark.asyncio
    async def test_no_service(self, linear_workflow):
        outcome = await LayoutAdapter().compute(linear_workflow)
        assert outcome.status == LayoutStatus.FAILED
        assert outcome.positions == {}

    @pytest.mark.asyncio
    async def test_service_error_is_failed(self, fake_layout_service, linear_workflow):
        fake_layout_service.error = LayoutServiceError("boom", retriable=True)
        outcome = await LayoutAdapter(fake_layout_service).compute(linear_workflow)
        assert outcome.status == LayoutStatus.FAILED
        assert "boom" in outcome.error

    @pytest.mark.asyncio
    async def test_malformed_response_is_failed(self, fake_layout_service, linear_workflow):
        fake_layout_service.response = {"unexpected": True}
        outcome = await LayoutAdapter(fake_layout_service).compute(linear_workflow)
        assert outcome.status == LayoutStatus.FAILED

    @pytest.mark.asyncio
    async def test_last_request_wins(self, fake_layout_service, linear_workflow):
        adapter = LayoutAdapter(fake_layout_service)
        fake_layout_service.hold = True

        first = asyncio.create_task(adapter.compute(linear_workflow))
        await fake_layout_service.wait_for_pending(1)
        second = asyncio.create_task(adapter.compute(linear_workflow))
        await fake_layout_service.wait_for_pending(2)

        # The older answer arrives last
        fake_layout_service.release(1)
        newer = await second
        fake_layout_service.release(0)
        older = await first

        assert newer.status == LayoutStatus.APPLIED
        assert older.status == LayoutStatus.STALE
        assert older.positions == {}

    @pytest.mark.asyncio
    async def test_abandoned(self, fake_layout_service, linear_workflow):
        adapter = LayoutAdapter(fake_layout_service)
        fake_layout_service.hold = True

        task = asyncio.create_task(adapter.compute(linear_workflow))
        await fake_layout_service.wait_for_pending(1)
        adapter.abandon()
        fake_layout_service.release(0)

        outcome = await task
        assert outcome.status == LayoutStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_abandon_takes_precedence_over_failure(self, fake_layout_service, linear_workflow):
        adapter = LayoutAdapter(fake_layout_service)
        fake_layout_service.hold = True
        fake_layout_service.error = LayoutServiceError("late failure")

        task = asyncio.create_task(adapter.compute(linear_workflow))
        await fake_layout_service.wait_for_pending(1)
        adapter.abandon()
        fake_layout_service.release(0)

        assert (await task).status == LayoutStatus.ABANDONED


class TestHttpLayoutService:
    def test_requires_url(self, monkeypatch):
        monkeypatch.delenv("LAYOUT_SERVICE_URL", raising=False)
        with pytest.raises(ValueError):
            HttpLayoutService()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LAYOUT_SERVICE_URL", "http://layout.internal/layout")
        monkeypatch.setenv("LAYOUT_SERVICE_TIMEOUT", "2.5")
        service = HttpLayoutService()
        assert service.url == "http://layout.internal/layout"
        assert service.timeout == 2.5
