"""Tests for the GraphMutator service."""

import pytest

from trackflow.errors import (
    DuplicateNodeId,
    DuplicateTrigger,
    FirstNodeMustBeTrigger,
    NodeNotFound,
    SelfConnection,
    TriggerHasNoInput,
    TriggerReplacementRequiresConfirmation,
    UnknownNode,
    UnknownPort,
)
from trackflow.models import NodeKind, Position, Workflow, WorkflowNode, WorkflowStatus
from trackflow.services.graph_mutator import GraphMutator, node_from_template
from trackflow.services.graph_validator import validate_workflow


def _accept(existing, template):
    return True


def _decline(existing, template):
    return False


class TestAddNode:
    """Tests for adding nodes from templates."""

    def test_first_node_must_be_trigger(self, mutator, action_template):
        # Scenario A
        workflow = Workflow()
        with pytest.raises(FirstNodeMustBeTrigger):
            mutator.add_node(workflow, action_template)
        assert workflow.nodes == []

    def test_condition_cannot_be_first(self, mutator, condition_template):
        with pytest.raises(FirstNodeMustBeTrigger):
            mutator.add_node(Workflow(), condition_template)

    def test_trigger_on_empty_workflow(self, mutator, trigger_template):
        # Scenario B
        result = mutator.add_node(Workflow(), trigger_template)

        assert result.applied
        assert len(result.workflow.nodes) == 1
        node = result.workflow.nodes[0]
        assert node.id == result.node_id
        assert node.type == NodeKind.TRIGGER
        assert node.inputs == []
        assert node.outputs == ["output"]

    def test_node_copies_template_metadata(self, mutator, trigger_template):
        node = mutator.add_node(Workflow(), trigger_template).workflow.nodes[0]

        assert node.template_id == trigger_template.id
        assert node.name == trigger_template.name
        assert node.category == trigger_template.category
        assert node.icon == trigger_template.icon
        assert node.config == trigger_template.default_config

    def test_default_position_is_origin(self, mutator, trigger_template):
        node = mutator.add_node(Workflow(), trigger_template).workflow.nodes[0]
        assert (node.position.x, node.position.y) == (0, 0)

    def test_explicit_position(self, mutator, trigger_template):
        node = mutator.add_node(Workflow(), trigger_template, position=Position(x=12, y=34)).workflow.nodes[0]
        assert (node.position.x, node.position.y) == (12, 34)

    def test_action_ports(self, linear_workflow):
        action = linear_workflow.nodes[1]
        assert action.inputs == ["input"]
        assert action.outputs == ["output"]

    def test_ids_are_unique(self, mutator, trigger_template, action_template):
        workflow = mutator.add_node(Workflow(), trigger_template).workflow
        for _ in range(20):
            workflow = mutator.add_node(workflow, action_template).workflow
        ids = [n.id for n in workflow.nodes]
        assert len(set(ids)) == len(ids)

    def test_input_workflow_not_mutated(self, mutator, trigger_template):
        workflow = Workflow()
        mutator.add_node(workflow, trigger_template)
        assert workflow.nodes == []

    def test_connect_from_creates_edge(self, mutator, trigger_template, action_template):
        result = mutator.add_node(Workflow(), trigger_template)
        trigger_id = result.node_id
        result = mutator.add_node(result.workflow, action_template, connect_from=trigger_id)

        assert result.edge_id is not None
        edge = result.workflow.get_connection(result.edge_id)
        assert edge.source_node_id == trigger_id
        assert edge.target_node_id == result.node_id
        assert (edge.source_handle, edge.target_handle) == ("output", "input")

    def test_connect_from_unknown_node_is_all_or_nothing(self, mutator, linear_workflow, action_template):
        with pytest.raises(UnknownNode):
            mutator.add_node(linear_workflow, action_template, connect_from="missing")
        assert len(linear_workflow.nodes) == 2


class TestTriggerReplacement:
    """Tests for replacing the trigger (Scenario D)."""

    def test_without_confirmation_is_rejected(self, mutator, linear_workflow, other_trigger_template):
        trigger = linear_workflow.get_trigger()
        with pytest.raises(TriggerReplacementRequiresConfirmation):
            mutator.add_node(linear_workflow, other_trigger_template)
        assert linear_workflow.get_trigger().id == trigger.id
        assert len(linear_workflow.connections) == 1

    def test_declined_is_a_no_op(self, mutator, linear_workflow, other_trigger_template):
        result = mutator.add_node(linear_workflow, other_trigger_template, confirm_replace=_decline)

        assert not result.applied
        assert result.workflow.get_trigger().id == linear_workflow.get_trigger().id
        assert len(result.workflow.nodes) == 2

    def test_confirmed_replaces_trigger_and_edges(self, mutator, linear_workflow, other_trigger_template):
        old_trigger = linear_workflow.get_trigger()
        old_edge = linear_workflow.connections[0]

        result = mutator.add_node(linear_workflow, other_trigger_template, confirm_replace=_accept)

        triggers = [n for n in result.workflow.nodes if n.is_trigger]
        assert len(triggers) == 1
        assert triggers[0].id == result.node_id
        assert result.workflow.get_node(old_trigger.id) is None
        assert result.removed_node_ids == [old_trigger.id]
        assert result.removed_edge_ids == [old_edge.id]
        assert not any(c.touches(old_trigger.id) for c in result.workflow.connections)

    def test_confirm_callback_receives_existing_and_template(
        self, mutator, linear_workflow, other_trigger_template
    ):
        calls = []

        def confirm(existing, template):
            calls.append((existing.id, template.id))
            return True

        mutator.add_node(linear_workflow, other_trigger_template, confirm_replace=confirm)
        assert calls == [(linear_workflow.get_trigger().id, other_trigger_template.id)]

    def test_trigger_uniqueness_over_many_adds(self, mutator, catalog):
        workflow = Workflow()
        for template in catalog.triggers():
            workflow = mutator.add_node(workflow, template, confirm_replace=_accept).workflow
        assert sum(1 for n in workflow.nodes if n.is_trigger) == 1


class TestConfigIsolation:
    """Node config must never alias template defaults."""

    def test_mutating_node_config_does_not_touch_template(self, mutator, trigger_template):
        before = dict(trigger_template.default_config)
        workflow = mutator.add_node(Workflow(), trigger_template).workflow
        workflow.nodes[0].config["visitCount"] = 99
        workflow.nodes[0].config["extra"] = "x"

        assert dict(trigger_template.default_config) == before
        fresh = mutator.add_node(Workflow(), trigger_template).workflow.nodes[0]
        assert fresh.config == before

    def test_instances_do_not_share_config(self, trigger_template):
        a = node_from_template(trigger_template)
        b = node_from_template(trigger_template)
        a.config["visitCount"] = 5
        assert b.config["visitCount"] == trigger_template.default_config["visitCount"]


class TestDeleteNode:
    """Tests for node deletion."""

    def test_delete_cascades_edges(self, mutator, linear_workflow):
        # Scenario C
        trigger, action = linear_workflow.nodes
        result = mutator.delete_node(linear_workflow, action.id)

        assert [n.id for n in result.workflow.nodes] == [trigger.id]
        assert result.workflow.connections == []
        assert result.removed_edge_ids == [linear_workflow.connections[0].id]

    def test_no_dangling_references(self, mutator, linear_workflow, action_template):
        trigger = linear_workflow.get_trigger()
        workflow = mutator.add_node(linear_workflow, action_template, connect_from=trigger.id).workflow
        result = mutator.delete_node(workflow, trigger.id)

        assert result.workflow.get_node(trigger.id) is None
        assert not any(c.touches(trigger.id) for c in result.workflow.connections)

    def test_delete_is_idempotent(self, mutator, linear_workflow):
        action_id = linear_workflow.nodes[1].id
        once = mutator.delete_node(linear_workflow, action_id).workflow
        twice = mutator.delete_node(once, action_id)

        assert twice.already_applied
        assert twice.workflow.nodes == once.nodes
        assert twice.workflow.connections == once.connections

    def test_delete_unknown_node(self, mutator, linear_workflow):
        result = mutator.delete_node(linear_workflow, "nope")
        assert result.already_applied
        assert len(result.workflow.nodes) == 2


class TestUpdateNode:
    """Tests for config and detail updates."""

    def test_update_config_merges_key(self, mutator, linear_workflow):
        action = linear_workflow.nodes[1]
        result = mutator.update_node_config(linear_workflow, action.id, "newText", "Hello")

        updated = result.workflow.get_node(action.id)
        assert updated.config["newText"] == "Hello"
        assert updated.config["selector"] == action.config["selector"]

    def test_update_config_accepts_unknown_key(self, mutator, linear_workflow):
        action = linear_workflow.nodes[1]
        result = mutator.update_node_config(linear_workflow, action.id, "custom", {"a": 1})
        assert result.workflow.get_node(action.id).config["custom"] == {"a": 1}

    def test_update_config_unknown_node(self, mutator, linear_workflow):
        with pytest.raises(NodeNotFound):
            mutator.update_node_config(linear_workflow, "missing", "key", 1)

    def test_update_config_same_value_is_already_applied(self, mutator, linear_workflow):
        trigger = linear_workflow.get_trigger()
        result = mutator.update_node_config(linear_workflow, trigger.id, "visitCount", 1)
        assert result.already_applied

    def test_update_many(self, mutator, linear_workflow):
        action = linear_workflow.nodes[1]
        result = mutator.update_node_config_many(
            linear_workflow, action.id, {"selector": "h1", "newText": "Hi"}
        )
        config = result.workflow.get_node(action.id).config
        assert (config["selector"], config["newText"]) == ("h1", "Hi")

    def test_update_details(self, mutator, linear_workflow):
        action = linear_workflow.nodes[1]
        result = mutator.update_node_details(linear_workflow, action.id, name="Swap headline", description="d")
        node = result.workflow.get_node(action.id)
        assert (node.name, node.description) == ("Swap headline", "d")

    def test_blank_name_is_ignored(self, mutator, linear_workflow):
        action = linear_workflow.nodes[1]
        node = mutator.update_node_details(linear_workflow, action.id, name="   ").workflow.get_node(action.id)
        assert node.name == action.name

    def test_move_node(self, mutator, linear_workflow):
        action = linear_workflow.nodes[1]
        node = mutator.move_node(linear_workflow, action.id, Position(x=1, y=2)).workflow.get_node(action.id)
        assert (node.position.x, node.position.y) == (1, 2)


class TestConnect:
    """Tests for connection rules."""

    def _with_two_actions(self, mutator, linear_workflow, action_template):
        return mutator.add_node(linear_workflow, action_template).workflow

    def test_connect_two_actions(self, mutator, linear_workflow, action_template):
        workflow = self._with_two_actions(mutator, linear_workflow, action_template)
        a, b = workflow.nodes[1], workflow.nodes[2]
        result = mutator.connect(workflow, a.id, "output", b.id, "input")
        assert result.workflow.find_connection(a.id, "output", b.id, "input") is not None

    def test_connect_is_idempotent(self, mutator, linear_workflow):
        trigger, action = linear_workflow.nodes
        result = mutator.connect(linear_workflow, trigger.id, "output", action.id, "input")

        assert result.already_applied
        assert result.edge_id == linear_workflow.connections[0].id
        assert len(result.workflow.connections) == 1

    def test_connect_twice_produces_one_edge(self, mutator, linear_workflow, action_template):
        workflow = self._with_two_actions(mutator, linear_workflow, action_template)
        a, b = workflow.nodes[1], workflow.nodes[2]
        workflow = mutator.connect(workflow, a.id, "output", b.id, "input").workflow
        workflow = mutator.connect(workflow, a.id, "output", b.id, "input").workflow
        assert len(workflow.connections_to(b.id)) == 1

    def test_cannot_target_trigger(self, mutator, linear_workflow):
        trigger, action = linear_workflow.nodes
        with pytest.raises(TriggerHasNoInput):
            mutator.connect(linear_workflow, action.id, "output", trigger.id, "input")

    def test_unknown_source(self, mutator, linear_workflow):
        with pytest.raises(UnknownNode):
            mutator.connect(linear_workflow, "ghost", "output", linear_workflow.nodes[1].id, "input")

    def test_unknown_target(self, mutator, linear_workflow):
        with pytest.raises(UnknownNode):
            mutator.connect(linear_workflow, linear_workflow.nodes[0].id, "output", "ghost", "input")

    def test_unknown_port(self, mutator, linear_workflow):
        trigger, action = linear_workflow.nodes
        with pytest.raises(UnknownPort):
            mutator.connect(linear_workflow, trigger.id, "true", action.id, "input")
        with pytest.raises(UnknownPort):
            mutator.connect(linear_workflow, trigger.id, "output", action.id, "other")

    def test_self_connection(self, mutator, linear_workflow):
        action = linear_workflow.nodes[1]
        with pytest.raises(SelfConnection):
            mutator.connect(linear_workflow, action.id, "output", action.id, "input")

    def test_disconnect(self, mutator, linear_workflow):
        edge_id = linear_workflow.connections[0].id
        result = mutator.disconnect(linear_workflow, edge_id)
        assert result.workflow.connections == []
        assert result.removed_edge_ids == [edge_id]

    def test_disconnect_is_idempotent(self, mutator, linear_workflow):
        result = mutator.disconnect(linear_workflow, "conn-missing")
        assert result.already_applied
        assert len(result.workflow.connections) == 1


class TestInsertNode:
    """Tests for inserting already-built nodes."""

    def test_duplicate_id_rejected(self, mutator, linear_workflow):
        existing = linear_workflow.nodes[1]
        clone = existing.model_copy()
        with pytest.raises(DuplicateNodeId):
            mutator.insert_node(linear_workflow, clone)

    def test_ports_are_normalized(self, mutator):
        node = WorkflowNode(id="t1", type=NodeKind.TRIGGER, name="Custom", inputs=["input"], outputs=[])
        inserted = mutator.insert_node(Workflow(), node).workflow.get_node("t1")
        assert inserted.inputs == []
        assert inserted.outputs == ["output"]

    def test_first_node_rule(self, mutator):
        node = WorkflowNode(id="a1", type=NodeKind.ACTION, name="Replace Text")
        with pytest.raises(FirstNodeMustBeTrigger):
            mutator.insert_node(Workflow(), node)


class TestMergeDraft:
    """Tests for merging imported workflows."""

    def _imported(self, mutator, other_trigger_template, overlay_template):
        result = mutator.add_node(Workflow(), other_trigger_template)
        trigger_id = result.node_id
        return mutator.add_node(result.workflow, overlay_template, connect_from=trigger_id).workflow

    def test_merge_into_empty_workflow(self, mutator, other_trigger_template, overlay_template):
        imported = self._imported(mutator, other_trigger_template, overlay_template)
        result = mutator.merge_draft(Workflow(), imported)

        assert len(result.workflow.nodes) == 2
        assert len(result.workflow.connections) == 1
        assert {n.id for n in result.workflow.nodes}.isdisjoint({n.id for n in imported.nodes})
        assert validate_workflow(result.workflow).valid

    def test_conflicting_trigger_requires_confirmation(
        self, mutator, linear_workflow, other_trigger_template, overlay_template
    ):
        imported = self._imported(mutator, other_trigger_template, overlay_template)
        with pytest.raises(TriggerReplacementRequiresConfirmation):
            mutator.merge_draft(linear_workflow, imported)

    def test_accepting_replaces_trigger(
        self, mutator, linear_workflow, other_trigger_template, overlay_template
    ):
        imported = self._imported(mutator, other_trigger_template, overlay_template)
        old_trigger = linear_workflow.get_trigger()
        result = mutator.merge_draft(linear_workflow, imported, confirm_replace=_accept)

        trigger = result.workflow.get_trigger()
        assert trigger.name == other_trigger_template.name
        assert old_trigger.id in result.removed_node_ids
        assert sum(1 for n in result.workflow.nodes if n.is_trigger) == 1

    def test_declining_resources_edges_from_existing_trigger(
        self, mutator, linear_workflow, other_trigger_template, overlay_template
    ):
        imported = self._imported(mutator, other_trigger_template, overlay_template)
        old_trigger = linear_workflow.get_trigger()
        result = mutator.merge_draft(linear_workflow, imported, confirm_replace=_decline)

        assert result.workflow.get_trigger().id == old_trigger.id
        overlay = next(n for n in result.workflow.nodes if n.name == overlay_template.name)
        sources = [c.source_node_id for c in result.workflow.connections_to(overlay.id)]
        assert sources == [old_trigger.id]
        assert len(result.workflow.nodes) == 3


    def test_imported_graph_with_two_triggers(self, mutator):
        imported = Workflow(
            nodes=[
                WorkflowNode(id="t1", type=NodeKind.TRIGGER, name="Page Visits"),
                WorkflowNode(id="t2", type=NodeKind.TRIGGER, name="Exit Intent"),
            ]
        )
        with pytest.raises(DuplicateTrigger):
            mutator.merge_draft(Workflow(), imported, confirm_replace=_accept)


class TestInstantiateTemplate:
    """Tests for creating workflows from the gallery."""

    def test_gallery_templates_instantiate(self, mutator, catalog):
        for template in catalog.list_workflow_templates():
            workflow = mutator.instantiate_template(template)

            assert workflow.id != template.id
            assert workflow.name == template.name
            assert workflow.status == WorkflowStatus.DRAFT
            assert len(workflow.nodes) == len(template.nodes)
            assert len(workflow.connections) == len(template.connections)
            assert {n.id for n in workflow.nodes}.isdisjoint({n.id for n in template.nodes})
            assert validate_workflow(workflow).valid


class TestStatus:
    """Tests for workflow status changes."""

    def test_set_active_sets_is_active(self, mutator):
        result = mutator.set_status(Workflow(), WorkflowStatus.ACTIVE)
        assert result.workflow.status == WorkflowStatus.ACTIVE
        assert result.workflow.is_active

    def test_set_status_from_string(self, mutator):
        assert mutator.set_status(Workflow(), "paused").workflow.status == WorkflowStatus.PAUSED

    def test_set_same_status(self, mutator):
        assert mutator.set_status(Workflow(), WorkflowStatus.DRAFT).already_applied

    def test_cycle(self, mutator):
        workflow = Workflow()
        seen = []
        for _ in range(3):
            workflow = mutator.cycle_status(workflow).workflow
            seen.append((workflow.status, workflow.is_active))
        assert seen == [
            (WorkflowStatus.ACTIVE, True),
            (WorkflowStatus.PAUSED, False),
            (WorkflowStatus.DRAFT, False),
        ]

    def test_cycle_from_error_restarts_at_draft(self, mutator):
        workflow = Workflow(status=WorkflowStatus.ERROR)
        assert mutator.cycle_status(workflow).workflow.status == WorkflowStatus.DRAFT

    def test_rename(self, mutator):
        result = mutator.rename(Workflow(), "  Exit offer  ", description="Pricing page")
        assert (result.workflow.name, result.workflow.description) == ("Exit offer", "Pricing page")

    def test_rename_blank(self, mutator):
        assert mutator.rename(Workflow(name="x"), " ").workflow.name == "Untitled Workflow"


class TestMutatorWithoutResolver:
    def test_confirm_gets_none_template_for_built_nodes(self, linear_workflow):
        calls = []
        node = WorkflowNode(id="t2", type=NodeKind.TRIGGER, name="Exit Intent")
        GraphMutator().insert_node(
            linear_workflow, node, confirm_replace=lambda e, t: calls.append(t) or True
        )
        assert calls == [None]
