"""Exception hierarchy for the workflow builder core.

Three families of failure exist:

1. ``StructuralViolation`` - an operation would break a graph invariant.
   Raised synchronously, nothing is mutated.
2. ``ExternalServiceFailure`` - the layout service or the draft generator
   failed or returned garbage. Non-fatal, the graph keeps its prior state.
3. Lookup misses (template resolution) are not exceptions at all; the
   resolver returns ``None`` and logs a warning.
"""

from typing import Any


class WorkflowError(Exception):
    """Base exception for workflow builder errors."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class StructuralViolation(WorkflowError):
    """An operation would break a structural invariant of the workflow graph."""

    pass


class FirstNodeMustBeTrigger(StructuralViolation):
    """The first node of a workflow must be a trigger."""

    pass


class TriggerReplacementRequiresConfirmation(StructuralViolation):
    """A second trigger was added without a confirmation decision."""

    pass


class DuplicateTrigger(StructuralViolation):
    """A workflow would end up with more than one trigger."""

    pass


class DuplicateNodeId(StructuralViolation):
    """A node id is already present in the workflow."""

    pass


class NodeNotFound(StructuralViolation):
    """The referenced node id does not exist in the workflow."""

    pass


class UnknownNode(StructuralViolation):
    """A connection endpoint references a node that does not exist."""

    pass


class TriggerHasNoInput(StructuralViolation):
    """Connections may never target a trigger node."""

    pass


class UnknownPort(StructuralViolation):
    """A connection references a handle the node does not expose."""

    pass


class SelfConnection(StructuralViolation):
    """A node may not be connected to itself."""

    pass


class InvalidWorkflow(StructuralViolation):
    """A supplied workflow already breaks one or more structural invariants."""

    def __init__(self, errors: list[str]):
        summary = errors[0] if errors else "Invalid workflow"
        if len(errors) > 1:
            summary = f"{summary} (and {len(errors) - 1} more)"
        super().__init__(summary)
        self.errors = errors


class UnknownTemplate(WorkflowError):
    """A template id requested by a caller is not in the catalog."""

    def __init__(self, template_id: str):
        super().__init__(f"Unknown template '{template_id}'")
        self.template_id = template_id


class ConfigValueError(WorkflowError):
    """A provisional config value could not be committed for its field type."""

    def __init__(self, message: str, key: str, raw_value: Any = None, node_id: str | None = None):
        super().__init__(message, node_id=node_id)
        self.key = key
        self.raw_value = raw_value


class DraftRejected(WorkflowError):
    """An imported draft violates one or more invariants and was refused as a whole."""

    def __init__(self, errors: list[str]):
        summary = errors[0] if errors else "Draft rejected"
        if len(errors) > 1:
            summary = f"{summary} (and {len(errors) - 1} more)"
        super().__init__(summary)
        self.errors = errors


class ExternalServiceFailure(Exception):
    """Base exception for failures of out-of-process collaborators."""

    def __init__(self, message: str, service: str | None = None, retriable: bool = False):
        super().__init__(message)
        self.service = service
        self.retriable = retriable


class LayoutServiceError(ExternalServiceFailure):
    """The layout service failed or returned a malformed response."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("service", "layout")
        super().__init__(message, **kwargs)


class DraftGenerationError(ExternalServiceFailure):
    """The natural-language draft generator failed or returned malformed data."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("service", "draft_generator")
        super().__init__(message, **kwargs)
