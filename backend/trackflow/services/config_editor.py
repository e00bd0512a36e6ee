"""Two-phase editing of node configuration.

Keystrokes are staged as provisional raw values and never touch the
workflow. Only an explicit commit coerces the raw value to the field's
type and writes it through the graph mutator. A value that cannot be
coerced raises ``ConfigValueError`` and stays staged so the editor can
show it back to the user.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from trackflow.errors import ConfigValueError, NodeNotFound
from trackflow.models.template import ConfigField, FieldType
from trackflow.models.workflow import Workflow
from trackflow.services.graph_mutator import GraphMutator, MutationResult
from trackflow.services.template_resolver import TemplateResolver

logger = logging.getLogger(__name__)

TRUE_STRINGS = {"true", "on", "1", "yes"}
FALSE_STRINGS = {"false", "off", "0", "no", ""}


def _coerce_number(field: ConfigField, raw: Any) -> int | float:
    if isinstance(raw, bool):
        raise ConfigValueError(f"'{field.label}' must be a number", key=field.key, raw_value=raw)
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            raise ConfigValueError(f"'{field.label}' must be finite", key=field.key, raw_value=raw)
        return raw

    text = str(raw).strip()
    if not text:
        # Cleared number fields fall back to the field default
        default = field.default if field.default is not None else 0
        return default

    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        raise ConfigValueError(
            f"'{field.label}' must be a number, got '{text}'", key=field.key, raw_value=raw
        ) from None
    if not math.isfinite(value):
        raise ConfigValueError(f"'{field.label}' must be finite", key=field.key, raw_value=raw)
    return value


def _coerce_boolean(field: ConfigField, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    text = str(raw).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    raise ConfigValueError(
        f"'{field.label}' must be true or false, got '{raw}'", key=field.key, raw_value=raw
    )


def _coerce_select(field: ConfigField, raw: Any) -> str:
    value = "" if raw is None else str(raw)
    allowed = field.option_values
    if value == "" and not field.required:
        return value
    if allowed and value not in allowed:
        raise ConfigValueError(
            f"'{value}' is not a valid option for '{field.label}' (expected one of: {', '.join(allowed)})",
            key=field.key,
            raw_value=raw,
        )
    return value


def coerce_value(field: ConfigField | None, raw: Any) -> Any:
    """Coerce a provisional raw value to the type its field declares.

    Keys without a field schema (unknown keys, or nodes whose template
    cannot be resolved) are stored exactly as given.
    """
    if field is None:
        return raw
    if field.type == FieldType.NUMBER:
        return _coerce_number(field, raw)
    if field.type == FieldType.BOOLEAN:
        return _coerce_boolean(field, raw)
    if field.type == FieldType.SELECT:
        return _coerce_select(field, raw)
    return "" if raw is None else str(raw)


class ConfigEditSession:
    """Provisional edits for the config fields of one node."""

    def __init__(
        self,
        node_id: str,
        resolver: TemplateResolver,
        mutator: GraphMutator | None = None,
    ) -> None:
        self.node_id = node_id
        self._resolver = resolver
        self._mutator = mutator or GraphMutator(resolver)
        self._pending: dict[str, Any] = {}

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    @property
    def pending(self) -> dict[str, Any]:
        """A copy of the staged raw values."""
        return dict(self._pending)

    def stage(self, key: str, raw: Any) -> None:
        """Store a provisional value. Never coerces and never writes to the graph."""
        self._pending[key] = raw

    def provisional(self, key: str) -> Any | None:
        return self._pending.get(key)

    def discard(self, key: str) -> None:
        self._pending.pop(key, None)

    def discard_all(self) -> None:
        self._pending.clear()

    def commit(self, workflow: Workflow, key: str) -> MutationResult:
        """Coerce one staged value and write it to the node's config.

        Raises:
            NodeNotFound: The node is no longer in the workflow.
            ConfigValueError: The value does not fit the field type. The
                staged value and the workflow are left untouched.
        """
        if key not in self._pending:
            return MutationResult(
                workflow=workflow, applied=True, node_id=self.node_id, already_applied=True
            )

        value = self._coerce(workflow, key, self._pending[key])
        result = self._mutator.update_node_config(workflow, self.node_id, key, value)
        del self._pending[key]
        return result

    def commit_all(self, workflow: Workflow) -> MutationResult:
        """Commit every staged value in one step.

        All values are coerced before anything is written, so one bad
        value leaves every staged value and the workflow untouched.
        """
        if not self._pending:
            return MutationResult(
                workflow=workflow, applied=True, node_id=self.node_id, already_applied=True
            )

        values = {key: self._coerce(workflow, key, raw) for key, raw in self._pending.items()}
        result = self._mutator.update_node_config_many(workflow, self.node_id, values)
        self._pending.clear()
        logger.debug(f"Committed {len(values)} config value(s) on node {self.node_id}")
        return result

    def _coerce(self, workflow: Workflow, key: str, raw: Any) -> Any:
        node = workflow.get_node(self.node_id)
        if node is None:
            raise NodeNotFound(f"Node '{self.node_id}' does not exist", node_id=self.node_id)

        template = self._resolver.resolve(node)
        field = template.get_field(key) if template is not None else None
        try:
            return coerce_value(field, raw)
        except ConfigValueError as e:
            e.node_id = self.node_id
            raise
