"""TemplateResolver - recover a node's originating template and field schema.

Nodes created in the builder carry a ``template_id``. Nodes imported from
an AI draft do not, so the resolver falls back to the (name, type) pair.
A miss is never fatal: the configuration panel simply renders no fields.
"""

from __future__ import annotations

import logging
from typing import Any

from trackflow.models.template import ConfigField, NodeTemplate
from trackflow.models.workflow import WorkflowNode
from trackflow.services.template_catalog import TemplateCatalog, get_template_catalog

logger = logging.getLogger(__name__)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


class TemplateResolver:
    """Resolves node instances back to catalog templates.

    Results are cached per (template_id, name, type) since the catalog is
    immutable for the lifetime of the process.
    """

    def __init__(self, catalog: TemplateCatalog | None = None) -> None:
        self._catalog = catalog or get_template_catalog()
        self._cache: dict[tuple[str | None, str, str], NodeTemplate | None] = {}

    def resolve(self, node: WorkflowNode) -> NodeTemplate | None:
        """Find the template a node was created from.

        Returns:
            The template, or None on a lookup miss.
        """
        cache_key = (node.template_id, node.name, node.type.value)
        if cache_key in self._cache:
            return self._cache[cache_key]

        template: NodeTemplate | None = None
        if node.template_id:
            template = self._catalog.get(node.template_id)
            if template is None:
                logger.debug(
                    f"Node {node.id} references unknown template '{node.template_id}', "
                    f"falling back to name lookup"
                )

        if template is None:
            template = self._catalog.find_by_name(node.name, node.type)

        if template is None:
            logger.warning(
                f"No template found for node {node.id} "
                f"(name='{node.name}', type='{node.type.value}')"
            )

        self._cache[cache_key] = template
        return template

    def fields_for(self, node: WorkflowNode) -> list[ConfigField]:
        """Field schema for a node's configuration panel (empty on a miss)."""
        template = self.resolve(node)
        if template is None:
            return []
        return list(template.config_fields)

    def field_values(self, node: WorkflowNode) -> dict[str, Any]:
        """Values the configuration panel should display for each field.

        Precedence: the node's config value, then the field default, then
        the template default, then an empty string.
        """
        template = self.resolve(node)
        if template is None:
            return {}

        values: dict[str, Any] = {}
        for field in template.config_fields:
            if field.key in node.config and node.config[field.key] is not None:
                values[field.key] = node.config[field.key]
            elif field.default is not None:
                values[field.key] = field.default
            elif template.default_config.get(field.key) is not None:
                values[field.key] = template.default_config[field.key]
            else:
                values[field.key] = ""
        return values

    def missing_required(self, node: WorkflowNode) -> list[str]:
        """Keys of required fields that have no usable value on the node."""
        missing: list[str] = []
        for field in self.fields_for(node):
            if field.required and _is_blank(node.config.get(field.key)):
                missing.append(field.key)
        return missing

    def unknown_keys(self, node: WorkflowNode) -> list[str]:
        """Config keys the node's template does not declare.

        Configuration is an open map, so these are informational only.
        """
        template = self.resolve(node)
        if template is None:
            return []
        known = {field.key for field in template.config_fields} | set(template.default_config)
        return sorted(key for key in node.config if key not in known)
