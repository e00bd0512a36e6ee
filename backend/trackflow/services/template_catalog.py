"""TemplateCatalog - read-only registry of node templates and gallery workflows.

The catalog is loaded once from the JSON resources shipped in
``trackflow/data`` and never written to afterwards. Node templates are
frozen pydantic models; callers that need a mutable copy of a template's
defaults must copy them (the graph mutator does).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from trackflow.models.template import NodeKind, NodeTemplate
from trackflow.models.workflow import WorkflowTemplate

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent.parent / "data"
NODE_TEMPLATES_FILE = DATA_DIR / "node_templates.json"
WORKFLOW_TEMPLATES_DIR = DATA_DIR / "workflows"


def _load_node_templates(path: Path) -> list[NodeTemplate]:
    """Load node templates from a JSON array file."""
    with open(path) as f:
        data = json.load(f)
    return [NodeTemplate.model_validate(item) for item in data]


def _load_workflow_templates(directory: Path) -> list[WorkflowTemplate]:
    """Load all ``*.workflow.json`` gallery templates from a directory."""
    templates: list[WorkflowTemplate] = []
    if not directory.exists():
        return templates

    for template_file in sorted(directory.glob("*.workflow.json")):
        with open(template_file) as f:
            data = json.load(f)
        templates.append(WorkflowTemplate.model_validate(data))
    return templates


class TemplateCatalog:
    """Static registry of node templates (plus the starter workflow gallery)."""

    def __init__(
        self,
        templates: Iterable[NodeTemplate],
        workflow_templates: Iterable[WorkflowTemplate] = (),
    ) -> None:
        self._templates: tuple[NodeTemplate, ...] = tuple(templates)
        self._by_id: dict[str, NodeTemplate] = {}
        self._by_name_type: dict[tuple[str, NodeKind], NodeTemplate] = {}

        for template in self._templates:
            if template.id in self._by_id:
                raise ValueError(f"Duplicate node template id: {template.id}")
            self._by_id[template.id] = template

            key = (template.name, template.type)
            if key in self._by_name_type:
                # Name+type lookup can only return one of them
                logger.warning(
                    f"Templates '{self._by_name_type[key].id}' and '{template.id}' share "
                    f"name '{template.name}' and type '{template.type.value}'"
                )
                continue
            self._by_name_type[key] = template

        self._workflow_templates: dict[str, WorkflowTemplate] = {
            wt.id: wt for wt in workflow_templates
        }

    @classmethod
    def from_files(
        cls,
        node_templates_path: Path | None = None,
        workflow_templates_dir: Path | None = None,
    ) -> TemplateCatalog:
        """Build a catalog from the JSON resources on disk."""
        node_templates_path = node_templates_path or NODE_TEMPLATES_FILE
        workflow_templates_dir = workflow_templates_dir or WORKFLOW_TEMPLATES_DIR

        catalog = cls(
            _load_node_templates(node_templates_path),
            _load_workflow_templates(workflow_templates_dir),
        )
        logger.info(
            f"Template catalog loaded: {len(catalog)} node templates, "
            f"{len(catalog._workflow_templates)} workflow templates"
        )
        return catalog

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[NodeTemplate]:
        return iter(self._templates)

    # ==================== Node templates ====================

    def get(self, template_id: str) -> NodeTemplate | None:
        """Get a node template by id."""
        return self._by_id.get(template_id)

    def find_by_name(self, name: str, node_type: NodeKind | str) -> NodeTemplate | None:
        """Find a node template by its (name, type) pair."""
        try:
            kind = NodeKind(node_type)
        except ValueError:
            return None
        return self._by_name_type.get((name, kind))

    def list_templates(
        self,
        node_type: NodeKind | str | None = None,
        category: str | None = None,
        query: str | None = None,
    ) -> list[NodeTemplate]:
        """List node templates, optionally filtered.

        Args:
            node_type: Only templates of this type.
            category: Only templates in this category.
            query: Case-insensitive substring matched against name and description.
        """
        results = list(self._templates)

        if node_type is not None:
            kind = NodeKind(node_type)
            results = [t for t in results if t.type == kind]

        if category:
            results = [t for t in results if t.category == category]

        if query:
            needle = query.lower()
            results = [
                t for t in results
                if needle in t.name.lower() or needle in t.description.lower()
            ]

        return results

    def triggers(self) -> list[NodeTemplate]:
        return self.list_templates(node_type=NodeKind.TRIGGER)

    def operations(self) -> list[NodeTemplate]:
        """All non-trigger templates (actions and conditions)."""
        return [t for t in self._templates if t.type != NodeKind.TRIGGER]

    def categories(self, node_type: NodeKind | str | None = None) -> list[str]:
        """Sorted unique categories, optionally restricted to one node type."""
        return sorted({t.category for t in self.list_templates(node_type=node_type)})

    # ==================== Gallery ====================

    def list_workflow_templates(self, group: str | None = None) -> list[WorkflowTemplate]:
        templates = list(self._workflow_templates.values())
        if group:
            templates = [t for t in templates if t.template_meta.group == group]
        return templates

    def get_workflow_template(self, template_id: str) -> WorkflowTemplate | None:
        return self._workflow_templates.get(template_id)


# Global catalog instance (lazy initialization)
_catalog: TemplateCatalog | None = None


def get_template_catalog() -> TemplateCatalog:
    """Get or create the global template catalog."""
    global _catalog
    if _catalog is None:
        _catalog = TemplateCatalog.from_files()
    return _catalog
