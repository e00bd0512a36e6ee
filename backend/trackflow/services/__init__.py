"""Services for the TrackFlow workflow builder."""

from trackflow.services.config_editor import ConfigEditSession, coerce_value
from trackflow.services.draft_importer import DraftImporter
from trackflow.services.graph_mutator import ConfirmReplace, GraphMutator, MutationResult
from trackflow.services.graph_validator import ValidationReport, validate_workflow
from trackflow.services.layout_adapter import (
    HttpLayoutService,
    LayoutAdapter,
    LayoutOutcome,
    LayoutService,
    LayoutStatus,
)
from trackflow.services.template_catalog import TemplateCatalog, get_template_catalog
from trackflow.services.template_resolver import TemplateResolver

__all__ = [
    "ConfigEditSession",
    "ConfirmReplace",
    "DraftImporter",
    "GraphMutator",
    "HttpLayoutService",
    "LayoutAdapter",
    "LayoutOutcome",
    "LayoutService",
    "LayoutStatus",
    "MutationResult",
    "TemplateCatalog",
    "TemplateResolver",
    "ValidationReport",
    "coerce_value",
    "get_template_catalog",
    "validate_workflow",
]
