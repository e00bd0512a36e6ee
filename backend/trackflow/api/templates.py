"""Template catalog and workflow gallery API routes."""

from typing import Any

from fastapi import APIRouter, HTTPException, Query

from trackflow.models import NodeKind, NodeTemplate, WorkflowTemplate
from trackflow.services.template_catalog import get_template_catalog

router = APIRouter()


@router.get("/templates")
async def list_templates(
    type: NodeKind | None = Query(default=None, description="Only templates of this node type"),
    category: str | None = Query(default=None),
    q: str | None = Query(default=None, description="Search in name and description"),
) -> list[NodeTemplate]:
    """List node templates available in the builder."""
    return get_template_catalog().list_templates(node_type=type, category=category, query=q)


@router.get("/templates/categories")
async def list_categories(type: NodeKind | None = Query(default=None)) -> list[str]:
    return get_template_catalog().categories(node_type=type)


@router.get("/templates/{template_id}")
async def get_template(template_id: str) -> NodeTemplate:
    """Get a single node template including its field schema."""
    template = get_template_catalog().get(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template '{template_id}' not found")
    return template


@router.get("/workflow-templates")
async def list_workflow_templates(
    group: str | None = Query(default=None, description="generic, trigger or industry"),
) -> list[dict[str, Any]]:
    """List starter workflows in the gallery."""
    return [
        {
            "id": template.id,
            "name": template.name,
            "description": template.description,
            "node_count": len(template.nodes),
            "templateMeta": template.template_meta.model_dump(by_alias=True),
        }
        for template in get_template_catalog().list_workflow_templates(group=group)
    ]


@router.get("/workflow-templates/{template_id}")
async def get_workflow_template(template_id: str) -> WorkflowTemplate:
    template = get_template_catalog().get_workflow_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Workflow template '{template_id}' not found")
    return template
