"""Template catalogue endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.dependencies import get_templates
from src.api.models import ErrorResponse, TemplateListResponse
from src.models.schemas import Template
from src.templates.registry import TemplateRegistry

router = APIRouter(prefix="/templates", tags=["Templates"])


@router.get(
    "",
    response_model=TemplateListResponse,
    summary="List templates",
)
async def list_templates(
    category: Optional[str] = Query(None, description="Only templates in this category"),
    registry: TemplateRegistry = Depends(get_templates),
) -> TemplateListResponse:
    templates = registry.list(category=category)
    return TemplateListResponse(templates=templates, total=len(templates))


@router.get(
    "/{template_id}",
    response_model=Template,
    summary="Get a template",
    responses={404: {"model": ErrorResponse, "description": "Template not found"}},
)
async def get_template(
    template_id: str,
    registry: TemplateRegistry = Depends(get_templates),
) -> Template:
    template = registry.get(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")
    return template
