"""FastAPI routes for system-prompt templates."""

from fastapi import APIRouter, Depends, HTTPException, status

from flowchat.models import Template
from flowchat.templates.repository import TemplateNotFoundError, TemplateRepository
from flowchat.templates.schemas import CreateTemplateRequest, PatchTemplateRequest

router = APIRouter(prefix="/api/templates", tags=["templates"])


def get_template_repository() -> TemplateRepository:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("TemplateRepository not initialized")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(
    request: CreateTemplateRequest,
    templates: TemplateRepository = Depends(get_template_repository),
) -> Template:
    return await templates.create(request.name, request.system_prompt)


@router.get("")
async def list_templates(
    templates: TemplateRepository = Depends(get_template_repository),
) -> list[Template]:
    return await templates.get_all()


@router.get("/{template_id}")
async def get_template(
    template_id: str,
    templates: TemplateRepository = Depends(get_template_repository),
) -> Template:
    try:
        return await templates.get_by_id(template_id)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")


@router.patch("/{template_id}")
async def update_template(
    template_id: str,
    request: PatchTemplateRequest,
    templates: TemplateRepository = Depends(get_template_repository),
) -> Template:
    try:
        return await templates.update(
            template_id, name=request.name, system_prompt=request.system_prompt
        )
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: str,
    templates: TemplateRepository = Depends(get_template_repository),
) -> None:
    try:
        await templates.destroy(template_id)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")
