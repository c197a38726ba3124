"""Request schemas for template endpoints."""

from pydantic import BaseModel


class CreateTemplateRequest(BaseModel):
    name: str
    system_prompt: str


class PatchTemplateRequest(BaseModel):
    """Fields to update. Omitted or null fields are left unchanged."""

    name: str | None = None
    system_prompt: str | None = None
