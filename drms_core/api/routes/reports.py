"""Report template CRUD, validation and generation."""

from __future__ import annotations
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import HTMLResponse, Response

from drms_core.api.deps import get_current_user, get_registry, ok
from drms_core.api.schemas import ReportGenerateRequest
from drms_core.auth.principal import Principal
from drms_core.errors import ValidationError
from drms_core.models.records import utcnow
from drms_core.services.registry import ServiceRegistry

router = APIRouter(prefix="/reports", tags=["reports"])

Registry = Annotated[ServiceRegistry, Depends(get_registry)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]


@router.get("/templates")
def list_templates(
    registry: Registry,
    user: CurrentUser,
    template_type: Optional[str] = Query(None, alias="type"),
):
    return ok(registry.reports.list_templates(user, template_type))


@router.post("/templates", status_code=201)
def create_template(registry: Registry, user: CurrentUser, body: Dict[str, Any] = Body(...)):
    return ok(registry.reports.create_template(body, user))


@router.post("/templates/validate")
def validate_template(registry: Registry, user: CurrentUser, body: Dict[str, Any] = Body(...)):
    valid, errors = registry.reports.validate(body)
    return ok({"valid": valid, "errors": errors})


@router.get("/templates/{template_id}")
def get_template(template_id: str, registry: Registry, user: CurrentUser):
    return ok(registry.reports.get_template(template_id, user))


@router.get("/fields/{source}")
def available_fields(source: str, registry: Registry, user: CurrentUser):
    return ok(registry.aggregator.get_available_fields(source))


@router.post("/generate")
def generate_report(body: ReportGenerateRequest, registry: Registry, user: CurrentUser):
    template = body.template_id or body.template
    if not template:
        raise ValidationError("templateId or template is required", field="templateId")

    result = registry.reports.generate(template, user, filters=body.filters, output_format=body.format)
    if body.format == "html":
        return HTMLResponse(result)
    if body.format == "pdf":
        filename = f"report-{utcnow().strftime('%Y-%m-%d')}.pdf"
        return Response(
            content=result,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return ok(result)
