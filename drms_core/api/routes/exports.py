"""CSV, PDF and chart exports."""

from __future__ import annotations
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, Response

from drms_core.api.deps import get_current_user, get_registry, ok
from drms_core.auth.principal import Principal
from drms_core.errors import ValidationError
from drms_core.exports import charts
from drms_core.exports.csv_export import EXPORT_TABLES, export_filename, load_export_frame, to_csv
from drms_core.exports.pdf_export import DEFAULT_COLUMNS, build_pdf
from drms_core.services.registry import ServiceRegistry

router = APIRouter(prefix="/exports", tags=["exports"])

Registry = Annotated[ServiceRegistry, Depends(get_registry)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]


def _visible_entities(registry: ServiceRegistry, user: Principal) -> Optional[List[str]]:
    """None means unrestricted."""
    if user.is_privileged or user.has_role("DONOR"):
        return None
    return registry.assignments.get_assigned_entity_ids(user.id)


def _attachment(content, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/csv")
def export_csv(
    registry: Registry,
    user: CurrentUser,
    data_type: str = Query(..., alias="dataType"),
):
    df = load_export_frame(registry.db, data_type, _visible_entities(registry, user))
    return _attachment(to_csv(df), "text/csv", export_filename(data_type))


@router.get("/pdf")
def export_pdf(
    registry: Registry,
    user: CurrentUser,
    data_type: str = Query(..., alias="dataType"),
):
    df = load_export_frame(registry.db, data_type, _visible_entities(registry, user))
    title = f"{data_type.replace('_', ' ').title()} Export"
    pdf = build_pdf(title, df, columns=DEFAULT_COLUMNS.get(data_type))
    return _attachment(pdf, "application/pdf", export_filename(data_type, "pdf"))


@router.get("/charts")
def export_chart(
    registry: Registry,
    user: CurrentUser,
    chart_type: str = Query(..., alias="chartType"),
    format: str = Query("json", pattern="^(html|json)$"),
):
    if chart_type not in charts.CHART_TYPES:
        raise ValidationError(
            f"Unsupported chartType: {chart_type}. Expected one of {', '.join(charts.CHART_TYPES)}",
            field="chartType",
        )

    entity_ids = _visible_entities(registry, user)
    if chart_type == "assessments_by_type":
        fig = charts.assessments_by_type(load_export_frame(registry.db, "assessments", entity_ids))
    elif chart_type == "responses_by_status":
        fig = charts.responses_by_status(load_export_frame(registry.db, "responses", entity_ids))
    elif chart_type == "commitments_by_donor":
        fig = charts.commitments_by_donor(
            registry.db.to_dataframe(EXPORT_TABLES["commitments"]),
            registry.db.to_dataframe(EXPORT_TABLES["donors"]),
        )
    else:
        fig = charts.incidents_by_severity(registry.db.to_dataframe(EXPORT_TABLES["incidents"]))

    if format == "html":
        return HTMLResponse(charts.figure_to_html(fig))
    return ok({"chartType": chart_type, "figure": charts.figure_to_json(fig)})
