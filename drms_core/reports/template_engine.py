# =============================================================================
# drms_core/reports/template_engine.py
# Report Template Validation and Rendering
# =============================================================================
"""
Report templates are a named list of layout elements placed on a
12-column grid. Each element pulls its data from the DataAggregator.

Features:
- Layout schema (pydantic) and overlap detection
- Built-in default templates
- HTML rendering with embedded plotly charts
- JSON and PDF report generation
"""

from __future__ import annotations
import html
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from drms_core.exports import charts
from drms_core.exports.pdf_export import build_pdf
from drms_core.logging import get_logger
from drms_core.models.enums import ReportType
from drms_core.models.records import utcnow
from drms_core.reports.data_aggregator import (
    AggregationConfig,
    DataAggregator,
    DataSourceType,
    ReportQuery,
)

logger = get_logger(__name__)

GRID_COLUMNS = 12
TABLE_ROW_LIMIT = 50

# Default data source per template type
TYPE_SOURCES = {
    ReportType.ASSESSMENT.value: DataSourceType.ASSESSMENTS.value,
    ReportType.RESPONSE.value: DataSourceType.RESPONSES.value,
    ReportType.ENTITY.value: DataSourceType.ENTITIES.value,
    ReportType.DONOR.value: DataSourceType.COMMITMENTS.value,
    ReportType.CUSTOM.value: DataSourceType.ASSESSMENTS.value,
}

# Report filter key -> column it restricts
FILTER_COLUMNS = {
    "entities": "entity_id",
    "incidents": "incident_id",
    "donors": "donor_id",
    "assessmentTypes": "rapid_assessment_type",
    "responseTypes": "type",
    "status": "status",
    "priorities": "priority",
}


# =============================================================================
# LAYOUT SCHEMA
# =============================================================================

class Position(BaseModel):
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class Visualization(BaseModel):
    type: str = Field(pattern="^(bar|line|pie|area|table|map|kpi)$")
    config: Dict[str, Any] = Field(default_factory=dict)


class LayoutElement(BaseModel):
    id: str
    type: str = Field(pattern="^(header|footer|section|chart|table|kpi|map)$")
    position: Position
    config: Dict[str, Any] = Field(default_factory=dict)
    dataSource: Optional[str] = None
    visualization: Optional[Visualization] = None


def positions_overlap(a: Dict[str, float], b: Dict[str, float]) -> bool:
    """Rectangles that only share an edge do not overlap."""
    return not (
        a["x"] + a["width"] <= b["x"]
        or b["x"] + b["width"] <= a["x"]
        or a["y"] + a["height"] <= b["y"]
        or b["y"] + b["height"] <= a["y"]
    )


def validate_template(template: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate a template definition.

    Returns:
        (valid, errors) where errors lists every problem found
    """
    errors: List[str] = []

    if not str(template.get("name") or "").strip():
        errors.append("Template name is required")

    if template.get("type") not in [t.value for t in ReportType]:
        errors.append("Valid template type is required")

    layout = template.get("layout") or []
    elements: List[LayoutElement] = []
    if not layout:
        errors.append("Template must have at least one layout element")
    else:
        try:
            elements = [LayoutElement.model_validate(item) for item in layout]
        except PydanticValidationError as e:
            errors.append(f"Invalid layout structure: {e.errors()[0]['msg']}")

    for i in range(len(elements)):
        for j in range(i + 1, len(elements)):
            if positions_overlap(elements[i].position.model_dump(), elements[j].position.model_dump()):
                errors.append(f"Layout elements {elements[i].id} and {elements[j].id} overlap")

    return len(errors) == 0, errors


# =============================================================================
# DEFAULT TEMPLATES
# =============================================================================

DEFAULT_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "Assessment Summary",
        "description": "Summary of all assessment types by date range",
        "type": "ASSESSMENT",
        "is_public": True,
        "layout": [
            {"id": "header", "type": "header", "position": {"x": 0, "y": 0, "width": 12, "height": 1},
             "config": {"title": "Assessment Summary Report", "showDate": True, "showFilters": True}},
            {"id": "kpi-summary", "type": "kpi", "position": {"x": 0, "y": 1, "width": 12, "height": 2},
             "config": {"title": "Key Metrics"},
             "visualization": {"type": "kpi", "config": {"metrics": [
                 {"label": "Total Assessments", "field": "id", "aggregation": "count"},
                 {"label": "Verified", "field": "id", "aggregation": "count",
                  "where": {"verification_status": ["VERIFIED", "AUTO_VERIFIED"]}},
                 {"label": "Pending Verification", "field": "id", "aggregation": "count",
                  "where": {"verification_status": ["SUBMITTED"]}},
             ]}}},
            {"id": "assessment-chart", "type": "chart", "position": {"x": 0, "y": 3, "width": 8, "height": 4},
             "config": {"title": "Assessments by Type"},
             "visualization": {"type": "pie", "config": {"labelField": "rapid_assessment_type"}}},
            {"id": "assessment-table", "type": "table", "position": {"x": 8, "y": 3, "width": 4, "height": 4},
             "config": {"title": "Recent Assessments"},
             "visualization": {"type": "table", "config": {
                 "columns": [
                     {"field": "rapid_assessment_type", "header": "Type"},
                     {"field": "rapid_assessment_date", "header": "Date"},
                     {"field": "entity_name", "header": "Entity"},
                     {"field": "status", "header": "Status"},
                 ],
                 "sortBy": {"field": "rapid_assessment_date", "direction": "desc"},
                 "pageSize": 10,
             }}},
        ],
    },
    {
        "name": "Response Impact Report",
        "description": "Detailed view of response activities and deliveries",
        "type": "RESPONSE",
        "is_public": True,
        "layout": [
            {"id": "header", "type": "header", "position": {"x": 0, "y": 0, "width": 12, "height": 1},
             "config": {"title": "Response Impact Report", "showDate": True, "showFilters": True}},
            {"id": "response-overview", "type": "kpi", "position": {"x": 0, "y": 1, "width": 12, "height": 2},
             "config": {"title": "Response Overview"},
             "visualization": {"type": "kpi", "config": {"metrics": [
                 {"label": "Total Responses", "field": "id", "aggregation": "count"},
                 {"label": "Delivered", "field": "id", "aggregation": "count",
                  "where": {"status": ["DELIVERED"]}},
                 {"label": "Entities Reached", "field": "entity_id", "aggregation": "distinct_count"},
             ]}}},
            {"id": "responses-by-type", "type": "chart", "position": {"x": 0, "y": 3, "width": 6, "height": 4},
             "config": {"title": "Responses by Type"},
             "visualization": {"type": "bar", "config": {"labelField": "type"}}},
            {"id": "response-timeline", "type": "chart", "position": {"x": 6, "y": 3, "width": 6, "height": 4},
             "config": {"title": "Response Timeline"},
             "visualization": {"type": "line", "config": {"labelField": "planned_date"}}},
        ],
    },
    {
        "name": "Entity Status Dashboard",
        "description": "Current status and needs of affected entities",
        "type": "ENTITY",
        "is_public": True,
        "layout": [
            {"id": "header", "type": "header", "position": {"x": 0, "y": 0, "width": 12, "height": 1},
             "config": {"title": "Entity Status Dashboard", "showDate": True, "showFilters": True}},
            {"id": "entity-map", "type": "map", "position": {"x": 0, "y": 1, "width": 8, "height": 6},
             "config": {"title": "Entity Locations"},
             "visualization": {"type": "map", "config": {"center": {"lat": 9.0820, "lng": 8.6753}, "zoom": 5}}},
            {"id": "entity-summary", "type": "table", "position": {"x": 8, "y": 1, "width": 4, "height": 6},
             "config": {"title": "Entity Summary"},
             "visualization": {"type": "table", "config": {"columns": [
                 {"field": "name", "header": "Name"},
                 {"field": "type", "header": "Type"},
                 {"field": "location", "header": "Location"},
                 {"field": "is_active", "header": "Active"},
             ]}}},
        ],
    },
    {
        "name": "Donor Performance Report",
        "description": "Donor commitment and delivery performance metrics",
        "type": "DONOR",
        "is_public": True,
        "layout": [
            {"id": "header", "type": "header", "position": {"x": 0, "y": 0, "width": 12, "height": 1},
             "config": {"title": "Donor Performance Report", "showDate": True, "showFilters": True}},
            {"id": "donor-performance", "type": "kpi", "position": {"x": 0, "y": 1, "width": 12, "height": 2},
             "config": {"title": "Donor Performance Metrics"},
             "visualization": {"type": "kpi", "config": {"metrics": [
                 {"label": "Total Commitments", "field": "id", "aggregation": "count"},
                 {"label": "Total Committed", "field": "total_committed_quantity", "aggregation": "sum"},
                 {"label": "Total Delivered", "field": "delivered_quantity", "aggregation": "sum"},
             ]}}},
            {"id": "commitments-by-status", "type": "chart", "position": {"x": 0, "y": 3, "width": 12, "height": 4},
             "config": {"title": "Commitments by Status"},
             "visualization": {"type": "bar", "config": {"labelField": "status",
                                                          "valueField": "total_committed_quantity"}}},
        ],
    },
]


# =============================================================================
# RENDERING
# =============================================================================

class ReportTemplateEngine:
    """
    Turns a template plus report filters into element data, HTML or PDF.

    Usage:
        engine = ReportTemplateEngine(aggregator)
        html_doc = engine.render_html(template, {"status": ["SUBMITTED"]})
    """

    def __init__(self, aggregator: DataAggregator):
        self.aggregator = aggregator

    # =========================================================================
    # DATA
    # =========================================================================

    def source_frame(self, template: Dict[str, Any], element: Optional[LayoutElement],
                     filters: Optional[Dict[str, Any]]) -> pd.DataFrame:
        source = (element.dataSource if element and element.dataSource
                  else TYPE_SOURCES.get(template.get("type"), DataSourceType.ASSESSMENTS.value))
        df = self.aggregator.load(source)
        return self.aggregator.filter_frame(df, self.to_query(filters, df, source))

    @staticmethod
    def to_query(filters: Optional[Dict[str, Any]], df: pd.DataFrame, source: str) -> ReportQuery:
        """Map report filters onto the aggregator's query, skipping columns the source lacks."""
        filters = filters or {}
        raw: Dict[str, Any] = {"filters": []}
        if filters.get("dateRange"):
            raw["dateRange"] = filters["dateRange"]
        for key, column in FILTER_COLUMNS.items():
            values = filters.get(key)
            if not values:
                continue
            if key == "entities" and source == DataSourceType.ENTITIES.value:
                column = "id"
            if column in df.columns:
                raw["filters"].append({"field": column, "operator": "in", "value": list(values)})
        return ReportQuery.model_validate(raw)

    def element_data(self, template: Dict[str, Any], element: LayoutElement,
                     filters: Optional[Dict[str, Any]]) -> Any:
        if element.type in ("header", "footer", "section"):
            return None

        df = self.source_frame(template, element, filters)
        config = element.visualization.config if element.visualization else {}

        if element.type == "kpi":
            return [
                {"label": metric.get("label", metric.get("field")),
                 "value": self._metric(df, metric)}
                for metric in config.get("metrics", [])
            ]
        if element.type == "table":
            return self._table_rows(df, config)
        if element.type == "map":
            return _map_points(df)
        label = config.get("labelField") or config.get("xAxis")
        if not label or label not in df.columns:
            return []
        value = config.get("valueField") or config.get("yAxis")
        aggregation = AggregationConfig(
            id=element.id,
            field=value if value in df.columns else "id",
            function="sum" if value in df.columns else "count",
            groupBy=[label],
            alias="value",
        )
        return self.aggregator.aggregate(df, [aggregation])

    def _metric(self, df: pd.DataFrame, metric: Dict[str, Any]) -> Any:
        for column, allowed in (metric.get("where") or {}).items():
            if column in df.columns:
                df = df[df[column].isin(allowed)]
        agg = AggregationConfig(
            id=metric.get("label", "metric"),
            field=metric.get("field", "id"),
            function=metric.get("aggregation", "count"),
            format=metric.get("format"),
        )
        if df.empty:
            return 0
        return self.aggregator.apply_aggregation(df, agg)

    @staticmethod
    def _table_rows(df: pd.DataFrame, config: Dict[str, Any]) -> List[Dict[str, Any]]:
        columns = [c["field"] for c in config.get("columns", []) if c.get("field") in df.columns]
        sort = config.get("sortBy")
        if sort and sort.get("field") in df.columns:
            df = df.sort_values(sort["field"], ascending=sort.get("direction") == "asc")
        df = df.head(config.get("pageSize", TABLE_ROW_LIMIT))
        if columns:
            df = df[columns]
        return df.astype(object).where(df.notna(), None).to_dict(orient="records")

    def build_report(self, template: Dict[str, Any], filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """JSON form of a generated report."""
        elements = [LayoutElement.model_validate(item) for item in template.get("layout", [])]
        return {
            "template": {"id": template.get("id"), "name": template.get("name"), "type": template.get("type")},
            "generatedAt": utcnow().isoformat(),
            "filters": filters or {},
            "elements": [
                {"id": e.id, "type": e.type, "title": e.config.get("title"),
                 "position": e.position.model_dump(), "data": self.element_data(template, e, filters)}
                for e in elements
            ],
        }

    # =========================================================================
    # HTML
    # =========================================================================

    def render_html(self, template: Dict[str, Any], filters: Optional[Dict[str, Any]] = None) -> str:
        elements = [LayoutElement.model_validate(item) for item in template.get("layout", [])]
        body = "\n".join(self._render_element(template, e, filters) for e in elements)
        title = html.escape(str(template.get("name", "Report")))
        logger.info(f"Rendered report '{template.get('name')}' with {len(elements)} elements")
        return (
            "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
            f"<title>{title}</title>"
            "<script src=\"https://cdn.plot.ly/plotly-2.35.2.min.js\"></script>"
            "<style>body{font-family:Inter,sans-serif;color:#1f2937}"
            ".report-kpi .value{font-size:28px;font-weight:700}"
            "table{border-collapse:collapse;width:100%}th,td{border:1px solid #e5e7eb;padding:4px 8px;font-size:12px}"
            "th{background:#e5e7eb}</style></head><body>\n"
            f"<div class=\"report-preview\" style=\"display: grid; grid-template-columns: repeat({GRID_COLUMNS}, 1fr); "
            "gap: 16px; padding: 20px;\">\n"
            f"{body}\n</div></body></html>"
        )

    def _render_element(self, template: Dict[str, Any], element: LayoutElement,
                        filters: Optional[Dict[str, Any]]) -> str:
        pos = element.position
        style = (f"grid-column: {int(pos.x) + 1} / span {int(pos.width)}; "
                 f"grid-row: {int(pos.y) + 1} / span {int(pos.height)};")
        title = html.escape(str(element.config.get("title", "")))
        data = self.element_data(template, element, filters)

        if element.type == "header":
            date_line = f"<p>Generated {utcnow().strftime('%Y-%m-%d %H:%M UTC')}</p>" \
                if element.config.get("showDate") else ""
            inner = f"<h1>{title}</h1>{date_line}"
        elif element.type == "kpi":
            inner = f"<h3>{title}</h3>" + "".join(
                f"<div class=\"metric\"><div class=\"value\">{html.escape(str(m['value']))}</div>"
                f"<div>{html.escape(str(m['label']))}</div></div>"
                for m in data
            )
        elif element.type == "chart":
            vis_type = element.visualization.type if element.visualization else "bar"
            labels = [str(row.get(k)) for row in data for k in row if k not in ("value", "_count")]
            values = [row.get("value", 0) for row in data]
            fig = (charts.pie_chart(labels, values, title) if vis_type == "pie"
                   else charts.line_chart(labels, values, title) if vis_type in ("line", "area")
                   else charts.bar_chart(labels, values, title)) if data else charts.empty_chart(title)
            inner = fig.to_html(full_html=False, include_plotlyjs=False)
        elif element.type == "table":
            inner = f"<h3>{title}</h3>{_html_table(data)}"
        elif element.type == "map":
            inner = charts.entity_map(data, title).to_html(full_html=False, include_plotlyjs=False)
        else:
            inner = f"<h3>{title}</h3><p>{html.escape(str(element.config.get('text', '')))}</p>"

        return f"<div class=\"report-{element.type}\" style=\"{style}\">{inner}</div>"

    # =========================================================================
    # PDF
    # =========================================================================

    def render_pdf(self, template: Dict[str, Any], filters: Optional[Dict[str, Any]] = None) -> bytes:
        df = self.source_frame(template, None, filters)
        columns = None
        for item in template.get("layout", []):
            element = LayoutElement.model_validate(item)
            if element.type == "table" and element.visualization:
                columns = [c["field"] for c in element.visualization.config.get("columns", [])]
                break
        return build_pdf(str(template.get("name", "Report")), df, columns=columns,
                         subtitle=template.get("description"))


def _html_table(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return "<p>No data available</p>"
    headers = list(rows[0].keys())
    head = "".join(f"<th>{html.escape(h.replace('_', ' ').title())}</th>" for h in headers)
    body = "".join(
        "<tr>" + "".join(f"<td>{html.escape('' if row.get(h) is None else str(row.get(h)))}</td>"
                         for h in headers) + "</tr>"
        for row in rows
    )
    return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


def _map_points(df: pd.DataFrame) -> List[Dict[str, Any]]:
    points = []
    if "coordinates" not in df.columns:
        return points
    for _, row in df.iterrows():
        coords = row["coordinates"]
        if not isinstance(coords, dict):
            continue
        lat = coords.get("lat", coords.get("latitude"))
        lng = coords.get("lng", coords.get("longitude"))
        if lat is None or lng is None:
            continue
        points.append({"name": row.get("name"), "type": row.get("type"), "lat": float(lat), "lng": float(lng)})
    return points
