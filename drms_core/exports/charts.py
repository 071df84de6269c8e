# =============================================================================
# drms_core/exports/charts.py
# Plotly Chart Templates for Dashboards, Reports and Chart Exports
# =============================================================================
"""
Plotly chart builders shared by the Streamlit dashboards, the report
template renderer and the /exports/charts endpoint.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pandas as pd
import plotly.graph_objects as go


# =============================================================================
# COLOR PALETTE
# =============================================================================

CHART_COLORS = {
    "primary": "#3b82f6",       # Blue
    "secondary": "#22d3ee",     # Cyan
    "success": "#22c55e",       # Green
    "warning": "#f59e0b",       # Amber
    "danger": "#ef4444",        # Red
    "purple": "#a855f7",        # Purple
    "text": "#1f2937",
    "muted": "#6b7280",
    "grid": "rgba(0,0,0,0.06)",
}

PRIORITY_COLORS = {
    "CRITICAL": "#ef4444",
    "HIGH": "#f59e0b",
    "MEDIUM": "#3b82f6",
    "LOW": "#22c55e",
}

ASSESSMENT_TYPE_COLORS = {
    "HEALTH": "#ef4444",
    "WASH": "#22d3ee",
    "SHELTER": "#f59e0b",
    "FOOD": "#22c55e",
    "SECURITY": "#a855f7",
    "POPULATION": "#3b82f6",
}

CHART_TYPES = ("assessments_by_type", "responses_by_status", "commitments_by_donor", "incidents_by_severity")


def get_chart_layout(title: str = "", height: int = 350, show_legend: bool = True) -> Dict[str, Any]:
    """Standard light layout used by every exported chart."""
    return {
        "template": "plotly_white",
        "height": height,
        "title": {"text": title, "x": 0, "xanchor": "left",
                  "font": {"size": 16, "color": CHART_COLORS["text"]}} if title else None,
        "font": {"family": "Inter, sans-serif", "color": CHART_COLORS["muted"]},
        "showlegend": show_legend,
        "margin": {"l": 40, "r": 20, "t": 60 if title else 30, "b": 40},
        "xaxis": {"gridcolor": CHART_COLORS["grid"], "zeroline": False},
        "yaxis": {"gridcolor": CHART_COLORS["grid"], "zeroline": False},
    }


# =============================================================================
# GENERIC BUILDERS
# =============================================================================

def pie_chart(labels: List[Any], values: List[float], title: str = "",
              colors: Optional[Dict[str, str]] = None) -> go.Figure:
    marker = {"colors": [colors.get(str(label), CHART_COLORS["primary"]) for label in labels]} if colors else None
    fig = go.Figure(go.Pie(labels=labels, values=values, hole=0.45, marker=marker))
    fig.update_layout(**get_chart_layout(title))
    return fig


def bar_chart(categories: List[Any], values: List[float], title: str = "",
              color: str = CHART_COLORS["primary"], colors: Optional[Dict[str, str]] = None) -> go.Figure:
    bar_colors = [colors.get(str(c), color) for c in categories] if colors else color
    fig = go.Figure(go.Bar(x=categories, y=values, marker_color=bar_colors))
    fig.update_layout(**get_chart_layout(title, show_legend=False))
    return fig


def line_chart(x: List[Any], y: List[float], title: str = "") -> go.Figure:
    fig = go.Figure(go.Scatter(x=x, y=y, mode="lines+markers",
                               line={"color": CHART_COLORS["primary"], "width": 2}))
    fig.update_layout(**get_chart_layout(title, show_legend=False))
    return fig


def chart_from_frame(df: pd.DataFrame, chart_type: str, label_field: str,
                     value_field: Optional[str] = None, title: str = "") -> go.Figure:
    """
    Build a chart from a DataFrame, counting rows per label when no value
    field is given.
    """
    if df.empty or label_field not in df.columns:
        return empty_chart(title)

    if value_field and value_field in df.columns:
        grouped = df.groupby(label_field, dropna=False)[value_field].sum()
    else:
        grouped = df.groupby(label_field, dropna=False).size()
    labels = [str(v) for v in grouped.index]
    values = [float(v) for v in grouped.values]

    if chart_type == "pie":
        return pie_chart(labels, values, title)
    if chart_type in ("line", "area"):
        return line_chart(labels, values, title)
    return bar_chart(labels, values, title)


def empty_chart(title: str = "", message: str = "No data available") -> go.Figure:
    fig = go.Figure()
    fig.add_annotation(text=message, showarrow=False, x=0.5, y=0.5, xref="paper", yref="paper",
                       font={"size": 14, "color": CHART_COLORS["muted"]})
    fig.update_layout(**get_chart_layout(title, show_legend=False))
    fig.update_xaxes(visible=False)
    fig.update_yaxes(visible=False)
    return fig


# =============================================================================
# DOMAIN CHARTS
# =============================================================================

def assessments_by_type(assessments: pd.DataFrame) -> go.Figure:
    if assessments.empty:
        return empty_chart("Assessments by Type")
    counts = assessments["rapid_assessment_type"].value_counts()
    return pie_chart(list(counts.index), [int(v) for v in counts.values],
                     "Assessments by Type", ASSESSMENT_TYPE_COLORS)


def responses_by_status(responses: pd.DataFrame) -> go.Figure:
    if responses.empty:
        return empty_chart("Responses by Status")
    counts = responses["status"].value_counts()
    return bar_chart(list(counts.index), [int(v) for v in counts.values], "Responses by Status",
                     colors={"PLANNED": CHART_COLORS["warning"], "DELIVERED": CHART_COLORS["success"]})


def commitments_by_donor(commitments: pd.DataFrame, donors: pd.DataFrame) -> go.Figure:
    if commitments.empty:
        return empty_chart("Commitments by Donor")
    names = donors.set_index("id")["name"] if not donors.empty else pd.Series(dtype=object)
    totals = commitments.groupby("donor_id")["total_committed_quantity"].sum().sort_values(ascending=False)
    labels = [str(names.get(donor_id, donor_id)) for donor_id in totals.index]
    return bar_chart(labels, [float(v) for v in totals.values], "Commitments by Donor",
                     color=CHART_COLORS["purple"])


def incidents_by_severity(incidents: pd.DataFrame) -> go.Figure:
    if incidents.empty:
        return empty_chart("Incidents by Severity")
    order = [p for p in PRIORITY_COLORS if p in set(incidents["severity"])]
    counts = incidents["severity"].value_counts().reindex(order, fill_value=0)
    return bar_chart(order, [int(v) for v in counts.values], "Incidents by Severity", colors=PRIORITY_COLORS)


def entity_map(points: List[Dict[str, Any]], title: str = "Entity Locations") -> go.Figure:
    """Scatter-geo of entity coordinates; points carry name, type, lat, lng."""
    if not points:
        return empty_chart(title, "No entity coordinates available")
    fig = go.Figure(go.Scattergeo(
        lat=[p["lat"] for p in points],
        lon=[p["lng"] for p in points],
        text=[f"{p.get('name')} ({p.get('type')})" for p in points],
        mode="markers",
        marker={"size": 9, "color": CHART_COLORS["danger"]},
    ))
    fig.update_layout(**get_chart_layout(title, height=420, show_legend=False))
    fig.update_geos(fitbounds="locations", showcountries=True)
    return fig


# =============================================================================
# OUTPUT
# =============================================================================

def figure_to_html(fig: go.Figure, full_html: bool = True) -> str:
    return fig.to_html(full_html=full_html, include_plotlyjs="cdn")


def figure_to_json(fig: go.Figure) -> Dict[str, Any]:
    return json.loads(fig.to_json())
