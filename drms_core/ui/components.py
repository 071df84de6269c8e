# =============================================================================
# drms_core/ui/components.py
# Shared Dashboard Widgets
# =============================================================================

from typing import Dict, Optional

import streamlit as st

from drms_core.exports.charts import CHART_COLORS
from .theme import GRID_COLOR, SUBTLE_TEXT, TEXT_COLOR, CARD_BG_LIGHT, STATUS_COLORS


def header(title: str, subtitle: str, icon: str = "🚨"):
    st.markdown(
        f'<div class="main-header"><h1>{icon} {title}</h1><p>{subtitle}</p></div>',
        unsafe_allow_html=True,
    )


def metric_card(label: str, value, help_text: Optional[str] = None):
    hint = f'<div class="hint">{help_text}</div>' if help_text else ""
    st.markdown(
        f'<div class="metric-card"><div class="label">{label}</div><div class="value">{value}</div>{hint}</div>',
        unsafe_allow_html=True,
    )


def metric_row(metrics: Dict[str, object]):
    """Lay out label -> value pairs as equal-width metric cards."""
    if not metrics:
        return
    for col, (label, value) in zip(st.columns(len(metrics)), metrics.items()):
        with col:
            metric_card(label, value)


def status_badge(status: Optional[str]) -> str:
    """HTML pill for a status value; render with unsafe_allow_html."""
    status = status or "UNKNOWN"
    color = STATUS_COLORS.get(status, CHART_COLORS["muted"])
    return f'<span class="status-badge" style="background:{color}">{status}</span>'


def add_grid(fig):
    """Light grid and card background for plotly figures on the dashboards."""
    axis_style = dict(
        showgrid=True, gridcolor=GRID_COLOR, zeroline=False, linecolor=GRID_COLOR,
        tickfont=dict(color=SUBTLE_TEXT),
    )
    fig.update_xaxes(**axis_style)
    fig.update_yaxes(**axis_style)
    fig.update_layout(
        plot_bgcolor=CARD_BG_LIGHT,
        paper_bgcolor=CARD_BG_LIGHT,
        font=dict(size=12, color=TEXT_COLOR),
        margin=dict(l=10, r=10, t=40, b=10),
    )
    return fig
