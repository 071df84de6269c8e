# =============================================================================
# drms_core/ui/theme.py
# Dashboard Palette and Stylesheet
# =============================================================================

import streamlit as st

# === COLOR PALETTE ===
# Emergency red for brand elements; status colors follow traffic-light meaning
PRIMARY_COLOR    = "#b91c1c"
SECONDARY_COLOR  = "#7c2d12"
SUCCESS_COLOR    = "#15803d"
WARNING_COLOR    = "#d97706"
DANGER_COLOR     = "#dc2626"
INFO_COLOR       = "#2563eb"
TEXT_COLOR       = "#1f2937"
SUBTLE_TEXT      = "#6b7280"
GRID_COLOR       = "#e5e7eb"
BACKGROUND_COLOR = "#f9fafb"
CARD_BG_LIGHT    = "#ffffff"

_GOOD = ("SYNCED", "VERIFIED", "AUTO_VERIFIED", "DELIVERED", "RESOLVED", "ONLINE")
_WAITING = ("PENDING", "CONTAINED", "DEGRADED")
_BAD = ("CONFLICT", "FAILED", "REJECTED", "ACTIVE", "OFFLINE")
_IN_FLIGHT = ("SYNCING", "PLANNED")

# Badge colors for sync / verification / delivery / incident / connection states
STATUS_COLORS = {
    **{s: SUCCESS_COLOR for s in _GOOD},
    **{s: WARNING_COLOR for s in _WAITING},
    **{s: DANGER_COLOR for s in _BAD},
    **{s: INFO_COLOR for s in _IN_FLIGHT},
}

_BRAND_GRADIENT = f"linear-gradient(120deg, {PRIMARY_COLOR}, {SECONDARY_COLOR})"

_STYLESHEET = f"""
<style>
.main {{ background: {BACKGROUND_COLOR}; color: {TEXT_COLOR}; }}
h1, h2, h3, h4 {{ color: {TEXT_COLOR}; font-weight: 600; }}

.main-header {{
    background: {_BRAND_GRADIENT};
    border-radius: 12px; padding: 1.4rem 1.8rem; margin-bottom: 1.4rem;
}}
.main-header h1 {{ color: white; margin: 0; font-size: 2rem; }}
.main-header p {{ color: rgba(255,255,255,.8); margin: .3rem 0 0; }}

.metric-card {{
    background: {CARD_BG_LIGHT}; border: 1px solid {GRID_COLOR}; border-left: 4px solid {PRIMARY_COLOR};
    border-radius: 8px; padding: 14px 16px; margin: 6px 0;
}}
.metric-card .label {{ color: {SUBTLE_TEXT}; font-size: .8rem; text-transform: uppercase; }}
.metric-card .value {{ font-size: 1.7rem; font-weight: 700; }}
.metric-card .hint {{ color: {SUBTLE_TEXT}; font-size: .75rem; }}

.status-badge {{
    display: inline-block; border-radius: 999px; padding: 1px 9px;
    color: white; font-size: .75rem; font-weight: 600; letter-spacing: .02em;
}}

.stTabs [aria-selected="true"] {{ color: {PRIMARY_COLOR}; border-bottom-color: {PRIMARY_COLOR}; }}
.stButton button {{ background: {_BRAND_GRADIENT}; color: white; border: 0; border-radius: 8px; }}
.stButton button:disabled {{ background: {GRID_COLOR}; color: {SUBTLE_TEXT}; }}
[data-testid="stSidebar"] {{ background: {CARD_BG_LIGHT}; border-right: 1px solid {GRID_COLOR}; }}
</style>
"""


def apply_css():
    st.markdown(_STYLESHEET, unsafe_allow_html=True)
