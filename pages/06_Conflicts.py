# =============================================================================
# pages/06_Conflicts.py - Sync Conflict Dashboard
# Server-side conflict log: filters, resolution and CSV export.
# =============================================================================
from __future__ import annotations

import json

import pandas as pd
import streamlit as st

from drms_core.auth.authentication import require_role
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.exports.charts import bar_chart
from drms_core.models.enums import ResolutionStrategy, SyncEntityType
from drms_core.state.session import get_registry, init_state
from drms_core.ui.components import add_grid, header, metric_row
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Conflicts - DRMS", page_icon="⚠️", layout="wide")
init_state()
apply_css()

principal = require_role("COORDINATOR")
render_sidebar(principal)
registry = get_registry()

header("Sync Conflicts", "Divergent edits between field devices and the server", "⚠️")

summary = registry.conflicts.get_summary()
metric_row({
    "Total": summary["totalConflicts"],
    "Unresolved": summary["unresolvedConflicts"],
    "Auto-resolved": summary["autoResolvedConflicts"],
    "Manual": summary["manuallyResolvedConflicts"],
    "Resolution rate": f"{summary['resolutionRate']:.1f}%",
})
by_type = summary["conflictsByType"]
if by_type:
    st.plotly_chart(add_grid(bar_chart(list(by_type), list(by_type.values()), "Conflicts by type")),
                    use_container_width=True)

# =============================================================================
# FILTERS
# =============================================================================
f1, f2, f3, f4 = st.columns(4)
with f1:
    entity_type = st.selectbox("Entity type", [None] + [t.value for t in SyncEntityType],
                               format_func=lambda v: v or "All")
with f2:
    resolved_label = st.selectbox("State", ["All", "Unresolved", "Resolved"])
    resolved = {"All": None, "Unresolved": False, "Resolved": True}[resolved_label]
with f3:
    date_from = st.date_input("From", value=None)
with f4:
    date_to = st.date_input("To", value=None)

filters = {
    "entity_type": entity_type,
    "resolved": resolved,
    "date_from": date_from.isoformat() if date_from else None,
    "date_to": date_to.isoformat() if date_to else None,
}

p1, p2 = st.columns([1, 4])
with p1:
    limit = st.selectbox("Per page", [10, 20, 50, 100], index=1)
page_no = st.session_state.get("conflict_page", 1)

with ErrorContext("Load conflicts"):
    page = registry.conflicts.list_conflicts(page=page_no, limit=limit, **filters)
    pagination = page["pagination"]

    if not page["data"]:
        st.info("No conflicts match these filters.")
    else:
        st.dataframe(
            pd.DataFrame(page["data"])[["id", "entityType", "entityId", "conflictDate",
                                        "localVersion", "serverVersion", "isResolved", "resolutionMethod"]],
            hide_index=True, use_container_width=True,
        )

    n1, n2, n3 = st.columns([1, 2, 1])
    with n1:
        if st.button("◀ Previous", disabled=not pagination["hasPrev"]):
            st.session_state.conflict_page = page_no - 1
            st.rerun()
    with n2:
        st.caption(f"Page {pagination['page']} of {max(pagination['totalPages'], 1)} · {pagination['total']} conflicts")
    with n3:
        if st.button("Next ▶", disabled=not pagination["hasNext"]):
            st.session_state.conflict_page = page_no + 1
            st.rerun()

    st.download_button(
        "Export CSV",
        data=registry.conflicts.export_csv(**filters),
        file_name=registry.conflicts.export_filename(),
        mime="text/csv",
    )

# =============================================================================
# RESOLVE
# =============================================================================
open_conflicts = [c for c in page["data"] if not c["isResolved"]] if page["data"] else []
if open_conflicts:
    st.markdown("### Resolve")
    conflict = st.selectbox("Conflict", open_conflicts,
                            format_func=lambda c: f"{c['entityType']} {c['entityId'][:8]} (v{c['localVersion']} vs v{c['serverVersion']})")
    c1, c2 = st.columns(2)
    with c1:
        st.markdown("**Device copy**")
        st.json(conflict["localData"])
    with c2:
        st.markdown("**Server copy**")
        st.json(conflict["serverData"])

    strategy = st.radio("Strategy", [s.value for s in ResolutionStrategy], horizontal=True)
    manual = None
    if strategy == ResolutionStrategy.MANUAL.value:
        manual = st.text_area("Resolved record (JSON)", value=json.dumps(conflict["serverData"], indent=2, default=str))

    if st.button("Apply resolution"):
        with ErrorContext("Resolve conflict", show_success=True):
            resolution = {"conflictId": conflict["id"], "resolutionStrategy": strategy}
            if manual is not None:
                resolution["resolvedData"] = json.loads(manual)
            registry.sync.resolve(resolution, principal)
        st.rerun()
