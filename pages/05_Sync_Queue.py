# =============================================================================
# pages/05_Sync_Queue.py - Device Sync Queue
# Pending changes on this device, retry control and local conflict log.
# =============================================================================
from __future__ import annotations

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from drms_core.auth.authentication import require_authentication
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.exports.charts import bar_chart
from drms_core.offline.queue_manager import MAX_PRIORITY, MIN_PRIORITY, SORT_KEYS
from drms_core.state.session import get_offline_context, init_state
from drms_core.ui.components import add_grid, header, metric_row
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Sync Queue - DRMS", page_icon="🔄", layout="wide")
init_state()
apply_css()

principal = require_authentication()
render_sidebar(principal)
ctx = get_offline_context()

header("Sync Queue", "Changes made on this device and their path to the server", "🔄")

status = ctx.sync_engine.get_queue_status()
metric_row({
    "Queued": status["total"],
    "Pending": status["pending"],
    "Retrying": status["retrying"],
    "Failed": status["failed"],
    "Avg attempts": f"{status['avg_attempts']:.1f}",
})
st.caption(
    f"Last sync: {status['last_sync'] or 'never'} · last success: {status['last_success'] or 'never'}"
    f" · scheduled retries: {status['scheduled_retries']}"
)
if status["last_error"]:
    st.warning(f"Last error: {status['last_error']}")

# =============================================================================
# ACTIONS
# =============================================================================
c1, c2, c3, c4 = st.columns(4)
with c1:
    if st.button("Sync now", use_container_width=True, disabled=not status["is_online"]):
        with ErrorContext("Sync"):
            result = ctx.sync_engine.sync_now()
            if result is None:
                st.info("Sync skipped: offline or already running")
            else:
                st.session_state.last_sync_result = result.to_dict()
                st.success(
                    f"{len(result.successful)} synced, {len(result.duplicates)} duplicates, "
                    f"{len(result.conflicts)} conflicts, {len(result.failed)} failed"
                )
with c2:
    if st.button("Retry failed", use_container_width=True):
        with ErrorContext("Retry failed items"):
            ctx.sync_engine.retry_failed_items()
        st.rerun()
with c3:
    if st.button("Clear failed", use_container_width=True):
        with ErrorContext("Clear failed items"):
            removed = ctx.queue.clear_failed_items()
            st.info(f"Removed {removed} failed item(s)")
with c4:
    if ctx.connection.get_status_display()["forced_offline"]:
        if st.button("Go online", use_container_width=True):
            ctx.connection.resume_online()
            st.rerun()
    elif st.button("Work offline", use_container_width=True):
        ctx.connection.force_offline()
        st.rerun()

tab_queue, tab_conflicts, tab_storage = st.tabs(["📤 Queue", "⚠️ Local conflicts", "💾 Storage"])

# =============================================================================
# QUEUE
# =============================================================================
with tab_queue:
    f1, f2, f3 = st.columns(3)
    with f1:
        entity_type = st.selectbox("Type", [None, "assessment", "response", "entity", "incident"],
                                   format_func=lambda v: v or "All")
    with f2:
        item_status = st.selectbox("Status", [None, "pending", "retrying", "failed"],
                                   format_func=lambda v: v or "All")
    with f3:
        sort_by = st.selectbox("Sort by", list(SORT_KEYS))

    items = ctx.queue.get_items(entity_type=entity_type, status=item_status, sort_by=sort_by, sort_order="desc")
    if not items:
        st.success("Nothing waiting to sync.")
    else:
        st.dataframe(
            pd.DataFrame([ctx.queue.describe(i) for i in items]),
            hide_index=True, use_container_width=True,
        )
        by_type = {k: v for k, v in status["by_type"].items() if v}
        if by_type:
            fig = bar_chart(list(by_type), list(by_type.values()), "Queued changes by type")
            st.plotly_chart(add_grid(fig), use_container_width=True)

        with st.form("prioritize"):
            target = st.selectbox("Item", items, format_func=lambda i: f"{i.entity_type} {i.action} {i.entity_id[:8]}")
            priority = st.slider("Priority", MIN_PRIORITY, MAX_PRIORITY, 5)
            if st.form_submit_button("Set priority"):
                with ErrorContext("Prioritize item", show_success=True):
                    ctx.queue.prioritize_item(target.id, priority)

# =============================================================================
# LOCAL CONFLICTS
# =============================================================================
with tab_conflicts:
    stats = ctx.resolver.get_conflict_stats()
    metric_row({
        "Total": stats.total,
        "Auto-resolved": stats.auto_resolved,
        "Manual": stats.manually_resolved,
        "Unresolved": stats.unresolved,
    })
    history = ctx.resolver.get_conflict_history(limit=100)
    if history:
        st.dataframe(pd.DataFrame([c.to_dict() for c in history]), hide_index=True, use_container_width=True)
    if st.button("Clear conflicts older than 30 days"):
        removed = ctx.resolver.clear_old_conflicts(days=30)
        st.info(f"Removed {removed} conflict record(s)")

# =============================================================================
# STORAGE
# =============================================================================
with tab_storage:
    info = ctx.store.get_storage_info()
    metric_row({
        "Size": f"{info['size_bytes'] / 1024:.1f} KB",
        "Key version": info["key_version"],
        "Device": ctx.device_id[:8],
    })
    by_status = info["records_by_status"]
    if by_status:
        fig = go.Figure(go.Pie(labels=list(by_status), values=list(by_status.values()), hole=0.5))
        fig.update_layout(title="Cached records by sync status", height=320)
        st.plotly_chart(fig, use_container_width=True)
    if st.button("Rotate encryption key"):
        with ErrorContext("Rotate key", show_success=True):
            ctx.store.keys.rotate()
