# =============================================================================
# pages/07_Reports.py - Reports and Exports
# Template-driven reports (HTML/PDF/JSON) and raw data exports.
# =============================================================================
from __future__ import annotations

import json

import streamlit as st
import streamlit.components.v1 as components

from drms_core.auth.authentication import require_role
from drms_core.auth.navigation import render_sidebar
from drms_core.errors.handlers import ErrorContext
from drms_core.exports.csv_export import EXPORT_TABLES, export_filename, load_export_frame, to_csv
from drms_core.exports.pdf_export import DEFAULT_COLUMNS, build_pdf
from drms_core.models.enums import ReportType
from drms_core.state.session import get_registry, init_state
from drms_core.ui.components import header
from drms_core.ui.theme import apply_css

st.set_page_config(page_title="Reports - DRMS", page_icon="📊", layout="wide")
init_state()
apply_css()

principal = require_role("COORDINATOR", "DONOR")
render_sidebar(principal)
registry = get_registry()

header("Reports & Exports", "Generate situation reports and download raw data", "📊")

tab_generate, tab_template, tab_export = st.tabs(["📄 Generate", "🧩 New template", "⬇️ Export data"])

# =============================================================================
# GENERATE
# =============================================================================
with tab_generate:
    templates = registry.reports.list_templates(principal)
    if not templates:
        st.info("No report templates available.")
    else:
        template = st.selectbox("Template", templates, format_func=lambda t: f"{t['name']} ({t['type']})")
        if template.get("description"):
            st.caption(template["description"])

        c1, c2 = st.columns(2)
        with c1:
            start = st.date_input("From", value=None, key="report_from")
        with c2:
            end = st.date_input("To", value=None, key="report_to")
        filters = {}
        if start and end:
            filters["dateRange"] = {"field": "created_at", "startDate": start.isoformat(), "endDate": end.isoformat()}

        b1, b2, b3 = st.columns(3)
        with b1:
            if st.button("Preview", use_container_width=True):
                with ErrorContext("Generate report"):
                    st.session_state.last_report = registry.reports.generate(
                        template["id"], principal, filters, output_format="html",
                    )
        with b2:
            if st.button("Build PDF", use_container_width=True):
                with ErrorContext("Generate PDF report"):
                    pdf = registry.reports.generate(template["id"], principal, filters, output_format="pdf")
                    st.download_button("Download PDF", data=pdf, mime="application/pdf",
                                       file_name=export_filename(template["name"].lower().replace(" ", "-"), "pdf"))
        with b3:
            if st.button("JSON", use_container_width=True):
                with ErrorContext("Generate report data"):
                    st.json(registry.reports.generate(template["id"], principal, filters, output_format="json"))

        if st.session_state.last_report:
            components.html(st.session_state.last_report, height=900, scrolling=True)

# =============================================================================
# NEW TEMPLATE
# =============================================================================
EXAMPLE_LAYOUT = [
    {"id": "title", "type": "header", "position": {"x": 0, "y": 0, "width": 12, "height": 1},
     "config": {"title": "Situation Report", "showDate": True}},
    {"id": "totals", "type": "kpi", "position": {"x": 0, "y": 1, "width": 12, "height": 2},
     "visualization": {"type": "kpi", "config": {"metrics": [
         {"label": "Assessments", "field": "id", "aggregation": "count"},
     ]}}},
    {"id": "by-priority", "type": "chart", "position": {"x": 0, "y": 3, "width": 12, "height": 4},
     "config": {"title": "Assessments by Priority"},
     "visualization": {"type": "bar", "config": {"labelField": "priority"}}},
]

with tab_template:
    with st.form("template_form"):
        name = st.text_input("Name")
        report_type = st.selectbox("Type", [t.value for t in ReportType])
        description = st.text_area("Description")
        is_public = st.checkbox("Visible to everyone", value=True)
        layout = st.text_area("Layout (JSON)", value=json.dumps(EXAMPLE_LAYOUT, indent=2), height=320)
        validate_only = st.form_submit_button("Validate")
        save = st.form_submit_button("Save template")

    if validate_only or save:
        with ErrorContext("Template"):
            candidate = {
                "name": name,
                "type": report_type,
                "description": description,
                "is_public": is_public,
                "layout": json.loads(layout),
            }
            valid, errors = registry.reports.validate(candidate)
            if not valid:
                for error in errors:
                    st.error(error)
            elif save:
                registry.reports.create_template(candidate, principal)
                st.success("Template saved")
            else:
                st.success("Template is valid")

# =============================================================================
# EXPORT
# =============================================================================
with tab_export:
    data_type = st.selectbox("Data", list(EXPORT_TABLES))
    with ErrorContext("Export"):
        df = load_export_frame(registry.db, data_type)
        st.caption(f"{len(df)} rows")
        st.dataframe(df.head(20), hide_index=True, use_container_width=True)
        e1, e2 = st.columns(2)
        with e1:
            st.download_button("CSV", data=to_csv(df), file_name=export_filename(data_type),
                               mime="text/csv", use_container_width=True)
        with e2:
            pdf = build_pdf(f"{data_type.title()} Export", df, columns=DEFAULT_COLUMNS.get(data_type))
            st.download_button("PDF", data=pdf, file_name=export_filename(data_type, "pdf"),
                               mime="application/pdf", use_container_width=True)
