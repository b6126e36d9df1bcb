"""
Clinical Session Import -- Streamlit Web Interface

Operator UI for importing a month of appointments: upload the export,
assign any staff names the matcher could not resolve, review the
aggregated sessions with a cost preview, and confirm.

Usage:
    streamlit run app.py

The app imports from the clinic_sessions package (importer, store,
financials) and keeps the active import in ``st.session_state``.
"""

from __future__ import annotations

import io
import logging
import sys
from datetime import date
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Project root setup -- ensure clinic_sessions/ is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from clinic_sessions.config import get_config
from clinic_sessions.financials import ClinicalCostSummary, build_financial_summary
from clinic_sessions.importer import (
    ImportProcessingError,
    ImportState,
    NoSessionsFoundError,
    SessionImporter,
)
from clinic_sessions.models import ClinicalStaffRates, StaffRole
from clinic_sessions.name_matcher import MatchRule
from clinic_sessions.pricing import RATE_FIELDS, current_rates_by_staff, price_session
from clinic_sessions.session_store import SessionStore

logger = logging.getLogger("clinic_sessions.app")


# ---------------------------------------------------------------------------
# Page Config
# ---------------------------------------------------------------------------

st.set_page_config(
    page_title="Clinical Session Import",
    layout="wide",
    initial_sidebar_state="expanded",
)

STATE_LABELS = {
    ImportState.IDLE: "Waiting for a file",
    ImportState.EXTRACTING_RAW: "Reading file",
    ImportState.AWAITING_MANUAL_MAPPING: "Staff names need mapping",
    ImportState.EXTRACTING_FINAL: "Building sessions",
    ImportState.AWAITING_CONFIRMATION: "Ready to confirm",
    ImportState.COMMITTED: "Committed",
}

_UNASSIGNED = "-- choose staff member --"

_LEGACY_RATE_FIELDS = sorted({legacy for _, legacy in RATE_FIELDS.values()})
_PRIMARY_RATE_FIELDS = [primary for primary, _ in RATE_FIELDS.values()]


# ---------------------------------------------------------------------------
# Session State Initialization
# ---------------------------------------------------------------------------

def init_session_state():
    """Initialize all session state variables."""
    cfg = get_config()
    today = date.today()

    defaults = {
        "config": cfg,
        "store": None,              # SessionStore, opened lazily
        "importer": None,           # SessionImporter for the active run
        "page": "import",           # import, staff, history
        "month": cfg.period.month or today.month,
        "year": cfg.period.year or today.year,
        "upload_key": 0,            # Key for file uploader widget
        "last_message": None,       # (level, text) shown once after rerun
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value

    if st.session_state.store is None:
        st.session_state.store = SessionStore(cfg.storage.resolved_db_path)


init_session_state()


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def format_currency(amount: float) -> str:
    return f"{amount:,.2f}"


def _store() -> SessionStore:
    return st.session_state.store


def _staff_names() -> dict[str, str]:
    return {m.id: m.name for m in _store().list_staff()}


def _flash(level: str, text: str) -> None:
    st.session_state.last_message = (level, text)


def _show_flash() -> None:
    message = st.session_state.last_message
    if not message:
        return
    level, text = message
    getattr(st, level, st.info)(text)
    st.session_state.last_message = None


def start_import(file_bytes: bytes, file_name: str) -> None:
    """Create a fresh importer and run the detection pass on the upload."""
    store = _store()
    importer = SessionImporter(
        store.get_directory(),
        month=st.session_state.month,
        year=st.session_state.year,
        config=st.session_state.config,
    )
    st.session_state.importer = importer
    try:
        state = importer.load(io.BytesIO(file_bytes), source_name=file_name)
    except NoSessionsFoundError as exc:
        _flash("warning", f"No sessions found: {exc}")
        return
    except ImportProcessingError as exc:
        _flash("error", f"Processing error: {exc}")
        return

    if state is ImportState.AWAITING_MANUAL_MAPPING:
        _flash("info", f"{len(importer.pending_names)} staff name(s) need a mapping.")
    else:
        _flash("success", f"{len(importer.sessions)} sessions ready for review.")


def session_rows(importer: SessionImporter, rates: dict, names: dict[str, str]) -> list[dict]:
    """Flatten the pending sessions for the review table."""
    rows = []
    for s in importer.sessions:
        staff_rates = rates.get(s.staff_id)
        rows.append({
            "Staff": names.get(s.staff_id, s.staff_id),
            "Clinic": s.clinic_type.value,
            "Meeting": s.meeting_type.value,
            "Status": s.show_status.value,
            "Age group": s.service_age_group.value if s.service_age_group else "Adult",
            "Duration (min)": s.duration_minutes,
            "Count": s.count,
            "Cost": price_session(s, staff_rates) if staff_rates else None,
        })
    return rows


# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------

def render_sidebar():
    """Render the sidebar with navigation, period, upload and run status."""

    with st.sidebar:
        st.markdown("## Clinical Session Import")
        st.caption(f"Database: {_store().db_path}")
        st.markdown("---")

        pages = {"import": "Import", "staff": "Staff & Rates", "history": "History"}
        st.session_state.page = st.radio(
            "Page",
            options=list(pages),
            format_func=pages.get,
            index=list(pages).index(st.session_state.page),
        )

        st.markdown("---")
        st.markdown("### Period")
        col_m, col_y = st.columns(2)
        with col_m:
            st.session_state.month = int(st.number_input(
                "Month", min_value=1, max_value=12, value=int(st.session_state.month),
            ))
        with col_y:
            st.session_state.year = int(st.number_input(
                "Year", min_value=2000, max_value=2100, value=int(st.session_state.year),
            ))

        st.markdown("---")
        st.markdown("### Upload Data")

        importer: SessionImporter | None = st.session_state.importer
        busy = importer is not None and importer.state is not ImportState.IDLE

        uploaded_file = st.file_uploader(
            "Upload appointments XLSX",
            type=["xlsx"],
            help="First sheet of the scheduling system's appointment export.",
            key=f"xlsx_upload_{st.session_state.upload_key}",
            disabled=busy,
        )

        if st.button("Analyze File", type="primary", use_container_width=True, disabled=busy):
            if uploaded_file is None:
                st.warning("Please upload an XLSX file first.")
            else:
                start_import(uploaded_file.getvalue(), uploaded_file.name)
                st.rerun()

        if busy:
            st.info(f"Status: {STATE_LABELS[importer.state]}")
            if st.button("Cancel Import", use_container_width=True):
                importer.reset()
                st.session_state.upload_key += 1
                _flash("info", "Import cancelled.")
                st.rerun()

        st.markdown("---")
        render_sidebar_staff()


def render_sidebar_staff():
    """Active staff list with a quick add form."""
    staff = _store().list_staff(active_only=True)
    with st.expander(f"Staff directory ({len(staff)})"):
        for member in staff:
            st.markdown(f"- {member.name}")
        new_name = st.text_input("Add staff member", key="sidebar_new_staff")
        if st.button("Add", key="sidebar_add_staff"):
            try:
                _store().add_staff(new_name)
            except ValueError as exc:
                st.warning(str(exc))
            else:
                _flash("success", f"Added {new_name.strip()}")
                st.rerun()


# ---------------------------------------------------------------------------
# Import Page
# ---------------------------------------------------------------------------

def render_mapping_step(importer: SessionImporter):
    """Ask the operator to assign every unresolved staff name."""
    st.subheader("Assign staff names")
    st.write(
        "These names from the spreadsheet could not be matched to a staff member. "
        "Every name needs an assignment before the sessions can be built."
    )

    staff = _store().list_staff(active_only=True)
    options = [_UNASSIGNED] + [m.id for m in staff]
    labels = {m.id: m.name for m in staff}
    labels[_UNASSIGNED] = _UNASSIGNED

    choices: dict[str, str] = {}
    with st.form("mapping_form"):
        for name in importer.pending_names:
            choice = st.selectbox(
                f"'{name}'",
                options=options,
                format_func=labels.get,
                key=f"map_{name}",
            )
            if choice != _UNASSIGNED:
                choices[name] = choice
        submitted = st.form_submit_button("Apply Mappings", type="primary")

    if submitted:
        if not choices:
            st.warning("Choose a staff member for at least one name.")
            return
        try:
            state = importer.submit_mappings(choices)
        except NoSessionsFoundError as exc:
            _flash("warning", f"No sessions found: {exc}")
        except (ImportProcessingError, ValueError) as exc:
            _flash("error", str(exc))
        else:
            if state is ImportState.AWAITING_MANUAL_MAPPING:
                _flash("info", f"{len(importer.pending_names)} name(s) still unmapped.")
            else:
                _flash("success", f"{len(importer.sessions)} sessions ready for review.")
        st.rerun()

    resolved = [
        m for m in importer.match_results.values()
        if m.matched and m.rule is not MatchRule.EXACT
    ]
    if resolved:
        with st.expander(f"Heuristic matches ({len(resolved)})"):
            names = _staff_names()
            for m in resolved:
                st.markdown(
                    f"- **{m.raw_name}** -> {names.get(m.staff_id, m.staff_id)} "
                    f"_({m.notes})_"
                )


def render_review_step(importer: SessionImporter):
    """Show the aggregated sessions with a cost preview and a confirm button."""
    st.subheader("Review sessions")

    store = _store()
    names = _staff_names()
    rates = current_rates_by_staff(store.list_rates())
    summary: ClinicalCostSummary = importer.cost_preview(rates)

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Sessions", len(importer.sessions))
    col2.metric("Units", summary.total_sessions)
    col3.metric("Minutes", summary.total_minutes)
    col4.metric("Estimated cost", format_currency(summary.total_cost))

    for staff_id in summary.missing_rates:
        st.warning(f"Rates missing for {names.get(staff_id, staff_id)}; sessions priced at 0.")
    for warning in importer.warnings:
        st.caption(warning)

    st.dataframe(session_rows(importer, rates, names), use_container_width=True, hide_index=True)

    with st.expander("Cost breakdown by staff member"):
        for staff_id, breakdown in summary.staff.items():
            st.markdown(f"**{names.get(staff_id, staff_id)}**: {format_currency(breakdown.total_cost)}")
            for line in breakdown.lines:
                st.markdown(f"- {line.label}")

    if st.button("Confirm & Save", type="primary"):
        report = importer.confirm(store)
        if report.is_complete:
            _flash("success", report.summary())
        else:
            _flash("error", f"Partial commit: {report.summary()}")
        st.rerun()


def render_commit_step(importer: SessionImporter):
    report = importer.commit_report
    st.subheader("Import committed")
    if report is None:
        return
    if report.is_complete:
        st.success(report.summary())
    else:
        st.error(report.summary())
        st.write("These sessions were not saved:")
        names = _staff_names()
        st.dataframe(
            [
                {
                    "Staff": names.get(f.session.staff_id, f.session.staff_id),
                    "Meeting": f.session.meeting_type.value,
                    "Status": f.session.show_status.value,
                    "Count": f.session.count,
                    "Error": f.error,
                }
                for f in report.failures
            ],
            use_container_width=True,
            hide_index=True,
        )

    if st.button("Start New Import", type="primary"):
        importer.reset()
        st.session_state.upload_key += 1
        st.rerun()


def render_import_page():
    """Route to the step matching the importer's state."""
    st.title("Import Sessions")
    _show_flash()

    importer: SessionImporter | None = st.session_state.importer
    if importer is None or importer.state is ImportState.IDLE:
        st.info("Upload an appointments export in the sidebar and click **Analyze File**.")
        if importer is not None and importer.last_error:
            st.caption(f"Last error: {importer.last_error}")
        render_period_summary()
    elif importer.state is ImportState.AWAITING_MANUAL_MAPPING:
        render_mapping_step(importer)
    elif importer.state is ImportState.AWAITING_CONFIRMATION:
        render_review_step(importer)
    elif importer.state is ImportState.COMMITTED:
        render_commit_step(importer)


def render_period_summary():
    """Headline figures for the selected period from stored data."""
    store = _store()
    month, year = st.session_state.month, st.session_state.year
    sessions = store.list_sessions(month=month, year=year)
    if not sessions:
        st.caption(f"No sessions stored for {month:02d}/{year} yet.")
        return

    summary = build_financial_summary(
        sessions,
        store.list_rates(),
        store.list_revenue_sources(month=month, year=year),
        store.list_overheads(month=month, year=year),
        month=month,
        year=year,
    )
    st.markdown(f"### {month:02d}/{year}")
    col1, col2, col3 = st.columns(3)
    col1.metric("Revenue", format_currency(summary.total_revenue))
    col2.metric("Clinical costs", format_currency(summary.total_clinical_costs))
    col3.metric("Operating profit", format_currency(summary.operating_profit))


# ---------------------------------------------------------------------------
# Staff & Rates Page
# ---------------------------------------------------------------------------

def render_staff_page():
    st.title("Staff & Rates")
    _show_flash()
    store = _store()

    with st.form("add_staff_form", clear_on_submit=True):
        st.markdown("### Add staff member")
        name = st.text_input("Display name", placeholder='ד"ר דנה כהן / Dr. Dana Cohen')
        role = st.selectbox("Role", options=[r.value for r in StaffRole])
        if st.form_submit_button("Add Staff Member"):
            try:
                store.add_staff(name, role)
            except ValueError as exc:
                _flash("error", str(exc))
            else:
                _flash("success", f"Added {name.strip()}")
            st.rerun()

    staff = store.list_staff()
    if not staff:
        st.info("No staff members yet.")
        return

    st.markdown("### Directory")
    st.dataframe(
        [
            {"Name": m.name, "Role": m.role.value, "Active": m.active, "Id": m.id}
            for m in staff
        ],
        use_container_width=True,
        hide_index=True,
    )

    st.markdown("### Set rates")
    labels = {m.id: m.name for m in staff}
    with st.form("rates_form", clear_on_submit=True):
        staff_id = st.selectbox("Staff member", options=list(labels), format_func=labels.get)
        effective = st.date_input("Effective date", value=date.today())
        values: dict[str, float | None] = {}
        cols = st.columns(4)
        for i, field_name in enumerate(_PRIMARY_RATE_FIELDS + _LEGACY_RATE_FIELDS):
            with cols[i % 4]:
                amount = st.number_input(
                    field_name.replace("_", " "), min_value=0.0, value=0.0, step=10.0,
                )
            values[field_name] = amount or None
        if st.form_submit_button("Save Rates"):
            store.add_rates(ClinicalStaffRates(staff_id=staff_id, effective_date=effective, **values))
            _flash("success", f"Rates saved for {labels[staff_id]}")
            st.rerun()


# ---------------------------------------------------------------------------
# History Page
# ---------------------------------------------------------------------------

def render_history_page():
    st.title("Import History")
    runs = _store().list_import_runs(limit=50)
    if not runs:
        st.info("No imports yet.")
        return
    st.dataframe(
        [
            {
                "File": r["source_file"],
                "Period": f"{r['month']:02d}/{r['year']}",
                "Rows": r["rows_scanned"],
                "Sessions": r["sessions_extracted"],
                "Committed": r["sessions_committed"],
                "Failed": r["sessions_failed"],
                "Manual mappings": len(r["manual_mappings"]),
                "Started": r["created_at"],
            }
            for r in runs
        ],
        use_container_width=True,
        hide_index=True,
    )


# ---------------------------------------------------------------------------
# MAIN: Router
# ---------------------------------------------------------------------------

def main():
    """Main application entry point -- routes to the active page."""
    render_sidebar()

    page = st.session_state.page
    if page == "staff":
        render_staff_page()
    elif page == "history":
        render_history_page()
    else:
        render_import_page()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
