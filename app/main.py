"""
Streamlit Frontend for BizSight

The screens a small-business owner uses day to day: the dashboard,
the three record lists and data management.

DESIGN PRINCIPLES:
1. Figures on screen always come from the live store
2. Explicit confirmation before anything destructive
3. Clear error messages in simple language
4. No hidden actions

The UI enforces the confirmation principle for bulk operations:
- User uploads a file and sees what would be imported
- User confirms, or cancels and nothing changes
- Delete-all needs a ticked checkbox AND a button press
"""

import asyncio
from datetime import datetime, time, timezone
from typing import Optional

import streamlit as st
from pydantic import ValidationError

from bizsight.agents import InsightStatus
from bizsight.config import validate_all_settings
from bizsight.models import ALL_KINDS, RecordKind
from bizsight.orchestrator import (
    DashboardFlow,
    DataManagementFlow,
    create_app_components,
)
from bizsight.services.storage import BulkReplaceError, PartialImportError, StorageError
from bizsight.store import DataStore, ListState
from bizsight.validation import MalformedImportError


# Page configuration
st.set_page_config(
    page_title="BizSight",
    page_icon="📈",
    layout="wide",
    initial_sidebar_state="expanded",
)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached), with the store started."""
    try:
        components = create_app_components(use_storage=True)
    except Exception as e:
        st.error(f"Failed to initialize storage: {e}")
        components = create_app_components(use_storage=False)
    store = components[0]
    run_async(store.start())
    return components


def main():
    """Main application entry point."""
    store, data_flow, dashboard_flow = get_components()

    st.sidebar.title("📈 BizSight")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Dashboard", "💵 Income", "🧾 Expenses", "📅 Appointments",
         "🗂️ Data Management", "⚙️ Settings"],
        index=0,
    )

    if store.loading:
        st.sidebar.info("Loading your records...")

    if page == "📊 Dashboard":
        render_dashboard_page(store, dashboard_flow)
    elif page == "💵 Income":
        render_records_page(store, RecordKind.INCOME)
    elif page == "🧾 Expenses":
        render_records_page(store, RecordKind.EXPENSE)
    elif page == "📅 Appointments":
        render_records_page(store, RecordKind.APPOINTMENT)
    elif page == "🗂️ Data Management":
        render_data_management_page(data_flow)
    elif page == "⚙️ Settings":
        render_settings_page(data_flow)


def render_dashboard_page(store: DataStore, dashboard_flow: DashboardFlow):
    """Render metric cards, the monthly chart and the AI insight."""
    st.title("📊 Dashboard")

    col1, col2, col3 = st.columns(3)
    col1.metric("Total Revenue", f"${store.total_revenue:,.2f}")
    col2.metric("Total Expenses", f"${store.total_expenses:,.2f}")
    col3.metric("Net Profit", f"${store.total_profit:,.2f}")

    st.markdown("### Last 6 months")
    monthly = store.monthly_breakdown(months=6)
    st.bar_chart(
        {
            "Income": {f"{m.month} {m.year}": m.income for m in monthly},
            "Expenses": {f"{m.month} {m.year}": m.expenses for m in monthly},
        }
    )

    st.markdown("### 💡 Insight")
    if st.button("Generate insight"):
        with st.spinner("Looking at your numbers..."):
            result = run_async(dashboard_flow.insight())
        if result.status == InsightStatus.OK:
            st.success(result.message)
        elif result.status == InsightStatus.RATE_LIMITED:
            st.warning(result.message)
        else:
            st.error(result.message)


def _record_form(kind: RecordKind) -> Optional[dict]:
    """Form for a new record. Returns the entered values on submit."""
    with st.form(f"add_{kind.value}", clear_on_submit=True):
        values = {}
        if kind is RecordKind.INCOME:
            values["source"] = st.text_input("Source")
            values["amount"] = st.number_input("Amount", min_value=0.0, step=10.0)
        elif kind is RecordKind.EXPENSE:
            values["category"] = st.text_input("Category")
            values["amount"] = st.number_input("Amount", min_value=0.0, step=10.0)
        else:
            values["title"] = st.text_input("Title")
            values["description"] = st.text_area("Description")

        day = st.date_input("Date")
        at = st.time_input("Time", value=time(9, 0))
        values["date"] = datetime.combine(day, at, tzinfo=timezone.utc)

        if st.form_submit_button(f"➕ Add {kind.value}", type="primary"):
            return values
    return None


def render_records_page(store: DataStore, kind: RecordKind):
    """Render one record list with add and delete."""
    st.title(f"{kind.collection_name.title()}")

    if store.state(kind) == ListState.ERROR:
        st.error(f"Could not load {kind.collection_name}: {store.last_error(kind)}")

    values = _record_form(kind)
    if values is not None:
        try:
            add = {
                RecordKind.INCOME: store.add_income,
                RecordKind.EXPENSE: store.add_expense,
                RecordKind.APPOINTMENT: store.add_appointment,
            }[kind]
            run_async(add(values))
            st.success("Saved.")
        except ValidationError as e:
            st.error(f"Please check the form: {e.errors()[0]['msg']}")
        except StorageError as e:
            st.error(f"Could not save: {e}")

    records = getattr(store, kind.collection_name)
    if not records:
        st.info(f"No {kind.collection_name} yet.")
        return

    st.dataframe(
        [record.model_dump() for record in records],
        use_container_width=True,
        hide_index=True,
    )

    with st.expander("🗑️ Delete a record"):
        choice = st.selectbox(
            "Record",
            options=records,
            format_func=lambda r: f"{r.date:%d %b %Y} · {getattr(r, kind.fields[0])}",
        )
        if st.button("Delete", key=f"delete_{kind.value}"):
            delete = {
                RecordKind.INCOME: store.delete_income,
                RecordKind.EXPENSE: store.delete_expense,
                RecordKind.APPOINTMENT: store.delete_appointment,
            }[kind]
            try:
                run_async(delete(choice.id))
                st.success("Deleted.")
            except StorageError as e:
                st.error(f"Could not delete: {e}")


def render_data_management_page(data_flow: DataManagementFlow):
    """Render export, import (with confirmation) and delete-all."""
    st.title("🗂️ Data Management")

    # Export
    st.markdown("### Export")
    if st.button("Prepare exports"):
        st.session_state.exports = [
            run_async(data_flow.export_json()),
            *[run_async(data_flow.export_csv(kind)) for kind in ALL_KINDS],
            run_async(data_flow.export_unified_csv()),
        ]
    for filename, text in st.session_state.get("exports", []):
        st.download_button(f"⬇️ {filename}", data=text, file_name=filename)

    # Import
    st.markdown("---")
    st.markdown("### Import")
    st.warning("Importing REPLACES existing records of the imported type(s).")

    if "prepared_import" not in st.session_state:
        st.session_state.prepared_import = None

    target = st.selectbox(
        "File contains",
        options=["json", "unified", *[kind.value for kind in ALL_KINDS]],
        format_func=lambda t: {
            "json": "Full JSON export (all types)",
            "unified": "Unified CSV (all types, with a 'type' column)",
        }.get(t, f"{t.title()} CSV (only {t} records)"),
    )
    uploaded = st.file_uploader("Choose a file", type=["json", "csv"])

    if uploaded and st.button("Check file"):
        text = uploaded.getvalue().decode("utf-8")
        try:
            if target == "json":
                prepared = run_async(data_flow.prepare_json_import(text))
            elif target == "unified":
                prepared = run_async(data_flow.prepare_unified_csv_import(text))
            else:
                prepared = run_async(data_flow.prepare_csv_import(text, RecordKind(target)))
            st.session_state.prepared_import = prepared
        except MalformedImportError as e:
            st.session_state.prepared_import = None
            st.error(f"This file can't be imported: {e}")

    prepared = st.session_state.prepared_import
    if prepared is not None:
        summary = ", ".join(
            f"{count} {kind.collection_name}" for kind, count in prepared.counts.items()
        )
        st.info(f"Ready to import {summary}. {prepared.skipped_count} row(s) will be skipped.")
        if prepared.plan.skipped:
            with st.expander("Skipped rows"):
                for row in prepared.plan.skipped:
                    st.markdown(f"- Row {row.row_number}: {row.reason}")

        col1, col2 = st.columns(2)
        with col1:
            if st.button("✅ Replace and import", type="primary"):
                try:
                    report = run_async(data_flow.confirm_import(prepared))
                    st.success(f"Imported {report.total_inserted} record(s).")
                except PartialImportError as e:
                    st.error(str(e))
                except BulkReplaceError as e:
                    st.error(f"Import failed: {e}")
                st.session_state.prepared_import = None
        with col2:
            if st.button("❌ Cancel"):
                st.session_state.prepared_import = None
                st.rerun()

    # Delete all
    st.markdown("---")
    st.markdown("### Delete all data")
    confirmed = st.checkbox("I understand this permanently deletes every record")
    if st.button("🗑️ Delete everything", disabled=not confirmed):
        try:
            deleted = run_async(data_flow.confirm_delete_all(confirmed))
            st.success(f"Deleted {sum(deleted.values())} record(s).")
        except StorageError as e:
            st.error(f"Deletion failed: {e}")


def render_settings_page(data_flow: DataManagementFlow):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    services = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Gemini (Insights)", "gemini"),
        ("Application", "app"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Recent Activity")

    try:
        events = run_async(data_flow.recent_activity(limit=20))
    except StorageError as e:
        st.error(f"Could not load the audit trail: {e}")
        events = []

    if events:
        st.dataframe(
            [
                {
                    "When": event.timestamp.strftime("%Y-%m-%d %H:%M"),
                    "Event": event.event_type.value,
                    "Severity": event.severity.value,
                    "Description": event.description,
                }
                for event in events
            ],
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.info("No recorded activity yet.")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your API keys. "
        "See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()
