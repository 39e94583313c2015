"""
HVAC Service Business Dashboard
===============================
Streamlit app over the pre-generated HVAC operational records.

Pages:
1. Overview: KPI cards, revenue and callback charts, top clients, alerts
2. Jobs
3. Technicians (90-day performance)
4. Clients (trailing 6-month value, upsell)
5. Contracts
6. Callbacks

Run:
    streamlit run hvac_dashboard/app.py
"""

import logging
from typing import List, Optional

import altair as alt
import pandas as pd
import streamlit as st

from hvac_dashboard.config import load_config
from hvac_dashboard.etl import load_record_store
from hvac_dashboard.insights import (
    clients_without_contracts,
    contracts_due_for_renewal,
    equipment_upgrade_opportunities,
    generate_headlines,
)
from hvac_dashboard.metrics import (
    METRIC_DEFINITIONS,
    calculate_kpi_metrics,
    get_callback_trends,
    get_revenue_by_month,
    get_top_clients_by_revenue,
)
from hvac_dashboard.summaries import (
    compute_callback_summary,
    compute_client_summary,
    compute_contract_summary,
    compute_job_summary,
    compute_technician_summary,
)
from hvac_dashboard.table import ColumnDef, DataTable

CONFIG = load_config()

logging.basicConfig(
    level=getattr(logging, CONFIG.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title="HVAC Service Dashboard",
    page_icon="🌡️",
    layout="wide",
    initial_sidebar_state="expanded"
)

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fmt_currency(val, row=None):
    if pd.isna(val) or val == 0:
        return "$0"
    if abs(val) >= 1_000_000:
        return f"${val/1_000_000:,.1f}M"
    if abs(val) >= 1_000:
        return f"${val/1_000:,.1f}K"
    return f"${val:,.0f}"

def fmt_pct(val, row=None):
    if pd.isna(val):
        return "N/A"
    return f"{val:.1f}%"

def fmt_date(val, row=None):
    if val is None or pd.isna(val):
        return ""
    return pd.Timestamp(val).strftime("%Y-%m-%d")

def fmt_number(val, row=None):
    if val is None or pd.isna(val):
        return ""
    return f"{val:,.0f}"

def fmt_label(val, row=None):
    return str(val).replace("_", " ").title() if isinstance(val, str) else ""


# =============================================================================
# DATA LOADING (CACHED)
# =============================================================================

@st.cache_data
def load_store(source, tz):
    """Load the record store once per process."""
    return load_record_store(source, tz=tz)


# =============================================================================
# TABLE WIDGET
# =============================================================================

def render_table(key: str, rows: pd.DataFrame, columns: List[ColumnDef], title: Optional[str] = None):
    """Search / filter / sort / paginate / export one row set, state kept per session."""
    state_key = f"table_{key}"
    if state_key not in st.session_state:
        st.session_state[state_key] = DataTable(rows, columns, title=title, page_size=CONFIG.page_size)
    table: DataTable = st.session_state[state_key]

    filterable = [c for c in columns if c.filterable]
    sortable = [c for c in columns if c.sortable]

    c1, c2, c3 = st.columns([3, 2, 1])
    with c1:
        st.text_input(
            "Search", key=f"{key}_search", placeholder="Search all columns...",
            on_change=lambda: table.set_search(st.session_state[f"{key}_search"]),
        )
    with c2:
        sort_header = st.selectbox(
            "Sort column", [c.header for c in sortable], key=f"{key}_sort_col",
        )
    with c3:
        st.write("")
        sort_col = next((c for c in sortable if c.header == sort_header), None)
        if sort_col is not None:
            st.button(
                "Sort ↑↓", key=f"{key}_sort_btn",
                on_click=lambda: table.set_sort(sort_col.key),
            )

    if filterable:
        fcols = st.columns(len(filterable) + 1)
        for fcol, c in zip(fcols, filterable):
            widget_key = f"{key}_filter_{c.key}"
            with fcol:
                if c.filter_type == "select":
                    st.selectbox(
                        c.header, [""] + list(c.filter_options), key=widget_key,
                        format_func=lambda v: "All" if v == "" else fmt_label(v),
                        on_change=lambda k=c.key, w=widget_key: table.set_column_filter(k, st.session_state[w]),
                    )
                else:
                    st.text_input(
                        c.header, key=widget_key,
                        on_change=lambda k=c.key, w=widget_key: table.set_column_filter(k, st.session_state[w]),
                    )

        def _clear():
            table.clear_all_filters()
            st.session_state[f"{key}_search"] = ""
            for c in filterable:
                st.session_state[f"{key}_filter_{c.key}"] = ""

        with fcols[-1]:
            st.write("")
            st.button("Clear filters", key=f"{key}_clear", on_click=_clear)

    page = table.current_page()
    if page.is_empty:
        st.info(page.empty_message)
    else:
        display = pd.DataFrame({
            c.header: [
                c.render(v, r) if c.render else v
                for v, r in zip(page.rows[c.key], page.rows.to_dict("records"))
            ]
            for c in columns
        })
        st.dataframe(display, use_container_width=True, hide_index=True)

    p1, p2, p3, p4 = st.columns([3, 1, 1, 1])
    with p1:
        st.caption(
            f"Showing {page.start:,} to {page.end:,} of {page.total_count:,} results "
            f"| Page {page.page} of {max(page.total_pages, 1)}"
        )
    with p2:
        st.button("◀ Previous", key=f"{key}_prev", disabled=page.page <= 1,
                  on_click=lambda: table.set_page(table.page - 1))
    with p3:
        st.button("Next ▶", key=f"{key}_next", disabled=page.page >= page.total_pages,
                  on_click=lambda: table.set_page(table.page + 1))
    with p4:
        st.write("")
        st.download_button(
            "📥 Export CSV",
            table.export_csv(),
            file_name=table.export_filename,
            mime="text/csv",
            key=f"{key}_export",
        )


# =============================================================================
# PAGES
# =============================================================================

def page_overview(store, as_of):
    kpis = calculate_kpi_metrics(store, as_of=as_of)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Revenue MTD", fmt_currency(kpis.revenue_mtd))
    c2.metric("Revenue YTD", fmt_currency(kpis.revenue_ytd))
    c3.metric("Gross Margin", fmt_pct(kpis.gross_margin_percentage))
    c4.metric("First-Time Fix", fmt_pct(kpis.first_time_fix_rate),
              delta=f"{kpis.callback_rate:.1f}% callbacks", delta_color="inverse")

    aging = kpis.ar_aging
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("AR Current", fmt_currency(aging.current))
    c2.metric("AR 31-60", fmt_currency(aging.days_30))
    c3.metric("AR 61-90", fmt_currency(aging.days_60))
    c4.metric("AR 90+", fmt_currency(aging.days_90_plus))

    c1, c2 = st.columns(2)
    c1.metric("Jobs Over Budget (YTD)", f"{kpis.jobs_over_budget:,}")
    c2.metric("Contracts Due Renewal (90d)", f"{kpis.contracts_due_renewal:,}")

    st.markdown("### 📰 Headlines")
    for line in generate_headlines(kpis):
        st.markdown(f"- {line}")

    col1, col2 = st.columns(2)
    with col1:
        st.markdown("#### Revenue & Margin by Month")
        monthly = get_revenue_by_month(store, as_of=as_of)
        chart_data = monthly.melt(
            id_vars=["month", "month_start"], value_vars=["revenue", "margin"],
            var_name="Series", value_name="Amount",
        )
        chart = alt.Chart(chart_data).mark_bar().encode(
            x=alt.X("month:N", sort=list(monthly["month"]), title=""),
            xOffset="Series:N",
            y=alt.Y("Amount:Q", title="$"),
            color=alt.Color("Series:N", scale=alt.Scale(domain=["revenue", "margin"], range=["#1e88e5", "#43a047"])),
            tooltip=["month", "Series", alt.Tooltip("Amount:Q", format="$,.0f")]
        ).properties(height=320)
        st.altair_chart(chart, use_container_width=True)

    with col2:
        st.markdown("#### Callbacks by Reason (90 days)")
        trends = get_callback_trends(store, as_of=as_of)
        if trends.empty:
            st.info("No callbacks in the last 90 days.")
        else:
            chart = alt.Chart(trends).mark_bar().encode(
                x=alt.X("count:Q", title="Callbacks"),
                y=alt.Y("category:N", sort="-x", title=""),
                color=alt.value("#e53935"),
                tooltip=["category", "count", alt.Tooltip("percentage:Q", format=".1f", title="%")]
            ).properties(height=320)
            st.altair_chart(chart, use_container_width=True)

    st.markdown("#### 🏆 Top Clients (trailing 6 months)")
    top = get_top_clients_by_revenue(store, limit=5, as_of=as_of)
    if top.empty:
        st.info("No paid revenue in the trailing 6 months.")
    else:
        st.dataframe(top.style.format({"revenue": "${:,.0f}", "margin": "${:,.0f}"}),
                     use_container_width=True, hide_index=True)

    st.markdown("### ⚠️ Alerts & Opportunities")
    col1, col2, col3 = st.columns(3)
    with col1:
        st.markdown("**Equipment upgrades**")
        for _, eq in equipment_upgrade_opportunities(store, as_of=as_of).iterrows():
            st.warning(f"{eq['client_name']}: {eq['make']} {eq['model']} ({eq['reason']})")
    with col2:
        st.markdown("**Contracts due for renewal**")
        for _, c in contracts_due_for_renewal(store, as_of=as_of).iterrows():
            st.info(f"{c['client_name']}: renews {fmt_date(c['renewal_date'])} ({fmt_currency(c['annual_value'])}/yr)")
    with col3:
        st.markdown("**Clients without contracts**")
        for _, c in clients_without_contracts(store).iterrows():
            st.success(f"{c['name']}: est. value {fmt_currency(c['estimated_value'])}")

    with st.expander("📖 Metric definitions", expanded=False):
        defs = pd.DataFrame(list(METRIC_DEFINITIONS.values()))
        st.dataframe(defs, use_container_width=True, hide_index=True)


def page_jobs(store, as_of):
    jobs = compute_job_summary(store)
    render_table("jobs", jobs, [
        ColumnDef("id", "Job ID"),
        ColumnDef("client_name", "Client", filterable=True),
        ColumnDef("technician_names", "Technicians"),
        ColumnDef("job_type", "Type", render=fmt_label, filterable=True, filter_type="select",
                  filter_options=["service", "install", "pm"]),
        ColumnDef("system_type", "System", render=fmt_label),
        ColumnDef("status", "Status", render=fmt_label, filterable=True, filter_type="select",
                  filter_options=["scheduled", "in_progress", "done", "invoiced", "paid", "canceled"]),
        ColumnDef("completed_at", "Completed", render=fmt_date),
        ColumnDef("labor_hours_estimated", "Est. Hrs"),
        ColumnDef("labor_hours_actual", "Actual Hrs"),
        ColumnDef("invoice_total", "Invoice", render=fmt_currency),
        ColumnDef("profit_status", "Profit", filterable=True, filter_type="select",
                  filter_options=["pending", "on-track", "over-budget"]),
    ], title="jobs")


def page_technicians(store, as_of):
    techs = compute_technician_summary(store, as_of=as_of)
    render_table("technicians", techs, [
        ColumnDef("name", "Technician"),
        ColumnDef("role", "Role", render=fmt_label, filterable=True, filter_type="select",
                  filter_options=["junior", "senior", "lead", "specialist"]),
        ColumnDef("total_jobs", "Jobs (90d)"),
        ColumnDef("first_time_fix_rate", "FTF", render=fmt_pct),
        ColumnDef("callback_rate", "Callbacks", render=fmt_pct),
        ColumnDef("efficiency_index", "Efficiency", render=fmt_number),
        ColumnDef("labor_variance_percentage", "Labor Var.", render=fmt_pct),
        ColumnDef("avg_margin_contribution", "Avg Margin", render=fmt_currency),
        ColumnDef("hourly_cost", "Hourly Cost", render=fmt_currency),
    ], title="technicians")


def page_clients(store, as_of):
    clients = compute_client_summary(store, as_of=as_of)
    render_table("clients", clients, [
        ColumnDef("name", "Client"),
        ColumnDef("industry", "Industry", filterable=True),
        ColumnDef("service_level", "Level", render=fmt_label, filterable=True, filter_type="select",
                  filter_options=["standard", "priority", "premium"]),
        ColumnDef("trailing_6mo_revenue", "Revenue (6mo)", render=fmt_currency),
        ColumnDef("margin_percentage", "Margin", render=fmt_pct),
        ColumnDef("avg_days_to_pay", "Days to Pay", render=fmt_number),
        ColumnDef("callback_load", "Callback Load", render=fmt_pct),
        ColumnDef("renewal_likelihood", "Renewal", render=fmt_number),
        ColumnDef("value_score", "Value Score", render=fmt_number),
        ColumnDef("equipment_count", "Equipment"),
        ColumnDef("upsell_score", "Upsell"),
    ], title="clients")


def page_contracts(store, as_of):
    contracts = compute_contract_summary(store, as_of=as_of)
    render_table("contracts", contracts, [
        ColumnDef("id", "Contract ID"),
        ColumnDef("client_name", "Client", filterable=True),
        ColumnDef("client_industry", "Industry"),
        ColumnDef("status", "Status", render=fmt_label, filterable=True, filter_type="select",
                  filter_options=["active", "expired", "cancelled", "pending_renewal"]),
        ColumnDef("annual_value", "Annual Value", render=fmt_currency),
        ColumnDef("visits_per_year", "Visits/yr", render=fmt_number),
        ColumnDef("renewal_date", "Renewal", render=fmt_date),
        ColumnDef("days_until_renewal", "Days to Renewal", render=fmt_number),
    ], title="contracts")


def page_callbacks(store, as_of):
    callbacks = compute_callback_summary(store)
    render_table("callbacks", callbacks, [
        ColumnDef("id", "Callback ID"),
        ColumnDef("client_name", "Client", filterable=True),
        ColumnDef("reason_category", "Reason", render=fmt_label, filterable=True, filter_type="select",
                  filter_options=["misdiagnosis", "part_failure", "workmanship", "documentation", "other"]),
        ColumnDef("outcome", "Outcome", render=fmt_label),
        ColumnDef("system_type", "System", render=fmt_label),
        ColumnDef("technician_names", "Technicians"),
        ColumnDef("root_job_date", "Root Job", render=fmt_date),
        ColumnDef("callback_job_date", "Callback Job", render=fmt_date),
        ColumnDef("corrective_action", "Corrective Action", sortable=False),
    ], title="callbacks")


PAGES = {
    "📊 Overview": page_overview,
    "🔧 Jobs": page_jobs,
    "👷 Technicians": page_technicians,
    "🏢 Clients": page_clients,
    "📄 Contracts": page_contracts,
    "🔁 Callbacks": page_callbacks,
}


# =============================================================================
# MAIN APPLICATION
# =============================================================================

def main():
    st.title("🌡️ HVAC Service Dashboard")
    st.markdown("*Revenue, margin, callbacks, technician performance and client value*")

    st.sidebar.header("📁 Data Source")
    try:
        with st.spinner("Loading data..."):
            store, report = load_store(CONFIG.data_source, CONFIG.timezone)
    except ValueError as e:
        logger.error(f"Failed to load data from {CONFIG.data_source}: {e}")
        st.error(f"Error: {e}")
        st.stop()

    st.sidebar.success(f"✅ {report.collection_counts.get('jobs', 0):,} jobs loaded")
    if report.notes:
        with st.sidebar.expander(f"Data notes ({len(report.notes)})", expanded=False):
            for note in report.notes:
                st.caption(note)

    as_of = CONFIG.as_of if CONFIG.as_of is not None else pd.Timestamp.now()
    st.sidebar.info(f"As of {as_of:%d %b %Y}")

    st.sidebar.header("🧭 Navigation")
    choice = st.sidebar.radio("Page", list(PAGES), label_visibility="collapsed")
    PAGES[choice](store, as_of)


if __name__ == "__main__":
    main()
