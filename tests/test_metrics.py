import pandas as pd
import pytest

from hvac_dashboard.metrics import (
    DEFAULT_LABOR_RATE,
    METRIC_DEFINITIONS,
    OVERHEAD_MULTIPLIER,
    blended_labor_cost,
    calculate_client_metrics,
    calculate_kpi_metrics,
    calculate_technician_metrics,
    get_callback_trends,
    get_revenue_by_month,
    get_top_clients_by_revenue,
    has_hours,
    job_cost,
    pct,
    renewal_likelihood,
    safe_div,
    value_score,
)
from hvac_dashboard.records import RecordStore


# =============================================================================
# HELPERS + COST BASIS
# =============================================================================

def test_safe_div_and_pct_guard_zero():
    assert safe_div(1, 0) == 0.0
    assert pct(1, 4) == 25.0
    assert list(pct(pd.Series([1, 2]), pd.Series([2, 0]))) == [50.0, 0.0]


def test_blended_labor_cost(store):
    assert OVERHEAD_MULTIPLIER == 1.4
    assert blended_labor_cost(store, ["t1"]) == pytest.approx(63.0)
    assert blended_labor_cost(store, ["t1", "t2"]) == pytest.approx(52.5)
    assert blended_labor_cost(store, []) == DEFAULT_LABOR_RATE
    assert blended_labor_cost(store, None) == DEFAULT_LABOR_RATE
    assert blended_labor_cost(store, ["ghost"]) == DEFAULT_LABOR_RATE
    assert blended_labor_cost(store, ["t1", "ghost"]) == pytest.approx((63.0 + 50.0) / 2)


def test_has_hours_needs_a_nonzero_value():
    assert list(has_hours(pd.Series([2.0, 0.0, float("nan")]))) == [True, False, False]


def test_job_cost_end_to_end(store):
    # 5h × $63/hr + $50 parts
    job = store.get_job("j1")
    assert job_cost(store, job) == pytest.approx(365.0)
    assert 600 - job_cost(store, job) == pytest.approx(235.0)


def test_job_cost_without_actual_hours_is_materials_only(store):
    assert job_cost(store, store.get_job("j4")) == 0.0
    assert job_cost(store, store.get_job("j3")) == pytest.approx(2 * 42 + 20 + 30)


# =============================================================================
# KPI
# =============================================================================

def test_kpi_revenue_windows(store, as_of):
    kpis = calculate_kpi_metrics(store, as_of=as_of)
    assert kpis.revenue_ytd == pytest.approx(1900.0)
    assert kpis.revenue_mtd == pytest.approx(1400.0)


def test_kpi_gross_margin_over_paid_ytd_jobs(store, as_of):
    kpis = calculate_kpi_metrics(store, as_of=as_of)
    # j1: 600 - 365, j2: 800 - (4 × 52.5 + 100)
    assert kpis.gross_margin_percentage == pytest.approx((1400 - 675) / 1400 * 100)


def test_kpi_callback_rate_and_first_time_fix(store, as_of):
    kpis = calculate_kpi_metrics(store, as_of=as_of)
    # j1, j2, j5 completed in the window; only cb1's root is inside it
    assert kpis.callback_rate == pytest.approx(100 / 3)
    assert kpis.first_time_fix_rate == pytest.approx(200 / 3)
    assert kpis.first_time_fix_rate + kpis.callback_rate == pytest.approx(100.0)


def test_kpi_ar_aging(store, as_of):
    aging = calculate_kpi_metrics(store, as_of=as_of).ar_aging
    assert aging.current == pytest.approx(150.0)
    assert aging.days_30 == 0.0
    assert aging.days_60 == 0.0
    assert aging.days_90_plus == pytest.approx(400.0)


@pytest.mark.parametrize("issued, bucket", [
    ("2024-05-16T12:00:00", "current"),    # 30 days
    ("2024-05-15T12:00:00", "days_30"),    # 31 days
    ("2024-04-16T12:00:00", "days_30"),    # 60 days
    ("2024-04-15T12:00:00", "days_60"),    # 61 days
    ("2024-03-17T12:00:00", "days_60"),    # 90 days
    ("2024-03-16T12:00:00", "days_90_plus"),
])
def test_kpi_ar_aging_bucket_edges(issued, bucket, as_of):
    store = RecordStore.from_records(invoices=[
        {"id": "i", "job_id": "j", "total": 100, "issued_at": issued, "paid_at": None},
    ])
    aging = calculate_kpi_metrics(store, as_of=as_of).ar_aging.__dict__
    assert aging[bucket] == 100.0
    assert sum(aging.values()) == 100.0


def test_kpi_jobs_over_budget_and_renewals(store, as_of):
    kpis = calculate_kpi_metrics(store, as_of=as_of)
    assert kpis.jobs_over_budget == 1
    assert kpis.contracts_due_renewal == 1


def test_kpi_over_budget_needs_actual_hours(as_of):
    store = RecordStore.from_records(jobs=[
        {"id": "a", "completed_at": "2024-06-01", "labor_hours_estimated": 10, "labor_hours_actual": 11},
        {"id": "b", "completed_at": "2024-06-01", "labor_hours_estimated": 10, "labor_hours_actual": 11.5},
        {"id": "c", "completed_at": "2024-06-01", "labor_hours_estimated": 4, "labor_hours_actual": None},
    ])
    assert calculate_kpi_metrics(store, as_of=as_of).jobs_over_budget == 1


def test_kpi_with_no_invoices_is_all_zero(empty_store, as_of):
    kpis = calculate_kpi_metrics(empty_store, as_of=as_of)
    assert kpis.revenue_mtd == 0
    assert kpis.revenue_ytd == 0
    assert kpis.gross_margin_percentage == 0
    assert kpis.callback_rate == 0
    assert kpis.first_time_fix_rate == 0
    assert kpis.to_dict()["ar_aging"] == {"current": 0.0, "days_30": 0.0, "days_60": 0.0, "days_90_plus": 0.0}


def test_kpi_callback_rate_can_exceed_100(as_of):
    store = RecordStore.from_records(
        jobs=[{"id": "r", "completed_at": "2024-06-01", "labor_hours_estimated": 1}],
        callbacks=[
            {"id": "x1", "root_job_id": "r", "callback_job_id": "f1", "reason_category": "other"},
            {"id": "x2", "root_job_id": "r", "callback_job_id": "f2", "reason_category": "other"},
        ],
    )
    kpis = calculate_kpi_metrics(store, as_of=as_of)
    assert kpis.callback_rate == 200.0
    assert kpis.first_time_fix_rate == -100.0


def test_kpi_defaults_as_of_to_now(store):
    assert calculate_kpi_metrics(store).revenue_ytd >= 0


# =============================================================================
# TECHNICIANS
# =============================================================================

def test_technician_metrics(store, as_of):
    m = calculate_technician_metrics(store, "t1", as_of=as_of)
    assert m.total_jobs == 3
    assert m.callback_rate == pytest.approx(100 / 3)
    assert m.first_time_fix_rate + m.callback_rate == pytest.approx(100.0)
    assert m.labor_variance_percentage == pytest.approx(25 / 3)
    # margin at t1's own rate: j1 600 - 365, j2 800 - (4 × 63 + 100)
    assert m.avg_margin_contribution == pytest.approx((235 + 448) / 2)
    assert m.efficiency_index == 80.0


def test_technician_callbacks_are_counted_outside_the_window(store, as_of):
    # t2 has one windowed job (j2) but cb2's root (j3, February) still counts
    m = calculate_technician_metrics(store, "t2", as_of=as_of)
    assert m.total_jobs == 1
    assert m.callback_rate == 100.0
    assert m.first_time_fix_rate == 0.0
    assert m.avg_margin_contribution == pytest.approx(800 - (4 * 42 + 100))
    assert m.efficiency_index == 60.0


def test_technician_without_jobs_is_zeroed(store, as_of):
    m = calculate_technician_metrics(store, "t3", as_of=as_of)
    assert m.to_dict() == {
        "technician_id": "t3",
        "total_jobs": 0,
        "first_time_fix_rate": 0.0,
        "callback_rate": 0.0,
        "efficiency_index": 0.0,
        "avg_margin_contribution": 0.0,
        "labor_variance_percentage": 0.0,
    }
    assert calculate_technician_metrics(store, "ghost", as_of=as_of).total_jobs == 0


def _tech_store(efficiency, jobs, callbacks=()):
    techs = [] if efficiency is None else [{"id": "t", "name": "T", "hourly_cost": 40, "efficiency_score": efficiency}]
    return RecordStore.from_records(technicians=techs, jobs=jobs, callbacks=list(callbacks))


def test_efficiency_bonus_and_penalty(as_of):
    jobs = [
        {"id": f"j{i}", "technician_ids": ["t"], "completed_at": "2024-06-01",
         "labor_hours_estimated": 10, "labor_hours_actual": 13}
        for i in range(20)
    ]
    # FTF 100 -> +10, variance 30% -> -10
    assert calculate_technician_metrics(_tech_store(75, jobs), "t", as_of=as_of).efficiency_index == 75.0

    for j in jobs:
        j["labor_hours_actual"] = 11.5
    # variance 15% -> -5, clamp at 100
    assert calculate_technician_metrics(_tech_store(98, jobs), "t", as_of=as_of).efficiency_index == 100.0

    callbacks = [{"id": f"cb{i}", "root_job_id": f"j{i}", "callback_job_id": "x"} for i in range(3)]
    # FTF 85 -> +5, variance -5
    m = calculate_technician_metrics(_tech_store(50, jobs, callbacks), "t", as_of=as_of)
    assert m.first_time_fix_rate == pytest.approx(85.0)
    assert m.efficiency_index == 50.0


def test_efficiency_defaults_when_technician_missing(as_of):
    jobs = [{"id": "j", "technician_ids": ["t"], "completed_at": "2024-06-01", "labor_hours_estimated": 2}]
    m = calculate_technician_metrics(_tech_store(None, jobs), "t", as_of=as_of)
    assert m.total_jobs == 1
    assert m.labor_variance_percentage == 0.0
    assert m.avg_margin_contribution == 0.0
    assert m.efficiency_index == 80.0   # 70 + 10 for FTF 100


# =============================================================================
# CLIENTS
# =============================================================================

def test_client_metrics(store, as_of):
    m = calculate_client_metrics(store, "c1", as_of=as_of)
    assert m.trailing_6mo_revenue == pytest.approx(1400.0)
    assert m.avg_days_to_pay == pytest.approx(7.5)
    assert m.margin_percentage == pytest.approx((1400 - 675) / 1400 * 100)
    assert m.callback_load == pytest.approx(100 / 3)
    # 50 + 20 (fast payer) - 15 (callbacks) + 15 (margin)
    assert m.renewal_likelihood == 70.0
    # margin 25 + payment 20
    assert m.value_score == 45.0


def test_client_with_only_unpaid_work(store, as_of):
    m = calculate_client_metrics(store, "c2", as_of=as_of)
    assert m.trailing_6mo_revenue == 0.0
    assert m.margin_percentage == 0.0
    assert m.avg_days_to_pay == 0.0
    assert m.callback_load == 100.0
    # expired contract still counts as having contracts: 50 + 20 - 15 - 15
    assert m.renewal_likelihood == 40.0


def test_client_without_contracts_renewal_is_fifty(store, as_of):
    assert calculate_client_metrics(store, "c3", as_of=as_of).renewal_likelihood == 50.0
    assert calculate_client_metrics(store, "ghost", as_of=as_of).renewal_likelihood == 50.0
    assert renewal_likelihood(5, 0, 40, has_contracts=False) == 50.0


def test_renewal_likelihood_is_clamped():
    assert renewal_likelihood(10, 1, 30) == 100.0
    assert renewal_likelihood(60, 30, 0) == 0.0
    assert renewal_likelihood(40, 10, 15) == 50.0


@pytest.mark.parametrize("revenue, points", [
    (5000, 0), (5000.01, 10), (10000, 10), (25000, 20), (50000, 30), (50000.01, 40),
])
def test_value_score_revenue_tiers_are_strict(revenue, points):
    assert value_score(revenue, 0, 100, 100) == points


@pytest.mark.parametrize("margin, points", [(10, 0), (10.5, 10), (15, 10), (20, 15), (30, 20), (31, 25)])
def test_value_score_margin_tiers(margin, points):
    assert value_score(0, margin, 100, 100) == points


@pytest.mark.parametrize("days, points", [(15, 20), (15.5, 15), (30, 15), (45, 10), (46, 0)])
def test_value_score_payment_tiers(days, points):
    assert value_score(0, 0, days, 100) == points


@pytest.mark.parametrize("load, points", [(4.9, 15), (5, 10), (10, 5), (15, 0)])
def test_value_score_callback_tiers(load, points):
    assert value_score(0, 0, 100, load) == points


def test_value_score_bounds():
    assert value_score(10**6, 99, 0, 0) == 100.0
    assert value_score(0, -50, 1000, 500) == 0.0


# =============================================================================
# CHART AGGREGATIONS
# =============================================================================

def test_revenue_by_month(store, as_of):
    monthly = get_revenue_by_month(store, as_of=as_of)
    assert list(monthly["month"]) == ["Jan", "Feb", "Mar", "Apr", "May", "Jun"]
    by_month = monthly.set_index("month")
    assert by_month.loc["Jan", "revenue"] == 500.0
    assert by_month.loc["Jan", "margin"] == pytest.approx(500 - (3 * 63 + 40))
    assert by_month.loc["Jun", "revenue"] == 1400.0
    assert by_month.loc["Jun", "margin"] == pytest.approx(725.0)
    assert by_month.loc["Mar", "revenue"] == 0.0


def test_top_clients_by_revenue(store, as_of):
    top = get_top_clients_by_revenue(store, as_of=as_of)
    assert list(top.columns) == ["client_id", "client_name", "industry", "revenue", "margin"]
    assert list(top["client_id"]) == ["c1"]
    assert top.loc[0, "revenue"] == 1400.0
    assert top.loc[0, "margin"] == pytest.approx(725.0)
    assert get_top_clients_by_revenue(RecordStore.from_records(), as_of=as_of).empty


def test_callback_trends_share_sums_to_100(store, as_of):
    trends = get_callback_trends(store, as_of=as_of)
    assert list(trends["category"]) == ["Part Failure"]
    assert list(trends["count"]) == [1]
    assert trends["percentage"].sum() == pytest.approx(100.0)


def test_callback_trends_multiple_categories(as_of):
    store = RecordStore.from_records(
        jobs=[{"id": f"r{i}", "completed_at": "2024-06-01"} for i in range(4)],
        callbacks=[
            {"id": "a", "root_job_id": "r0", "callback_job_id": "x", "reason_category": "part_failure"},
            {"id": "b", "root_job_id": "r1", "callback_job_id": "x", "reason_category": "misdiagnosis"},
            {"id": "c", "root_job_id": "r2", "callback_job_id": "x", "reason_category": "part_failure"},
            {"id": "d", "root_job_id": "r3", "callback_job_id": "x", "reason_category": None},
        ],
    )
    trends = get_callback_trends(store, as_of=as_of).set_index("category")
    assert trends.loc["Part Failure", "count"] == 2
    assert trends.loc["Misdiagnosis", "percentage"] == 25.0
    assert trends.loc["Unknown", "count"] == 1
    assert trends["percentage"].sum() == pytest.approx(100.0)


def test_callback_trends_empty(empty_store, as_of):
    trends = get_callback_trends(empty_store, as_of=as_of)
    assert trends.empty
    assert list(trends.columns) == ["category", "count", "percentage"]


def test_metric_definitions_cover_dashboard_metrics():
    for key in ("revenue_ytd", "gross_margin_percentage", "callback_rate", "value_score"):
        assert {"name", "formula", "description"} <= set(METRIC_DEFINITIONS[key])
