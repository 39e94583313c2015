"""
HVAC Service Metrics: Revenue, Margin, Callbacks, Technician & Client Value
===========================================================================

This module powers the dashboard's numbers. Every function is pure: it reads
the RecordStore and an evaluation instant (`as_of`, default now) and returns a
fresh snapshot. Nothing is cached; repeated calls redo the scan.

Core business definitions (IMPORTANT)
------------------------------------
1) REVENUE = Invoice total, recognised when the invoice is PAID (`paid_at`).
   - Unpaid invoices contribute nothing to revenue; they show up in AR aging.

2) JOB COST = Actual Hours × Blended Labor Rate + Parts Cost + Subcontractor Cost.
   - Blended Labor Rate = mean over the job's technicians of hourly_cost × 1.4
     (40% burden). Empty crew or unknown technician -> $50/hr for that member.
   - Jobs with no actual hours yet cost 0 labor.

3) CALLBACK = a follow-up job raised against a completed ROOT job.
   - Callback rate (%)      = callbacks on root jobs / completed jobs × 100
   - First-time fix (%)     = 100 - callback rate

Windows
-------
- YTD  = [Jan 1 of as_of's year, as_of]
- MTD  = [first instant of as_of's month, last instant of that month]
- Rolling 90 days  = [as_of - 90d, as_of]   (KPI callbacks, technicians)
- Rolling 180 days = [as_of - 180d, as_of]  (client value)

Per-technician and per-client callback counts scan ALL callbacks, while
their denominators are window-restricted job counts.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .records import UNKNOWN, RecordStore, contains_id
from .timewindows import (
    add_days,
    days_between,
    is_in_range,
    month_end,
    month_start,
    resolve_as_of,
    year_start,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIG
# =============================================================================

OVERHEAD_MULTIPLIER = 1.4          # 40% burden on technician hourly cost
DEFAULT_LABOR_RATE = 50.0          # $/hr when the crew is empty or a technician is unknown
DEFAULT_EFFICIENCY_SCORE = 70.0    # baseline when the technician record is missing
OVER_BUDGET_TOLERANCE = 1.1        # actual hours may exceed estimate by 10%

CALLBACK_WINDOW_DAYS = 90
TECHNICIAN_WINDOW_DAYS = 90
CLIENT_WINDOW_DAYS = 180
RENEWAL_HORIZON_DAYS = 90

AR_BUCKETS = ("current", "days_30", "days_60", "days_90_plus")

# (threshold, points); first matching tier wins
REVENUE_TIERS = ((50000, 40), (25000, 30), (10000, 20), (5000, 10))   # revenue > threshold
MARGIN_TIERS = ((30, 25), (20, 20), (15, 15), (10, 10))               # margin % > threshold
PAYMENT_TIERS = ((15, 20), (30, 15), (45, 10))                        # avg days to pay <= threshold
CALLBACK_TIERS = ((5, 15), (10, 10), (15, 5))                         # callback load % < threshold


# =============================================================================
# HELPERS
# =============================================================================

def safe_div(n, d):
    """Vector-safe divide. Supports scalars, numpy arrays, and pandas Series."""
    n_arr = np.asarray(n, dtype="float64")
    d_arr = np.asarray(d, dtype="float64")
    out = np.zeros_like(n_arr, dtype="float64")
    np.divide(n_arr, d_arr, out=out, where=d_arr != 0)
    # Preserve scalar return type when inputs are scalar
    return float(out) if out.shape == () else out

def pct(n, d):
    """Percent = (n/d)*100 with vector-safe divide."""
    return safe_div(n, d) * 100.0

def _mean_or_zero(values) -> float:
    arr = np.asarray(values, dtype="float64")
    return float(arr.mean()) if arr.size else 0.0

def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return float(min(hi, max(lo, value)))

def has_hours(hours: pd.Series) -> pd.Series:
    """Hours are 'recorded' when present and non-zero."""
    return hours.notna() & hours.ne(0)


# =============================================================================
# METRIC RECORDS
# =============================================================================

@dataclass
class ARAging:
    current: float = 0.0
    days_30: float = 0.0
    days_60: float = 0.0
    days_90_plus: float = 0.0


@dataclass
class KPIMetrics:
    revenue_mtd: float
    revenue_ytd: float
    gross_margin_percentage: float
    callback_rate: float
    first_time_fix_rate: float
    ar_aging: ARAging = field(default_factory=ARAging)
    jobs_over_budget: int = 0
    contracts_due_renewal: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class TechnicianMetrics:
    technician_id: str
    first_time_fix_rate: float = 0.0
    callback_rate: float = 0.0
    efficiency_index: float = 0.0
    avg_margin_contribution: float = 0.0
    labor_variance_percentage: float = 0.0
    total_jobs: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ClientMetrics:
    client_id: str
    trailing_6mo_revenue: float = 0.0
    avg_days_to_pay: float = 0.0
    margin_percentage: float = 0.0
    callback_load: float = 0.0
    renewal_likelihood: float = 50.0
    value_score: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# COST BASIS
# =============================================================================

def _labor_rates(store: RecordStore) -> Dict[str, float]:
    techs = store.technicians
    return {
        tid: float(cost) * OVERHEAD_MULTIPLIER
        for tid, cost in zip(techs["id"], techs["hourly_cost"])
        if not pd.isna(cost)
    }

def _blended_rate(technician_ids: Optional[Iterable[str]], rates: Dict[str, float]) -> float:
    ids = list(technician_ids) if technician_ids is not None else []
    if not ids:
        return DEFAULT_LABOR_RATE
    return _mean_or_zero([rates.get(tid, DEFAULT_LABOR_RATE) for tid in ids])

def blended_labor_cost(store: RecordStore, technician_ids: Optional[Iterable[str]]) -> float:
    """Average burdened hourly cost of a crew."""
    return _blended_rate(technician_ids, _labor_rates(store))

def job_cost(store: RecordStore, job: pd.Series, technician_ids: Optional[Sequence[str]] = None) -> float:
    """
    Labor (actual hours × blended rate) + parts + subcontractor for one job.
    `technician_ids` overrides the job's own crew for the labor rate.
    """
    crew = job["technician_ids"] if technician_ids is None else technician_ids
    hours = job["labor_hours_actual"]
    hours = 0.0 if pd.isna(hours) else float(hours)
    return hours * blended_labor_cost(store, crew) + float(job["parts_cost"]) + float(job["subcontractor_cost"])

def _with_costs(store: RecordStore, jobs: pd.DataFrame, technician_ids: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Adds blended_rate, labor_cost and job_cost columns."""
    rates = _labor_rates(store)
    out = jobs.copy()
    if technician_ids is None:
        out["blended_rate"] = out["technician_ids"].map(lambda ids: _blended_rate(ids, rates)).astype(float)
    else:
        out["blended_rate"] = _blended_rate(technician_ids, rates)
    out["labor_cost"] = out["labor_hours_actual"].fillna(0.0) * out["blended_rate"]
    out["job_cost"] = out["labor_cost"] + out["parts_cost"] + out["subcontractor_cost"]
    return out

def _with_invoices(jobs: pd.DataFrame, invoices: pd.DataFrame) -> pd.DataFrame:
    """Left-joins each job to its (first) invoice."""
    inv = (
        invoices[["id", "job_id", "total", "issued_at", "paid_at", "days_to_pay"]]
        .drop_duplicates("job_id")
        .rename(columns={"id": "invoice_id"})
    )
    return jobs.merge(inv, left_on="id", right_on="job_id", how="left")

def _completed_in(jobs: pd.DataFrame, start: pd.Timestamp, end: pd.Timestamp) -> pd.DataFrame:
    return jobs.loc[is_in_range(jobs["completed_at"], start, end)]

def _callbacks_with_root(store: RecordStore) -> pd.DataFrame:
    """Callbacks joined to their root job; callbacks whose root is unknown drop out."""
    roots = (
        store.jobs[["id", "client_id", "technician_ids", "completed_at", "system_type", "job_type"]]
        .drop_duplicates("id")
        .rename(columns={
            "id": "root_id",
            "client_id": "root_client_id",
            "technician_ids": "root_technician_ids",
            "completed_at": "root_completed_at",
            "system_type": "root_system_type",
            "job_type": "root_job_type",
        })
    )
    return store.callbacks.merge(roots, left_on="root_job_id", right_on="root_id", how="inner")


# =============================================================================
# KPI (BUSINESS-WIDE)
# =============================================================================

def _ar_aging(invoices: pd.DataFrame, as_of: pd.Timestamp) -> ARAging:
    unpaid = invoices.loc[invoices["paid_at"].isna()]
    if unpaid.empty:
        return ARAging()
    days_out = days_between(as_of, unpaid["issued_at"])
    bucket = np.select(
        [days_out <= 30, days_out <= 60, days_out <= 90],
        ["current", "days_30", "days_60"],
        default="days_90_plus",
    )
    sums = unpaid.groupby(bucket)["total"].sum()
    return ARAging(**{b: float(sums.get(b, 0.0)) for b in AR_BUCKETS})


def calculate_kpi_metrics(store: RecordStore, as_of=None) -> KPIMetrics:
    """Business-wide KPIs as of `as_of`."""
    as_of = resolve_as_of(as_of)
    ytd_start = year_start(as_of)
    mtd_start, mtd_end = month_start(as_of), month_end(as_of)
    window_start = add_days(as_of, -CALLBACK_WINDOW_DAYS)

    invoices = store.invoices
    jobs = store.jobs

    # Revenue (paid invoices only)
    revenue_ytd = float(invoices.loc[is_in_range(invoices["paid_at"], ytd_start, as_of), "total"].sum())
    revenue_mtd = float(invoices.loc[is_in_range(invoices["paid_at"], mtd_start, mtd_end), "total"].sum())

    # Gross margin over YTD-completed jobs with a paid invoice
    completed_ytd = _completed_in(jobs, ytd_start, as_of)
    costed = _with_costs(store, _with_invoices(completed_ytd, invoices))
    paid = costed.loc[costed["paid_at"].notna()]
    total_revenue = float(paid["total"].sum())
    total_cost = float(paid["job_cost"].sum())
    gross_margin_pct = pct(total_revenue - total_cost, total_revenue)

    # Callbacks (rolling 90 days, keyed on root-job completion)
    recent_jobs = _completed_in(jobs, window_start, as_of)
    roots = _callbacks_with_root(store)
    recent_callbacks = roots.loc[is_in_range(roots["root_completed_at"], window_start, as_of)]
    callback_rate = pct(len(recent_callbacks), len(recent_jobs))
    first_time_fix_rate = 100.0 - callback_rate if len(recent_jobs) else 0.0

    # Labor overruns beyond tolerance; jobs without actual hours are not counted
    hours = completed_ytd["labor_hours_actual"]
    over_budget = has_hours(hours) & (hours > completed_ytd["labor_hours_estimated"] * OVER_BUDGET_TOLERANCE)

    contracts = store.contracts
    due = (contracts["status"] == "active") & contracts["renewal_date"].le(add_days(as_of, RENEWAL_HORIZON_DAYS))

    logger.debug(
        f"KPI as of {as_of:%Y-%m-%d}: {len(completed_ytd)} jobs YTD, "
        f"{len(recent_jobs)} jobs / {len(recent_callbacks)} callbacks in {CALLBACK_WINDOW_DAYS}d"
    )

    return KPIMetrics(
        revenue_mtd=revenue_mtd,
        revenue_ytd=revenue_ytd,
        gross_margin_percentage=gross_margin_pct,
        callback_rate=callback_rate,
        first_time_fix_rate=first_time_fix_rate,
        ar_aging=_ar_aging(invoices, as_of),
        jobs_over_budget=int(over_budget.sum()),
        contracts_due_renewal=int(due.sum()),
    )


# =============================================================================
# TECHNICIAN PERFORMANCE
# =============================================================================

def _ftf_bonus(first_time_fix_rate: float) -> float:
    if first_time_fix_rate > 90:
        return 10.0
    if first_time_fix_rate > 80:
        return 5.0
    return 0.0

def _variance_penalty(labor_variance_pct: float) -> float:
    if abs(labor_variance_pct) > 20:
        return -10.0
    if abs(labor_variance_pct) > 10:
        return -5.0
    return 0.0


def calculate_technician_metrics(store: RecordStore, technician_id: str, as_of=None) -> TechnicianMetrics:
    """Per-technician performance over jobs completed in the rolling 90 days."""
    as_of = resolve_as_of(as_of)
    window_start = add_days(as_of, -TECHNICIAN_WINDOW_DAYS)
    tech_jobs = _completed_in(store.get_jobs_by_technician_id(technician_id), window_start, as_of)

    if tech_jobs.empty:
        return TechnicianMetrics(technician_id=technician_id)

    roots = _callbacks_with_root(store)
    callback_count = int(
        roots["root_technician_ids"].map(lambda ids: contains_id(ids, technician_id)).astype(bool).sum()
    )
    callback_rate = pct(callback_count, len(tech_jobs))
    first_time_fix_rate = 100.0 - callback_rate

    # Labor variance (%), averaged over jobs with both hour figures
    both = tech_jobs.loc[has_hours(tech_jobs["labor_hours_actual"]) & has_hours(tech_jobs["labor_hours_estimated"])]
    variances = pct(both["labor_hours_actual"] - both["labor_hours_estimated"], both["labor_hours_estimated"])
    labor_variance_pct = _mean_or_zero(variances)

    # Margin contribution at this technician's own burdened rate
    costed = _with_costs(store, _with_invoices(tech_jobs, store.invoices), technician_ids=[technician_id])
    margin_jobs = costed.loc[costed["paid_at"].notna() & has_hours(costed["labor_hours_actual"])]
    avg_margin = _mean_or_zero(margin_jobs["total"] - margin_jobs["job_cost"])

    technician = store.get_technician(technician_id)
    if technician is None or pd.isna(technician["efficiency_score"]):
        base_efficiency = DEFAULT_EFFICIENCY_SCORE
    else:
        base_efficiency = float(technician["efficiency_score"])
    efficiency_index = _clamp(
        base_efficiency + _ftf_bonus(first_time_fix_rate) + _variance_penalty(labor_variance_pct)
    )

    logger.debug(f"Technician {technician_id}: {len(tech_jobs)} jobs, {callback_count} callbacks")

    return TechnicianMetrics(
        technician_id=technician_id,
        first_time_fix_rate=first_time_fix_rate,
        callback_rate=callback_rate,
        efficiency_index=efficiency_index,
        avg_margin_contribution=avg_margin,
        labor_variance_percentage=labor_variance_pct,
        total_jobs=len(tech_jobs),
    )


# =============================================================================
# CLIENT VALUE
# =============================================================================

def _tier_points(value: float, tiers: Tuple[Tuple[float, float], ...], passes) -> float:
    for threshold, points in tiers:
        if passes(value, threshold):
            return float(points)
    return 0.0

def renewal_likelihood(avg_days_to_pay: float, callback_load: float, margin_percentage: float,
                       has_contracts: bool = True) -> float:
    """50-point baseline moved by payment speed, callback load and margin; 50 without contracts."""
    if not has_contracts:
        return 50.0

    score = 50.0
    if avg_days_to_pay <= 20:
        score += 20
    elif avg_days_to_pay <= 35:
        score += 10
    elif avg_days_to_pay > 45:
        score -= 20

    if callback_load < 5:
        score += 15
    elif callback_load > 15:
        score -= 15

    if margin_percentage > 25:
        score += 15
    elif margin_percentage < 10:
        score -= 15

    return _clamp(score)

def value_score(revenue: float, margin_percentage: float, avg_days_to_pay: float, callback_load: float) -> float:
    """
    Additive composite (0-100): revenue 0-40, margin 0-25, payment 0-20, callbacks 0-15.
    Each component is a step function; boundaries belong to the lower tier
    (revenue of exactly 50,000 scores 30, not 40).
    """
    return (
        _tier_points(revenue, REVENUE_TIERS, lambda v, t: v > t)
        + _tier_points(margin_percentage, MARGIN_TIERS, lambda v, t: v > t)
        + _tier_points(avg_days_to_pay, PAYMENT_TIERS, lambda v, t: v <= t)
        + _tier_points(callback_load, CALLBACK_TIERS, lambda v, t: v < t)
    )


def calculate_client_metrics(store: RecordStore, client_id: str, as_of=None) -> ClientMetrics:
    """Per-client value over jobs completed in the trailing 180 days."""
    as_of = resolve_as_of(as_of)
    window_start = add_days(as_of, -CLIENT_WINDOW_DAYS)
    client_jobs = _completed_in(store.get_jobs_by_client_id(client_id), window_start, as_of)

    costed = _with_costs(store, _with_invoices(client_jobs, store.invoices))
    paid = costed.loc[costed["paid_at"].notna()]

    revenue = float(paid["total"].sum())
    avg_days_to_pay = _mean_or_zero(paid["days_to_pay"].dropna())

    margin_jobs = paid.loc[has_hours(paid["labor_hours_actual"])]
    margin_pct = pct(float((margin_jobs["total"] - margin_jobs["job_cost"]).sum()), revenue)

    roots = _callbacks_with_root(store)
    callback_count = int((roots["root_client_id"] == client_id).sum())
    callback_load = pct(callback_count, len(client_jobs))

    has_contracts = not store.get_contracts_by_client_id(client_id).empty

    logger.debug(f"Client {client_id}: {len(client_jobs)} jobs, revenue {revenue:,.0f}")

    return ClientMetrics(
        client_id=client_id,
        trailing_6mo_revenue=revenue,
        avg_days_to_pay=avg_days_to_pay,
        margin_percentage=margin_pct,
        callback_load=callback_load,
        renewal_likelihood=renewal_likelihood(avg_days_to_pay, callback_load, margin_pct, has_contracts),
        value_score=value_score(revenue, margin_pct, avg_days_to_pay, callback_load),
    )


# =============================================================================
# CHART AGGREGATIONS
# =============================================================================

def get_revenue_by_month(store: RecordStore, as_of=None, months: int = 6) -> pd.DataFrame:
    """
    Paid revenue and margin for the first `months` calendar months of as_of's year.
    Margin only deducts cost for jobs with recorded actual hours.
    """
    as_of = resolve_as_of(as_of)
    months = max(0, min(12, int(months)))

    costed = _with_costs(store, store.jobs)[["id", "labor_hours_actual", "job_cost"]]
    paid = store.invoices.loc[store.invoices["paid_at"].notna(), ["job_id", "total", "paid_at"]]
    paid = paid.merge(costed, left_on="job_id", right_on="id", how="left")
    paid["cost"] = np.where(has_hours(paid["labor_hours_actual"]), paid["job_cost"], 0.0)

    rows = []
    for i in range(months):
        start = pd.Timestamp(year=as_of.year, month=i + 1, day=1)
        in_month = paid.loc[is_in_range(paid["paid_at"], start, month_end(start))]
        revenue = float(in_month["total"].sum())
        rows.append({
            "month": start.strftime("%b"),
            "month_start": start,
            "revenue": revenue,
            "margin": revenue - float(in_month["cost"].sum()),
        })
    return pd.DataFrame(rows, columns=["month", "month_start", "revenue", "margin"])


def get_top_clients_by_revenue(store: RecordStore, limit: int = 10, as_of=None) -> pd.DataFrame:
    """Clients ranked by trailing-180-day paid revenue (zero-revenue clients dropped)."""
    as_of = resolve_as_of(as_of)
    window_start = add_days(as_of, -CLIENT_WINDOW_DAYS)
    columns = ["client_id", "client_name", "industry", "revenue", "margin"]

    recent = _completed_in(store.jobs, window_start, as_of)
    costed = _with_costs(store, _with_invoices(recent, store.invoices))
    paid = costed.loc[costed["paid_at"].notna()].copy()
    if paid.empty:
        return pd.DataFrame(columns=columns)

    paid["cost"] = np.where(has_hours(paid["labor_hours_actual"]), paid["job_cost"], 0.0)
    agg = paid.groupby("client_id").agg(revenue=("total", "sum"), cost=("cost", "sum")).reset_index()
    agg["margin"] = agg["revenue"] - agg["cost"]

    clients = store.clients[["id", "name", "industry"]].rename(
        columns={"id": "client_id", "name": "client_name"}
    )
    out = clients.merge(agg, on="client_id", how="inner")
    out = out.loc[out["revenue"] > 0]
    out = out.sort_values("revenue", ascending=False, kind="stable").head(limit)
    return out[columns].reset_index(drop=True)


def _category_label(reason: str) -> str:
    return str(reason).replace("_", " ").title() if reason else UNKNOWN


def get_callback_trends(store: RecordStore, as_of=None) -> pd.DataFrame:
    """Callback counts and share by reason, over root jobs completed in the rolling 90 days."""
    as_of = resolve_as_of(as_of)
    window_start = add_days(as_of, -CALLBACK_WINDOW_DAYS)
    columns = ["category", "count", "percentage"]

    roots = _callbacks_with_root(store)
    recent = roots.loc[is_in_range(roots["root_completed_at"], window_start, as_of)]
    if recent.empty:
        return pd.DataFrame(columns=columns)

    counts = recent.groupby(recent["reason_category"].fillna(""), sort=False).size()
    total = int(counts.sum())
    out = pd.DataFrame({
        "category": [_category_label(c) for c in counts.index],
        "count": counts.values.astype(int),
    })
    out["percentage"] = pct(out["count"], total)
    return out[columns]


METRIC_DEFINITIONS = {
    "revenue_ytd": {"name": "Revenue YTD", "formula": "Σ invoice total, paid Jan 1 → as-of", "description": "Cash-basis revenue recognised this year."},
    "revenue_mtd": {"name": "Revenue MTD", "formula": "Σ invoice total, paid within the as-of month", "description": "Cash-basis revenue recognised this month."},
    "gross_margin_percentage": {"name": "Gross Margin (%)", "formula": "(Σ revenue - Σ job cost) / Σ revenue × 100", "description": "Over YTD-completed jobs with a paid invoice. Job cost = actual hrs × blended rate + parts + subcontractor."},
    "blended_labor_rate": {"name": "Blended Labor Rate", "formula": "mean(hourly_cost × 1.4) over the crew", "description": "Burdened cost per labor hour; $50/hr fallback for unknown technicians or empty crews."},
    "callback_rate": {"name": "Callback Rate (%)", "formula": "callbacks on recent root jobs / recent completed jobs × 100", "description": "Rolling 90 days, keyed on root-job completion."},
    "first_time_fix_rate": {"name": "First-Time Fix (%)", "formula": "100 - callback rate", "description": "Share of jobs fixed without a return visit."},
    "ar_aging": {"name": "AR Aging", "formula": "Σ unpaid totals by days outstanding (≤30, 31-60, 61-90, >90)", "description": "Outstanding receivables by age."},
    "jobs_over_budget": {"name": "Jobs Over Budget", "formula": "actual hrs > estimated hrs × 1.1", "description": "YTD-completed jobs beyond the 10% labor tolerance."},
    "contracts_due_renewal": {"name": "Contracts Due Renewal", "formula": "active and renewal date ≤ as-of + 90d", "description": "Service agreements to renew within the quarter."},
    "efficiency_index": {"name": "Efficiency Index", "formula": "clamp(base + FTF bonus + variance penalty, 0, 100)", "description": "Technician baseline adjusted for first-time fixes (+5/+10) and labor variance (-5/-10)."},
    "value_score": {"name": "Client Value Score", "formula": "revenue tier + margin tier + payment tier + callback tier", "description": "0-100 composite over the trailing 6 months."},
    "renewal_likelihood": {"name": "Renewal Likelihood", "formula": "50 ± payment, callback and margin adjustments", "description": "Fixed at 50 for clients without contracts."},
}
