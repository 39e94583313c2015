"""
Alerts, opportunities and narrative headlines for the overview page.
"""

import logging
from typing import List

import numpy as np
import pandas as pd

from .metrics import KPIMetrics
from .records import UNKNOWN, RecordStore
from .summaries import HIGH_RISK_SCORE, OLD_EQUIPMENT_YEARS, equipment_age
from .timewindows import add_days, resolve_as_of

logger = logging.getLogger(__name__)

DEFAULT_ALERT_LIMIT = 3
LIFETIME_VALUE_THRESHOLD = 20000.0
LIFETIME_HOURLY_RATE = 125.0


def _client_names(store: RecordStore) -> pd.Series:
    return store.clients.drop_duplicates("id").set_index("id")["name"]


# =============================================================================
# ALERTS
# =============================================================================

def equipment_upgrade_opportunities(store: RecordStore, as_of=None, limit: int = DEFAULT_ALERT_LIMIT) -> pd.DataFrame:
    """Equipment that is old (> 10 years) or at high failure risk (> 70)."""
    as_of = resolve_as_of(as_of)
    eq = store.equipment.copy()
    eq["age"] = equipment_age(eq, as_of)

    old = eq["age"] > OLD_EQUIPMENT_YEARS
    risky = eq["failure_risk_score"] > HIGH_RISK_SCORE
    out = eq.loc[old | risky].copy()
    out["reason"] = np.where(out["age"] > OLD_EQUIPMENT_YEARS, "Age", "High Risk")
    out["client_name"] = out["client_id"].map(_client_names(store)).fillna(UNKNOWN)
    return out.head(limit).reset_index(drop=True)


def contracts_due_for_renewal(store: RecordStore, as_of=None, within_days: int = 90,
                              limit: int = DEFAULT_ALERT_LIMIT) -> pd.DataFrame:
    """Active contracts renewing on or before as_of + within_days."""
    as_of = resolve_as_of(as_of)
    contracts = store.contracts
    due = (contracts["status"] == "active") & contracts["renewal_date"].le(add_days(as_of, within_days))
    out = contracts.loc[due].copy()
    out["client_name"] = out["client_id"].map(_client_names(store)).fillna(UNKNOWN)
    return out.head(limit).reset_index(drop=True)


def clients_without_contracts(store: RecordStore, threshold: float = LIFETIME_VALUE_THRESHOLD,
                              hourly_rate: float = LIFETIME_HOURLY_RATE,
                              limit: int = DEFAULT_ALERT_LIMIT) -> pd.DataFrame:
    """
    Clients with no active contract whose estimated job value exceeds `threshold`.

    Estimated value = Σ (actual hours, else estimated hours) × hourly_rate + parts cost
    """
    jobs = store.jobs
    hours = jobs["labor_hours_actual"].where(
        jobs["labor_hours_actual"].notna() & jobs["labor_hours_actual"].ne(0),
        jobs["labor_hours_estimated"],
    )
    job_value = hours * hourly_rate + jobs["parts_cost"]
    value_by_client = job_value.groupby(jobs["client_id"]).sum()

    active = set(store.contracts.loc[store.contracts["status"] == "active", "client_id"])
    out = store.clients.loc[~store.clients["id"].isin(active)].copy()
    out["estimated_value"] = out["id"].map(value_by_client).fillna(0.0).astype(float)
    out = out.loc[out["estimated_value"] > threshold]
    return out.head(limit).reset_index(drop=True)


# =============================================================================
# HEADLINES
# =============================================================================

def generate_headlines(kpis: KPIMetrics) -> List[str]:
    """
    Simple narrative bullets.
    """
    headlines: List[str] = []

    headlines.append(
        f"Revenue: ${kpis.revenue_ytd:,.0f} year to date | ${kpis.revenue_mtd:,.0f} this month "
        f"at {kpis.gross_margin_percentage:.1f}% gross margin."
    )

    headlines.append(
        f"Quality: {kpis.first_time_fix_rate:.1f}% first-time fix | "
        f"{kpis.callback_rate:.1f}% callback rate (last 90 days)."
    )

    aging = kpis.ar_aging
    overdue = aging.days_30 + aging.days_60 + aging.days_90_plus
    if aging.days_90_plus > 0:
        headlines.append(
            f"Receivables: ${overdue:,.0f} outstanding beyond 30 days, "
            f"${aging.days_90_plus:,.0f} of it over 90 days."
        )
    elif overdue > 0:
        headlines.append(f"Receivables: ${overdue:,.0f} outstanding beyond 30 days.")

    if kpis.jobs_over_budget > 0:
        headlines.append(
            f"{kpis.jobs_over_budget:,} jobs ran more than 10% over estimated labor hours this year."
        )

    if kpis.contracts_due_renewal > 0:
        headlines.append(f"{kpis.contracts_due_renewal:,} active contracts renew within 90 days.")

    return headlines
