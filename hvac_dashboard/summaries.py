"""
Enriched per-entity row sets for the dashboard tables.

Each function returns one DataFrame row per entity: the raw record fields
plus display joins (client name, technician names, ...) and the relevant
derived metrics. Missing references resolve to "Unknown".
"""

import logging
from typing import Dict, Iterable

import numpy as np
import pandas as pd

from .metrics import (
    calculate_client_metrics,
    calculate_technician_metrics,
    has_hours,
)
from .records import UNKNOWN, RecordStore
from .timewindows import resolve_as_of

logger = logging.getLogger(__name__)

PROFIT_TOLERANCE = 0.1        # on-track while actual hours stay within 10% of the estimate
OLD_EQUIPMENT_YEARS = 10
HIGH_RISK_SCORE = 70


# =============================================================================
# HELPERS
# =============================================================================

def _name_lookup(df: pd.DataFrame) -> Dict[str, str]:
    return {k: v for k, v in zip(df["id"], df["name"]) if isinstance(v, str) and v.strip()}

def _join_names(ids: Iterable[str], names: Dict[str, str]) -> str:
    return ", ".join(names.get(tid, UNKNOWN) for tid in (ids or []))

def equipment_age(equipment: pd.DataFrame, as_of: pd.Timestamp) -> pd.Series:
    """Whole years since install (NaN when install_year is unknown)."""
    return as_of.year - equipment["install_year"]


# =============================================================================
# SUMMARIES
# =============================================================================

def compute_job_summary(store: RecordStore) -> pd.DataFrame:
    jobs = store.jobs.copy()
    clients = _name_lookup(store.clients)
    techs = _name_lookup(store.technicians)

    jobs["client_name"] = jobs["client_id"].map(lambda cid: clients.get(cid, UNKNOWN))
    jobs["technician_names"] = jobs["technician_ids"].map(lambda ids: _join_names(ids, techs))

    invoice_totals = store.invoices.drop_duplicates("job_id").set_index("job_id")["total"]
    jobs["invoice_total"] = jobs["id"].map(invoice_totals).fillna(0.0).astype(float)

    actual = jobs["labor_hours_actual"]
    estimated = jobs["labor_hours_estimated"]
    jobs["profit_status"] = np.select(
        [
            ~(has_hours(actual) & has_hours(estimated)),
            (actual - estimated) <= estimated * PROFIT_TOLERANCE,
        ],
        ["pending", "on-track"],
        default="over-budget",
    )
    return jobs


def compute_technician_summary(store: RecordStore, as_of=None) -> pd.DataFrame:
    """Technician fields plus 90-day performance; best efficiency first."""
    as_of = resolve_as_of(as_of)
    metrics = pd.DataFrame(
        [calculate_technician_metrics(store, tid, as_of=as_of).to_dict() for tid in store.technicians["id"]],
        columns=[
            "technician_id", "first_time_fix_rate", "callback_rate", "efficiency_index",
            "avg_margin_contribution", "labor_variance_percentage", "total_jobs",
        ],
    )
    out = pd.concat([store.technicians.reset_index(drop=True), metrics.drop(columns="technician_id")], axis=1)
    out = out.sort_values("efficiency_index", ascending=False, kind="stable").reset_index(drop=True)
    logger.debug(f"Technician summary: {len(out)} rows")
    return out


def compute_client_summary(store: RecordStore, as_of=None) -> pd.DataFrame:
    """
    Client fields plus trailing-6-month value, equipment counts and upsell score.

    upsell_score = old equipment × 2 + high-risk equipment × 3 + 5 when no active contract
    """
    as_of = resolve_as_of(as_of)
    metrics = pd.DataFrame(
        [calculate_client_metrics(store, cid, as_of=as_of).to_dict() for cid in store.clients["id"]],
        columns=[
            "client_id", "trailing_6mo_revenue", "avg_days_to_pay", "margin_percentage",
            "callback_load", "renewal_likelihood", "value_score",
        ],
    )
    out = pd.concat([store.clients.reset_index(drop=True), metrics.drop(columns="client_id")], axis=1)

    eq = store.equipment.copy()
    eq["is_old"] = equipment_age(eq, as_of) > OLD_EQUIPMENT_YEARS
    eq["is_high_risk"] = eq["failure_risk_score"] > HIGH_RISK_SCORE
    eq_stats = eq.groupby("client_id").agg(
        equipment_count=("id", "size"),
        old_equipment=("is_old", "sum"),
        high_risk_equipment=("is_high_risk", "sum"),
    )
    for col in ["equipment_count", "old_equipment", "high_risk_equipment"]:
        out[col] = out["id"].map(eq_stats[col]).fillna(0).astype(int)

    active = set(store.contracts.loc[store.contracts["status"] == "active", "client_id"])
    out["has_contract"] = out["id"].isin(active)
    out["upsell_score"] = (
        out["old_equipment"] * 2
        + out["high_risk_equipment"] * 3
        + np.where(out["has_contract"], 0, 5)
    ).astype(int)

    out = out.sort_values("value_score", ascending=False, kind="stable").reset_index(drop=True)
    logger.debug(f"Client summary: {len(out)} rows")
    return out


def compute_contract_summary(store: RecordStore, as_of=None) -> pd.DataFrame:
    as_of = resolve_as_of(as_of)
    contracts = store.contracts.copy()
    clients = store.clients.drop_duplicates("id").set_index("id")

    contracts["client_name"] = contracts["client_id"].map(clients["name"]).fillna(UNKNOWN)
    contracts["client_industry"] = contracts["client_id"].map(clients["industry"]).fillna(UNKNOWN)
    contracts["days_until_renewal"] = np.ceil((contracts["renewal_date"] - as_of) / pd.Timedelta(days=1))
    return contracts


def compute_callback_summary(store: RecordStore) -> pd.DataFrame:
    callbacks = store.callbacks.copy()
    jobs = store.jobs.drop_duplicates("id").set_index("id")
    clients = _name_lookup(store.clients)
    techs = _name_lookup(store.technicians)

    root_client = callbacks["root_job_id"].map(jobs["client_id"])
    callbacks["client_name"] = root_client.map(lambda cid: clients.get(cid, UNKNOWN))
    callbacks["system_type"] = callbacks["root_job_id"].map(jobs["system_type"]).fillna(UNKNOWN)
    callbacks["job_type"] = callbacks["root_job_id"].map(jobs["job_type"]).fillna(UNKNOWN)
    callbacks["root_job_date"] = callbacks["root_job_id"].map(jobs["completed_at"])
    callbacks["callback_job_date"] = callbacks["callback_job_id"].map(jobs["scheduled_at"])
    callbacks["technician_names"] = callbacks["root_job_id"].map(jobs["technician_ids"]).map(
        lambda ids: _join_names(ids if isinstance(ids, list) else [], techs)
    )
    return callbacks
