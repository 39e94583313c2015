"""
HVAC Operations Record Store
============================

Holds the raw operational records (clients, technicians, jobs, invoices,
contracts, equipment, callbacks, plus attachments and the pricebook) as one
pandas DataFrame per collection.

The store is built once at start-up and handed to every metric and page
function as a parameter. Nothing mutates it afterwards.

Normalisation rules (applied on construction)
---------------------------------------------
- Every schema column exists (absent -> null).
- Id and foreign-key columns are plain strings.
- Timestamp columns are naive local pandas Timestamps (NaT when missing).
- Money / count columns are floats (missing -> 0); nullable measures such as
  `labor_hours_actual` or `days_to_pay` keep NaN for "not set".
- List columns (`technician_ids`, `certifications`, ...) hold Python lists,
  `skill_ratings` holds a dict. Both may arrive JSON-encoded or
  comma-separated (workbook input).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .timewindows import to_local_timestamp

UNKNOWN = "Unknown"

Records = Union[pd.DataFrame, Iterable[dict]]


# =============================================================================
# SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class CollectionSchema:
    columns: Tuple[str, ...]
    key_cols: Tuple[str, ...] = ()
    date_cols: Tuple[str, ...] = ()
    amount_cols: Tuple[str, ...] = ()
    nullable_cols: Tuple[str, ...] = ()
    list_cols: Tuple[str, ...] = ()
    mapping_cols: Tuple[str, ...] = ()
    bool_cols: Tuple[str, ...] = ()


SCHEMAS: Dict[str, CollectionSchema] = {
    "clients": CollectionSchema(
        columns=("id", "name", "industry", "address", "contact_name", "contact_email",
                 "contact_phone", "credit_terms", "service_level", "created_at"),
        key_cols=("id",),
        date_cols=("created_at",),
        amount_cols=("credit_terms",),
    ),
    "technicians": CollectionSchema(
        columns=("id", "name", "role", "certifications", "hire_date", "skill_ratings",
                 "hourly_cost", "efficiency_score"),
        key_cols=("id",),
        date_cols=("hire_date",),
        nullable_cols=("hourly_cost", "efficiency_score"),
        list_cols=("certifications",),
        mapping_cols=("skill_ratings",),
    ),
    "jobs": CollectionSchema(
        columns=("id", "client_id", "technician_ids", "job_type", "system_type", "site_location",
                 "scheduled_at", "started_at", "completed_at",
                 "labor_hours_actual", "labor_hours_estimated",
                 "parts_cost", "subcontractor_cost", "travel_time_hours",
                 "notes", "source_docs", "status", "came_back", "comeback_id"),
        key_cols=("id", "client_id"),
        date_cols=("scheduled_at", "started_at", "completed_at"),
        amount_cols=("labor_hours_estimated", "parts_cost", "subcontractor_cost", "travel_time_hours"),
        nullable_cols=("labor_hours_actual",),
        list_cols=("technician_ids", "source_docs"),
        bool_cols=("came_back",),
    ),
    "invoices": CollectionSchema(
        columns=("id", "job_id", "subtotal_labor", "subtotal_parts", "tax", "total",
                 "issued_at", "paid_at", "days_to_pay", "payment_method"),
        key_cols=("id", "job_id"),
        date_cols=("issued_at", "paid_at"),
        amount_cols=("subtotal_labor", "subtotal_parts", "tax", "total"),
        nullable_cols=("days_to_pay",),
    ),
    "contracts": CollectionSchema(
        columns=("id", "client_id", "start_date", "end_date", "annual_value", "visits_per_year",
                 "equipment_list", "renewal_date", "status"),
        key_cols=("id", "client_id"),
        date_cols=("start_date", "end_date", "renewal_date"),
        amount_cols=("annual_value", "visits_per_year"),
        list_cols=("equipment_list",),
    ),
    "equipment": CollectionSchema(
        columns=("id", "client_id", "make", "model", "install_year", "tonnage",
                 "refrigerant_type", "last_service_date", "failure_risk_score"),
        key_cols=("id", "client_id"),
        date_cols=("last_service_date",),
        amount_cols=("failure_risk_score",),
        nullable_cols=("install_year", "tonnage"),
    ),
    "callbacks": CollectionSchema(
        columns=("id", "root_job_id", "callback_job_id", "reason_category", "outcome",
                 "corrective_action"),
        key_cols=("id", "root_job_id", "callback_job_id"),
    ),
    "attachments": CollectionSchema(
        columns=("id", "job_id", "type", "filename", "extracted_summary"),
        key_cols=("id", "job_id"),
    ),
    "pricebook": CollectionSchema(
        columns=("id", "part_number", "description", "category", "cost", "list_price",
                 "markup_percentage", "supplier"),
        key_cols=("id",),
        amount_cols=("cost", "list_price", "markup_percentage"),
    ),
}

REQUIRED_COLLECTIONS = ("clients", "technicians", "jobs", "invoices", "contracts", "equipment", "callbacks")
OPTIONAL_COLLECTIONS = ("attachments", "pricebook")


# =============================================================================
# VALUE HELPERS
# =============================================================================

def _is_missing(x) -> bool:
    if x is None:
        return True
    if isinstance(x, (list, tuple, dict, set, np.ndarray)):
        return False
    return bool(pd.isna(x))

def _as_str(x) -> str:
    return "" if _is_missing(x) else str(x).strip()

def _as_optional_str(x) -> Optional[str]:
    s = _as_str(x)
    return s or None

def _as_float(x) -> float:
    if _is_missing(x):
        return 0.0
    if isinstance(x, (int, float, np.number)):
        return float(x)
    s = str(x).strip()
    if s == "":
        return 0.0
    # remove currency commas
    s = s.replace("$", "").replace(",", "")
    try:
        return float(s)
    except ValueError:
        return 0.0

def _as_optional_float(x) -> float:
    if _is_missing(x) or (isinstance(x, str) and x.strip() == ""):
        return np.nan
    return _as_float(x)

def _as_bool_like(x) -> Optional[bool]:
    if _is_missing(x):
        return None
    if isinstance(x, (bool, np.bool_)):
        return bool(x)
    s = str(x).strip().lower()
    if s in {"yes", "y", "true", "1"}:
        return True
    if s in {"no", "n", "false", "0"}:
        return False
    return None

def _as_list(x) -> List[str]:
    """Id and label lists: members are stripped strings, blanks dropped."""
    if _is_missing(x):
        return []
    if isinstance(x, (list, tuple, set, np.ndarray)):
        return [v for v in map(_as_str, x) if v]
    s = str(x).strip()
    if s == "":
        return []
    if s.startswith("["):
        try:
            parsed = json.loads(s)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [v for v in map(_as_str, parsed) if v]
    return [part.strip() for part in s.split(",") if part.strip()]

def _as_mapping(x) -> dict:
    if isinstance(x, dict):
        return dict(x)
    if _is_missing(x):
        return {}
    s = str(x).strip()
    if s.startswith("{"):
        try:
            parsed = json.loads(s)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def normalise_frame(name: str, records: Optional[Records], tz: Optional[str] = None) -> Tuple[pd.DataFrame, List[str]]:
    """
    Type one collection against its schema. Keeps extra columns, adds missing ones.
    Returns the frame and soft-check notes.
    """
    if name not in SCHEMAS:
        raise ValueError(f"Unknown collection: {name}")
    schema = SCHEMAS[name]
    notes: List[str] = []

    if records is None:
        out = pd.DataFrame(columns=list(schema.columns))
    elif isinstance(records, pd.DataFrame):
        out = records.copy()
    else:
        out = pd.DataFrame(list(records))

    missing = [c for c in schema.columns if c not in out.columns]
    if missing and len(out) > 0:
        notes.append(f"{name}: missing expected columns {missing}")
    for col in missing:
        out[col] = None

    out = out.reset_index(drop=True)

    for col in schema.key_cols:
        out[col] = out[col].map(_as_str).astype(object)
    for col in schema.date_cols:
        out[col] = pd.to_datetime(out[col].map(lambda v: to_local_timestamp(v, tz=tz)))
    for col in schema.amount_cols:
        out[col] = out[col].map(_as_float).astype(float)
    for col in schema.nullable_cols:
        out[col] = out[col].map(_as_optional_float).astype(float)
    for col in schema.list_cols:
        out[col] = out[col].map(_as_list).astype(object)
    for col in schema.mapping_cols:
        out[col] = out[col].map(_as_mapping).astype(object)
    for col in schema.bool_cols:
        out[col] = out[col].map(lambda v: bool(_as_bool_like(v))).astype(bool)
    if name == "jobs":
        out["comeback_id"] = out["comeback_id"].map(_as_optional_str).astype(object)

    extras = [c for c in out.columns if c not in schema.columns]
    out = out[list(schema.columns) + extras]
    return out, notes


# =============================================================================
# STORE
# =============================================================================

def contains_id(ids, value) -> bool:
    """True when the id list `ids` holds `value`."""
    return isinstance(ids, (list, tuple)) and value in ids


def _first(df: pd.DataFrame, mask: pd.Series) -> Optional[pd.Series]:
    hit = df.loc[mask]
    if hit.empty:
        return None
    return hit.iloc[0].copy()


@dataclass(frozen=True, eq=False)
class RecordStore:
    """
    Immutable, already-loaded operational records.

    Usage:
        store = RecordStore.from_records(clients=[...], jobs=[...], ...)
        job = store.get_job("job-001")              # Series or None
        jobs = store.get_jobs_by_client_id("c-01")  # fresh DataFrame
    """
    clients: pd.DataFrame = field(default_factory=lambda: normalise_frame("clients", None)[0])
    technicians: pd.DataFrame = field(default_factory=lambda: normalise_frame("technicians", None)[0])
    jobs: pd.DataFrame = field(default_factory=lambda: normalise_frame("jobs", None)[0])
    invoices: pd.DataFrame = field(default_factory=lambda: normalise_frame("invoices", None)[0])
    contracts: pd.DataFrame = field(default_factory=lambda: normalise_frame("contracts", None)[0])
    equipment: pd.DataFrame = field(default_factory=lambda: normalise_frame("equipment", None)[0])
    callbacks: pd.DataFrame = field(default_factory=lambda: normalise_frame("callbacks", None)[0])
    attachments: pd.DataFrame = field(default_factory=lambda: normalise_frame("attachments", None)[0])
    pricebook: pd.DataFrame = field(default_factory=lambda: normalise_frame("pricebook", None)[0])

    @classmethod
    def from_records(cls, tz: Optional[str] = None, **collections: Optional[Records]) -> "RecordStore":
        """Build a store from lists of dicts (or DataFrames), one keyword per collection."""
        unknown = sorted(set(collections) - set(SCHEMAS))
        if unknown:
            raise ValueError(f"Unknown collections: {unknown}")
        frames = {
            name: normalise_frame(name, collections.get(name), tz=tz)[0]
            for name in SCHEMAS
        }
        return cls(**frames)

    def counts(self) -> Dict[str, int]:
        return {f.name: len(getattr(self, f.name)) for f in fields(self)}

    # -------------------------------------------------------------------------
    # Single-entity lookups (None when not found)
    # -------------------------------------------------------------------------

    def get_client(self, client_id: str) -> Optional[pd.Series]:
        return _first(self.clients, self.clients["id"] == client_id)

    def get_technician(self, technician_id: str) -> Optional[pd.Series]:
        return _first(self.technicians, self.technicians["id"] == technician_id)

    def get_job(self, job_id: str) -> Optional[pd.Series]:
        return _first(self.jobs, self.jobs["id"] == job_id)

    def get_invoice_by_job_id(self, job_id: str) -> Optional[pd.Series]:
        return _first(self.invoices, self.invoices["job_id"] == job_id)

    # -------------------------------------------------------------------------
    # Foreign-key filters (fresh frames)
    # -------------------------------------------------------------------------

    def get_contracts_by_client_id(self, client_id: str) -> pd.DataFrame:
        return self.contracts.loc[self.contracts["client_id"] == client_id].copy()

    def get_equipment_by_client_id(self, client_id: str) -> pd.DataFrame:
        return self.equipment.loc[self.equipment["client_id"] == client_id].copy()

    def get_jobs_by_client_id(self, client_id: str) -> pd.DataFrame:
        return self.jobs.loc[self.jobs["client_id"] == client_id].copy()

    def get_jobs_by_technician_id(self, technician_id: str) -> pd.DataFrame:
        mask = self.jobs["technician_ids"].map(lambda ids: contains_id(ids, technician_id)).astype(bool)
        return self.jobs.loc[mask].copy()

    def get_callbacks_by_root_job_id(self, job_id: str) -> pd.DataFrame:
        return self.callbacks.loc[self.callbacks["root_job_id"] == job_id].copy()

    def get_attachments_by_job_id(self, job_id: str) -> pd.DataFrame:
        return self.attachments.loc[self.attachments["job_id"] == job_id].copy()

    # -------------------------------------------------------------------------
    # Display lookups
    # -------------------------------------------------------------------------

    def client_name(self, client_id: str) -> str:
        client = self.get_client(client_id)
        if client is None or not _as_str(client["name"]):
            return UNKNOWN
        return str(client["name"])

    def technician_names(self, technician_ids) -> List[str]:
        names = dict(zip(self.technicians["id"], self.technicians["name"]))
        return [_as_str(names.get(tid)) or UNKNOWN for tid in _as_list(technician_ids)]
