"""
Data loader for the HVAC dashboard.

Reads the pre-generated record collections, types them, and runs soft
referential checks. Two source layouts are accepted:

- a directory holding one `<collection>.json` file per collection
  (a JSON array of records each), or
- an Excel workbook with one sheet per collection (sheet name = collection).

Hard failures (source missing, required collection missing, unreadable
file) raise ValueError. Referential problems never raise: they are
reported back as notes so the dashboard can still render.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd

from .records import (
    REQUIRED_COLLECTIONS,
    SCHEMAS,
    RecordStore,
    normalise_frame,
)

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xls", ".xlsm"}


@dataclass
class LoadReport:
    collection_counts: Dict[str, int] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)


# =============================================================================
# READERS
# =============================================================================

def _read_json_directory(path: Path) -> Tuple[Dict[str, pd.DataFrame], List[str]]:
    missing = [name for name in REQUIRED_COLLECTIONS if not (path / f"{name}.json").exists()]
    if missing:
        raise ValueError(f"Missing required data files: {', '.join(f'{m}.json' for m in missing)}")

    raw: Dict[str, pd.DataFrame] = {}
    notes: List[str] = []
    for name in SCHEMAS:
        file_path = path / f"{name}.json"
        if not file_path.exists():
            notes.append(f"Optional collection '{name}' not found; using an empty table")
            continue
        try:
            raw[name] = pd.read_json(file_path, orient="records", dtype=False, convert_dates=False)
        except ValueError as e:
            raise ValueError(f"Invalid JSON in {file_path.name}: {e}") from e
    return raw, notes


def _read_workbook(file_source) -> Tuple[Dict[str, pd.DataFrame], List[str]]:
    try:
        xls = pd.ExcelFile(file_source)
    except Exception as e:
        raise ValueError(f"Invalid Excel file: {e}") from e

    missing = [s for s in REQUIRED_COLLECTIONS if s not in xls.sheet_names]
    if missing:
        raise ValueError(f"Missing required sheets: {', '.join(missing)}")

    raw: Dict[str, pd.DataFrame] = {}
    notes: List[str] = []
    for name in SCHEMAS:
        if name not in xls.sheet_names:
            notes.append(f"Optional collection '{name}' not found; using an empty table")
            continue
        raw[name] = pd.read_excel(xls, sheet_name=name)
    return raw, notes


# =============================================================================
# SOFT CHECKS
# =============================================================================

def _dangling(values: pd.Series, valid: pd.Series) -> int:
    present = values[values != ""]
    return int((~present.isin(set(valid))).sum())


def check_references(store: RecordStore) -> List[str]:
    """Referential soft checks. Findings are notes, never errors."""
    notes: List[str] = []
    client_ids = store.clients["id"]
    job_ids = store.jobs["id"]
    tech_ids = set(store.technicians["id"])

    checks = [
        ("jobs.client_id", store.jobs["client_id"], client_ids),
        ("contracts.client_id", store.contracts["client_id"], client_ids),
        ("equipment.client_id", store.equipment["client_id"], client_ids),
        ("invoices.job_id", store.invoices["job_id"], job_ids),
        ("callbacks.root_job_id", store.callbacks["root_job_id"], job_ids),
        ("callbacks.callback_job_id", store.callbacks["callback_job_id"], job_ids),
    ]
    for label, values, valid in checks:
        n = _dangling(values, valid)
        if n:
            notes.append(f"{n} record(s) with unknown {label}")

    unknown_techs = sum(
        1 for ids in store.jobs["technician_ids"] for tid in ids if tid not in tech_ids
    )
    if unknown_techs:
        notes.append(f"{unknown_techs} job technician reference(s) with unknown technician id")

    dup_invoices = int(store.invoices["job_id"].duplicated().sum())
    if dup_invoices:
        notes.append(f"{dup_invoices} job(s) with more than one invoice")

    return notes


# =============================================================================
# ENTRY POINT
# =============================================================================

def load_record_store(source: Union[str, Path, object], tz: Optional[str] = None) -> Tuple[RecordStore, LoadReport]:
    """
    Load every collection from `source` and build the store.

    `source` is a directory of JSON files, a workbook path, or a file-like
    workbook (e.g. a Streamlit upload).
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise ValueError(f"Data source not found: {path}")
        if path.is_dir():
            raw, notes = _read_json_directory(path)
        elif path.suffix.lower() in EXCEL_SUFFIXES:
            raw, notes = _read_workbook(path)
        else:
            raise ValueError(f"Unsupported data source: {path} (expected a directory or an Excel workbook)")
    else:
        raw, notes = _read_workbook(source)

    frames: Dict[str, pd.DataFrame] = {}
    for name in SCHEMAS:
        frame, frame_notes = normalise_frame(name, raw.get(name), tz=tz)
        frames[name] = frame
        notes.extend(frame_notes)

    store = RecordStore(**frames)
    notes.extend(check_references(store))

    report = LoadReport(collection_counts=store.counts(), notes=notes)
    logger.info(
        "Loaded records: " + ", ".join(f"{k}={v:,}" for k, v in report.collection_counts.items())
    )
    for note in notes:
        logger.warning(note)
    return store, report
