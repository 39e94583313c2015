"""
Generic in-memory table engine: search, column filters, sort, pagination, CSV.

Works over any row set (a DataFrame or a list of dicts) described by a list
of ColumnDef. The pipeline always runs in the same order:

    search -> column filters -> sort -> paginate

Search and filters match case-insensitive substrings against each column's
text form (`ColumnDef.to_text`, default `stringify`). Sorting compares the raw
values and keeps nulls together at the end (start when descending). Values of
mixed types are treated as equal, and the sort is stable. Export writes the
filtered + sorted rows (all pages).

Usage:
    table = DataTable(rows, [ColumnDef("name", "Name"), ColumnDef("total", "Total")], title="invoices")
    table.set_search("acme")
    table.set_sort("total")
    page = table.current_page()          # TablePage
    csv_text = table.export_csv()
"""

import csv
import datetime
import logging
import math
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

EMPTY_MESSAGE = "No results found."
ASCENDING = "asc"
DESCENDING = "desc"


# =============================================================================
# HELPERS
# =============================================================================

def stringify(value: Any) -> str:
    """Text form of a raw field: null -> "", lists joined with ", ", timestamps in ISO 8601."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set, np.ndarray)):
        return ", ".join(stringify(v) for v in value)
    if isinstance(value, dict):
        return str(value)
    if pd.isna(value):
        return ""
    if isinstance(value, (pd.Timestamp, datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, np.generic):
        return str(value.item())
    return str(value)


def is_null(value: Any) -> bool:
    """None, NaN and NaT are null; containers never are."""
    if value is None:
        return True
    if isinstance(value, (list, tuple, set, dict, np.ndarray)):
        return False
    return bool(pd.isna(value))


def compare_values(a: Any, b: Any) -> int:
    """Natural ordering of two non-null raw values; mixed types compare equal."""
    try:
        if a < b:
            return -1
        if a > b:
            return 1
    except TypeError:
        return 0
    return 0


# =============================================================================
# TYPES
# =============================================================================

@dataclass
class ColumnDef:
    key: str
    header: str
    render: Optional[Callable[[Any, Mapping[str, Any]], str]] = None
    to_text: Optional[Callable[[Any], str]] = None
    sortable: bool = True
    filterable: bool = False
    filter_type: str = "text"           # "text" | "select"
    filter_options: Sequence[str] = ()

    def text(self, value: Any) -> str:
        return (self.to_text or stringify)(value)


@dataclass
class TablePage:
    """
    One visible page. `start`/`end` are 1-based display positions
    ("Showing start to end of total_count"), both 0 when the page is empty.
    """
    rows: pd.DataFrame
    page: int
    total_pages: int
    total_count: int
    start: int
    end: int
    empty_message: str = EMPTY_MESSAGE

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0


# =============================================================================
# ENGINE
# =============================================================================

@dataclass(eq=False)
class DataTable:
    rows: Union[pd.DataFrame, Sequence[Mapping[str, Any]]]
    columns: Sequence[ColumnDef]
    title: Optional[str] = None
    page_size: int = 10

    search: str = field(default="", init=False)
    filters: Dict[str, str] = field(default_factory=dict, init=False)
    sort_key: Optional[str] = field(default=None, init=False)
    sort_direction: str = field(default=ASCENDING, init=False)
    page: int = field(default=1, init=False)

    def __post_init__(self):
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        keys = [c.key for c in self.columns]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"Duplicate column keys: {dupes}")

        frame = self.rows.copy() if isinstance(self.rows, pd.DataFrame) else pd.DataFrame(list(self.rows))
        frame = frame.reset_index(drop=True)
        for key in keys:
            if key not in frame.columns:
                frame[key] = None
        self.rows = frame
        self._columns: Dict[str, ColumnDef] = {c.key: c for c in self.columns}

        # Lower-cased text form per declared column; rows never change after construction
        self._text = pd.DataFrame(
            {c.key: frame[c.key].map(c.text).astype(str).str.lower() for c in self.columns},
            index=frame.index,
        )
        self._view: Optional[pd.DataFrame] = None

    # -------------------------------------------------------------------------
    # State changes
    # -------------------------------------------------------------------------

    def _column(self, key: str) -> ColumnDef:
        if key not in self._columns:
            raise KeyError(f"Unknown column key: {key!r}")
        return self._columns[key]

    def set_search(self, term: Optional[str]) -> None:
        self.search = term or ""
        self.page = 1
        self._view = None

    def set_column_filter(self, key: str, value: Optional[str]) -> None:
        self._column(key)
        if value:
            self.filters[key] = value
        else:
            self.filters.pop(key, None)
        self.page = 1
        self._view = None

    def set_sort(self, key: str) -> None:
        """Same column toggles the direction; a new column starts ascending."""
        column = self._column(key)
        if not column.sortable:
            logger.debug(f"Ignoring sort on non-sortable column {key!r}")
            return
        if self.sort_key == key:
            self.sort_direction = DESCENDING if self.sort_direction == ASCENDING else ASCENDING
        else:
            self.sort_key = key
            self.sort_direction = ASCENDING
        self._view = None

    def set_page(self, n: int) -> None:
        self.page = min(max(int(n), 1), max(self.total_pages, 1))

    def clear_all_filters(self) -> None:
        """Resets search, filters and page. The sort is kept."""
        self.search = ""
        self.filters = {}
        self.page = 1
        self._view = None

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def _mask(self) -> pd.Series:
        mask = pd.Series(True, index=self.rows.index)
        term = self.search.lower()
        if term and len(self.columns):
            hits = [self._text[c.key].str.contains(term, regex=False) for c in self.columns]
            mask &= np.logical_or.reduce(hits)
        for key, value in self.filters.items():
            mask &= self._text[key].str.contains(value.lower(), regex=False)
        return mask

    def filtered_rows(self) -> pd.DataFrame:
        """Searched, filtered and sorted rows (not paginated)."""
        if self._view is not None:
            return self._view

        view = self.rows.loc[self._mask()]
        if self.sort_key is not None and not view.empty:
            view = view.iloc[self._sort_order(view[self.sort_key].tolist())]
        self._view = view.reset_index(drop=True)
        return self._view

    def _sort_order(self, values: List[Any]) -> List[int]:
        """
        Positions of `values` in sort order. Nulls go last ascending and first
        descending; the rest are sorted stably among themselves.
        """
        nulls = [i for i, v in enumerate(values) if is_null(v)]
        present = [i for i, v in enumerate(values) if not is_null(v)]
        descending = self.sort_direction == DESCENDING
        present = sorted(
            present,
            key=cmp_to_key(lambda i, j: compare_values(values[i], values[j])),
            reverse=descending,
        )
        return nulls + present if descending else present + nulls

    @property
    def total_count(self) -> int:
        return len(self.filtered_rows())

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)

    def current_page(self) -> TablePage:
        view = self.filtered_rows()
        total = len(view)
        offset = (self.page - 1) * self.page_size
        rows = view.iloc[offset:offset + self.page_size].reset_index(drop=True)
        return TablePage(
            rows=rows,
            page=self.page,
            total_pages=self.total_pages,
            total_count=total,
            start=offset + 1 if len(rows) else 0,
            end=offset + len(rows),
        )

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    @property
    def export_filename(self) -> str:
        return f"{self.title or 'data'}-export.csv"

    def export_csv(self) -> str:
        """All filtered + sorted rows in declared column order, every field quoted."""
        view = self.filtered_rows()
        records = view.to_dict("records")
        cells: List[List[str]] = []
        for c in self.columns:
            if c.render is not None:
                cells.append([c.render(row[c.key], row) for row in records])
            else:
                cells.append([stringify(row[c.key]) for row in records])
        out = pd.DataFrame({i: col for i, col in enumerate(cells)}, columns=range(len(cells)))
        out.columns = [c.header for c in self.columns]
        logger.debug(f"Exporting {len(out):,} rows to {self.export_filename}")
        return out.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
