import pandas as pd
import pytest

from hvac_dashboard.records import RecordStore
from hvac_dashboard.summaries import (
    compute_callback_summary,
    compute_client_summary,
    compute_contract_summary,
    compute_job_summary,
    compute_technician_summary,
)


def test_job_summary_enrichment(store):
    jobs = compute_job_summary(store).set_index("id")
    assert jobs.loc["j3", "client_name"] == "Beta LLC"
    assert jobs.loc["j2", "technician_names"] == "Alice Moreno, Bob Chen"
    assert jobs.loc["j1", "invoice_total"] == 600.0
    assert jobs.loc["j4", "invoice_total"] == 0.0


def test_job_summary_profit_status(store):
    status = compute_job_summary(store).set_index("id")["profit_status"].to_dict()
    assert status == {
        "j1": "over-budget",
        "j2": "on-track",
        "j3": "on-track",
        "j4": "pending",
        "j5": "on-track",
        "j6": "over-budget",
    }


def test_job_summary_unknown_references():
    store = RecordStore.from_records(jobs=[{"id": "j", "client_id": "nobody", "technician_ids": ["ghost"]}])
    row = compute_job_summary(store).iloc[0]
    assert row["client_name"] == "Unknown"
    assert row["technician_names"] == "Unknown"


def test_technician_summary_sorted_by_efficiency(store, as_of):
    techs = compute_technician_summary(store, as_of=as_of)
    assert list(techs["id"]) == ["t1", "t2", "t3"]
    assert list(techs["total_jobs"]) == [3, 1, 0]
    assert "name" in techs.columns and "efficiency_index" in techs.columns


def test_client_summary_scores_and_upsell(store, as_of):
    clients = compute_client_summary(store, as_of=as_of)
    assert list(clients["id"]) == ["c1", "c3", "c2"]

    by_id = clients.set_index("id")
    assert by_id.loc["c1", "equipment_count"] == 2
    assert by_id.loc["c1", "old_equipment"] == 1
    assert bool(by_id.loc["c1", "has_contract"]) is True
    assert by_id.loc["c1", "upsell_score"] == 2

    # expired contract is not an active one
    assert bool(by_id.loc["c2", "has_contract"]) is False
    assert by_id.loc["c2", "high_risk_equipment"] == 1
    assert by_id.loc["c2", "upsell_score"] == 8

    assert by_id.loc["c3", "upsell_score"] == 5
    assert by_id.loc["c3", "renewal_likelihood"] == 50.0


def test_contract_summary(store, as_of):
    contracts = compute_contract_summary(store, as_of=as_of).set_index("id")
    assert contracts.loc["k1", "client_name"] == "Acme Corp"
    assert contracts.loc["k2", "client_industry"] == "Healthcare"
    assert contracts.loc["k1", "days_until_renewal"] == 47
    assert contracts.loc["k2", "days_until_renewal"] == 16


def test_callback_summary(store):
    callbacks = compute_callback_summary(store).set_index("id")
    row = callbacks.loc["cb1"]
    assert row["client_name"] == "Acme Corp"
    assert row["system_type"] == "rtu"
    assert row["job_type"] == "service"
    assert row["root_job_date"] == pd.Timestamp("2024-06-05 12:00")
    assert row["callback_job_date"] == pd.Timestamp("2024-06-08 08:00")
    assert row["technician_names"] == "Alice Moreno"
    assert callbacks.loc["cb2", "technician_names"] == "Bob Chen"


def test_callback_summary_with_unknown_root():
    store = RecordStore.from_records(callbacks=[{"id": "x", "root_job_id": "gone", "callback_job_id": "gone2"}])
    row = compute_callback_summary(store).iloc[0]
    assert row["client_name"] == "Unknown"
    assert row["system_type"] == "Unknown"
    assert row["technician_names"] == ""
    assert pd.isna(row["root_job_date"])


@pytest.mark.parametrize("fn", [compute_technician_summary, compute_client_summary, compute_contract_summary])
def test_summaries_on_empty_store(fn, empty_store, as_of):
    assert fn(empty_store, as_of=as_of).empty
