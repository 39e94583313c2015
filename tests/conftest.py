import pandas as pd
import pytest

from hvac_dashboard.records import RecordStore

AS_OF = pd.Timestamp("2024-06-15 12:00")


def _records():
    """
    Small business with a fixed as-of of 2024-06-15 12:00.

    - t1 costs $45/hr (blended $63/hr), t2 $30/hr ($42/hr), t3 has no jobs
    - j1: Acme, t1, completed 10 days ago, 4h estimated / 5h actual, $50 parts, paid $600
    - j2: Acme, t1+t2, 4h / 4h, $100 parts, paid $800 on 1 June
    - j3: Beta, t2, completed in February, invoice still unpaid (> 90 days)
    - j4: Beta, scheduled, not started
    - j5: Acme, t1, callback visit for j1, invoice unpaid (current)
    - j6: Beta, t1, completed last December, paid in January
    - cb1: part failure on j1 (inside the 90-day window)
    - cb2: workmanship on j3 (outside the 90-day window)
    """
    return {
        "clients": [
            {"id": "c1", "name": "Acme Corp", "industry": "Retail", "address": "1 Main St",
             "credit_terms": 30, "service_level": "premium", "created_at": "2022-01-15T09:00:00"},
            {"id": "c2", "name": "Beta LLC", "industry": "Healthcare", "address": "2 Side St",
             "credit_terms": 45, "service_level": "standard", "created_at": "2022-03-01T09:00:00"},
            {"id": "c3", "name": "Gamma Inc", "industry": "Office", "address": "3 High St",
             "credit_terms": 30, "service_level": "priority", "created_at": "2023-05-01T09:00:00"},
        ],
        "technicians": [
            {"id": "t1", "name": "Alice Moreno", "role": "senior", "certifications": ["EPA 608", "NATE"],
             "hire_date": "2018-04-01", "skill_ratings": {"diagnostics": 9, "installation": 8},
             "hourly_cost": 45, "efficiency_score": 80},
            {"id": "t2", "name": "Bob Chen", "role": "junior", "certifications": ["EPA 608"],
             "hire_date": "2022-08-15", "skill_ratings": {"diagnostics": 5, "installation": 6},
             "hourly_cost": 30, "efficiency_score": 60},
            {"id": "t3", "name": "Cara Diaz", "role": "lead", "certifications": [],
             "hire_date": "2015-02-01", "skill_ratings": {}, "hourly_cost": 50, "efficiency_score": 90},
        ],
        "jobs": [
            {"id": "j1", "client_id": "c1", "technician_ids": ["t1"], "job_type": "service",
             "system_type": "rtu", "scheduled_at": "2024-06-05T08:00:00", "started_at": "2024-06-05T08:30:00",
             "completed_at": "2024-06-05T12:00:00", "labor_hours_actual": 5, "labor_hours_estimated": 4,
             "parts_cost": 50, "subcontractor_cost": 0, "travel_time_hours": 0.5, "notes": "Compressor fault",
             "status": "paid", "came_back": True, "comeback_id": "j5"},
            {"id": "j2", "client_id": "c1", "technician_ids": ["t1", "t2"], "job_type": "pm",
             "system_type": "split_system", "scheduled_at": "2024-05-20T08:00:00",
             "started_at": "2024-05-20T08:15:00", "completed_at": "2024-05-20T12:15:00",
             "labor_hours_actual": 4, "labor_hours_estimated": 4, "parts_cost": 100, "subcontractor_cost": 0,
             "travel_time_hours": 0.5, "notes": "Quarterly PM", "status": "paid", "came_back": False,
             "comeback_id": None},
            {"id": "j3", "client_id": "c2", "technician_ids": ["t2"], "job_type": "service",
             "system_type": "chiller", "scheduled_at": "2024-02-10T08:00:00",
             "started_at": "2024-02-10T09:00:00", "completed_at": "2024-02-10T11:00:00",
             "labor_hours_actual": 2, "labor_hours_estimated": 2, "parts_cost": 20, "subcontractor_cost": 30,
             "travel_time_hours": 1, "notes": "Leak check", "status": "invoiced", "came_back": True,
             "comeback_id": "j4"},
            {"id": "j4", "client_id": "c2", "technician_ids": ["t2"], "job_type": "service",
             "system_type": "chiller", "scheduled_at": "2024-06-20T08:00:00", "started_at": None,
             "completed_at": None, "labor_hours_actual": None, "labor_hours_estimated": 3, "parts_cost": 0,
             "subcontractor_cost": 0, "travel_time_hours": 1, "notes": "", "status": "scheduled",
             "came_back": False, "comeback_id": None},
            {"id": "j5", "client_id": "c1", "technician_ids": ["t1"], "job_type": "service",
             "system_type": "rtu", "scheduled_at": "2024-06-08T08:00:00", "started_at": "2024-06-08T08:10:00",
             "completed_at": "2024-06-08T09:10:00", "labor_hours_actual": 1, "labor_hours_estimated": 1,
             "parts_cost": 0, "subcontractor_cost": 0, "travel_time_hours": 0.5, "notes": "Callback",
             "status": "invoiced", "came_back": False, "comeback_id": None},
            {"id": "j6", "client_id": "c2", "technician_ids": ["t1"], "job_type": "install",
             "system_type": "heat_pump", "scheduled_at": "2023-12-01T08:00:00",
             "started_at": "2023-12-01T08:00:00", "completed_at": "2023-12-01T11:00:00",
             "labor_hours_actual": 3, "labor_hours_estimated": 2, "parts_cost": 40, "subcontractor_cost": 0,
             "travel_time_hours": 1, "notes": "", "status": "paid", "came_back": False, "comeback_id": None},
        ],
        "invoices": [
            {"id": "inv1", "job_id": "j1", "subtotal_labor": 450, "subtotal_parts": 100, "tax": 50,
             "total": 600, "issued_at": "2024-06-06T00:00:00", "paid_at": "2024-06-10T00:00:00",
             "days_to_pay": 4, "payment_method": "card"},
            {"id": "inv2", "job_id": "j2", "subtotal_labor": 600, "subtotal_parts": 150, "tax": 50,
             "total": 800, "issued_at": "2024-05-21T00:00:00", "paid_at": "2024-06-01T00:00:00",
             "days_to_pay": 11, "payment_method": "ach"},
            {"id": "inv3", "job_id": "j3", "subtotal_labor": 300, "subtotal_parts": 70, "tax": 30,
             "total": 400, "issued_at": "2024-02-11T00:00:00", "paid_at": None, "days_to_pay": None,
             "payment_method": None},
            {"id": "inv5", "job_id": "j5", "subtotal_labor": 140, "subtotal_parts": 0, "tax": 10,
             "total": 150, "issued_at": "2024-06-09T00:00:00", "paid_at": None, "days_to_pay": None,
             "payment_method": None},
            {"id": "inv6", "job_id": "j6", "subtotal_labor": 400, "subtotal_parts": 60, "tax": 40,
             "total": 500, "issued_at": "2023-12-02T00:00:00", "paid_at": "2024-01-10T00:00:00",
             "days_to_pay": 39, "payment_method": "check"},
        ],
        "contracts": [
            {"id": "k1", "client_id": "c1", "start_date": "2023-08-01", "end_date": "2024-08-01",
             "annual_value": 12000, "visits_per_year": 4, "equipment_list": ["RTU-1", "RTU-2"],
             "renewal_date": "2024-08-01", "status": "active"},
            {"id": "k2", "client_id": "c2", "start_date": "2022-07-01", "end_date": "2023-07-01",
             "annual_value": 6000, "visits_per_year": 2, "equipment_list": ["Chiller"],
             "renewal_date": "2024-07-01", "status": "expired"},
            {"id": "k3", "client_id": "c1", "start_date": "2024-03-01", "end_date": "2025-03-01",
             "annual_value": 3000, "visits_per_year": 2, "equipment_list": [],
             "renewal_date": "2025-03-01", "status": "active"},
        ],
        "equipment": [
            {"id": "e1", "client_id": "c1", "make": "Carrier", "model": "48TC", "install_year": 2010,
             "tonnage": 10, "refrigerant_type": "R-22", "last_service_date": "2024-05-20", "failure_risk_score": 40},
            {"id": "e2", "client_id": "c2", "make": "Trane", "model": "CGAM", "install_year": 2020,
             "tonnage": 60, "refrigerant_type": "R-410A", "last_service_date": None, "failure_risk_score": 85},
            {"id": "e3", "client_id": "c1", "make": "Lennox", "model": "XC21", "install_year": 2022,
             "tonnage": 4, "refrigerant_type": "R-410A", "last_service_date": "2024-05-20", "failure_risk_score": 10},
            {"id": "e4", "client_id": "c3", "make": "York", "model": "Sun", "install_year": None,
             "tonnage": None, "refrigerant_type": "R-410A", "last_service_date": None, "failure_risk_score": 20},
        ],
        "callbacks": [
            {"id": "cb1", "root_job_id": "j1", "callback_job_id": "j5", "reason_category": "part_failure",
             "outcome": "resolved", "corrective_action": "Replaced capacitor"},
            {"id": "cb2", "root_job_id": "j3", "callback_job_id": "j4", "reason_category": "workmanship",
             "outcome": "repeat", "corrective_action": "Re-brazed joint"},
        ],
    }


@pytest.fixture
def records():
    return _records()


@pytest.fixture
def store(records):
    return RecordStore.from_records(**records)


@pytest.fixture
def empty_store():
    return RecordStore.from_records()


@pytest.fixture
def as_of():
    return AS_OF
