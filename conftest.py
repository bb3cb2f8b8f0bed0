# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from timesheet_app.models import (  # noqa: E402
    Branch,
    CrewMember,
    Estimate,
    SalesPerson,
    db,
)
from timesheet_app.reconcile.pipeline import ColumnMapStore  # noqa: E402

KENT_HEADER = [
    "Job Name",
    "Branch",
    "Salesperson",
    "Crew Lead",
    "CL Estimated Plan Hours",
    "AT Estimated Hours",
    "Techs hours",
    "Alice",
    "Bob",
    "Unbillable Job Hours",
    "QC",
    "Visit 1",
    "Job Totals",
    "Branch notes",
]


@pytest.fixture(scope="function")
def app():
    """Flask application bound to a fresh in-memory schema for each test."""
    flask_app.config.update(
        {
            "TESTING": True,
            "RECON_ENABLED": True,
            "RECON_FUZZY_THRESHOLD": 0.7,
            "RECON_STRICT_SENTINELS": False,
            "RECON_PRESERVE_UNCHANGED_APPROVALS": False,
            "RECON_LOW_PERFORMANCE_THRESHOLD": 0.0,
            "RECON_BULK_MAX_WORKERS": 1,
            "MONITORING_ENABLED": False,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
        }
    )
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def kent_sheet(app):
    """Kent branch, its column map and the people the rows reference."""
    branch = Branch(name="Kent")
    db.session.add(branch)
    db.session.flush()
    alice = CrewMember(name="Alice", is_leader=True, telegram_id="1001")
    seller = SalesPerson(name="Daniel Price", telegram_id="2001")
    db.session.add_all([alice, seller])
    db.session.flush()
    estimate = Estimate(
        name="Job A",
        branch_id=branch.id,
        sales_person_id=seller.id,
        attic_hours=40,
        crew_leader_plan_hours=10,
    )
    db.session.add(estimate)
    db.session.commit()
    ColumnMapStore().sync_header("Kent", KENT_HEADER)
    return {"branch": branch, "alice": alice, "seller": seller, "estimate": estimate, "header": KENT_HEADER}


def kent_row(job_name="Job A", crew_lead="Crew Lead: Alice", alice="8", bob="4", qc="", visit="", **extra):
    """Build a Kent row in header order."""
    values = {
        "Job Name": job_name,
        "Branch": extra.get("branch", ""),
        "Salesperson": extra.get("salesperson", ""),
        "Crew Lead": crew_lead,
        "CL Estimated Plan Hours": extra.get("cl_plan", "10"),
        "AT Estimated Hours": extra.get("at_hours", "40"),
        "Techs hours": "",
        "Alice": alice,
        "Bob": bob,
        "Unbillable Job Hours": "",
        "QC": qc,
        "Visit 1": visit,
        "Job Totals": "",
        "Branch notes": extra.get("notes", ""),
    }
    return [values[name] for name in KENT_HEADER]


@pytest.fixture
def make_kent_row():
    return kent_row
