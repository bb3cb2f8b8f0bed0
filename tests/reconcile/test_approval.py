"""Tests for the shift approval state machine and pending-shift queries."""

from datetime import datetime, timezone

import pytest

from timesheet_app.models import CrewMember, Job, JobSpecialShift, Shift, SpecialShift, db
from timesheet_app.reconcile.errors import ValidationError
from timesheet_app.reconcile.pipeline import ApprovalService, NotificationGate, NotificationSender


def _member_id(name):
    return db.session.query(CrewMember).filter_by(name=name).one().id


def _special_id(name):
    return db.session.query(SpecialShift).filter_by(name=name).one().id


def test_approving_last_suggestions_closes_job(job_factory, status_of):
    job = job_factory(shifts=[("Alice", 8, False), ("Bob", 4, False)], special_shifts=[("QC", 2, False)])

    result = ApprovalService().approve(
        [
            {"job_id": job.id, "crew_member_id": _member_id("Alice")},
            {"job_id": job.id, "crew_member_id": _member_id("Bob")},
        ],
        [{"job_id": job.id, "special_shift_id": _special_id("QC")}],
    )

    assert result["approvedCount"] == 3
    assert result["regularApprovedCount"] == 2
    assert result["specialApprovedCount"] == 1
    assert result["closedJobIds"] == [job.id]
    assert status_of(job.id) == "Closed Job"
    assert db.session.get(Job, job.id).closing_date is not None


def test_partial_approval_leaves_job_open(job_factory, status_of):
    job = job_factory(shifts=[("Alice", 8, False)], special_shifts=[("QC", 2, False)])

    result = ApprovalService().approve([{"job_id": job.id, "crew_member_id": _member_id("Alice")}])

    assert result["approvedCount"] == 1
    assert result["jobsClosedCount"] == 0
    assert status_of(job.id) == "Uploading Shifts"


def test_approving_twice_is_a_no_op(job_factory):
    job = job_factory(shifts=[("Alice", 8, False), ("Bob", 4, False)])
    pair = [{"job_id": job.id, "crew_member_id": _member_id("Alice")}]
    service = ApprovalService()

    assert service.approve(pair)["approvedCount"] == 1
    again = service.approve(pair)

    assert again["approvedCount"] == 0
    assert again["closedJobIds"] == []


def test_unknown_pairs_are_ignored(job_factory):
    job = job_factory(shifts=[("Alice", 8, False)])

    result = ApprovalService().approve([{"job_id": job.id + 100, "crew_member_id": 999}])

    assert result["approvedCount"] == 0
    assert db.session.query(Shift).filter_by(approved_shift=False).count() == 1


def test_existing_closing_date_is_kept(job_factory):
    finished = datetime(2025, 3, 15, tzinfo=timezone.utc)
    job = job_factory(shifts=[("Alice", 8, False)], closing_date=finished)

    ApprovalService().approve_job(job.id)

    db.session.expire_all()
    assert db.session.get(Job, job.id).closing_date.date() == finished.date()


def test_reject_deletes_and_closes_when_nothing_is_left(job_factory, status_of):
    job = job_factory(shifts=[("Alice", 8, True), ("Bob", 4, False)], special_shifts=[("QC", 2, False)])

    result = ApprovalService().reject(
        [{"job_id": job.id, "crew_member_id": _member_id("Bob")}],
        [{"job_id": job.id, "special_shift_id": _special_id("QC")}],
    )

    assert result["rejectedCount"] == 2
    assert result["closedJobIds"] == [job.id]
    assert db.session.query(Shift).count() == 1
    assert db.session.query(JobSpecialShift).count() == 0
    assert status_of(job.id) == "Closed Job"


def test_reject_never_removes_approved_rows(job_factory):
    job = job_factory(shifts=[("Alice", 8, True)])

    result = ApprovalService().reject([{"job_id": job.id, "crew_member_id": _member_id("Alice")}])

    assert result["rejectedCount"] == 0
    assert db.session.query(Shift).count() == 1


@pytest.mark.parametrize(
    "shifts, special",
    [
        (None, None),
        ([], []),
        ([{"job_id": "x", "crew_member_id": 1}], None),
        ([{"crew_member_id": 1}], None),
        (["not-an-object"], None),
    ],
)
def test_invalid_batches_are_rejected(app, shifts, special):
    with pytest.raises(ValidationError):
        ApprovalService().approve(shifts, special)


def test_approve_job_without_suggestions_closes_it(job_factory, status_of):
    job = job_factory(shifts=[("Alice", 8, True)])

    result = ApprovalService().approve_job(job.id)

    assert result["approvedCount"] == 0
    assert result["closedJobIds"] == [job.id]
    assert status_of(job.id) == "Closed Job"


def test_low_performance_alert_is_reported_once(app, job_factory):
    app.config["RECON_LOW_PERFORMANCE_THRESHOLD"] = 0.5
    job = job_factory(shifts=[("Alice", 30, False)], attic_tech_hours=40)

    result = ApprovalService().approve_job(job.id)

    assert [alert["jobId"] for alert in result["alerts"]] == [job.id]
    assert result["alerts"][0]["reason"] == "low_performance"
    db.session.expire_all()
    assert db.session.get(Job, job.id).notification_sent is True


class _BrokenSender(NotificationSender):
    def send(self, job, decision):
        raise RuntimeError("smtp timeout")


def test_alert_failure_does_not_undo_approval(app, monkeypatch, job_factory, status_of):
    monkeypatch.setitem(app.config, "RECON_LOW_PERFORMANCE_THRESHOLD", 0.5)
    job = job_factory(shifts=[("Alice", 30, False)], attic_tech_hours=40)
    service = ApprovalService(notification_gate=NotificationGate(db.session, sender=_BrokenSender()))

    result = service.approve_job(job.id)

    assert result["alerts"][0]["jobId"] == job.id
    assert result["alerts"][0]["delivered"] is False
    assert status_of(job.id) == "Closed Job"
    assert db.session.get(Job, job.id).notification_sent is False


def test_pending_shifts_groups_by_job(job_factory):
    first = job_factory("Job 1", shifts=[("Bob", 4, False), ("Alice", 8, False)], special_shifts=[("QC", 2, False)])
    second = job_factory("Job 2", branch_name="Everett", shifts=[("Carl", 6, False), ("Dana", 5, True)])

    page = ApprovalService().pending_shifts()

    assert page["total"] == 3
    assert page["hasMore"] is False
    assert [group["jobId"] for group in page["jobs"]] == [first.id, second.id]
    assert [shift["crewMemberName"] for shift in page["jobs"][0]["shifts"]] == ["Alice", "Bob"]
    assert page["jobs"][0]["specialShifts"][0]["name"] == "QC"
    assert page["jobs"][1]["branch"]["name"] == "Everett"


def test_pending_hours_are_reported_as_floats(job_factory):
    job_factory("Job 1", shifts=[("Alice", 8, False)], special_shifts=[("QC", 2, False)])
    db.session.expire_all()

    group = ApprovalService().pending_shifts()["jobs"][0]

    assert isinstance(group["shifts"][0]["hours"], float)
    assert group["shifts"][0]["hours"] == 8.0
    assert isinstance(group["specialShifts"][0]["hours"], float)
    assert group["specialShifts"][0]["hours"] == 2.0


def test_pending_shifts_filters_and_paginates(job_factory):
    job_factory("Job 1", shifts=[("Alice", 8, False), ("Bob", 4, False)])
    job_factory("Job 2", branch_name="Everett", shifts=[("Carl", 6, False)])
    kent_id = db.session.query(Job).filter_by(name="Job 1").one().branch_id

    service = ApprovalService()
    filtered = service.pending_shifts(branch_id=kent_id)
    first_page = service.pending_shifts(limit=2)
    second_page = service.pending_shifts(limit=2, offset=2)

    assert filtered["total"] == 2
    assert {group["jobName"] for group in filtered["jobs"]} == {"Job 1"}
    assert first_page["hasMore"] is True
    assert second_page["hasMore"] is False
    assert [group["jobName"] for group in second_page["jobs"]] == ["Job 2"]


def test_special_only_jobs_appear_on_first_page(job_factory):
    job_factory("Job 1", shifts=[("Alice", 8, False)])
    job_factory("Job 2", special_shifts=[("QC", 2, False)])

    service = ApprovalService()
    first_page = service.pending_shifts(limit=1)
    later_page = service.pending_shifts(limit=1, offset=1)

    assert {group["jobName"] for group in first_page["jobs"]} == {"Job 1", "Job 2"}
    assert later_page["jobs"] == []


def test_pending_stats_by_branch(job_factory):
    job_factory("Job 1", shifts=[("Alice", 8, False), ("Bob", 4, True)], special_shifts=[("QC", 1.5, False)])
    job_factory("Job 2", branch_name="Everett", shifts=[("Carl", 6, False)])

    stats = ApprovalService().pending_stats()

    assert stats["totalPendingShifts"] == 3
    assert stats["regularPending"] == 2
    assert stats["specialPending"] == 1
    assert stats["totalPendingHours"] == 15.5
    by_name = {entry["branchName"]: entry for entry in stats["byBranch"]}
    assert by_name["Kent"]["pendingShifts"] == 2
    assert by_name["Kent"]["pendingHours"] == 9.5
    assert by_name["Everett"]["regularPending"] == 1
