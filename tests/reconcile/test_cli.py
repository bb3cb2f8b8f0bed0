"""Tests for the ``flask recon`` command group."""

import json

from timesheet_app.models import Job, SheetColumnMap, db
from timesheet_app.reconcile import init_reconciler


class TestSyncColumns:
    def test_sync_from_json_file(self, runner, tmp_path):
        header = tmp_path / "header.json"
        header.write_text(json.dumps(["Job Name", "Crew Lead", "Techs hours", "Alice", "Unbillable Job Hours"]))

        result = runner.invoke(args=["recon", "sync-columns", "Kent", str(header)])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["processedRecords"] == 5
        assert db.session.query(SheetColumnMap).count() == 5

    def test_dry_run_leaves_map_untouched(self, runner, tmp_path):
        header = tmp_path / "header.json"
        header.write_text(json.dumps({"0": "Job Name", "1": "Crew Lead"}))

        result = runner.invoke(args=["recon", "sync-columns", "Kent", str(header), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["dryRun"] is True
        assert db.session.query(SheetColumnMap).count() == 0

    def test_invalid_json(self, runner, tmp_path):
        header = tmp_path / "header.json"
        header.write_text("{nope")

        result = runner.invoke(args=["recon", "sync-columns", "Kent", str(header)])

        assert result.exit_code != 0
        assert "not valid JSON" in result.output


class TestProcessFile:
    def test_process_json_lines(self, runner, tmp_path, kent_sheet, make_kent_row):
        rows = tmp_path / "rows.jsonl"
        rows.write_text(
            "\n".join(
                json.dumps(payload)
                for payload in (
                    {"sheet_name": "Kent", "row_data": make_kent_row(), "row_number": 2},
                    {"sheet_name": "Kent", "row_data": make_kent_row(job_name=""), "row_number": 3},
                )
            )
        )

        result = runner.invoke(args=["recon", "process-file", str(rows)])

        assert result.exit_code == 0, result.output
        assert "Processed 2 rows (dry_run=False)" in result.output
        assert "succeeded: 1" in result.output
        assert "failed   : 1" in result.output
        assert db.session.query(Job).count() == 1

    def test_summary_json_and_dry_run(self, runner, tmp_path, kent_sheet, make_kent_row):
        rows = tmp_path / "rows.json"
        rows.write_text(json.dumps([{"sheet_name": "Kent", "row_data": make_kent_row(), "row_number": 2}]))

        result = runner.invoke(args=["recon", "process-file", str(rows), "--dry-run", "--summary-json"])

        assert result.exit_code == 0, result.output
        outcome = json.loads(result.output)
        assert outcome["succeeded"] == 1
        assert outcome["results"][0]["dryRun"] is True
        assert db.session.query(Job).count() == 0


class TestPendingAndApprove:
    def test_pending_lists_jobs(self, runner, job_factory):
        job = job_factory("Job 7", shifts=[("Alice", 8, False)], special_shifts=[("QC", 2, False)])

        result = runner.invoke(args=["recon", "pending"])

        assert result.exit_code == 0, result.output
        assert f"Job {job.id}: Job 7" in result.output
        assert "  - Alice: 8.0h" in result.output
        assert "  * QC: 2.0h" in result.output

    def test_pending_when_empty(self, runner):
        result = runner.invoke(args=["recon", "pending"])
        assert result.output.strip() == "No pending shifts."

    def test_approve_job(self, runner, job_factory, status_of):
        job = job_factory("Job 7", shifts=[("Alice", 8, False), ("Bob", 3, False)])

        result = runner.invoke(args=["recon", "approve-job", str(job.id)])

        assert result.exit_code == 0, result.output
        assert f"Approved 2 shifts on job {job.id}; closed jobs: {job.id}" in result.output
        assert status_of(job.id) == "Closed Job"


def test_disabled_group_refuses_to_run(app, runner):
    app.config["RECON_ENABLED"] = False
    try:
        init_reconciler(app)
        result = runner.invoke(args=["recon"])
        assert result.exit_code != 0
        assert "RECON_ENABLED=false" in result.output
    finally:
        app.config["RECON_ENABLED"] = True
        init_reconciler(app)
