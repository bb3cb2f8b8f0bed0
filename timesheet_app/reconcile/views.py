"""
Reconciler blueprint: automation hooks, shift approval APIs and health.

Authentication is handled in front of these endpoints.
"""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request

from .errors import ReconciliationError, ValidationError
from .pipeline import ApprovalService, ColumnMapStore, RowReconciliationService

recon_blueprint = Blueprint("recon", __name__, url_prefix="/api")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


def _int_arg(name: str, default=None, *, minimum: int = 0):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"`{name}` must be an integer.") from exc
    if value < minimum:
        raise ValidationError(f"`{name}` must be >= {minimum}.")
    return value


@recon_blueprint.errorhandler(ReconciliationError)
def _handle_reconciliation_error(error: ReconciliationError):
    return jsonify(error.to_dict()), error.http_status


@recon_blueprint.get("/recon/health")
def recon_healthcheck():
    """Lightweight health endpoint proving the reconciler blueprint mounted correctly."""
    state = current_app.extensions.get("reconciler", {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "worker": state.get("celery_app") is not None,
                "strictSentinels": bool(current_app.config.get("RECON_STRICT_SENTINELS", False)),
            }
        ),
        HTTPStatus.OK,
    )


@recon_blueprint.post("/automations/column-map")
def sync_column_map():
    """
    Replace a sheet's column map.

    Accepts ``{"sheet_name": ..., "header_row": [...]}`` or the
    ``{"name": ..., "columns": {"0": ...}}`` form sent by automations.
    """
    payload = _json_body()
    if payload.get("name") and isinstance(payload.get("columns"), dict):
        sheet_name, header = payload["name"], payload["columns"]
    elif payload.get("sheet_name") and isinstance(payload.get("header_row"), list):
        sheet_name, header = payload["sheet_name"], payload["header_row"]
    else:
        raise ValidationError("Request body must match one of the supported formats.")

    summary = ColumnMapStore().sync_header(sheet_name, header, dry_run=_flag("dryRun"))
    return jsonify(summary), HTTPStatus.OK


@recon_blueprint.post("/automations/process-row")
def process_row():
    payload = _json_body()
    sheet_name = payload.get("sheet_name")
    row_data = payload.get("row_data")
    row_number = payload.get("row_number")
    if not sheet_name or row_data in (None, "", [], {}) or row_number in (None, ""):
        raise ValidationError("`sheet_name`, `row_data`, and `row_number` are required.")
    try:
        row_number = int(row_number)
    except (TypeError, ValueError) as exc:
        raise ValidationError("`row_number` must be an integer.") from exc

    result = RowReconciliationService().process_row(sheet_name, row_data, row_number, dry_run=_flag("dryRun"))
    return jsonify(result), HTTPStatus.OK


@recon_blueprint.get("/shift-approval/pending")
def pending_shifts():
    service = ApprovalService()
    payload = service.pending_shifts(
        branch_id=_int_arg("branch_id"),
        limit=_int_arg("limit", 50, minimum=1),
        offset=_int_arg("offset", 0),
    )
    return jsonify(payload), HTTPStatus.OK


@recon_blueprint.get("/shift-approval/stats")
def pending_stats():
    return jsonify(ApprovalService().pending_stats()), HTTPStatus.OK


@recon_blueprint.post("/shift-approval/approve")
def approve_shifts():
    payload = _json_body()
    result = ApprovalService().approve(payload.get("shifts"), payload.get("specialShifts"))
    return jsonify(result), HTTPStatus.OK


@recon_blueprint.post("/shift-approval/reject")
def reject_shifts():
    payload = _json_body()
    result = ApprovalService().reject(payload.get("shifts"), payload.get("specialShifts"))
    return jsonify(result), HTTPStatus.OK
