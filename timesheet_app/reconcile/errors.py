"""
Exception taxonomy for row reconciliation and shift approval.

Every error carries optional ``sheet_name``/``row_number`` context so a caller
(HTTP view, CLI, Celery task) can report where the failure happened, and an
``http_status`` the blueprint uses when turning it into a JSON response.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""

    http_status = 500
    error_type = "reconciliation_error"

    def __init__(
        self,
        message: str,
        *,
        sheet_name: Optional[str] = None,
        row_number: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.sheet_name = sheet_name
        self.row_number = row_number

    def with_context(self, *, sheet_name: Optional[str] = None, row_number: Optional[int] = None):
        """Fill in row context that was unknown where the error was raised."""
        if self.sheet_name is None:
            self.sheet_name = sheet_name
        if self.row_number is None:
            self.row_number = row_number
        return self

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "errorType": self.error_type,
        }
        if self.sheet_name is not None:
            payload["sheetName"] = self.sheet_name
        if self.row_number is not None:
            payload["rowNumber"] = self.row_number
        return payload


class ValidationError(ReconciliationError):
    """Row input is missing or malformed. Nothing was written."""

    http_status = 400
    error_type = "validation_error"

    def __init__(self, message: str, *, http_status: Optional[int] = None, **context) -> None:
        super().__init__(message, **context)
        if http_status is not None:
            self.http_status = http_status


class AmbiguousMatchError(ReconciliationError):
    """More than one candidate matched where exactly one was required."""

    http_status = 409
    error_type = "ambiguous_match"

    def __init__(self, message: str, *, entity_type: str, candidates: Iterable[str], **context) -> None:
        super().__init__(message, **context)
        self.entity_type = entity_type
        self.candidates = list(candidates)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["entityType"] = self.entity_type
        payload["candidates"] = self.candidates
        return payload


class MissingEntityError(ReconciliationError):
    """A lookup-only entity (salesperson, crew member) could not be resolved."""

    http_status = 422
    error_type = "missing_entity"

    def __init__(self, message: str, *, entity_type: str, name: Optional[str], **context) -> None:
        super().__init__(message, **context)
        self.entity_type = entity_type
        self.name = name

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["entityType"] = self.entity_type
        payload["name"] = self.name
        return payload


class ConfigurationError(ReconciliationError):
    """The sheet's column map has inconsistent sentinel columns."""

    http_status = 422
    error_type = "configuration_error"


class StateConflictError(ReconciliationError):
    """
    A shift was not in the suggested state.

    Approve and reject treat such pairs as no-ops; this class exists so callers
    that want strict semantics have a type to raise.
    """

    http_status = 409
    error_type = "state_conflict"


class RowProcessingError(ReconciliationError):
    """The row transaction failed and was rolled back."""

    http_status = 500
    error_type = "row_processing_error"


class NotificationDeliveryError(ReconciliationError):
    """A performance alert could not be handed to its delivery channel."""

    http_status = 502
    error_type = "notification_delivery_error"


__all__ = [
    "ReconciliationError",
    "ValidationError",
    "AmbiguousMatchError",
    "MissingEntityError",
    "ConfigurationError",
    "StateConflictError",
    "RowProcessingError",
    "NotificationDeliveryError",
]
