"""
Exception hierarchy for CTF events.

Every error carries the HTTP status the web layer answers with and an
optional list of field-level details.
"""

from typing import Any, Dict, List, Optional


class CTFEventsError(Exception):
    """Base class for all errors raised by the events core."""

    status = 500

    def __init__(
        self,
        message: str,
        details: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> Dict[str, object]:
        """
        Serialize the error for a JSON response body.

        @return: Dictionary with "msg" and, when present, "errors"
        """
        body: Dict[str, object] = {"msg": self.message}
        if self.details:
            body["errors"] = self.details
        return body


class NotFoundError(CTFEventsError):
    """Event, question, question set or participant does not exist."""

    status = 404


class UnauthorizedError(CTFEventsError):
    """No authenticated identity on the request."""

    status = 401


class ForbiddenError(CTFEventsError):
    """Identity lacks the role or roster membership for the operation."""

    status = 403


class ValidationError(CTFEventsError):
    """Malformed or missing input."""

    status = 400

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        """
        Build an error describing a single invalid field.

        @param field: Name of the offending field
        @param message: Human readable problem description
        @return: ValidationError with one detail entry
        """
        return cls(message, [{"field": field, "message": message}])


class ConflictError(CTFEventsError):
    """Uniqueness violation, e.g. a duplicate event code."""

    status = 409


class DataIntegrityError(CTFEventsError):
    """Stored data violates an invariant, e.g. a snapshot question without original_id."""

    status = 500


class IncompletePropagationError(ConflictError):
    """
    A catalog change could not reach every event snapshot.

    The catalog is left untouched so the same request can be retried; events
    already updated are no longer matched on the next pass.
    """

    def __init__(self, message: str, report: Any) -> None:
        super().__init__(
            message,
            [
                {"field": "events", "message": f"Event {event_id} could not be updated"}
                for event_id in report.failed
            ],
        )
        self.report = report

    def to_dict(self) -> Dict[str, object]:
        body = super().to_dict()
        body["propagation"] = self.report.to_dict()
        return body
