# Overview: Domain error taxonomy shared by services and routes.

"""
Shopfloor Service Errors

WHY: Every failure that reaches the request boundary carries a machine-checkable
kind, a human-readable message and (optionally) suggestions the UI can show.
Routes catch ServiceError and translate it with error_response(); services never
build HTTP responses themselves.

KINDS:
    VALIDATION_ERROR          400  malformed input (missing field, bad enum value)
    NOT_FOUND                 404  referenced entity does not exist
    CONFLICT                  409  duplicate or concurrent condition
    ISOLATION_VIOLATION       409  cross-order contamination attempted or detected
    PRECONDITION_FAILED       422  valid entities, wrong state for the operation
    AUTHENTICATION_ERROR      401  QuickBooks rejected our credentials
    REAUTHORIZATION_REQUIRED  401  token set is gone; run the OAuth flow again
    QUICKBOOKS_API_ERROR      502  QuickBooks answered with an error fault
    CONNECTION_ERROR          503  network failure or timeout (retryable)
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for recoverable, request-level failures."""

    kind = "SERVICE_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, *, suggestions: list[str] | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.suggestions = list(suggestions or [])
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {
            "error": self.message,
            "kind": self.kind,
            "retryable": self.retryable,
        }
        if self.suggestions:
            payload["suggestions"] = self.suggestions
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""
    kind = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ServiceError):
    kind = "NOT_FOUND"
    status_code = 404


class ConflictError(ServiceError, ValueError):
    """409-level business rule conflict (e.g., open log already exists)."""
    kind = "CONFLICT"
    status_code = 409


class PreconditionError(ServiceError):
    """Entities exist but are in the wrong state for the requested operation."""
    kind = "PRECONDITION_FAILED"
    status_code = 422


class IsolationViolationError(ServiceError):
    """An operation would read or write an OrderItem outside its owning order."""
    kind = "ISOLATION_VIOLATION"
    status_code = 409


class AuthenticationError(ServiceError):
    kind = "AUTHENTICATION_ERROR"
    status_code = 401


class ReauthorizationRequired(AuthenticationError):
    """The stored QuickBooks token set is unusable and has been removed."""
    kind = "REAUTHORIZATION_REQUIRED"

    def __init__(self, message: str = "QuickBooks authorization expired. Please reconnect to QuickBooks.", **kwargs):
        kwargs.setdefault("suggestions", ["Reconnect to QuickBooks"])
        super().__init__(message, **kwargs)


class QuickBooksConnectionError(ServiceError):
    """Network failure or timeout talking to QuickBooks; safe to retry."""
    kind = "CONNECTION_ERROR"
    status_code = 503
    retryable = True

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("suggestions", ["Check your network connection", "Try again in a few moments"])
        super().__init__(message, **kwargs)


class QuickBooksApiError(ServiceError):
    kind = "QUICKBOOKS_API_ERROR"
    status_code = 502

    def __init__(self, message: str, *, http_status: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.http_status = http_status


def error_response(exc: ServiceError):
    """Shape a ServiceError as a (body, status) tuple for jsonify-based routes."""
    from flask import jsonify

    return jsonify(exc.to_dict()), exc.status_code
