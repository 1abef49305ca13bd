from __future__ import annotations


class OrderFlowError(Exception):
    """Base for failures a handler reports to its caller.

    Each subclass maps to one HTTP status and one machine-readable code; the
    app-level error handler renders them into the response envelope.
    """

    status_code = 500
    code = "ORDER_FLOW_ERROR"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_payload(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(OrderFlowError):
    status_code = 400
    code = "VALIDATION_FAILED"

    def __init__(self, message: str, *, fields: list[str] | None = None, details: dict | None = None):
        merged = dict(details or {})
        if fields:
            merged["fields"] = list(fields)
        super().__init__(message, details=merged)
        self.fields = list(fields or [])


class Forbidden(OrderFlowError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(OrderFlowError):
    status_code = 404
    code = "NOT_FOUND"


class StateConflict(OrderFlowError):
    status_code = 400
    code = "STATE_CONFLICT"

    def __init__(self, message: str, *, current_status: str, expected: list[str] | None = None):
        details = {"current_status": current_status}
        if expected:
            details["expected"] = sorted(expected)
        super().__init__(message, details=details)
        self.current_status = current_status


class InvalidSignature(OrderFlowError):
    status_code = 400
    code = "INVALID_SIGNATURE"


class UpstreamFailed(OrderFlowError):
    status_code = 502
    code = "UPSTREAM_FAILED"

    def __init__(self, service: str, message: str):
        super().__init__(f"{service} request failed: {message}", details={"upstream": service, "upstream_error": message})
        self.service = service


def require_fields(data: dict, names: list[str]) -> None:
    missing = []
    for name in names:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    if missing:
        raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", fields=missing)
