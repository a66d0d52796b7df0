from __future__ import annotations

from typing import Any

from kurso.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing or invalid bearer token"),
    402: _response(
        "Tenant locked",
        "TENANT_LOCKED",
        "Subscription expired; access is locked",
        details={"status": "grace_period", "wipe_at": "2026-01-04T00:00:00+00:00"},
    ),
    403: _response("Forbidden", "AUTH_FORBIDDEN", "Insufficient role for this operation"),
    404: _response("Not found", "NOT_FOUND", "Resource not found"),
    422: _response("Validation error", "VALIDATION_ERROR", "Unknown module: payroll"),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    503: _response("Dependency unavailable", "DEPENDENCY_UNAVAILABLE", "Identity provider unreachable"),
}
