from __future__ import annotations


class ServiceError(Exception):
    """Base for failures raised by the service layer.

    ``kind`` is the stable category surfaced to clients (NOT_FOUND,
    FORBIDDEN, BAD_REQUEST, UNAUTHORIZED, INTERNAL); ``code`` is an optional
    machine-readable reason such as ``INSUFFICIENT_INVENTORY``.
    """

    kind = "INTERNAL"
    status = 500

    def __init__(self, message: str = "", *, code: str = "", details: dict | None = None):
        super().__init__(message)
        self.message = message or self.kind.replace("_", " ").title()
        self.code = code or self.kind
        self.details = details or {}

    def to_dict(self, trace_id: str = "") -> dict:
        return {
            "ok": False,
            "error": self.kind,
            "code": self.code,
            "message": self.message,
            "status": int(self.status),
            "trace_id": trace_id,
            "details": self.details,
        }


class NotFoundError(ServiceError):
    kind = "NOT_FOUND"
    status = 404


class ForbiddenError(ServiceError):
    kind = "FORBIDDEN"
    status = 403


class BadRequestError(ServiceError):
    kind = "BAD_REQUEST"
    status = 400


class UnauthorizedError(ServiceError):
    kind = "UNAUTHORIZED"
    status = 401


class InternalError(ServiceError):
    kind = "INTERNAL"
    status = 500
