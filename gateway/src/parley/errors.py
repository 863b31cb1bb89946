from __future__ import annotations


class GatewayError(Exception):
    """Failure local to one intent or request; never fatal to the connection."""

    code = "error"
    status = 400

    def __init__(self, text: str) -> None:
        super().__init__(text)
        self.text = text

    def to_body(self) -> dict[str, str]:
        return {"code": self.code, "text": self.text}


class AuthenticationRequired(GatewayError):
    code = "unauthorized"
    status = 401


class NotFound(GatewayError):
    code = "not_found"
    status = 404


class PermissionDenied(GatewayError):
    code = "forbidden"
    status = 403


class ValidationFailure(GatewayError):
    code = "invalid_request"
    status = 400


class Conflict(GatewayError):
    code = "conflict"
    status = 409
