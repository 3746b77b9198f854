"""Error taxonomy shared by the booking, voucher, payment and trip services.

Services raise these; the API layer renders them as
``{"ok": false, "errorKind": ..., "detail": ...}`` with the status code below.
"""


class DomainError(Exception):
    error_kind = "DomainError"
    status_code = 400

    def __init__(self, detail: str, **extra):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict:
        return {"ok": False, "errorKind": self.error_kind, "detail": self.detail, **self.extra}


class ValidationError(DomainError):
    error_kind = "ValidationError"
    status_code = 400


class ConflictError(DomainError):
    error_kind = "ConflictError"
    status_code = 409


class NotFoundError(DomainError):
    error_kind = "NotFoundError"
    status_code = 404


class ForbiddenTransition(DomainError):
    error_kind = "ForbiddenTransition"
    status_code = 409


class SignatureError(DomainError):
    error_kind = "SignatureError"
    status_code = 400


class ExternalUnavailable(DomainError):
    error_kind = "ExternalUnavailable"
    status_code = 503


class AccessDenied(DomainError):
    error_kind = "AccessDenied"
    status_code = 403
