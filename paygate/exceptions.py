"""Иерархия ошибок сервиса. Каждая ошибка знает свой HTTP-статус и машинный код."""
from typing import Optional


class PaygateError(Exception):
    """Base class."""

    status: int = 500
    code: str = "internal_error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message or self.code)
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status

    @property
    def message(self) -> str:
        return str(self)


class AuthError(PaygateError):
    status = 401
    code = "unauthorized"


class ForbiddenError(PaygateError):
    status = 403
    code = "forbidden"


class ReplayError(PaygateError):
    """Устаревший timestamp (400) или повторный nonce (409)."""
    status = 400
    code = "replay_rejected"


class ValidationError(PaygateError):
    status = 400
    code = "invalid_request"


class NotFoundError(PaygateError):
    status = 404
    code = "not_found"


class ConflictError(PaygateError):
    status = 409
    code = "conflict"


class VerificationError(PaygateError):
    """Ончейн-подтверждение не прошло. Ожидаемый исход, не 5xx."""
    status = 400
    code = "verification_failed"


class UpstreamError(PaygateError):
    status = 500
    code = "upstream_error"
