"""Classification of failed send attempts."""

import httpx

from ..models import NON_RECOVERABLE_ERRORS, MessagingError, MessagingErrorType
from ..transport import ApiError

_CODE_TO_TYPE: dict[str | int, MessagingErrorType] = {
    401: MessagingErrorType.AUTHENTICATION,
    "AUTHENTICATION_ERROR": MessagingErrorType.AUTHENTICATION,
    403: MessagingErrorType.PERMISSION,
    "PERMISSION_DENIED": MessagingErrorType.PERMISSION,
    429: MessagingErrorType.RATE_LIMIT,
    "RATE_LIMIT_EXCEEDED": MessagingErrorType.RATE_LIMIT,
    402: MessagingErrorType.SUBSCRIPTION_REQUIRED,
    "SUBSCRIPTION_REQUIRED": MessagingErrorType.SUBSCRIPTION_REQUIRED,
    "USER_BLOCKED": MessagingErrorType.USER_BLOCKED,
    413: MessagingErrorType.MESSAGE_TOO_LONG,
    "MESSAGE_TOO_LONG": MessagingErrorType.MESSAGE_TOO_LONG,
    408: MessagingErrorType.NETWORK,
    "NETWORK_ERROR": MessagingErrorType.NETWORK,
}


def classify_code(code: str | int | None) -> MessagingErrorType:
    """Map a backend error code or HTTP status to an error type."""
    if code is None:
        return MessagingErrorType.UNKNOWN
    if isinstance(code, str) and code.isdigit():
        code = int(code)
    if isinstance(code, int) and 500 <= code < 600:
        return MessagingErrorType.NETWORK
    if isinstance(code, str):
        code = code.upper()
    return _CODE_TO_TYPE.get(code, MessagingErrorType.UNKNOWN)


def is_recoverable(error_type: MessagingErrorType) -> bool:
    return error_type not in NON_RECOVERABLE_ERRORS


def classify_error(error: ApiError | None) -> MessagingError:
    """Turn an application-level error payload into a MessagingError."""
    if error is None:
        return MessagingError(
            type=MessagingErrorType.UNKNOWN,
            message="Unknown API error",
            recoverable=True,
        )

    error_type = classify_code(error.code)
    return MessagingError(
        type=error_type,
        message=error.message or "Unknown API error",
        recoverable=is_recoverable(error_type),
        code=error.code,
    )


def classify_exception(exc: BaseException) -> MessagingError:
    """Turn a raised transport exception into a MessagingError.

    Exceptions are network failures unless they carry an explicit code.
    """
    code = getattr(exc, "code", None)
    if code is None and isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code

    error_type = MessagingErrorType.NETWORK if code is None else classify_code(code)
    return MessagingError(
        type=error_type,
        message=str(exc) or type(exc).__name__,
        recoverable=is_recoverable(error_type),
        code=code,
    )
