"""Interface for raw failures handed to the error classifier.

The classifier depends on this narrow contract instead of guessing at
``status``/``code`` attributes. ``as_raw_error`` adapts whatever was actually
raised (exceptions, dicts, strings, None) onto it.
"""

import errno
from typing import Any, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class RawError(Protocol):
    """Capability interface exposing the three facts classification needs."""

    def status_code(self) -> Optional[int]:
        """HTTP status code, if the failure came from an HTTP response."""
        ...

    def code(self) -> Optional[str]:
        """Symbolic error code such as 'ECONNRESET', if any."""
        ...

    def message(self) -> str:
        """Human-readable message; empty string when nothing is known."""
        ...


class _AdaptedRawError:
    """RawError view over an arbitrary failure value."""

    def __init__(self, status: Optional[int], code: Optional[str], message: str):
        self._status = status
        self._code = code
        self._message = message

    def status_code(self) -> Optional[int]:
        return self._status

    def code(self) -> Optional[str]:
        return self._code

    def message(self) -> str:
        return self._message

    def __repr__(self) -> str:
        return f"RawError(status={self._status!r}, code={self._code!r}, message={self._message!r})"


def as_raw_error(error: Any) -> RawError:
    """Adapts any failure value onto the RawError contract. Never raises."""
    # SDK errors often expose status_code/code/message as plain attributes
    if isinstance(error, RawError) and all(
        callable(getattr(error, name)) for name in ("status_code", "code", "message")
    ):
        return error
    if error is None:
        return _AdaptedRawError(None, None, "")
    if isinstance(error, str):
        return _AdaptedRawError(None, None, error)
    if isinstance(error, Mapping):
        return _AdaptedRawError(
            _as_int(error.get("status_code", error.get("status"))),
            _as_str(error.get("code")),
            str(error.get("message") or ""),
        )
    return _AdaptedRawError(_status_from(error), _code_from(error), _message_from(error))


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _status_from(error: Any) -> Optional[int]:
    for attr in ("status_code", "status"):
        status = _as_int(getattr(error, attr, None))
        if status is not None:
            return status
    # httpx.HTTPStatusError and similar keep the status on the response
    response = getattr(error, "response", None)
    if response is not None:
        return _as_int(getattr(response, "status_code", None))
    return None


# Python's connection errors often carry no errno (asyncio raises them bare)
_CONNECTION_ERROR_CODES = (
    (ConnectionResetError, "ECONNRESET"),
    (ConnectionRefusedError, "ECONNREFUSED"),
    (ConnectionAbortedError, "ECONNABORTED"),
    (BrokenPipeError, "EPIPE"),
)


def os_error_code(error: Any) -> Optional[str]:
    """Symbolic errno name for an OSError, e.g. 'ECONNRESET'; None otherwise."""
    if not isinstance(error, OSError):
        return None
    if error.errno is not None:
        return errno.errorcode.get(error.errno)
    for error_type, code in _CONNECTION_ERROR_CODES:
        if isinstance(error, error_type):
            return code
    return None


def _code_from(error: Any) -> Optional[str]:
    code = _as_str(getattr(error, "code", None))
    if code:
        return code
    return os_error_code(error)


def _message_from(error: Any) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(error)
    # Bare exceptions (e.g. TimeoutError()) stringify to ''; fall back to the type name
    return text if text else type(error).__name__
