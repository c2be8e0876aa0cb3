"""
Error taxonomy for the Matrix bot client.

Only bootstrap failures (AuthError, TransportError raised by initialize())
reach the caller. Everything raised inside the sync loop is reported through
the error callback instead.
"""
from typing import Optional


class MatrixClientError(Exception):
    """Base class for Matrix client failures"""
    pass


class AuthError(MatrixClientError):
    """Raised when the homeserver rejects the bot's access token"""
    pass


class TransportError(MatrixClientError):
    """Raised on network failure or a non-2xx response from the homeserver"""
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        response_body: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.response_body = response_body
        self.path = path


class MalformedResponseError(MatrixClientError):
    """Raised when a response body does not have the expected structure"""
    pass


class CallbackError(MatrixClientError):
    """Wraps an exception raised by a registered callback"""
    def __init__(self, callback_name: str, original: BaseException):
        super().__init__(f"{callback_name} callback failed: {type(original).__name__}: {original}")
        self.callback_name = callback_name
        self.original = original
