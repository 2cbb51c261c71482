"""Exception types raised by the NotebookLM bridge.

Messages carry cookie NAMES, lengths and presence flags at most. Cookie values
and session tokens never appear in an exception message.
"""


class NotebookLMError(Exception):
    """Base class for every error raised by this package."""


class AuthenticationError(NotebookLMError):
    """The session cannot be used; a fresh interactive login is required."""


class NotAuthenticatedError(AuthenticationError):
    """No saved session exists."""

    def __init__(self, message: str = "Authentication required. Run `notebooklm-bridge-auth` in your terminal."):
        super().__init__(message)


class AuthenticationTimeoutError(AuthenticationError):
    """The interactive login did not complete before the deadline."""


class AuthInProgressError(AuthenticationError):
    """Another authentication run holds the auth lock."""


class SessionExpiredError(AuthenticationError):
    """The saved session was rejected by NotebookLM."""

    def __init__(self, message: str = "Authentication expired. Run `notebooklm-bridge-auth` in your terminal to re-authenticate."):
        super().__init__(message)


class NotFoundError(NotebookLMError):
    """A referenced notebook or source does not exist."""


class RemoteTimeoutError(NotebookLMError):
    """A synchronous call exceeded its timeout."""


class NoActiveTaskError(NotebookLMError):
    """A poll was issued with no research task outstanding."""


class EmptySourceSetError(NotebookLMError, ValueError):
    """An operation that needs at least one source id got none."""


class RemoteServiceError(NotebookLMError):
    """NotebookLM answered with an error or an unexpected payload."""

    MAX_BODY = 500

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body[: self.MAX_BODY] if body else body
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message)
