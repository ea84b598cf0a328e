"""
Error taxonomy shared by every adapter server.

BackendError is what an adapter raises when a unit of work fails. The
dispatcher recognises it, prefixes the message with the backend's tag and
folds it into a normal result envelope. Anything else that escapes a
handler is reported as "Unexpected error".
"""

from __future__ import annotations


class BackendError(Exception):
    """
    A classified failure raised by a backend adapter.

    Attributes:
        code: Short machine token (backend-native code when available,
              e.g. a SQLSTATE, otherwise an adapter-defined token).
        detail: Optional extra detail reported by the backend.
        status_code: HTTP status for HTTP-backed adapters.
        cause: The native exception that was intercepted, if any.
    """

    tag = "Backend Error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        detail: str | None = None,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.detail = detail
        self.status_code = status_code
        self.cause = cause

    def to_dict(self) -> dict:
        data = {"message": self.message, "code": self.code}
        if self.detail is not None:
            data["detail"] = self.detail
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code!r})"


# Policy and transport codes used across backends
WRITE_OPERATION_NOT_ALLOWED = "WRITE_OPERATION_NOT_ALLOWED"
CONNECTION_ERROR = "CONNECTION_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
CALL_TIMEOUT = "CALL_TIMEOUT"


class CallTimeoutError(BackendError):
    tag = "Timeout Error"


class PostgreSQLError(BackendError):
    tag = "PostgreSQL Error"


class MySQLError(BackendError):
    tag = "MySQL Error"


class SecretsManagerError(BackendError):
    tag = "AWS Secrets Manager Error"


class DatadogError(BackendError):
    tag = "Datadog Error"


class NPMError(BackendError):
    tag = "NPM Error"


class TempMailError(BackendError):
    tag = "TempMail Error"


class DuplicateToolError(ValueError):
    """Raised when two handlers are registered under the same tool name."""


class UnknownToolError(LookupError):
    """Raised by the dispatcher for a tool name that was never registered."""

    def __init__(self, name: str, available: list[str]):
        super().__init__(f"Unknown tool: '{name}'. Available: {available}")
        self.name = name
        self.available = available


class ConfigError(ValueError):
    """Raised when process configuration is missing or invalid."""
