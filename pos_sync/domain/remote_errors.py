from __future__ import annotations

from pos_sync.core.errors import InfraError, TransientExternalError


class RemoteFailure(Exception):
    """A remote store failure tagged with the worksheet and request it came from."""

    def __init__(self, message: str = "", *, table: str | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.table = table
        self.operation = operation

    def with_context(self, *, table: str | None = None, operation: str | None = None) -> "RemoteFailure":
        """Fills in whatever context is still missing; earlier, more precise values win."""
        self.table = self.table or table
        self.operation = self.operation or operation
        return self

    @property
    def context(self) -> dict[str, str]:
        return {key: value for key, value in (("table", self.table), ("operation", self.operation)) if value}


class RemoteConfigError(RemoteFailure, InfraError):
    """The spreadsheet cannot be used as configured; retrying will not help."""


class RemoteApiDisabledError(RemoteConfigError):
    pass


class RemotePermissionError(RemoteConfigError):
    pass


class RemoteNotFoundError(RemoteConfigError):
    pass


class RemoteCredentialsError(RemoteConfigError):
    pass


class MalformedRemoteRowError(RemoteConfigError):
    def __init__(self, table: str, row_number: int) -> None:
        super().__init__(f"Malformed payload in worksheet '{table}' row {row_number}", table=table)
        self.row_number = row_number


class RemoteRateLimitError(RemoteFailure, TransientExternalError):
    """Sheets quota exhausted; the same request may succeed after a backoff."""
