"""Exceptions raised by the audit pipeline."""


class AuditError(Exception):
    """Base class for audit pipeline errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ManagerDestroyedError(AuditError):
    """Raised when an audit manager is used after ``destroy()``."""

    def __init__(self) -> None:
        super().__init__("Audit manager has been destroyed")


class NoStoresAvailableError(AuditError):
    """Raised when a read operation runs with no registered store."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"No audit stores available for {operation}")


class UnsupportedExportFormatError(AuditError, ValueError):
    """Raised when an export is requested in an unknown format."""

    def __init__(self, format: str):
        self.format = format
        super().__init__(f"Unsupported export format: {format}")


class AuditStoreError(AuditError):
    """Raised by a store adapter when it cannot serve a request."""

    def __init__(self, message: str, store_name: str | None = None):
        self.store_name = store_name
        super().__init__(message)
