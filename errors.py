"""
errors.py
Exception classes raised by the service modules and shown by the UI.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Base class; str(err) is safe to show to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthorizationDenied(DashboardError):
    def __init__(self, message: str = "Mangler tilgang."):
        super().__init__(message)


class RemoteMutationFailed(DashboardError):
    """An insert/update/delete against the store failed."""


class NotFound(DashboardError):
    pass


class ValidationFailed(DashboardError):
    pass


class MalformedRow(DashboardError):
    """A store row did not match the expected shape."""

    def __init__(self, table: str, reason: str):
        super().__init__(f"Malformed {table} row: {reason}")
        self.table = table
        self.reason = reason


class QueueFailed(DashboardError):
    """The print worker reported an error for a queued job."""


class QueueTimeout(DashboardError):
    def __init__(self, message: str = "Utskriften svarte ikke i tide. Sjekk printeren."):
        super().__init__(message)
