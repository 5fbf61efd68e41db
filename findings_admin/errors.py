"""
Shared error types.

Kept in a separate module so the API layer, the CLI script and tests can all
catch the same exception classes.
"""


class FindingsAdminError(Exception):
    """Base class for all override service errors."""


class OverrideValidationError(FindingsAdminError):
    """Raised when a request is malformed. Nothing has been written."""


class StoreNotConfiguredError(FindingsAdminError):
    """Raised when DATABASE_URL is missing. There is no in-memory fallback."""


class FindingNotFoundError(FindingsAdminError):
    """Raised when a finding id is unknown to both the catalog and the ledger."""


class VersionConflictError(FindingsAdminError):
    """Raised when a new override version could not be allocated after retries."""


class MissingAuditTrailError(FindingsAdminError):
    """Raised when rollback has no publish record (or no prior snapshot) to restore."""


class PresetNotFoundError(FindingsAdminError):
    """Raised when a bulk draft names a dimension preset that does not exist."""
