# app/core/errors.py

"""
Request-level errors raised by the reconciliation workflow.

Each carries the HTTP status the API layer reports. "No match" and
"nothing to do" are never errors; they come back as structured results.
"""


class ReconciliationError(Exception):
    """Base class for errors that abort a whole request."""

    status_code: int = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidInputError(ReconciliationError):
    """Missing scope parameter, malformed file, or no rows parsed."""

    status_code = 400


class RecordNotFoundError(ReconciliationError):
    status_code = 404

    def __init__(self, table: str, record_id: str):
        super().__init__(f"{table.rstrip('s').capitalize()} not found")
        self.table = table
        self.record_id = record_id


class LifecycleConflictError(ReconciliationError):
    """Record is not in the state the operation expects."""

    status_code = 400


class ClientMismatchError(ReconciliationError):
    """An explicit pairing crosses clients."""

    status_code = 400
