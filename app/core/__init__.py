# app/core/__init__.py

from app.core.errors import (
    ReconciliationError,
    InvalidInputError,
    RecordNotFoundError,
    LifecycleConflictError,
    ClientMismatchError,
)
from app.core.normalizers import (
    normalize_address,
    normalize_amount,
    normalize_date,
    normalize_job_code,
    normalize_relation_id,
)

__all__ = [
    "ReconciliationError",
    "InvalidInputError",
    "RecordNotFoundError",
    "LifecycleConflictError",
    "ClientMismatchError",
    "normalize_address",
    "normalize_amount",
    "normalize_date",
    "normalize_job_code",
    "normalize_relation_id",
]
