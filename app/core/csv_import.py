# app/core/csv_import.py

"""
Delimited-file parsing for partner job exports and payment remittances.

Columns are located by header fragments, not position: each FieldSpec lists
the fragments that identify its column, evaluated once per file against the
lower-cased headers. The first header containing any fragment wins.
"""

from typing import NamedTuple, Optional
import csv
import io
import logging
import re

from app.models import PartnerRow, PaymentRow
from app.core.errors import InvalidInputError
from app.core.normalizers import normalize_date

logger = logging.getLogger(__name__)


class FieldSpec(NamedTuple):
    name: str
    fragments: tuple[str, ...]
    required: bool = False

    def matches(self, header: str) -> bool:
        return any(fragment in header for fragment in self.fragments)


ColumnMap = dict[str, int]


PARTNER_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("record_number", ("record number",)),
    FieldSpec("job_id", ("job id",), required=True),
    FieldSpec("capture_address", ("capture address",)),
    FieldSpec("floor_unit", ("floor/unit",)),
    FieldSpec("ct_rate", ("ct rate",), required=True),
    FieldSpec("ct_travel_payout", ("ct travel",)),
    FieldSpec("ct_off_hours_payout", ("ct off hours",)),
    FieldSpec("project_name", ("project name",)),
    FieldSpec("mp_client", ("mp client",)),
    FieldSpec("job_scheduled_date_time", ("job scheduled",)),
    FieldSpec("ap_invoice_number", ("ap invoice",)),
)

PAYMENT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("amount", ("amount", "total"), required=True),
    FieldSpec("payment_date", ("date",), required=True),
    FieldSpec("reference_number", ("ref", "check", "number")),
    FieldSpec("notes", ("note", "memo", "desc")),
)


# ============================================
# Low-level parsing
# ============================================

def read_records(text: str, delimiter: str = ",") -> list[list[str]]:
    """
    Split delimited text into records of trimmed cells.

    Quoted fields may contain delimiters, doubled quotes and newlines.
    A leading BOM is dropped and blank records are skipped.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    records = []
    for record in reader:
        cells = [cell.strip() for cell in record]
        if any(cells):
            records.append(cells)
    return records


def resolve_columns(header: list[str], fields: tuple[FieldSpec, ...]) -> ColumnMap:
    """Map each field to the first header that contains one of its fragments."""
    lowered = [h.strip().lower() for h in header]
    columns: ColumnMap = {}
    missing = []

    for field in fields:
        index = next((i for i, h in enumerate(lowered) if field.matches(h)), None)
        if index is not None:
            columns[field.name] = index
        elif field.required:
            missing.append(field.fragments[0])

    if missing:
        raise InvalidInputError(f"File must have a column for: {', '.join(missing)}")
    return columns


def parse_money(value: Optional[str]) -> float:
    """Parse ``$1,234.50``-style text; blank or unparseable text is 0."""
    if not value:
        return 0.0
    cleaned = re.sub(r"[^\d.-]", "", value)
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def _cell(record: list[str], columns: ColumnMap, name: str) -> str:
    index = columns.get(name)
    if index is None or index >= len(record):
        return ""
    return record[index]


def _split_header(text: str, fields: tuple[FieldSpec, ...]) -> tuple[ColumnMap, list[list[str]]]:
    records = read_records(text)
    if len(records) < 2:
        raise InvalidInputError("File must have a header row and at least one data row")
    return resolve_columns(records[0], fields), records[1:]


# ============================================
# Partner job export
# ============================================

def parse_partner_rows(text: str, client_id: Optional[str] = None) -> list[PartnerRow]:
    """
    Parse a partner job export into typed rows.

    Rows without a job id, repeated header rows, and rows with no positive
    CT rate are dropped.
    """
    columns, records = _split_header(text, PARTNER_FIELDS)

    def get(record: list[str], name: str) -> str:
        return _cell(record, columns, name)

    rows: list[PartnerRow] = []
    for offset, record in enumerate(records, start=2):
        job_id = get(record, "job_id")
        if not job_id or job_id.lower() == "job id":
            continue

        ct_rate = parse_money(get(record, "ct_rate"))
        if ct_rate <= 0:
            continue

        rows.append(PartnerRow(
            row_number=offset,
            client_id=client_id,
            record_number=get(record, "record_number"),
            job_id=job_id,
            ap_invoice_number=get(record, "ap_invoice_number"),
            capture_address=get(record, "capture_address"),
            floor_unit=get(record, "floor_unit"),
            ct_rate=ct_rate,
            ct_travel_payout=parse_money(get(record, "ct_travel_payout")),
            ct_off_hours_payout=parse_money(get(record, "ct_off_hours_payout")),
            project_name=get(record, "project_name"),
            mp_client=get(record, "mp_client"),
            job_scheduled_date_time=get(record, "job_scheduled_date_time"),
        ))

    if not rows:
        raise InvalidInputError("No valid rows found in file")

    logger.info("Parsed %d partner rows from %d records", len(rows), len(records))
    return rows


# ============================================
# Payment remittance
# ============================================

def parse_payment_rows(text: str) -> tuple[list[PaymentRow], list[str]]:
    """
    Parse a payment export.

    Returns ``(rows, errors)``; a bad amount or date rejects that row only.
    """
    columns, records = _split_header(text, PAYMENT_FIELDS)

    rows: list[PaymentRow] = []
    errors: list[str] = []

    for offset, record in enumerate(records, start=2):
        raw_amount = _cell(record, columns, "amount")
        amount = parse_money(raw_amount)
        if amount <= 0:
            errors.append(f'Row {offset}: invalid amount "{raw_amount}"')
            continue

        raw_date = _cell(record, columns, "payment_date")
        payment_date = normalize_date(raw_date)
        if payment_date is None:
            errors.append(f'Row {offset}: invalid date "{raw_date}"')
            continue

        rows.append(PaymentRow(
            row_number=offset,
            amount=amount,
            payment_date=payment_date,
            reference_number=_cell(record, columns, "reference_number"),
            notes=_cell(record, columns, "notes"),
        ))

    return rows, errors
