"""Bulk import of surveillance exports into a disease fact table.

The import runs in two phases. :func:`prepare_fact_import` validates the
identifiers, reads the upload and turns every line into a row record or a
row error without touching the database. :func:`execute_fact_import` then
runs the partition safety net and the batched upsert-discard inserts on a
single connection; the caller owns the transaction.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection

from riskhub.services.date_parsing import parse_flexible_date, to_date
from riskhub.services.fact_table_schema import (
    PARSED_DATE_COLUMNS,
    RAW_DATE_COLUMNS,
    TEXT_COLUMNS,
    build_fact_table,
)
from riskhub.services.identifiers import (
    DEFAULT_MAX_IDENTIFIER_LENGTH,
    normalize_fact_table_target,
)
from riskhub.services.partition_safety import ensure_default_partition
from riskhub.services.tabular_upload import read_tabular_upload, row_mapping

logger = getLogger(__name__)

DEFAULT_BATCH_SIZE = 2000
DEFAULT_MAX_ERROR_RETURN = 500
INT4_MIN, INT4_MAX = -(2**31), 2**31 - 1
NULL_TOKENS = {"-", "null", "n/a", "na"}

# Columns tried, in order, to find the required onset date.
ONSET_DATE_SOURCES = (
    "onset_date_parsed",
    "onset_date",
    "diagnosis_date_parsed",
    "diagnosis_date",
    "treated_date_parsed",
    "treated_date",
)


class FactImportError(Exception):
    """Base class for imports rejected before anything is written."""

    def __init__(self, message: str, errors: Optional[Sequence["ImportErrorItem"]] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])


class PayloadTooLargeError(FactImportError):
    pass


class EmptyFileError(FactImportError):
    pass


class MissingDiseaseCodeError(FactImportError):
    pass


class MissingTableNameError(FactImportError):
    pass


class UnreadableFileError(FactImportError):
    pass


class ValidationRejectedError(FactImportError):
    pass


class NoValidRowsError(FactImportError):
    pass


@dataclass(frozen=True)
class ImportErrorItem:
    line: int
    message: str


@dataclass
class FactRow:
    disease_code: str
    onset_date_parsed: str
    id: Optional[int] = None
    gender: Optional[str] = None
    age_y: Optional[int] = None
    nationality: Optional[str] = None
    occupation: Optional[str] = None
    province: Optional[str] = None
    district: Optional[str] = None
    onset_date: Optional[str] = None
    treated_date: Optional[str] = None
    diagnosis_date: Optional[str] = None
    death_date: Optional[str] = None
    treated_date_parsed: Optional[str] = None
    diagnosis_date_parsed: Optional[str] = None
    death_date_parsed: Optional[str] = None

    def to_values(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "disease_code": self.disease_code,
            "age_y": self.age_y,
        }
        for column in TEXT_COLUMNS + RAW_DATE_COLUMNS:
            values[column] = getattr(self, column)
        for column in PARSED_DATE_COLUMNS:
            values[column] = to_date(getattr(self, column))
        # Leave id out entirely so the sequence default applies.
        if self.id is not None:
            values["id"] = self.id
        return values


@dataclass
class PreparedFactImport:
    table_name: str
    disease_code: str
    rows: list[FactRow]
    errors: list[ImportErrorItem]
    total_rows: int
    max_error_return: int = DEFAULT_MAX_ERROR_RETURN

    @property
    def capped_errors(self) -> list[ImportErrorItem]:
        return self.errors[: self.max_error_return]


@dataclass
class FactImportResult:
    table_name: str
    disease_code: str
    inserted: int
    skipped: int
    duplicates: int
    total_rows: int
    errors: list[ImportErrorItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    default_partition_created: bool = False


def to_nullable_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    text_value = str(value).strip()
    if not text_value:
        return None
    if text_value.lower() in NULL_TOKENS:
        return None
    return text_value


def to_nullable_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text_value = str(value).strip()
        if not text_value:
            return None
        try:
            number = float(text_value)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return int(number)


def to_nullable_int4(value: Any) -> Optional[int]:
    number = to_nullable_int(value)
    if number is None or not INT4_MIN <= number <= INT4_MAX:
        return None
    return number


def _pick(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _resolve_date(record: Mapping[str, Any], *columns: str) -> Optional[str]:
    for column in columns:
        parsed = parse_flexible_date(_pick(record, column))
        if parsed:
            return parsed
    return None


def _describe_onset_failure(record: Mapping[str, Any]) -> str:
    supplied = [
        f"{column}={str(record[column]).strip()!r}"
        for column in ONSET_DATE_SOURCES
        if _pick(record, column) is not None
    ]
    if not supplied:
        return "Missing onset date: supply onset_date or onset_date_parsed (or a diagnosis/treated date)."
    return f"Unable to parse onset date ({', '.join(supplied)})."


def build_fact_row(
    record: Mapping[str, Any],
    disease_code: str,
) -> tuple[Optional[FactRow], Optional[str]]:
    """Transform one normalised-header record; returns (row, None) or (None, error message)."""
    onset_parsed = _resolve_date(record, *ONSET_DATE_SOURCES)
    if not onset_parsed:
        return None, _describe_onset_failure(record)

    row_id = to_nullable_int4(_pick(record, "id"))

    row = FactRow(
        # Never read from the file so an upload cannot target another disease.
        disease_code=disease_code,
        id=row_id,
        age_y=to_nullable_int4(_pick(record, "age_y")),
        onset_date_parsed=onset_parsed,
        treated_date_parsed=_resolve_date(record, "treated_date_parsed", "treated_date"),
        diagnosis_date_parsed=_resolve_date(record, "diagnosis_date_parsed", "diagnosis_date"),
        death_date_parsed=_resolve_date(record, "death_date_parsed", "death_date"),
    )
    for column in TEXT_COLUMNS + RAW_DATE_COLUMNS:
        setattr(row, column, to_nullable_string(_pick(record, column)))
    return row, None


def prepare_fact_import(
    data: Optional[bytes],
    *,
    filename: Optional[str],
    disease_code: Optional[str],
    table_name: Optional[str],
    skip_bad_rows: bool = True,
    max_upload_bytes: Optional[int] = None,
    max_identifier_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
    max_error_return: int = DEFAULT_MAX_ERROR_RETURN,
) -> PreparedFactImport:
    """
    Validate and parse an upload without touching the database.

    Raises:
        MissingDiseaseCodeError, MissingTableNameError, InvalidIdentifierError,
        PayloadTooLargeError, UnreadableFileError, EmptyFileError,
        ValidationRejectedError, NoValidRowsError
    """
    if not (disease_code or "").strip():
        raise MissingDiseaseCodeError("disease_code is required.")
    if not (table_name or "").strip():
        raise MissingTableNameError("table_name is required.")
    table, code = normalize_fact_table_target(table_name, disease_code, max_identifier_length)

    payload = data or b""
    if max_upload_bytes is not None and len(payload) > max_upload_bytes:
        limit_mb = max_upload_bytes / (1024 * 1024)
        raise PayloadTooLargeError(f"Uploaded file exceeds the {limit_mb:g} MB size limit.")

    try:
        tabular = read_tabular_upload(payload, filename)
    except ValueError as exc:
        raise UnreadableFileError(str(exc)) from exc

    if tabular.line_count < 2:
        raise EmptyFileError("Uploaded file is empty or contains only a header row.")

    rows: list[FactRow] = []
    errors: list[ImportErrorItem] = []
    for line_no, cells in tabular.rows:
        record = row_mapping(tabular.headers, cells)
        row, message = build_fact_row(record, code)
        if row is None:
            errors.append(ImportErrorItem(line=line_no, message=message))
            continue
        rows.append(row)

    prepared = PreparedFactImport(
        table_name=table,
        disease_code=code,
        rows=rows,
        errors=errors,
        total_rows=len(tabular.rows),
        max_error_return=max_error_return,
    )
    logger.info(
        "fact-import:parsed table=%s disease=%s total=%d valid=%d errors=%d",
        table,
        code,
        prepared.total_rows,
        len(rows),
        len(errors),
    )

    if errors and not skip_bad_rows:
        raise ValidationRejectedError(
            f"{len(errors):,} rows failed validation; nothing was imported.",
            prepared.capped_errors,
        )
    if not rows:
        raise NoValidRowsError("No rows passed validation; nothing was imported.", prepared.capped_errors)
    return prepared


def _resolve_insert(dialect_name: str):
    if dialect_name == "postgresql":
        return postgresql.insert
    if dialect_name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upsert-discard inserts are not supported for dialect '{dialect_name}'.")


def write_fact_rows(
    connection: Connection,
    table: Table,
    rows: Sequence[FactRow],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Insert rows in batches, silently discarding primary-key collisions. Returns rows written."""
    insert = _resolve_insert(connection.dialect.name)
    inserted = 0
    for offset in range(0, len(rows), batch_size):
        batch = [row.to_values() for row in rows[offset : offset + batch_size]]
        with_id = [values for values in batch if "id" in values]
        without_id = [values for values in batch if "id" not in values]
        for group in (with_id, without_id):
            if not group:
                continue
            statement = insert(table).values(group).on_conflict_do_nothing()
            result = connection.execute(statement)
            inserted += max(result.rowcount or 0, 0)
        logger.debug(
            "fact-import:batch table=%s offset=%d size=%d inserted=%d",
            table.name,
            offset,
            len(batch),
            inserted,
        )
    return inserted


def execute_fact_import(
    connection: Connection,
    prepared: PreparedFactImport,
    *,
    schema_name: Optional[str] = "public",
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_identifier_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
) -> FactImportResult:
    if connection.dialect.name == "sqlite":
        schema_name = None

    created_default = ensure_default_partition(
        connection,
        prepared.table_name,
        schema_name=schema_name,
        max_identifier_length=max_identifier_length,
    )
    table = build_fact_table(prepared.table_name, schema_name)
    logger.info(
        "fact-import:write table=%s rows=%d batch_size=%d",
        prepared.table_name,
        len(prepared.rows),
        batch_size,
    )
    inserted = write_fact_rows(connection, table, prepared.rows, batch_size=batch_size)

    skipped = len(prepared.errors)
    duplicates = len(prepared.rows) - inserted
    warnings: list[str] = []
    if skipped:
        warnings.append(f"{skipped:,} rows failed validation and were skipped.")
    if duplicates:
        warnings.append(f"{duplicates:,} rows already existed and were ignored.")
    if created_default:
        warnings.append(f"Created default partition for {prepared.table_name}.")

    return FactImportResult(
        table_name=prepared.table_name,
        disease_code=prepared.disease_code,
        inserted=inserted,
        skipped=skipped,
        duplicates=duplicates,
        total_rows=prepared.total_rows,
        errors=prepared.capped_errors,
        warnings=warnings,
        default_partition_created=created_default,
    )


def import_fact_file(
    connection: Connection,
    data: Optional[bytes],
    *,
    filename: Optional[str],
    disease_code: Optional[str],
    table_name: Optional[str],
    skip_bad_rows: bool = True,
    schema_name: Optional[str] = "public",
    max_upload_bytes: Optional[int] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_identifier_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
    max_error_return: int = DEFAULT_MAX_ERROR_RETURN,
) -> FactImportResult:
    prepared = prepare_fact_import(
        data,
        filename=filename,
        disease_code=disease_code,
        table_name=table_name,
        skip_bad_rows=skip_bad_rows,
        max_upload_bytes=max_upload_bytes,
        max_identifier_length=max_identifier_length,
        max_error_return=max_error_return,
    )
    return execute_fact_import(
        connection,
        prepared,
        schema_name=schema_name,
        batch_size=batch_size,
        max_identifier_length=max_identifier_length,
    )
