"""Validation and normalisation of user-supplied disease codes and table names.

Every dynamic schema object (fact tables, sequences, constraints, partitions)
is built from values that passed through this module first.
"""
from __future__ import annotations

import re
from typing import Optional

DISEASE_CODE_PATTERN = re.compile(r"^[A-Z]\d{2}$")
TABLE_NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
TABLE_PREFIX_PATTERN = re.compile(r"^[a-z]\d{2}_")
SAFE_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
SCHEMA_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")

DEFAULT_MAX_IDENTIFIER_LENGTH = 63


class InvalidIdentifierError(ValueError):
    """Raised when a disease code, table name or schema name is not acceptable."""


def _byte_length(value: str) -> int:
    return len(value.encode("utf-8"))


def normalize_disease_code(value: Optional[str]) -> Optional[str]:
    code = (value or "").strip().upper()
    if not code:
        return None
    if not DISEASE_CODE_PATTERN.match(code):
        raise InvalidIdentifierError(
            f"Disease code '{code}' must be one letter followed by two digits (e.g. D01)."
        )
    return code


def normalize_table_name(value: Optional[str], max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH) -> str:
    name = (value or "").strip().lower()
    if not name:
        raise InvalidIdentifierError("Table name is required.")
    if "." in name:
        raise InvalidIdentifierError(
            "Table name must not include a schema (e.g. public.d02_dengue); supply the table name only."
        )
    if not TABLE_NAME_PATTERN.match(name):
        raise InvalidIdentifierError("Table name may only contain a-z, 0-9 and underscores.")
    if not TABLE_PREFIX_PATTERN.match(name):
        raise InvalidIdentifierError(
            "Table name must start with a disease prefix such as 'd02_' (e.g. d02_dengue)."
        )
    if _byte_length(name) > max_length:
        raise InvalidIdentifierError(f"Table name is longer than {max_length} characters.")
    return name


def expected_table_prefix(disease_code: str) -> str:
    return f"{disease_code.lower()}_"


def enforce_prefix_match(table_name: str, disease_code: Optional[str]) -> None:
    if not disease_code:
        return
    prefix = expected_table_prefix(disease_code)
    if not table_name.startswith(prefix):
        raise InvalidIdentifierError(
            f"Table name must start with '{prefix}' because the selected disease is {disease_code}."
        )


def normalize_fact_table_target(
    table_name: Optional[str],
    disease_code: Optional[str],
    max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
) -> tuple[str, Optional[str]]:
    normalized_table = normalize_table_name(table_name, max_length)
    normalized_code = normalize_disease_code(disease_code)
    enforce_prefix_match(normalized_table, normalized_code)
    return normalized_table, normalized_code


def normalize_schema_name(value: Optional[str], max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH) -> str:
    name = (value or "").strip().lower()
    if not name or not SCHEMA_NAME_PATTERN.match(name) or _byte_length(name) > max_length:
        raise InvalidIdentifierError(f"Schema name '{value}' is not a valid identifier.")
    return name


def is_safe_identifier(value: Optional[str], max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH) -> bool:
    if not value:
        return False
    return bool(SAFE_IDENTIFIER_PATTERN.match(value)) and _byte_length(value) <= max_length


def truncate_identifier(name: str, max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH) -> str:
    # Names are ASCII once validated, so slicing by characters matches bytes.
    if len(name) <= max_length:
        return name
    return name[:max_length]


def quote_identifier(identifier: str) -> str:
    escaped = identifier.replace('"', '""')
    return f'"{escaped}"'


def qualify(schema_name: Optional[str], name: str) -> str:
    if schema_name:
        return f"{quote_identifier(schema_name)}.{quote_identifier(name)}"
    return quote_identifier(name)
