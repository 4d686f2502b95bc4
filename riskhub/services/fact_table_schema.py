"""Schema-generation templates for per-disease fact tables.

Functions in this module are pure: they turn already-validated identifiers
into object names, DDL statements and SQLAlchemy table objects. Callers must
run user input through :mod:`riskhub.services.identifiers` first.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import Column, Date, Integer, MetaData, Table, Text

from riskhub.services.identifiers import (
    DEFAULT_MAX_IDENTIFIER_LENGTH,
    qualify,
    quote_identifier,
    truncate_identifier,
)

DISEASE_REGISTRY_TABLE = "diseases"
FACT_TABLE_MAPPING_TABLE = "disease_fact_tables"

TEXT_COLUMNS = (
    "gender",
    "nationality",
    "occupation",
    "province",
    "district",
)
RAW_DATE_COLUMNS = (
    "onset_date",
    "treated_date",
    "diagnosis_date",
    "death_date",
)
PARSED_DATE_COLUMNS = tuple(f"{column}_parsed" for column in RAW_DATE_COLUMNS)

# Column order used for CREATE TABLE and for every INSERT.
FACT_COLUMN_SQL = (
    ("disease_code", "text NOT NULL"),
    ("gender", "text NULL"),
    ("age_y", "int4 NULL"),
    ("nationality", "text NULL"),
    ("occupation", "text NULL"),
    ("province", "text NULL"),
    ("district", "text NULL"),
    ("onset_date", "text NULL"),
    ("treated_date", "text NULL"),
    ("diagnosis_date", "text NULL"),
    ("death_date", "text NULL"),
    ("onset_date_parsed", "date NOT NULL"),
    ("treated_date_parsed", "date NULL"),
    ("diagnosis_date_parsed", "date NULL"),
    ("death_date_parsed", "date NULL"),
)


@dataclass(frozen=True)
class RangePartition:
    name: str
    start: date
    end: date


@dataclass(frozen=True)
class FactTableNames:
    table: str
    sequence: str
    primary_key: str
    foreign_key: str
    index: str
    partitions: tuple[RangePartition, ...]
    default_partition: str


def default_partition_name(table_name: str, max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH) -> str:
    return truncate_identifier(f"{table_name}_default", max_length)


def quarterly_partitions(
    table_name: str,
    year: int,
    max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
) -> tuple[RangePartition, ...]:
    bounds = [
        date(year, 1, 1),
        date(year, 4, 1),
        date(year, 7, 1),
        date(year, 10, 1),
        date(year + 1, 1, 1),
    ]
    return tuple(
        RangePartition(
            name=truncate_identifier(f"{table_name}_{year}_q{quarter}", max_length),
            start=bounds[quarter - 1],
            end=bounds[quarter],
        )
        for quarter in range(1, 5)
    )


def build_fact_table_names(
    table_name: str,
    baseline_year: int,
    max_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
) -> FactTableNames:
    return FactTableNames(
        table=table_name,
        sequence=truncate_identifier(f"{table_name}_id_seq", max_length),
        primary_key=truncate_identifier(f"{table_name}_pkey", max_length),
        foreign_key=truncate_identifier(f"{table_name}_disease_fk", max_length),
        index=truncate_identifier(f"idx_{table_name}_disease_code", max_length),
        partitions=quarterly_partitions(table_name, baseline_year, max_length),
        default_partition=default_partition_name(table_name, max_length),
    )


def create_mapping_table_sql(schema_name: str) -> str:
    mapping = qualify(schema_name, FACT_TABLE_MAPPING_TABLE)
    registry = qualify(schema_name, DISEASE_REGISTRY_TABLE)
    return f"""CREATE TABLE IF NOT EXISTS {mapping} (
    id serial PRIMARY KEY,
    disease_code varchar(10) NOT NULL UNIQUE
        REFERENCES {registry} (code) ON DELETE RESTRICT ON UPDATE CASCADE,
    table_name varchar(63) NOT NULL,
    schema_name varchar(63) NOT NULL DEFAULT 'public',
    is_active boolean NOT NULL DEFAULT true,
    created_at timestamptz NOT NULL DEFAULT now(),
    updated_at timestamptz NOT NULL DEFAULT now()
)"""


def create_sequence_sql(schema_name: str, names: FactTableNames) -> str:
    return f"CREATE SEQUENCE IF NOT EXISTS {qualify(schema_name, names.sequence)}"


def create_fact_table_sql(schema_name: str, names: FactTableNames) -> str:
    sequence_literal = f"{schema_name}.{names.sequence}"
    column_lines = [f"id int4 DEFAULT nextval('{sequence_literal}'::regclass) NOT NULL"]
    column_lines.extend(f"{column} {definition}" for column, definition in FACT_COLUMN_SQL)
    column_lines.append(
        f"CONSTRAINT {quote_identifier(names.primary_key)} PRIMARY KEY (onset_date_parsed, id)"
    )
    column_lines.append(
        f"CONSTRAINT {quote_identifier(names.foreign_key)} FOREIGN KEY (disease_code)"
        f" REFERENCES {qualify(schema_name, DISEASE_REGISTRY_TABLE)} (code)"
        " ON DELETE RESTRICT ON UPDATE CASCADE"
    )
    columns_sql = ",\n    ".join(column_lines)
    return (
        f"CREATE TABLE IF NOT EXISTS {qualify(schema_name, names.table)} (\n"
        f"    {columns_sql}\n"
        ") PARTITION BY RANGE (onset_date_parsed)"
    )


def own_sequence_sql(schema_name: str, names: FactTableNames) -> str:
    return (
        f"ALTER SEQUENCE {qualify(schema_name, names.sequence)}"
        f" OWNED BY {qualify(schema_name, names.table)}.id"
    )


def create_disease_index_sql(schema_name: str, names: FactTableNames) -> str:
    # ON ONLY keeps the index on the parent; partitions are not indexed eagerly.
    return (
        f"CREATE INDEX IF NOT EXISTS {quote_identifier(names.index)}"
        f" ON ONLY {qualify(schema_name, names.table)} USING btree (disease_code)"
    )


def create_range_partition_sql(schema_name: str, table_name: str, partition: RangePartition) -> str:
    return (
        f"CREATE TABLE IF NOT EXISTS {qualify(schema_name, partition.name)}"
        f" PARTITION OF {qualify(schema_name, table_name)}"
        f" FOR VALUES FROM ('{partition.start.isoformat()}') TO ('{partition.end.isoformat()}')"
    )


def create_default_partition_sql(schema_name: Optional[str], table_name: str, partition_name: str) -> str:
    return (
        f"CREATE TABLE IF NOT EXISTS {qualify(schema_name, partition_name)}"
        f" PARTITION OF {qualify(schema_name, table_name)} DEFAULT"
    )


def upsert_mapping_sql(schema_name: str) -> str:
    mapping = qualify(schema_name, FACT_TABLE_MAPPING_TABLE)
    return f"""INSERT INTO {mapping} (disease_code, table_name, schema_name, is_active)
VALUES (:disease_code, :table_name, :schema_name, true)
ON CONFLICT (disease_code) DO UPDATE SET
    table_name = EXCLUDED.table_name,
    schema_name = EXCLUDED.schema_name,
    is_active = true,
    updated_at = now()"""


def build_fact_table(table_name: str, schema_name: Optional[str] = None) -> Table:
    """SQLAlchemy description of a fact table, used for batched inserts."""
    metadata = MetaData(schema=schema_name or None)
    return Table(
        table_name,
        metadata,
        Column("id", Integer),
        Column("disease_code", Text, nullable=False),
        Column("gender", Text),
        Column("age_y", Integer),
        Column("nationality", Text),
        Column("occupation", Text),
        Column("province", Text),
        Column("district", Text),
        Column("onset_date", Text),
        Column("treated_date", Text),
        Column("diagnosis_date", Text),
        Column("death_date", Text),
        Column("onset_date_parsed", Date, nullable=False),
        Column("treated_date_parsed", Date),
        Column("diagnosis_date_parsed", Date),
        Column("death_date_parsed", Date),
    )
