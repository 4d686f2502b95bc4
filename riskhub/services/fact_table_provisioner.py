"""Create partitioned per-disease fact tables in PostgreSQL."""
from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from riskhub.services.fact_table_schema import (
    FactTableNames,
    build_fact_table_names,
    create_default_partition_sql,
    create_disease_index_sql,
    create_fact_table_sql,
    create_mapping_table_sql,
    create_range_partition_sql,
    create_sequence_sql,
    own_sequence_sql,
    upsert_mapping_sql,
)
from riskhub.services.identifiers import (
    DEFAULT_MAX_IDENTIFIER_LENGTH,
    normalize_fact_table_target,
    normalize_schema_name,
)

logger = getLogger(__name__)


class FactTableProvisioningError(Exception):
    """Raised when creating a fact table fails after validation succeeded."""


@dataclass
class ProvisionResult:
    schema_name: str
    names: FactTableNames
    disease_code: Optional[str]
    mapping_written: bool
    already_existed: bool
    statements: list[str] = field(default_factory=list, repr=False)

    @property
    def qualified_table(self) -> str:
        return f"{self.schema_name}.{self.names.table}"

    @property
    def qualified_sequence(self) -> str:
        return f"{self.schema_name}.{self.names.sequence}"

    @property
    def partition_names(self) -> list[str]:
        return [partition.name for partition in self.names.partitions]


def provision_fact_table(
    connection: Connection,
    table_name: str,
    disease_code: Optional[str] = None,
    *,
    schema_name: str = "public",
    baseline_year: int = 2024,
    max_identifier_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
) -> ProvisionResult:
    """
    Create the fact table, its sequence, constraints, index and partitions.

    All statements run on ``connection``; the caller commits or rolls back the
    surrounding transaction so a failure never leaves a partial table behind.

    Raises:
        InvalidIdentifierError: before any DDL when an identifier is rejected.
        FactTableProvisioningError: when the database rejects a statement.
    """
    table, code = normalize_fact_table_target(table_name, disease_code, max_identifier_length)
    schema = normalize_schema_name(schema_name, max_identifier_length)
    names = build_fact_table_names(table, baseline_year, max_identifier_length)

    dialect_name = connection.dialect.name
    if dialect_name != "postgresql":
        raise FactTableProvisioningError(
            f"Partitioned fact tables require PostgreSQL (connected dialect: {dialect_name})."
        )

    statements = [
        create_mapping_table_sql(schema),
        create_sequence_sql(schema, names),
        create_fact_table_sql(schema, names),
        own_sequence_sql(schema, names),
        create_disease_index_sql(schema, names),
    ]
    statements.extend(
        create_range_partition_sql(schema, names.table, partition) for partition in names.partitions
    )
    statements.append(create_default_partition_sql(schema, names.table, names.default_partition))

    logger.info(
        "fact-table:provision:init table=%s.%s disease=%s year=%d",
        schema,
        names.table,
        code,
        baseline_year,
    )

    try:
        already_existed = _relation_exists(connection, schema, names.table)
        for statement in statements:
            logger.debug("Executing: %s", statement)
            connection.execute(text(statement))

        mapping_written = False
        if code:
            connection.execute(
                text(upsert_mapping_sql(schema)),
                {"disease_code": code, "table_name": names.table, "schema_name": schema},
            )
            mapping_written = True
    except SQLAlchemyError as exc:
        message = str(getattr(exc, "orig", exc)) or str(exc)
        logger.error(
            "fact-table:provision:failed table=%s.%s sequence=%s error=%s",
            schema,
            names.table,
            names.sequence,
            message,
        )
        raise FactTableProvisioningError(
            f"Failed to provision {schema}.{names.table} (sequence {schema}.{names.sequence}): {message}"
        ) from exc

    logger.info(
        "fact-table:provision:done table=%s.%s existed=%s mapping=%s",
        schema,
        names.table,
        already_existed,
        mapping_written,
    )
    return ProvisionResult(
        schema_name=schema,
        names=names,
        disease_code=code,
        mapping_written=mapping_written,
        already_existed=already_existed,
        statements=statements,
    )


def _relation_exists(connection: Connection, schema_name: str, table_name: str) -> bool:
    found = connection.execute(
        text("SELECT to_regclass(:qualified) IS NOT NULL"),
        {"qualified": f"{schema_name}.{table_name}"},
    ).scalar()
    return bool(found)
