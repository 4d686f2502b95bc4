"""Guarantee a catch-all partition exists before bulk writes."""
from __future__ import annotations

from logging import getLogger
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from riskhub.services.fact_table_schema import create_default_partition_sql, default_partition_name
from riskhub.services.identifiers import DEFAULT_MAX_IDENTIFIER_LENGTH

logger = getLogger(__name__)

_RELKIND_SQL = text(
    """
    SELECT c.oid, c.relkind
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = :schema_name AND c.relname = :table_name
    """
)

_DEFAULT_CHILD_SQL = text(
    """
    SELECT child.relname
    FROM pg_catalog.pg_inherits i
    JOIN pg_catalog.pg_class child ON child.oid = i.inhrelid
    WHERE i.inhparent = :parent_oid
      AND pg_catalog.pg_get_expr(child.relpartbound, child.oid) = 'DEFAULT'
    LIMIT 1
    """
)


def ensure_default_partition(
    connection: Connection,
    table_name: str,
    *,
    schema_name: Optional[str] = "public",
    max_identifier_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
) -> bool:
    """
    Create ``{table}_default`` when ``table_name`` is partitioned and has no default partition.

    Must run inside the same transaction as the writes that follow it. Returns
    True only when a partition was created.
    """
    if connection.dialect.name != "postgresql":
        return False

    row = connection.execute(
        _RELKIND_SQL, {"schema_name": schema_name or "public", "table_name": table_name}
    ).first()
    if row is None:
        return False

    parent_oid, relkind = row[0], row[1]
    if isinstance(relkind, bytes):
        relkind = relkind.decode()
    if relkind != "p":
        return False

    existing = connection.execute(_DEFAULT_CHILD_SQL, {"parent_oid": parent_oid}).scalar()
    if existing:
        return False

    partition_name = default_partition_name(table_name, max_identifier_length)
    connection.execute(text(create_default_partition_sql(schema_name, table_name, partition_name)))
    logger.info(
        "fact-table:default-partition:created table=%s.%s partition=%s",
        schema_name,
        table_name,
        partition_name,
    )
    return True
