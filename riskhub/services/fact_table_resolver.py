"""Resolve a disease code to the fact table that stores its cases."""
from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from riskhub.models import DiseaseFactTable
from riskhub.services.disease_registry import disease_code_candidates
from riskhub.services.identifiers import DEFAULT_MAX_IDENTIFIER_LENGTH, is_safe_identifier

logger = getLogger(__name__)

SOURCE_MAPPING = "mapping"
SOURCE_ALIAS = "alias"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class ResolvedFactTable:
    schema_name: str
    table_name: str
    source: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


# Relations that existed before disease_fact_tables did.
STATIC_FACT_TABLES: dict[str, tuple[str, str]] = {
    "D01": ("public", "d01_influenza"),
}


def lookup_active_mapping(session: Session, disease_code: Optional[str]) -> Optional[DiseaseFactTable]:
    candidates = disease_code_candidates(disease_code)
    if not candidates:
        return None
    stmt = (
        select(DiseaseFactTable)
        .where(DiseaseFactTable.is_active.is_(True))
        .where(DiseaseFactTable.disease_code.in_(candidates))
        .order_by(DiseaseFactTable.updated_at.desc())
        .limit(1)
    )
    return session.execute(stmt).scalars().first()


def resolve_fact_table(
    session: Session,
    disease_code: Optional[str],
    *,
    default_table: str = "d01_influenza",
    default_schema: str = "public",
    max_identifier_length: int = DEFAULT_MAX_IDENTIFIER_LENGTH,
) -> ResolvedFactTable:
    """
    Return the active mapped table for ``disease_code``.

    Unknown codes, inactive mappings and mappings whose names fail validation
    fall back to the static alias table and finally to ``default_table``;
    callers always get a relation to query.
    """
    mapping = lookup_active_mapping(session, disease_code)
    if mapping is not None:
        schema_name = (mapping.schema_name or default_schema).strip()
        table_name = (mapping.table_name or "").strip()
        if is_safe_identifier(schema_name, max_identifier_length) and is_safe_identifier(
            table_name, max_identifier_length
        ):
            return ResolvedFactTable(schema_name=schema_name, table_name=table_name, source=SOURCE_MAPPING)
        logger.warning(
            "fact-table:resolve:unsafe-mapping disease=%s schema=%r table=%r",
            mapping.disease_code,
            schema_name,
            table_name,
        )

    for candidate in disease_code_candidates(disease_code):
        alias = STATIC_FACT_TABLES.get(candidate)
        if alias:
            return ResolvedFactTable(schema_name=alias[0], table_name=alias[1], source=SOURCE_ALIAS)

    return ResolvedFactTable(schema_name=default_schema, table_name=default_table, source=SOURCE_FALLBACK)
