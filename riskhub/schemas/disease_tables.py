from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase keys and serializes camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FactTableProvisionRequest(CamelModel):
    table_name: str = Field(..., max_length=200, description="Fact table name, e.g. d02_dengue.")
    disease_code: Optional[str] = Field(None, max_length=10, description="Disease code, e.g. D02.")
    baseline_year: Optional[int] = Field(
        None,
        ge=1900,
        le=2999,
        description="Year whose quarterly partitions are created. Defaults to the configured baseline.",
    )


class FactTableProvisionResponse(CamelModel):
    table: str
    sequence: str
    index: str
    disease_code: Optional[str] = None
    partitions: list[str]
    default_partition: str
    mapping_written: bool
    already_existed: bool


class ImportErrorItemRead(BaseModel):
    line: int
    message: str


class FactImportResponse(CamelModel):
    inserted: int
    skipped: int
    duplicates: int
    total_rows: int
    warnings: list[str]
    errors: list[ImportErrorItemRead]
    table_name: str
    disease_code: str


class FactTableMappingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    disease_code: str
    table_name: str
    schema_name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ResolvedFactTableRead(BaseModel):
    disease_code: str
    disease_name: Optional[str] = None
    schema_name: str
    table_name: str
    qualified_name: str
    source: str
