from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from riskhub.config import Settings, get_settings
from riskhub.database import get_db
from riskhub.models import DiseaseFactTable
from riskhub.schemas import (
    FactImportResponse,
    FactTableMappingRead,
    FactTableProvisionRequest,
    FactTableProvisionResponse,
    ResolvedFactTableRead,
)
from riskhub.security import require_admin
from riskhub.services.disease_registry import disease_code_candidates, disease_exists, name_for
from riskhub.services.fact_import import (
    FactImportError,
    NoValidRowsError,
    PayloadTooLargeError,
    ValidationRejectedError,
    execute_fact_import,
    prepare_fact_import,
)
from riskhub.services.fact_table_provisioner import FactTableProvisioningError, provision_fact_table
from riskhub.services.fact_table_resolver import lookup_active_mapping, resolve_fact_table
from riskhub.services.identifiers import (
    DISEASE_CODE_PATTERN,
    InvalidIdentifierError,
    normalize_fact_table_target,
)

logger = logging.getLogger(__name__)

admin_router = APIRouter(
    prefix="/admin/disease-tables",
    tags=["Disease Tables"],
    dependencies=[Depends(require_admin)],
)
router = APIRouter(prefix="/disease-tables", tags=["Disease Tables"])

_IMPORT_ERROR_STATUS = {
    PayloadTooLargeError: 413,
    ValidationRejectedError: 422,
    NoValidRowsError: 422,
}


def _storage_message(exc: Exception) -> str:
    return str(getattr(exc, "orig", exc)) or str(exc)


def _ensure_known_disease(db: Session, disease_code: Optional[str]) -> None:
    if disease_code and not disease_exists(db, disease_code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown disease code '{disease_code}'.",
        )


@admin_router.get("", response_model=list[FactTableMappingRead])
def list_fact_table_mappings(db: Session = Depends(get_db)) -> list[DiseaseFactTable]:
    stmt = (
        select(DiseaseFactTable)
        .where(DiseaseFactTable.is_active.is_(True))
        .order_by(DiseaseFactTable.disease_code)
    )
    return list(db.execute(stmt).scalars().all())


@admin_router.post("", response_model=FactTableProvisionResponse)
def create_fact_table(
    payload: FactTableProvisionRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> FactTableProvisionResponse:
    try:
        table_name, disease_code = normalize_fact_table_target(
            payload.table_name,
            payload.disease_code,
            settings.max_identifier_length,
        )
    except InvalidIdentifierError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        _ensure_known_disease(db, disease_code)
        result = provision_fact_table(
            db.connection(),
            table_name,
            disease_code,
            schema_name=settings.fact_schema,
            baseline_year=payload.baseline_year or settings.fact_baseline_year,
            max_identifier_length=settings.max_identifier_length,
        )
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except InvalidIdentifierError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (FactTableProvisioningError, SQLAlchemyError) as exc:
        db.rollback()
        logger.exception("Failed to provision fact table '%s'", table_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Unable to create fact table.", "detail": _storage_message(exc)},
        ) from exc

    return FactTableProvisionResponse(
        table=result.qualified_table,
        sequence=result.qualified_sequence,
        index=result.names.index,
        disease_code=result.disease_code,
        partitions=result.partition_names,
        default_partition=result.names.default_partition,
        mapping_written=result.mapping_written,
        already_existed=result.already_existed,
    )


@admin_router.post("/import", response_model=FactImportResponse, status_code=status.HTTP_201_CREATED)
async def import_fact_table_rows(
    file: UploadFile = File(...),
    disease_code: Optional[str] = Form(None, alias="diseaseCode"),
    table_name: Optional[str] = Form(None, alias="tableName"),
    skip_bad_rows: Optional[bool] = Form(None, alias="skipBadRows"),
    disease_code_snake: Optional[str] = Form(None, alias="disease_code"),
    table_name_snake: Optional[str] = Form(None, alias="table_name"),
    skip_bad_rows_snake: Optional[bool] = Form(None, alias="skip_bad_rows"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> FactImportResponse:
    # camelCase fields win; snake_case spellings are accepted as well.
    disease_code = disease_code if disease_code is not None else disease_code_snake
    table_name = table_name if table_name is not None else table_name_snake
    if skip_bad_rows is None:
        skip_bad_rows = skip_bad_rows_snake if skip_bad_rows_snake is not None else True

    max_bytes = settings.max_upload_bytes
    if file.size is not None and file.size > max_bytes:
        await file.close()
        raise HTTPException(
            status_code=413,
            detail={"message": f"Uploaded file exceeds the {settings.admin_import_max_mb} MB size limit."},
        )

    data = await file.read()
    await file.close()

    logger.info(
        "fact-import:init file=%s bytes=%d table=%s disease=%s skip_bad_rows=%s",
        file.filename,
        len(data),
        table_name,
        disease_code,
        skip_bad_rows,
    )

    try:
        prepared = prepare_fact_import(
            data,
            filename=file.filename,
            disease_code=disease_code,
            table_name=table_name,
            skip_bad_rows=skip_bad_rows,
            max_upload_bytes=max_bytes,
            max_identifier_length=settings.max_identifier_length,
            max_error_return=settings.import_max_error_return,
        )
    except InvalidIdentifierError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"message": str(exc)}) from exc
    except FactImportError as exc:
        raise HTTPException(
            status_code=_IMPORT_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
            detail={"message": exc.message, "errors": [asdict(item) for item in exc.errors]},
        ) from exc

    try:
        _ensure_known_disease(db, prepared.disease_code)
        mapping = lookup_active_mapping(db, prepared.disease_code)
        result = execute_fact_import(
            db.connection(),
            prepared,
            schema_name=settings.fact_schema,
            batch_size=settings.import_batch_size,
            max_identifier_length=settings.max_identifier_length,
        )
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except (SQLAlchemyError, NotImplementedError) as exc:
        db.rollback()
        logger.exception("Import into '%s' failed; rolled back", prepared.table_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Import failed.", "detail": _storage_message(exc)},
        ) from exc

    warnings = list(result.warnings)
    if mapping is not None and mapping.table_name != prepared.table_name:
        warnings.append(
            f"Disease {prepared.disease_code} is mapped to {mapping.schema_name}.{mapping.table_name},"
            f" not {prepared.table_name}."
        )

    logger.info(
        "fact-import:done table=%s inserted=%d skipped=%d duplicates=%d total=%d",
        result.table_name,
        result.inserted,
        result.skipped,
        result.duplicates,
        result.total_rows,
    )
    return FactImportResponse(
        inserted=result.inserted,
        skipped=result.skipped,
        duplicates=result.duplicates,
        total_rows=result.total_rows,
        warnings=warnings,
        errors=[asdict(item) for item in result.errors],
        table_name=result.table_name,
        disease_code=result.disease_code,
    )


@router.get("/resolve", response_model=ResolvedFactTableRead)
def resolve_disease_table(
    disease: str = Query(..., min_length=1, max_length=50),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ResolvedFactTableRead:
    resolved = resolve_fact_table(
        db,
        disease,
        default_table=settings.default_fact_table,
        default_schema=settings.fact_schema,
        max_identifier_length=settings.max_identifier_length,
    )
    candidates = disease_code_candidates(disease)
    disease_code = next(
        (candidate for candidate in candidates if DISEASE_CODE_PATTERN.match(candidate)),
        disease.strip().upper(),
    )
    disease_name = name_for(db, disease_code)

    return ResolvedFactTableRead(
        disease_code=disease_code,
        disease_name=disease_name.name if disease_name else None,
        schema_name=resolved.schema_name,
        table_name=resolved.table_name,
        qualified_name=resolved.qualified_name,
        source=resolved.source,
    )
