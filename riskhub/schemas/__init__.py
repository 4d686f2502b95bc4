from riskhub.schemas.disease_tables import (
    FactImportResponse,
    FactTableMappingRead,
    FactTableProvisionRequest,
    FactTableProvisionResponse,
    ImportErrorItemRead,
    ResolvedFactTableRead,
)

__all__ = [
    "FactImportResponse",
    "FactTableMappingRead",
    "FactTableProvisionRequest",
    "FactTableProvisionResponse",
    "ImportErrorItemRead",
    "ResolvedFactTableRead",
]
