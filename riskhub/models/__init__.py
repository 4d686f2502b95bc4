from riskhub.models.entities import Disease, DiseaseFactTable, TimestampMixin

__all__ = [
    "Disease",
    "DiseaseFactTable",
    "TimestampMixin",
]
