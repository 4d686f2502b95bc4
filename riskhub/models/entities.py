from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from riskhub.database import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Disease(Base):
    __tablename__ = "diseases"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name_th: Mapped[str] = mapped_column(String(255), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    fact_table: Mapped[Optional["DiseaseFactTable"]] = relationship(
        "DiseaseFactTable",
        back_populates="disease",
        uselist=False,
        passive_deletes="all",
    )


class DiseaseFactTable(Base, TimestampMixin):
    __tablename__ = "disease_fact_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    disease_code: Mapped[str] = mapped_column(
        String(10),
        ForeignKey("diseases.code", ondelete="RESTRICT", onupdate="CASCADE"),
        nullable=False,
        unique=True,
    )
    table_name: Mapped[str] = mapped_column(String(63), nullable=False)
    schema_name: Mapped[str] = mapped_column(String(63), nullable=False, default="public")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    disease: Mapped[Disease] = relationship("Disease", back_populates="fact_table")
