"""Disease registry lookups.

Display names are resolved through an ordered list of lookup strategies.
Deployments have carried several column layouts for the ``diseases`` table
over time, so each strategy is tried in turn and a failure in one (missing
column, missing table) is isolated and treated as "not found".
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from logging import getLogger
from typing import Callable, Optional, Sequence, Union

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from riskhub.models import Disease

logger = getLogger(__name__)


@dataclass(frozen=True)
class Found:
    name: str


@dataclass(frozen=True)
class NotFound:
    def __bool__(self) -> bool:
        return False


NOT_FOUND = NotFound()
DiseaseName = Union[Found, NotFound]
LookupStrategy = Callable[[Session, str], DiseaseName]


def _first_name(*candidates: Optional[str]) -> DiseaseName:
    for candidate in candidates:
        cleaned = (candidate or "").strip()
        if cleaned:
            return Found(cleaned)
    return NOT_FOUND


def _lookup_registry_columns(session: Session, code: str) -> DiseaseName:
    disease = session.get(Disease, code)
    if disease is None:
        return NOT_FOUND
    return _first_name(disease.name_th, disease.name_en)


def _lookup_legacy_columns(session: Session, code: str) -> DiseaseName:
    row = session.execute(
        text(
            "SELECT disease_name_th, disease_name_en FROM diseases WHERE disease_code = :code"
        ),
        {"code": code},
    ).first()
    if row is None:
        return NOT_FOUND
    return _first_name(row[0], row[1])


def _lookup_coalesced_name(session: Session, code: str) -> DiseaseName:
    stmt = (
        select(func.coalesce(Disease.name_th, Disease.name_en))
        .where(func.upper(Disease.code) == code.upper())
        .limit(1)
    )
    return _first_name(session.execute(stmt).scalar())


DEFAULT_STRATEGIES: tuple[LookupStrategy, ...] = (
    _lookup_registry_columns,
    _lookup_legacy_columns,
    _lookup_coalesced_name,
)


def run_strategies(
    session: Session,
    code: str,
    strategies: Sequence[LookupStrategy],
) -> DiseaseName:
    for strategy in strategies:
        try:
            with session.begin_nested():
                result = strategy(session, code)
        except SQLAlchemyError as exc:
            logger.debug("disease-registry:strategy-failed strategy=%s error=%s", strategy.__name__, exc)
            continue
        if isinstance(result, Found):
            return result
    return NOT_FOUND


def name_for(
    session: Session,
    code: str,
    strategies: Sequence[LookupStrategy] = DEFAULT_STRATEGIES,
) -> DiseaseName:
    normalized = (code or "").strip()
    if not normalized:
        return NOT_FOUND
    return run_strategies(session, normalized, strategies)


def disease_exists(session: Session, code: str) -> bool:
    return session.get(Disease, code) is not None


def disease_code_candidates(raw: Optional[str]) -> list[str]:
    """Spellings a caller may use for one disease code (``D1``, ``d01``, ``01``, ``1``)."""
    value = (raw or "").strip()
    if not value:
        return []

    candidates: list[str] = []

    def add(candidate: str) -> None:
        if candidate and candidate not in candidates:
            candidates.append(candidate)

    add(value.upper())
    add(value)
    add(value.lower())

    digits: Optional[str] = None
    match = re.match(r"^[dD](\d+)$", value)
    if match:
        digits = match.group(1)
    elif value.isdigit():
        digits = value

    if digits:
        padded = str(int(digits)).zfill(2)
        add(f"D{padded}")
        add(f"d{padded}")
        add(padded)
    return candidates
