"""
Snapshots of the host-owned registries handed to the election engine.
The engine never reads these tables itself; callers take a snapshot per call.
"""
from __future__ import annotations

from sqlalchemy.orm import Session

from app.config import settings
from app.models.administration import BuildingInfo, GoverningDocument
from app.models.unit import Unit
from app.schemas import GoverningDocumentRef, RegistryUnit


def registry_snapshot(db: Session) -> list[RegistryUnit]:
    units = db.query(Unit).order_by(Unit.unit_number).all()
    return [
        RegistryUnit(
            unit_number=u.unit_number,
            owner=u.owner_name,
            voting_pct=u.voting_pct or 0.0,
            status=u.status,
        )
        for u in units
    ]


def registry_unit(db: Session, unit_number: str) -> RegistryUnit | None:
    unit = db.query(Unit).filter_by(unit_number=unit_number.strip()).first()
    if unit is None:
        return None
    return RegistryUnit(
        unit_number=unit.unit_number,
        owner=unit.owner_name,
        voting_pct=unit.voting_pct or 0.0,
        status=unit.status,
    )


def governing_documents(db: Session) -> list[GoverningDocumentRef]:
    docs = db.query(GoverningDocument).order_by(GoverningDocument.name).all()
    return [GoverningDocumentRef(name=d.name, status=d.status) for d in docs]


def building_jurisdiction(db: Session) -> str:
    info = db.query(BuildingInfo).first()
    if info and info.jurisdiction:
        return info.jurisdiction
    return settings.default_jurisdiction


def upsert_unit(db: Session, *, unit_number: str, voting_pct: float, status, owner_name: str | None = None) -> Unit:
    unit = db.query(Unit).filter_by(unit_number=unit_number.strip()).first()
    if unit is None:
        unit = Unit(unit_number=unit_number.strip())
        db.add(unit)
    unit.owner_name = owner_name
    unit.voting_pct = voting_pct
    unit.status = status
    db.commit()
    return unit
