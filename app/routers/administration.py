from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import BuildingInfo, GoverningDocument
from app.schemas import BuildingInfoOut, BuildingInfoUpdate, DocumentCreate, DocumentOut
from app.services.election_errors import NotFoundError

router = APIRouter()


def _get_or_create_building_info(db: Session) -> BuildingInfo:
    info = db.query(BuildingInfo).first()
    if not info:
        info = BuildingInfo()
        db.add(info)
        db.flush()
    return info


@router.get("/", response_model=BuildingInfoOut)
async def building_info(db: Session = Depends(get_db)):
    info = _get_or_create_building_info(db)
    db.commit()
    return BuildingInfoOut.model_validate(info)


@router.put("/", response_model=BuildingInfoOut)
async def building_info_update(data: BuildingInfoUpdate, db: Session = Depends(get_db)):
    info = _get_or_create_building_info(db)
    for key, value in data.model_dump(exclude_unset=True).items():
        if key == "jurisdiction" and value:
            value = value.strip().upper()
        setattr(info, key, value)
    db.commit()
    return BuildingInfoOut.model_validate(info)


@router.get("/documents", response_model=list[DocumentOut])
async def document_list(db: Session = Depends(get_db)):
    docs = db.query(GoverningDocument).order_by(GoverningDocument.name).all()
    return [DocumentOut.model_validate(d) for d in docs]


@router.post("/documents", response_model=DocumentOut, status_code=201)
async def document_add(data: DocumentCreate, db: Session = Depends(get_db)):
    doc = GoverningDocument(**data.model_dump())
    db.add(doc)
    db.commit()
    return DocumentOut.model_validate(doc)


@router.put("/documents/{doc_id}", response_model=DocumentOut)
async def document_update(doc_id: int, data: DocumentCreate, db: Session = Depends(get_db)):
    doc = db.get(GoverningDocument, doc_id)
    if doc is None:
        raise NotFoundError(f"Governing document {doc_id} not found")
    for key, value in data.model_dump().items():
        setattr(doc, key, value)
    db.commit()
    return DocumentOut.model_validate(doc)


@router.delete("/documents/{doc_id}", status_code=204)
async def document_delete(doc_id: int, db: Session = Depends(get_db)):
    doc = db.get(GoverningDocument, doc_id)
    if doc is None:
        raise NotFoundError(f"Governing document {doc_id} not found")
    db.delete(doc)
    db.commit()
    return Response(status_code=204)
