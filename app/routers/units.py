import shutil
from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import Unit, UnitStatus
from app.schemas import UnitOut, UnitUpsert
from app.services.registry import upsert_unit
from app.services.registry_import import import_units_from_excel, preview_units_from_excel

router = APIRouter()


@router.get("/", response_model=list[UnitOut])
async def unit_list(
    q: str = Query("", alias="q"),
    status: UnitStatus | None = Query(None),
    db: Session = Depends(get_db),
):
    query = db.query(Unit)
    if q:
        search = f"%{q}%"
        query = query.filter(Unit.unit_number.ilike(search) | Unit.owner_name.ilike(search))
    if status:
        query = query.filter(Unit.status == status)
    return [UnitOut.model_validate(u) for u in query.order_by(Unit.unit_number).all()]


@router.put("/", response_model=UnitOut)
async def unit_upsert(data: UnitUpsert, db: Session = Depends(get_db)):
    return UnitOut.model_validate(upsert_unit(db, **data.model_dump()))


def _save_upload(file: UploadFile):
    if not file.filename.endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="Upload an .xlsx workbook")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    dest = settings.upload_dir / "excel" / f"{timestamp}_{file.filename}"
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(dest, "wb") as f:
        shutil.copyfileobj(file.file, f)
    return dest


@router.post("/import/preview")
async def unit_import_preview(file: UploadFile = File(...)):
    """Parse the registry workbook without saving anything."""
    dest = _save_upload(file)
    preview = preview_units_from_excel(str(dest))
    return {
        "filename": file.filename,
        "rows": [{**r, "status": r["status"].value} for r in preview["rows"]],
        "errors": preview["errors"],
    }


@router.post("/import")
async def unit_import(file: UploadFile = File(...), db: Session = Depends(get_db)):
    dest = _save_upload(file)
    return import_units_from_excel(db, str(dest))
