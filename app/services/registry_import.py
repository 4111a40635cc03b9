"""
Excel import of the ownership registry (units and their voting weight).

Column layout (0-indexed), first row is a header:
  A (0) = Unit number ("1098/115" is read as 115)
  B (1) = Owner name
  C (2) = Voting weight, in percent of the building; a column of fractions
          summing to 1 is scaled to percent
  D (3) = Status (occupied / vacant), empty means occupied
"""
from __future__ import annotations

from openpyxl import load_workbook
from sqlalchemy.orm import Session

from app.models.unit import Unit, UnitStatus

VACANT_VALUES = {"VACANT", "EMPTY", "UNOCCUPIED", "V"}


def _cell(row: tuple, idx: int) -> str | None:
    """Safely get cell value as stripped string, or None."""
    if idx is None or idx >= len(row) or row[idx] is None:
        return None
    val = str(row[idx]).strip()
    return val if val else None


def _cell_numeric(row: tuple, idx: int) -> float | None:
    raw = _cell(row, idx)
    if raw is None:
        return None
    try:
        return float(raw.replace(",", ".").rstrip("%"))
    except (ValueError, TypeError):
        return None


def _parse_unit_number(raw: str) -> str:
    if "/" in raw:
        raw = raw.split("/")[-1].strip()
    try:
        num = float(raw)
    except ValueError:
        return raw
    return str(int(num)) if num == int(num) else raw


def _parse_status(raw: str | None) -> UnitStatus:
    if raw and raw.strip().upper() in VACANT_VALUES:
        return UnitStatus.VACANT
    return UnitStatus.OCCUPIED


def preview_units_from_excel(file_path: str) -> dict:
    """Parse the registry workbook without touching the database."""
    wb = load_workbook(file_path, read_only=True, data_only=True)
    ws = wb.active

    rows = []
    errors = []
    for row_idx, row in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
        unit_raw = _cell(row, 0)
        if not unit_raw:
            continue
        weight = _cell_numeric(row, 2)
        if weight is None or weight < 0:
            errors.append({"row": row_idx, "unit_number": unit_raw, "reason": "Missing or invalid voting weight"})
            continue
        rows.append({
            "row": row_idx,
            "unit_number": _parse_unit_number(unit_raw),
            "owner_name": _cell(row, 1),
            "voting_pct": weight,
            "status": _parse_status(_cell(row, 3)),
        })
    wb.close()

    total = sum(r["voting_pct"] for r in rows)
    if rows and 0 < total <= 1.0001:
        for r in rows:
            r["voting_pct"] = round(r["voting_pct"] * 100, 6)

    return {"rows": rows, "errors": errors}


def import_units_from_excel(db: Session, file_path: str) -> dict:
    preview = preview_units_from_excel(file_path)

    created = 0
    updated = 0
    existing = {u.unit_number: u for u in db.query(Unit).all()}
    for entry in preview["rows"]:
        unit = existing.get(entry["unit_number"])
        if unit is None:
            unit = Unit(unit_number=entry["unit_number"])
            db.add(unit)
            existing[unit.unit_number] = unit
            created += 1
        else:
            updated += 1
        unit.owner_name = entry["owner_name"]
        unit.voting_pct = entry["voting_pct"]
        unit.status = entry["status"]

    db.commit()
    return {
        "rows_total": len(preview["rows"]) + len(preview["errors"]),
        "created": created,
        "updated": updated,
        "errors": preview["errors"],
    }
