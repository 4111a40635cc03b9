from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse, Response
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models.election import ElectionStatus
from app.schemas import (
    ActorRequest, AttachmentCreate, BallotItemCreate, BallotItemUpdate, BallotRecord,
    CandidateCreate, CommentCreate, ComplianceCheckUpdate, ComplianceFinding, ComplianceRefresh,
    ElectionCreate, ElectionOut, ElectionResults, ElectionSummary, ElectionUpdate,
    LinkRequest, ResolutionCreate,
)
from app.services import election_ledger as ledger
from app.services.election_compliance import ComplianceContext, generate_compliance_checks
from app.services.registry import (
    building_jurisdiction, governing_documents, registry_snapshot, registry_unit,
)
from app.services.results_export import export_results_to_excel

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/", response_model=list[ElectionSummary])
async def election_list(
    status: ElectionStatus | None = Query(None),
    db: Session = Depends(get_db),
):
    return [ElectionSummary.model_validate(e) for e in ledger.list_elections(db, status)]


@router.post("/", response_model=ElectionOut, status_code=201)
async def election_create(data: ElectionCreate, db: Session = Depends(get_db)):
    election = ledger.create_election(db, **data.model_dump())
    return ElectionOut.from_election(election)


@router.get("/{election_id}", response_model=ElectionOut)
async def election_detail(election_id: int, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.get_election(db, election_id))


@router.patch("/{election_id}", response_model=ElectionOut)
async def election_update(election_id: int, data: ElectionUpdate, db: Session = Depends(get_db)):
    changes = data.model_dump(exclude_unset=True, exclude={"actor"})
    election = ledger.update_election(db, election_id, data.actor, **changes)
    return ElectionOut.from_election(election)


@router.delete("/{election_id}", status_code=204)
async def election_delete(
    election_id: int,
    actor: str = Query("Board"),
    db: Session = Depends(get_db),
):
    ledger.delete_election(db, election_id, actor)
    return Response(status_code=204)


# ── Ballot items ──

@router.post("/{election_id}/items", response_model=ElectionOut, status_code=201)
async def ballot_item_add(election_id: int, data: BallotItemCreate, db: Session = Depends(get_db)):
    fields = data.model_dump(exclude={"candidates"})
    candidates = [c.model_dump(exclude={"actor"}) for c in data.candidates]
    election = ledger.add_ballot_item(db, election_id, candidates=candidates, **fields)
    return ElectionOut.from_election(election)


@router.patch("/{election_id}/items/{item_id}", response_model=ElectionOut)
async def ballot_item_update(
    election_id: int, item_id: int, data: BallotItemUpdate, db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True, exclude={"actor"})
    election = ledger.update_ballot_item(db, election_id, item_id, data.actor, **changes)
    return ElectionOut.from_election(election)


@router.delete("/{election_id}/items/{item_id}", response_model=ElectionOut)
async def ballot_item_remove(
    election_id: int,
    item_id: int,
    actor: str = Query("Board"),
    db: Session = Depends(get_db),
):
    return ElectionOut.from_election(ledger.remove_ballot_item(db, election_id, item_id, actor))


@router.post("/{election_id}/items/{item_id}/candidates", response_model=ElectionOut, status_code=201)
async def candidate_add(
    election_id: int, item_id: int, data: CandidateCreate, db: Session = Depends(get_db),
):
    election = ledger.add_candidate(db, election_id, item_id, **data.model_dump())
    return ElectionOut.from_election(election)


@router.delete("/{election_id}/items/{item_id}/candidates/{candidate_id}", response_model=ElectionOut)
async def candidate_remove(
    election_id: int,
    item_id: int,
    candidate_id: int,
    actor: str = Query("Board"),
    db: Session = Depends(get_db),
):
    election = ledger.remove_candidate(db, election_id, item_id, candidate_id, actor)
    return ElectionOut.from_election(election)


@router.post("/{election_id}/items/{item_id}/attachments", response_model=ElectionOut, status_code=201)
async def attachment_add(
    election_id: int, item_id: int, data: AttachmentCreate, db: Session = Depends(get_db),
):
    election = ledger.add_ballot_attachment(db, election_id, item_id, **data.model_dump())
    return ElectionOut.from_election(election)


@router.delete("/{election_id}/items/{item_id}/attachments/{attachment_id}", response_model=ElectionOut)
async def attachment_remove(
    election_id: int,
    item_id: int,
    attachment_id: int,
    actor: str = Query("Board"),
    db: Session = Depends(get_db),
):
    election = ledger.remove_ballot_attachment(db, election_id, item_id, attachment_id, actor)
    return ElectionOut.from_election(election)


# ── Lifecycle ──

@router.post("/{election_id}/open", response_model=ElectionOut)
async def election_open(election_id: int, data: ActorRequest, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.open_election(db, election_id, data.actor))


@router.post("/{election_id}/close", response_model=ElectionOut)
async def election_close(election_id: int, data: ActorRequest, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.close_election(db, election_id, data.actor))


@router.post("/{election_id}/certify", response_model=ElectionOut)
async def election_certify(election_id: int, data: ActorRequest, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.certify_election(db, election_id, data.actor))


# ── Ballots ──

@router.post("/{election_id}/ballots", response_model=ElectionOut, status_code=201)
async def ballot_record(election_id: int, data: BallotRecord, db: Session = Depends(get_db)):
    unit = registry_unit(db, data.unit_number)
    election = ledger.record_ballot(db, election_id, unit, data, data.recorded_by)
    return ElectionOut.from_election(election)


@router.delete("/{election_id}/ballots/{ballot_id}", response_model=ElectionOut)
async def ballot_remove(
    election_id: int,
    ballot_id: int,
    actor: str = Query("Board"),
    db: Session = Depends(get_db),
):
    return ElectionOut.from_election(ledger.remove_ballot(db, election_id, ballot_id, actor))


# ── Results ──

@router.get("/{election_id}/results", response_model=ElectionResults)
async def election_results(election_id: int, db: Session = Depends(get_db)):
    return ledger.get_results(db, election_id, registry_snapshot(db))


@router.get("/{election_id}/results/export")
async def election_results_export(election_id: int, db: Session = Depends(get_db)):
    election = ledger.get_election(db, election_id)
    results = ledger.get_results(db, election_id, registry_snapshot(db))

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"election_{election_id}_results_{timestamp}.xlsx"
    output_path = settings.generated_dir / "exports" / filename
    output_path.parent.mkdir(parents=True, exist_ok=True)

    export_results_to_excel(election, results, str(output_path))
    return FileResponse(str(output_path), filename=filename, media_type=XLSX_MEDIA_TYPE)


# ── Compliance ──

@router.get("/{election_id}/compliance/preview", response_model=list[ComplianceFinding])
async def compliance_preview(
    election_id: int,
    jurisdiction: str | None = Query(None),
    db: Session = Depends(get_db),
):
    """Generate findings without storing them."""
    election = ledger.get_election(db, election_id)
    return generate_compliance_checks(ComplianceContext(
        election=election,
        jurisdiction=jurisdiction or building_jurisdiction(db),
        documents=governing_documents(db),
        overrides=ledger.stored_overrides(election),
    ))


@router.post("/{election_id}/compliance/refresh", response_model=ElectionOut)
async def compliance_refresh(election_id: int, data: ComplianceRefresh, db: Session = Depends(get_db)):
    election = ledger.refresh_compliance_checks(
        db,
        election_id,
        jurisdiction=data.jurisdiction or building_jurisdiction(db),
        documents=governing_documents(db),
        actor=data.actor,
    )
    return ElectionOut.from_election(election)


@router.put("/{election_id}/compliance", response_model=ElectionOut)
async def compliance_replace(
    election_id: int,
    findings: list[ComplianceFinding],
    actor: str = Query("System"),
    db: Session = Depends(get_db),
):
    return ElectionOut.from_election(ledger.set_compliance_checks(db, election_id, findings, actor=actor))


@router.patch("/{election_id}/compliance/{check_key}", response_model=ElectionOut)
async def compliance_update(
    election_id: int, check_key: str, data: ComplianceCheckUpdate, db: Session = Depends(get_db),
):
    election = ledger.update_compliance_check(
        db, election_id, check_key, status=data.status, note=data.note, actor=data.actor,
    )
    return ElectionOut.from_election(election)


# ── Resolution, links, comments ──

@router.put("/{election_id}/resolution", response_model=ElectionOut)
async def resolution_set(election_id: int, data: ResolutionCreate, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.set_resolution(db, election_id, **data.model_dump()))


@router.post("/{election_id}/link-case", response_model=ElectionOut)
async def case_link(election_id: int, data: LinkRequest, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.link_case(db, election_id, data.target_id, data.actor))


@router.post("/{election_id}/link-meeting", response_model=ElectionOut)
async def meeting_link(election_id: int, data: LinkRequest, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.link_meeting(db, election_id, data.target_id, data.actor))


@router.post("/{election_id}/comments", response_model=ElectionOut, status_code=201)
async def comment_add(election_id: int, data: CommentCreate, db: Session = Depends(get_db)):
    return ElectionOut.from_election(ledger.add_comment(db, election_id, **data.model_dump()))
