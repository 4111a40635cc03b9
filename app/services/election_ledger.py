"""
Election ledger: the lifecycle state machine and every write to an election.

Each command loads one election by id, checks its preconditions before
touching anything, applies the change, appends a timeline event and commits.
A rejected command raises a typed ``ElectionError`` and leaves the stored
election unchanged.

Lifecycle: draft -> open -> closed -> certified. Drafts may be deleted;
nothing can be reopened once closed.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.election import (
    BallotItem, BallotItemAttachment, BallotItemType, Candidate, ComplianceCheck,
    Election, ElectionComment, ElectionStatus, ElectionType, Resolution, TimelineEvent,
    TimelineEventType,
)
from app.schemas import (
    BallotPayload, ComplianceFinding, ComplianceOverride, ElectionResults, RegistryUnit,
)
from app.services.ballot_validator import validate_ballot
from app.services.election_compliance import ComplianceContext, generate_compliance_checks
from app.services.election_errors import (
    DuplicateBallotError, ElectionError, InvalidDefinitionError, NotFoundError,
    PreconditionError,
)
from app.services.election_results import compute_results
from app.services.jurisdiction_rules import JurisdictionRules

logger = logging.getLogger(__name__)

# Fields that change what voters are asked; frozen once voting opens
_BALLOT_SHAPING_FIELDS = {"title", "type", "quorum_required", "description", "legal_ref"}
# Scheduling fields may still be corrected while voting is open
_SCHEDULE_FIELDS = {"notice_date", "scheduled_close_date"}
_UPDATABLE_FIELDS = _BALLOT_SHAPING_FIELDS | _SCHEDULE_FIELDS | {"notes"}
# Columns that cannot be cleared once set
_REQUIRED_FIELDS = {"title", "type", "quorum_required"}
_ITEM_UPDATABLE_FIELDS = {
    "title", "description", "rationale", "max_selections",
    "required_threshold", "legal_ref", "financial_impact",
}

_locks: dict[int, threading.RLock] = {}
_locks_guard = threading.Lock()


def _election_lock(election_id: int) -> threading.RLock:
    with _locks_guard:
        return _locks.setdefault(election_id, threading.RLock())


@contextmanager
def _mutation(db: Session, election_id: int):
    """Serialize writers per election and commit or roll back as one unit."""
    with _election_lock(election_id):
        election = get_election(db, election_id)
        try:
            yield election
            db.commit()
        except Exception:
            db.rollback()
            raise


def _log_event(election: Election, event_type: TimelineEventType, description: str, actor: str) -> None:
    election.timeline.append(TimelineEvent(
        type=event_type,
        description=description,
        actor=actor,
        date=datetime.utcnow(),
    ))


def _require_status(election: Election, allowed: tuple, action: str) -> None:
    if election.status not in allowed:
        raise PreconditionError(
            f"Cannot {action}: election {election.id} is {election.status.value}"
        )


def _require_draft(election: Election, action: str) -> None:
    _require_status(election, (ElectionStatus.DRAFT,), action)


def _require_not_certified(election: Election, action: str) -> None:
    _require_status(
        election, (ElectionStatus.DRAFT, ElectionStatus.OPEN, ElectionStatus.CLOSED), action,
    )


def _check_quorum(quorum: float) -> None:
    if not 0 <= quorum <= 100:
        raise InvalidDefinitionError(f"Quorum must be between 0 and 100 percent, got {quorum}")


def _check_threshold(threshold: float) -> None:
    if not 0 < threshold <= 100:
        raise InvalidDefinitionError(f"Required threshold must be above 0 and at most 100, got {threshold}")


def _check_max_selections(max_selections: int | None, candidate_count: int) -> None:
    if max_selections is None or not 1 <= max_selections <= candidate_count:
        raise InvalidDefinitionError(
            f"Max selections must be between 1 and {candidate_count}, got {max_selections}"
        )


def _get_item(election: Election, item_id: int) -> BallotItem:
    item = election.item_by_id(item_id)
    if item is None:
        raise NotFoundError(f"Ballot item {item_id} not found in election {election.id}")
    return item


# ── Queries ──

def get_election(db: Session, election_id: int) -> Election:
    election = db.get(Election, election_id)
    if election is None:
        raise NotFoundError(f"Election {election_id} not found")
    return election


def list_elections(db: Session, status: ElectionStatus | None = None) -> list[Election]:
    q = db.query(Election)
    if status:
        q = q.filter(Election.status == status)
    return q.order_by(Election.created_at.desc(), Election.id.desc()).all()


def get_results(db: Session, election_id: int, registry: list[RegistryUnit]) -> ElectionResults:
    return compute_results(get_election(db, election_id), registry)


# ── Election definition ──

def create_election(
    db: Session,
    *,
    title: str,
    created_by: str,
    type: ElectionType = ElectionType.BOARD_ELECTION,
    quorum_required: float | None = None,
    description: str | None = None,
    legal_ref: str | None = None,
    notes: str | None = None,
    scheduled_close_date: date | None = None,
    notice_date: date | None = None,
) -> Election:
    if not title or not title.strip():
        raise InvalidDefinitionError("Title required")
    quorum = settings.default_quorum_pct if quorum_required is None else quorum_required
    _check_quorum(quorum)

    election = Election(
        title=title.strip(),
        type=type,
        status=ElectionStatus.DRAFT,
        description=description,
        legal_ref=legal_ref,
        notes=notes,
        quorum_required=quorum,
        scheduled_close_date=scheduled_close_date,
        notice_date=notice_date,
        created_by=created_by,
        created_at=datetime.utcnow(),
    )
    _log_event(election, TimelineEventType.CREATED, f"Vote created: {election.title}", created_by)
    db.add(election)
    db.commit()
    logger.info("Election %s created by %s", election.id, created_by)
    return election


def update_election(db: Session, election_id: int, actor: str, **changes) -> Election:
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise InvalidDefinitionError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    with _mutation(db, election_id) as election:
        if set(changes) & _BALLOT_SHAPING_FIELDS:
            _require_draft(election, "change the vote definition")
        if set(changes) & _SCHEDULE_FIELDS:
            _require_status(election, (ElectionStatus.DRAFT, ElectionStatus.OPEN), "change the vote schedule")
        _require_not_certified(election, "update the vote")
        cleared = sorted(k for k in _REQUIRED_FIELDS if k in changes and changes[k] is None)
        if cleared:
            raise InvalidDefinitionError(f"Fields cannot be cleared: {', '.join(cleared)}")
        if "title" in changes:
            if not changes["title"].strip():
                raise InvalidDefinitionError("Title required")
            changes["title"] = changes["title"].strip()
        if "quorum_required" in changes:
            _check_quorum(changes["quorum_required"])

        for key, value in changes.items():
            setattr(election, key, value)
        if changes:
            _log_event(
                election, TimelineEventType.UPDATED,
                f"Vote details updated: {', '.join(sorted(changes))}", actor,
            )
    return election


def delete_election(db: Session, election_id: int, actor: str) -> None:
    with _mutation(db, election_id) as election:
        _require_draft(election, "delete the vote")
        db.delete(election)
    with _locks_guard:
        _locks.pop(election_id, None)
    logger.info("Draft election %s deleted by %s", election_id, actor)


def add_ballot_item(
    db: Session,
    election_id: int,
    *,
    title: str,
    actor: str = "Board",
    type: BallotItemType = BallotItemType.YES_NO,
    description: str | None = None,
    rationale: str | None = None,
    candidates: list | None = None,
    max_selections: int | None = None,
    required_threshold: float | None = None,
    legal_ref: str | None = None,
    financial_impact: str | None = None,
) -> Election:
    candidates = list(candidates or [])
    threshold = settings.default_threshold_pct if required_threshold is None else required_threshold

    if not title or not title.strip():
        raise InvalidDefinitionError("Ballot item title required")
    _check_threshold(threshold)
    if type == BallotItemType.YES_NO:
        if candidates:
            raise InvalidDefinitionError("Yes/no items take no candidates")
        max_selections = None
    else:
        if not candidates:
            raise InvalidDefinitionError(f"{type.value} items need at least one candidate")
        if type == BallotItemType.MULTI_CANDIDATE:
            max_selections = None
        else:
            _check_max_selections(max_selections, len(candidates))

    with _mutation(db, election_id) as election:
        _require_draft(election, "add ballot items")
        item = BallotItem(
            order=len(election.items),
            title=title.strip(),
            type=type,
            description=description,
            rationale=rationale,
            max_selections=max_selections,
            required_threshold=threshold,
            legal_ref=legal_ref,
            financial_impact=financial_impact,
            candidates=[
                Candidate(order=idx, name=c["name"], unit=c.get("unit"), bio=c.get("bio"))
                for idx, c in enumerate(candidates)
            ],
        )
        election.items.append(item)
        _log_event(election, TimelineEventType.UPDATED, f"Ballot item added: {item.title}", actor)
    return election


def update_ballot_item(
    db: Session, election_id: int, item_id: int, actor: str = "Board", **changes,
) -> Election:
    unknown = set(changes) - _ITEM_UPDATABLE_FIELDS
    if unknown:
        raise InvalidDefinitionError(f"Ballot item fields cannot be updated: {', '.join(sorted(unknown))}")

    with _mutation(db, election_id) as election:
        _require_draft(election, "edit ballot items")
        item = _get_item(election, item_id)
        if "title" in changes:
            if not (changes["title"] or "").strip():
                raise InvalidDefinitionError("Ballot item title required")
            changes["title"] = changes["title"].strip()
        if "required_threshold" in changes:
            if changes["required_threshold"] is None:
                raise InvalidDefinitionError("Required threshold cannot be cleared")
            _check_threshold(changes["required_threshold"])
        if "max_selections" in changes:
            if item.type == BallotItemType.MULTI_SELECT:
                _check_max_selections(changes["max_selections"], len(item.candidates))
            elif changes["max_selections"] is not None:
                raise InvalidDefinitionError(f'"{item.title}" is {item.type.value} and takes no max selections')

        for key, value in changes.items():
            setattr(item, key, value)
        if changes:
            _log_event(
                election, TimelineEventType.UPDATED,
                f'Ballot item "{item.title}" updated: {", ".join(sorted(changes))}', actor,
            )
    return election


def remove_ballot_item(db: Session, election_id: int, item_id: int, actor: str = "Board") -> Election:
    with _mutation(db, election_id) as election:
        _require_draft(election, "remove ballot items")
        item = _get_item(election, item_id)
        election.items.remove(item)
        for idx, remaining in enumerate(election.items):
            remaining.order = idx
        _log_event(election, TimelineEventType.UPDATED, f"Ballot item removed: {item.title}", actor)
    return election


def add_candidate(
    db: Session,
    election_id: int,
    item_id: int,
    *,
    name: str,
    unit: str | None = None,
    bio: str | None = None,
    actor: str = "Board",
) -> Election:
    if not name or not name.strip():
        raise InvalidDefinitionError("Candidate name required")
    with _mutation(db, election_id) as election:
        _require_draft(election, "add candidates")
        item = _get_item(election, item_id)
        if item.type == BallotItemType.YES_NO:
            raise InvalidDefinitionError(f'"{item.title}" is a yes/no item and takes no candidates')
        item.candidates.append(Candidate(order=len(item.candidates), name=name.strip(), unit=unit, bio=bio))
        _log_event(election, TimelineEventType.UPDATED, f'Candidate {name.strip()} added to "{item.title}"', actor)
    return election


def remove_candidate(
    db: Session, election_id: int, item_id: int, candidate_id: int, actor: str = "Board",
) -> Election:
    with _mutation(db, election_id) as election:
        _require_draft(election, "remove candidates")
        item = _get_item(election, item_id)
        candidate = next((c for c in item.candidates if c.id == candidate_id), None)
        if candidate is None:
            raise NotFoundError(f"Candidate {candidate_id} not found on ballot item {item_id}")
        remaining = len(item.candidates) - 1
        if remaining < 1:
            raise InvalidDefinitionError(f'"{item.title}" needs at least one candidate')
        if item.type == BallotItemType.MULTI_SELECT and item.max_selections > remaining:
            raise InvalidDefinitionError(
                f'"{item.title}" allows {item.max_selections} selections; lower it before removing candidates'
            )
        item.candidates.remove(candidate)
        for idx, c in enumerate(item.candidates):
            c.order = idx
        _log_event(election, TimelineEventType.UPDATED, f'Candidate {candidate.name} removed from "{item.title}"', actor)
    return election


def add_ballot_attachment(
    db: Session,
    election_id: int,
    item_id: int,
    *,
    name: str,
    uploaded_by: str,
    size: str | None = None,
    file_type: str | None = None,
) -> Election:
    with _mutation(db, election_id) as election:
        _require_not_certified(election, "attach documents")
        item = _get_item(election, item_id)
        item.attachments.append(BallotItemAttachment(
            name=name, size=size, file_type=file_type,
            uploaded_by=uploaded_by, uploaded_at=datetime.utcnow(),
        ))
        _log_event(
            election, TimelineEventType.DOCUMENT_ADDED,
            f'Document "{name}" attached to "{item.title}"', uploaded_by,
        )
    return election


def remove_ballot_attachment(
    db: Session, election_id: int, item_id: int, attachment_id: int, actor: str,
) -> Election:
    with _mutation(db, election_id) as election:
        _require_not_certified(election, "remove documents")
        item = _get_item(election, item_id)
        attachment = next((a for a in item.attachments if a.id == attachment_id), None)
        if attachment is None:
            raise NotFoundError(f"Attachment {attachment_id} not found on ballot item {item_id}")
        item.attachments.remove(attachment)
        _log_event(
            election, TimelineEventType.DOCUMENT_REMOVED,
            f'Document "{attachment.name}" removed from "{item.title}"', actor,
        )
    return election


# ── Lifecycle ──

def open_election(db: Session, election_id: int, actor: str) -> Election:
    with _mutation(db, election_id) as election:
        _require_draft(election, "open voting")
        if not election.items:
            raise PreconditionError(f"Cannot open voting: election {election.id} has no ballot items")
        election.status = ElectionStatus.OPEN
        election.opened_at = datetime.utcnow()
        _log_event(election, TimelineEventType.OPENED, "Voting opened", actor)
    logger.info("Election %s opened by %s", election_id, actor)
    return election


def close_election(db: Session, election_id: int, actor: str) -> Election:
    with _mutation(db, election_id) as election:
        _require_status(election, (ElectionStatus.OPEN,), "close voting")
        election.status = ElectionStatus.CLOSED
        election.closed_at = datetime.utcnow()
        _log_event(election, TimelineEventType.CLOSED, "Voting closed", actor)
    logger.info("Election %s closed by %s", election_id, actor)
    return election


def certify_election(db: Session, election_id: int, actor: str) -> Election:
    with _mutation(db, election_id) as election:
        _require_status(election, (ElectionStatus.CLOSED,), "certify results")
        election.status = ElectionStatus.CERTIFIED
        election.certified_at = datetime.utcnow()
        election.certified_by = actor
        _log_event(election, TimelineEventType.CERTIFIED, f"Results certified by {actor}", actor)
    logger.info("Election %s certified by %s", election_id, actor)
    return election


# ── Ballots ──

def record_ballot(
    db: Session,
    election_id: int,
    registry_unit: RegistryUnit | None,
    payload: BallotPayload,
    recorded_by: str,
) -> Election:
    with _mutation(db, election_id) as election:
        try:
            ballot = validate_ballot(election, registry_unit, payload, recorded_by)
        except ElectionError as exc:
            logger.warning("Ballot for unit %s rejected in election %s: %s", payload.unit_number, election_id, exc)
            raise
        election.ballots.append(ballot)
        if ballot.is_proxy:
            desc = f"Proxy vote recorded: Unit {ballot.unit_number} (by {ballot.proxy_voter_name or recorded_by})"
        else:
            desc = f"Ballot recorded: Unit {ballot.unit_number} via {ballot.method.value}"
        _log_event(election, TimelineEventType.BALLOT_RECORDED, desc, recorded_by)
        try:
            db.flush()
        except IntegrityError as exc:
            raise DuplicateBallotError(
                f"Unit {ballot.unit_number} has already voted in election {election_id}"
            ) from exc
    return election


def remove_ballot(db: Session, election_id: int, ballot_id: int, actor: str) -> Election:
    with _mutation(db, election_id) as election:
        _require_status(election, (ElectionStatus.OPEN,), "remove ballots")
        ballot = next((b for b in election.ballots if b.id == ballot_id), None)
        if ballot is None:
            raise NotFoundError(f"Ballot {ballot_id} not found in election {election_id}")
        election.ballots.remove(ballot)
        _log_event(election, TimelineEventType.BALLOT_REMOVED, f"Ballot removed: Unit {ballot.unit_number}", actor)
    logger.info("Ballot for unit %s removed from election %s by %s", ballot.unit_number, election_id, actor)
    return election


# ── Compliance ──

def stored_overrides(election: Election) -> dict[str, ComplianceOverride]:
    return {
        c.check_key: ComplianceOverride(status=c.status, note=c.note)
        for c in election.compliance_checks
        if c.manual_override and not c.auto_checked
    }


def set_compliance_checks(
    db: Session, election_id: int, findings: list[ComplianceFinding], actor: str = "System",
) -> Election:
    ids = [f.id for f in findings]
    repeated = sorted({i for i in ids if ids.count(i) > 1})
    if repeated:
        raise InvalidDefinitionError(f"Duplicate compliance check ids: {', '.join(repeated)}")

    with _mutation(db, election_id) as election:
        _require_not_certified(election, "update compliance checks")
        existing = {c.check_key: c for c in election.compliance_checks}
        keys = {f.id for f in findings}
        for check in list(election.compliance_checks):
            if check.check_key not in keys:
                election.compliance_checks.remove(check)
        for finding in findings:
            check = existing.get(finding.id)
            if check is None:
                check = ComplianceCheck(check_key=finding.id)
                election.compliance_checks.append(check)
            check.rule = finding.rule
            check.requirement = finding.requirement
            check.source = finding.source
            check.status = finding.status
            check.auto_checked = finding.auto_checked
            check.note = finding.note
            if finding.auto_checked:
                check.manual_override = False
            check.updated_by = actor
        _log_event(
            election, TimelineEventType.COMPLIANCE_UPDATED,
            f"Compliance checks updated ({len(findings)} findings)", actor,
        )
    return election


def update_compliance_check(
    db: Session,
    election_id: int,
    check_key: str,
    *,
    status,
    actor: str,
    note: str | None = None,
) -> Election:
    with _mutation(db, election_id) as election:
        _require_not_certified(election, "update compliance checks")
        check = next((c for c in election.compliance_checks if c.check_key == check_key), None)
        if check is None:
            raise NotFoundError(f"Compliance check {check_key} not found in election {election_id}")
        if check.auto_checked:
            raise PreconditionError(f"Compliance check {check_key} is verified automatically")
        check.status = status
        if note is not None:
            check.note = note
        check.manual_override = True
        check.updated_by = actor
        _log_event(
            election, TimelineEventType.COMPLIANCE_UPDATED,
            f"Compliance check {check_key} set to {check.status.value}", actor,
        )
    return election


def refresh_compliance_checks(
    db: Session,
    election_id: int,
    *,
    jurisdiction: str | None,
    documents: list,
    rules: JurisdictionRules | None = None,
    actor: str = "System",
) -> Election:
    with _election_lock(election_id):
        election = get_election(db, election_id)
        findings = generate_compliance_checks(ComplianceContext(
            election=election,
            jurisdiction=jurisdiction,
            documents=documents,
            rules=rules,
            overrides=stored_overrides(election),
        ))
        return set_compliance_checks(db, election_id, findings, actor=actor)


# ── Resolution, cross-links, comments ──

def set_resolution(
    db: Session,
    election_id: int,
    *,
    text: str,
    recorded_by: str,
    effective_date: date | None = None,
    linked_case_id: str | None = None,
) -> Election:
    if not text or not text.strip():
        raise InvalidDefinitionError("Resolution text required")
    with _mutation(db, election_id) as election:
        _require_status(election, (ElectionStatus.CLOSED, ElectionStatus.CERTIFIED), "record a resolution")
        if election.resolution is None:
            election.resolution = Resolution(text=text, recorded_by=recorded_by)
        resolution = election.resolution
        resolution.text = text
        resolution.recorded_by = recorded_by
        resolution.recorded_at = datetime.utcnow()
        resolution.effective_date = effective_date
        resolution.linked_case_id = linked_case_id
        _log_event(election, TimelineEventType.RESOLUTION_RECORDED, "Resolution recorded", recorded_by)
    return election


def link_case(db: Session, election_id: int, case_id: str, actor: str = "System") -> Election:
    with _mutation(db, election_id) as election:
        election.linked_case_id = case_id
        _log_event(election, TimelineEventType.CASE_LINKED, f"Compliance case linked: {case_id}", actor)
    return election


def link_meeting(db: Session, election_id: int, meeting_id: str, actor: str = "System") -> Election:
    with _mutation(db, election_id) as election:
        election.linked_meeting_id = meeting_id
        _log_event(election, TimelineEventType.MEETING_LINKED, f"Meeting linked: {meeting_id}", actor)
    return election


def add_comment(
    db: Session, election_id: int, *, owner: str, text: str, unit_number: str | None = None,
) -> Election:
    if not text or not text.strip():
        raise InvalidDefinitionError("Comment text required")
    with _mutation(db, election_id) as election:
        _require_not_certified(election, "comment on the vote")
        election.comments.append(ElectionComment(
            unit_number=unit_number, owner=owner, text=text, created_at=datetime.utcnow(),
        ))
        who = f"Unit {unit_number}" if unit_number else owner
        _log_event(election, TimelineEventType.COMMENT, f"Comment by {who}", owner)
    return election
