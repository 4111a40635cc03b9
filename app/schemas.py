from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from app.models.administration import DocumentStatus
from app.models.election import (
    BallotItemType, ComplianceSource, ComplianceStatus, ElectionStatus, ElectionType,
    TimelineEventType, VoteChoice, VoteMethod,
)
from app.models.unit import UnitStatus


# ── Votes ──

class YesNoVote(BaseModel):
    kind: Literal["yes_no"] = "yes_no"
    choice: VoteChoice


class SingleCandidateVote(BaseModel):
    kind: Literal["multi_candidate"] = "multi_candidate"
    candidate_id: int


class MultiSelectVote(BaseModel):
    kind: Literal["multi_select"] = "multi_select"
    candidate_ids: list[int] = Field(default_factory=list)


Vote = Annotated[Union[YesNoVote, SingleCandidateVote, MultiSelectVote], Field(discriminator="kind")]


def vote_from_row(bv, item_type: BallotItemType):
    """Rebuild the typed vote stored in a BallotVote row."""
    if item_type == BallotItemType.YES_NO:
        return YesNoVote(choice=bv.choice) if bv.choice is not None else None
    ids = bv.candidate_ids
    if item_type == BallotItemType.MULTI_CANDIDATE:
        return SingleCandidateVote(candidate_id=ids[0]) if ids else None
    return MultiSelectVote(candidate_ids=ids)


class BallotPayload(BaseModel):
    unit_number: str
    method: VoteMethod = VoteMethod.PAPER
    is_proxy: bool = False
    proxy_voter_name: str | None = None
    proxy_authorized_by: str | None = None
    votes: dict[int, Vote] = Field(default_factory=dict)
    comment: str | None = None


# ── Collaborator inputs ──

class RegistryUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    unit_number: str
    owner: str | None = None
    voting_pct: float
    status: UnitStatus = UnitStatus.OCCUPIED


class GoverningDocumentRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    status: DocumentStatus = DocumentStatus.CURRENT


# ── Results ──

class CandidateResult(BaseModel):
    candidate_id: int
    name: str
    weight: float
    vote_pct: float
    vote_count: int
    tied: bool = False


class BallotItemResult(BaseModel):
    ballot_item_id: int
    title: str
    type: BallotItemType
    threshold: float
    approve_pct: float | None = None
    deny_pct: float | None = None
    abstain_pct: float | None = None
    approve_count: int | None = None
    deny_count: int | None = None
    abstain_count: int | None = None
    candidate_results: list[CandidateResult] | None = None
    elected: list[int] = Field(default_factory=list)
    passed: bool
    quorum_met: bool
    adopted: bool


class ElectionResults(BaseModel):
    election_id: int | None
    status: ElectionStatus
    total_eligible_pct: float
    total_voted_pct: float
    quorum_required: float
    quorum_met: bool
    units_eligible: int
    units_balloted: int
    item_results: list[BallotItemResult]
    participation_by_method: dict[VoteMethod, int]
    proxy_count: int
    warnings: list[str] = Field(default_factory=list)


# ── Compliance ──

class ComplianceFinding(BaseModel):
    id: str
    rule: str
    requirement: str
    source: ComplianceSource
    status: ComplianceStatus
    auto_checked: bool
    note: str = ""


class ComplianceOverride(BaseModel):
    status: ComplianceStatus
    note: str | None = None


# ── Request bodies ──

class ElectionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    type: ElectionType = ElectionType.BOARD_ELECTION
    created_by: str = Field(..., min_length=1)
    quorum_required: float | None = Field(None, ge=0, le=100)
    description: str | None = None
    legal_ref: str | None = None
    notes: str | None = None
    scheduled_close_date: date | None = None
    notice_date: date | None = None


class ElectionUpdate(BaseModel):
    actor: str = "Board"
    title: str | None = Field(None, min_length=1)
    type: ElectionType | None = None
    quorum_required: float | None = Field(None, ge=0, le=100)
    description: str | None = None
    legal_ref: str | None = None
    notes: str | None = None
    scheduled_close_date: date | None = None
    notice_date: date | None = None


class CandidateCreate(BaseModel):
    actor: str = "Board"
    name: str = Field(..., min_length=1)
    unit: str | None = None
    bio: str | None = None


class BallotItemCreate(BaseModel):
    actor: str = "Board"
    title: str = Field(..., min_length=1)
    type: BallotItemType = BallotItemType.YES_NO
    description: str | None = None
    rationale: str | None = None
    candidates: list[CandidateCreate] = Field(default_factory=list)
    max_selections: int | None = None
    required_threshold: float | None = None
    legal_ref: str | None = None
    financial_impact: str | None = None


class BallotItemUpdate(BaseModel):
    actor: str = "Board"
    title: str | None = Field(None, min_length=1)
    description: str | None = None
    rationale: str | None = None
    max_selections: int | None = None
    required_threshold: float | None = None
    legal_ref: str | None = None
    financial_impact: str | None = None


class AttachmentCreate(BaseModel):
    name: str = Field(..., min_length=1)
    size: str | None = None
    file_type: str | None = None
    uploaded_by: str = Field(..., min_length=1)


class ActorRequest(BaseModel):
    actor: str = Field(..., min_length=1)


class BallotRecord(BallotPayload):
    recorded_by: str = Field(..., min_length=1)


class ComplianceCheckUpdate(BaseModel):
    status: ComplianceStatus
    note: str | None = None
    actor: str = Field(..., min_length=1)


class ComplianceRefresh(BaseModel):
    jurisdiction: str | None = None
    actor: str = "System"


class ResolutionCreate(BaseModel):
    text: str = Field(..., min_length=1)
    effective_date: date | None = None
    recorded_by: str = Field(..., min_length=1)
    linked_case_id: str | None = None


class LinkRequest(BaseModel):
    target_id: str = Field(..., min_length=1)
    actor: str = "System"


class CommentCreate(BaseModel):
    unit_number: str | None = None
    owner: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)


class UnitUpsert(BaseModel):
    unit_number: str = Field(..., min_length=1)
    owner_name: str | None = None
    voting_pct: float = Field(..., ge=0, le=100)
    status: UnitStatus = UnitStatus.OCCUPIED


class BuildingInfoUpdate(BaseModel):
    name: str | None = None
    jurisdiction: str | None = None
    unit_count: int | None = None


class DocumentCreate(BaseModel):
    name: str = Field(..., min_length=1)
    status: DocumentStatus = DocumentStatus.CURRENT
    uploaded_by: str | None = None


# ── Responses ──

class _OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class CandidateOut(_OrmModel):
    id: int
    name: str
    unit: str | None = None
    bio: str | None = None


class AttachmentOut(_OrmModel):
    id: int
    name: str
    size: str | None = None
    file_type: str | None = None
    uploaded_by: str | None = None
    uploaded_at: datetime | None = None


class BallotItemOut(_OrmModel):
    id: int
    order: int
    title: str
    type: BallotItemType
    description: str | None = None
    rationale: str | None = None
    candidates: list[CandidateOut] = Field(default_factory=list)
    max_selections: int | None = None
    required_threshold: float
    legal_ref: str | None = None
    financial_impact: str | None = None
    attachments: list[AttachmentOut] = Field(default_factory=list)


class BallotOut(BaseModel):
    id: int
    unit_number: str
    owner: str | None = None
    voting_pct: float | None = None
    method: VoteMethod
    is_proxy: bool
    proxy_voter_name: str | None = None
    proxy_authorized_by: str | None = None
    recorded_by: str
    recorded_at: datetime | None = None
    votes: dict[int, Vote] = Field(default_factory=dict)
    comment: str | None = None

    @classmethod
    def from_ballot(cls, ballot) -> "BallotOut":
        votes = {}
        for bv in ballot.votes:
            if bv.ballot_item is None:
                continue
            vote = vote_from_row(bv, bv.ballot_item.type)
            if vote is not None:
                votes[bv.ballot_item_id] = vote
        return cls(
            id=ballot.id,
            unit_number=ballot.unit_number,
            owner=ballot.owner,
            voting_pct=ballot.voting_pct,
            method=ballot.method,
            is_proxy=bool(ballot.is_proxy),
            proxy_voter_name=ballot.proxy_voter_name,
            proxy_authorized_by=ballot.proxy_authorized_by,
            recorded_by=ballot.recorded_by,
            recorded_at=ballot.recorded_at,
            votes=votes,
            comment=ballot.comment,
        )


class ComplianceCheckOut(_OrmModel):
    check_key: str
    rule: str
    requirement: str | None = None
    source: ComplianceSource
    status: ComplianceStatus
    auto_checked: bool
    note: str | None = None
    manual_override: bool = False


class TimelineEventOut(_OrmModel):
    id: int
    type: TimelineEventType
    description: str
    date: datetime | None = None
    actor: str


class CommentOut(_OrmModel):
    id: int
    unit_number: str | None = None
    owner: str
    text: str
    created_at: datetime | None = None


class ResolutionOut(_OrmModel):
    text: str
    effective_date: date | None = None
    recorded_by: str
    recorded_at: datetime | None = None
    linked_case_id: str | None = None


class ElectionOut(BaseModel):
    id: int
    title: str
    type: ElectionType
    status: ElectionStatus
    description: str | None = None
    legal_ref: str | None = None
    notes: str | None = None
    quorum_required: float
    created_by: str
    created_at: datetime | None = None
    opened_at: datetime | None = None
    closed_at: datetime | None = None
    certified_at: datetime | None = None
    certified_by: str | None = None
    scheduled_close_date: date | None = None
    notice_date: date | None = None
    linked_case_id: str | None = None
    linked_meeting_id: str | None = None
    ballot_items: list[BallotItemOut] = Field(default_factory=list)
    ballots: list[BallotOut] = Field(default_factory=list)
    compliance_checks: list[ComplianceCheckOut] = Field(default_factory=list)
    timeline: list[TimelineEventOut] = Field(default_factory=list)
    comments: list[CommentOut] = Field(default_factory=list)
    resolution: ResolutionOut | None = None

    @classmethod
    def from_election(cls, election) -> "ElectionOut":
        return cls(
            id=election.id,
            title=election.title,
            type=election.type,
            status=election.status,
            description=election.description,
            legal_ref=election.legal_ref,
            notes=election.notes,
            quorum_required=election.quorum_required,
            created_by=election.created_by,
            created_at=election.created_at,
            opened_at=election.opened_at,
            closed_at=election.closed_at,
            certified_at=election.certified_at,
            certified_by=election.certified_by,
            scheduled_close_date=election.scheduled_close_date,
            notice_date=election.notice_date,
            linked_case_id=election.linked_case_id,
            linked_meeting_id=election.linked_meeting_id,
            ballot_items=[BallotItemOut.model_validate(i) for i in election.items],
            ballots=[BallotOut.from_ballot(b) for b in election.ballots],
            compliance_checks=[ComplianceCheckOut.model_validate(c) for c in election.compliance_checks],
            timeline=[TimelineEventOut.model_validate(t) for t in election.timeline],
            comments=[CommentOut.model_validate(c) for c in election.comments],
            resolution=ResolutionOut.model_validate(election.resolution) if election.resolution else None,
        )


class ElectionSummary(_OrmModel):
    id: int
    title: str
    type: ElectionType
    status: ElectionStatus
    quorum_required: float
    created_at: datetime | None = None


class UnitOut(_OrmModel):
    id: int
    unit_number: str
    owner_name: str | None = None
    voting_pct: float
    status: UnitStatus


class DocumentOut(_OrmModel):
    id: int
    name: str
    status: DocumentStatus
    uploaded_by: str | None = None
    uploaded_at: datetime | None = None


class BuildingInfoOut(_OrmModel):
    name: str | None = None
    jurisdiction: str | None = None
    unit_count: int | None = None
