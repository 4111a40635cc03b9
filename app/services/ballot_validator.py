"""
Acceptance checks for a unit's ballot.

Checks run in a fixed order (election open, one ballot per unit, unit
eligibility, vote payload, proxy authorization) so the caller always sees
the first violated rule. Nothing is mutated here: the returned Ballot is
transient and the ledger decides whether to attach it.
"""
from __future__ import annotations

from datetime import datetime

from app.models.election import (
    Ballot, BallotItemType, BallotVote, Election, ElectionStatus,
)
from app.models.unit import UnitStatus
from app.schemas import (
    BallotPayload, MultiSelectVote, RegistryUnit, SingleCandidateVote, YesNoVote,
)
from app.services.election_errors import (
    DuplicateBallotError, ElectionNotOpenError, IneligibleUnitError,
    InvalidVotePayloadError, MissingProxyAuthorizationError,
)


def is_authorized_proxy(payload: BallotPayload) -> bool:
    return bool(payload.is_proxy and (payload.proxy_authorized_by or "").strip())


def _check_vote(item, vote) -> None:
    label = f'"{item.title}" (item {item.id})'

    if item.type == BallotItemType.YES_NO:
        if not isinstance(vote, YesNoVote):
            raise InvalidVotePayloadError(
                f"{label} expects an approve/deny/abstain choice", item_id=item.id,
            )
        return

    candidate_ids = set(item.candidate_ids)

    if item.type == BallotItemType.MULTI_CANDIDATE:
        if not isinstance(vote, SingleCandidateVote):
            raise InvalidVotePayloadError(
                f"{label} expects exactly one candidate", item_id=item.id,
            )
        if vote.candidate_id not in candidate_ids:
            raise InvalidVotePayloadError(
                f"{label}: candidate {vote.candidate_id} is not on this item", item_id=item.id,
            )
        return

    if not isinstance(vote, MultiSelectVote):
        raise InvalidVotePayloadError(
            f"{label} expects a list of candidates", item_id=item.id,
        )
    selected = vote.candidate_ids
    if len(set(selected)) != len(selected):
        raise InvalidVotePayloadError(
            f"{label}: a candidate is selected more than once", item_id=item.id,
        )
    if len(selected) > (item.max_selections or 0):
        raise InvalidVotePayloadError(
            f"{label}: {len(selected)} selections, at most {item.max_selections} allowed",
            item_id=item.id,
        )
    unknown = [cid for cid in selected if cid not in candidate_ids]
    if unknown:
        raise InvalidVotePayloadError(
            f"{label}: candidates {unknown} are not on this item", item_id=item.id,
        )


def check_vote_payload(election: Election, votes: dict) -> None:
    item_ids = {item.id for item in election.items}
    unknown = sorted(k for k in votes if k not in item_ids)
    if unknown:
        raise InvalidVotePayloadError(
            f"Vote given for unknown ballot item {unknown[0]}", item_id=unknown[0],
        )
    for item in election.items:
        vote = votes.get(item.id)
        if vote is None:
            raise InvalidVotePayloadError(
                f'No vote given for "{item.title}" (item {item.id})', item_id=item.id,
            )
        _check_vote(item, vote)


def _vote_row(item, vote) -> BallotVote:
    bv = BallotVote(ballot_item_id=item.id, ballot_item=item)
    if isinstance(vote, YesNoVote):
        bv.choice = vote.choice
    elif isinstance(vote, SingleCandidateVote):
        bv.candidate_ids = [vote.candidate_id]
    else:
        bv.candidate_ids = vote.candidate_ids
    return bv


def validate_ballot(
    election: Election,
    registry_unit: RegistryUnit | None,
    payload: BallotPayload,
    recorded_by: str,
) -> Ballot:
    if election.status != ElectionStatus.OPEN:
        raise ElectionNotOpenError(
            f"Election {election.id} is {election.status.value}; ballots are accepted only while open"
        )

    unit_number = payload.unit_number.strip()
    if any(b.unit_number == unit_number for b in election.ballots):
        raise DuplicateBallotError(f"Unit {unit_number} has already voted in election {election.id}")

    if registry_unit is None or registry_unit.unit_number != unit_number:
        raise IneligibleUnitError(f"Unit {unit_number} is not in the ownership registry")
    if registry_unit.status != UnitStatus.OCCUPIED and not is_authorized_proxy(payload):
        raise IneligibleUnitError(
            f"Unit {unit_number} is {registry_unit.status.value} and cannot vote without an authorized proxy"
        )

    check_vote_payload(election, payload.votes)

    if payload.is_proxy and not is_authorized_proxy(payload):
        raise MissingProxyAuthorizationError(
            f"Proxy ballot for unit {unit_number} has no authorizing owner"
        )

    items = {item.id: item for item in election.items}
    return Ballot(
        election_id=election.id,
        unit_number=unit_number,
        owner=registry_unit.owner,
        voting_pct=registry_unit.voting_pct,
        method=payload.method,
        is_proxy=payload.is_proxy,
        proxy_voter_name=payload.proxy_voter_name if payload.is_proxy else None,
        proxy_authorized_by=payload.proxy_authorized_by if payload.is_proxy else None,
        recorded_by=recorded_by,
        recorded_at=datetime.utcnow(),
        comment=payload.comment,
        votes=[_vote_row(items[item_id], vote) for item_id, vote in payload.votes.items()],
    )
