"""
Ownership-weighted tallies for an election.

``compute_results`` is a pure function of the election aggregate and the
ownership registry snapshot handed in by the caller. It can be called at any
stage, including while ballots are still coming in, and two calls on the same
inputs return equal results.

Weighting:
  - every ballot counts with the ``voting_pct`` captured when it was cast;
  - yes/no percentages are shares of the total weight that balloted, so an
    abstention lowers the approve share instead of being ignored;
  - selection items give a ballot's full weight to each candidate it names.

Candidate ranking tie-break (outcome is legally significant, so it is fixed):
  1. higher summed weight,
  2. the candidate whose last supporting ballot was recorded earlier
     (it reached the tied total first),
  3. position of the candidate on the ballot item.
Candidates sharing a non-zero weight are flagged ``tied`` and a warning is
emitted when the tie decides the last elected seat.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime

from app.models.election import (
    BallotItemType, Election, VoteChoice, VoteMethod,
)
from app.models.unit import UnitStatus
from app.schemas import BallotItemResult, CandidateResult, ElectionResults, RegistryUnit

logger = logging.getLogger(__name__)

_EPSILON = 1e-9


def _pct(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _ballot_weight(ballot, registry_by_unit: dict, warnings: list[str]) -> float:
    if ballot.voting_pct is not None:
        return float(ballot.voting_pct)
    unit = registry_by_unit.get(ballot.unit_number)
    if unit is None:
        warnings.append(
            f"Ballot for unit {ballot.unit_number} has no recorded weight and the unit "
            f"is not in the ownership registry; counted with weight 0"
        )
        return 0.0
    warnings.append(
        f"Ballot for unit {ballot.unit_number} has no recorded weight; "
        f"using the current registry weight {unit.voting_pct}"
    )
    return float(unit.voting_pct)


def _yes_no_result(item, weighted_ballots, total_voted: float, quorum_met: bool, warnings) -> BallotItemResult:
    weights = {choice: [] for choice in VoteChoice}
    counts = {choice: 0 for choice in VoteChoice}
    for ballot, weight in weighted_ballots:
        bv = ballot.vote_for(item.id)
        if bv is None or bv.choice is None:
            warnings.append(f'Ballot for unit {ballot.unit_number} has no vote on "{item.title}"')
            continue
        choice = VoteChoice(bv.choice)
        weights[choice].append(weight)
        counts[choice] += 1

    approve_pct = _pct(math.fsum(weights[VoteChoice.APPROVE]), total_voted)
    passed = total_voted > 0 and approve_pct + _EPSILON >= item.required_threshold
    return BallotItemResult(
        ballot_item_id=item.id,
        title=item.title,
        type=item.type,
        threshold=item.required_threshold,
        approve_pct=round(approve_pct, 2),
        deny_pct=round(_pct(math.fsum(weights[VoteChoice.DENY]), total_voted), 2),
        abstain_pct=round(_pct(math.fsum(weights[VoteChoice.ABSTAIN]), total_voted), 2),
        approve_count=counts[VoteChoice.APPROVE],
        deny_count=counts[VoteChoice.DENY],
        abstain_count=counts[VoteChoice.ABSTAIN],
        passed=passed,
        quorum_met=quorum_met,
        adopted=passed and quorum_met,
    )


def _selection_result(item, weighted_ballots, total_voted: float, quorum_met: bool, warnings) -> BallotItemResult:
    position = {c.id: idx for idx, c in enumerate(item.candidates)}
    weights = {c.id: [] for c in item.candidates}
    counts = {c.id: 0 for c in item.candidates}
    last_recorded = {c.id: None for c in item.candidates}

    for ballot, weight in weighted_ballots:
        bv = ballot.vote_for(item.id)
        if bv is None:
            warnings.append(f'Ballot for unit {ballot.unit_number} has no vote on "{item.title}"')
            continue
        recorded_at = ballot.recorded_at or datetime.max
        for cid in bv.candidate_ids:
            if cid not in weights:
                warnings.append(
                    f'Ballot for unit {ballot.unit_number} names unknown candidate {cid} on "{item.title}"'
                )
                continue
            weights[cid].append(weight)
            counts[cid] += 1
            if last_recorded[cid] is None or recorded_at > last_recorded[cid]:
                last_recorded[cid] = recorded_at

    totals = {cid: round(math.fsum(w), 6) for cid, w in weights.items()}
    ranked = sorted(
        item.candidates,
        key=lambda c: (-totals[c.id], last_recorded[c.id] or datetime.max, position[c.id]),
    )

    weight_counts = {}
    for cid, total in totals.items():
        if total > 0:
            weight_counts[total] = weight_counts.get(total, 0) + 1

    candidate_results = [
        CandidateResult(
            candidate_id=c.id,
            name=c.name,
            weight=totals[c.id],
            vote_pct=round(_pct(totals[c.id], total_voted), 2),
            vote_count=counts[c.id],
            tied=weight_counts.get(totals[c.id], 0) > 1,
        )
        for c in ranked
    ]

    seats = 1 if item.type == BallotItemType.MULTI_CANDIDATE else (item.max_selections or 1)
    elected = [r.candidate_id for r in candidate_results[:seats] if r.weight > 0]
    if len(elected) == seats and len(candidate_results) > seats:
        last_in = candidate_results[seats - 1]
        first_out = candidate_results[seats]
        if last_in.weight == first_out.weight:
            warnings.append(
                f'"{item.title}": {last_in.name} and {first_out.name} are tied at {last_in.weight}; '
                f"seat decided by earlier final ballot, then ballot order"
            )

    passed = bool(elected)
    return BallotItemResult(
        ballot_item_id=item.id,
        title=item.title,
        type=item.type,
        threshold=item.required_threshold,
        candidate_results=candidate_results,
        elected=elected,
        passed=passed,
        quorum_met=quorum_met,
        adopted=passed and quorum_met,
    )


def compute_results(election: Election, registry: list[RegistryUnit]) -> ElectionResults:
    warnings: list[str] = []
    registry_by_unit = {u.unit_number: u for u in registry}
    eligible = [u for u in registry if u.status == UnitStatus.OCCUPIED]

    weighted_ballots = [(b, _ballot_weight(b, registry_by_unit, warnings)) for b in election.ballots]
    total_voted = round(math.fsum(w for _, w in weighted_ballots), 6)
    total_eligible = round(math.fsum(u.voting_pct for u in eligible), 6)
    quorum_met = total_voted + _EPSILON >= election.quorum_required

    item_results = []
    for item in election.items:
        if item.type == BallotItemType.YES_NO:
            item_results.append(_yes_no_result(item, weighted_ballots, total_voted, quorum_met, warnings))
        else:
            item_results.append(_selection_result(item, weighted_ballots, total_voted, quorum_met, warnings))

    participation = {method: 0 for method in VoteMethod}
    proxy_count = 0
    for ballot in election.ballots:
        participation[VoteMethod(ballot.method)] += 1
        if ballot.is_proxy:
            proxy_count += 1

    if warnings:
        logger.warning("Election %s results computed with %d warnings", election.id, len(warnings))

    return ElectionResults(
        election_id=election.id,
        status=election.status,
        total_eligible_pct=total_eligible,
        total_voted_pct=total_voted,
        quorum_required=election.quorum_required,
        quorum_met=quorum_met,
        units_eligible=len(eligible),
        units_balloted=len(election.ballots),
        item_results=item_results,
        participation_by_method=participation,
        proxy_count=proxy_count,
        warnings=warnings,
    )
