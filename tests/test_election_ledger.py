from datetime import date

import pytest

from app.models import (
    BallotItemType, ComplianceStatus, Election, ElectionStatus, ElectionType, TimelineEventType,
    VoteChoice, VoteMethod,
)
from app.schemas import BallotPayload, ComplianceFinding, MultiSelectVote, SingleCandidateVote
from app.services import election_ledger as ledger
from app.services.election_errors import (
    DuplicateBallotError, ElectionNotOpenError, IneligibleUnitError, InvalidDefinitionError,
    MissingProxyAuthorizationError, NotFoundError, PreconditionError,
)
from app.services.registry import registry_snapshot
from tests.conftest import registry_of, yes_no_payload


def event_types(election):
    return [e.type for e in election.timeline]


# ── Definition ──

def test_create_election_starts_as_draft_with_defaults(db):
    election = ledger.create_election(db, title="  Budget 2027  ", created_by="Treasurer")

    assert election.id is not None
    assert election.status == ElectionStatus.DRAFT
    assert election.title == "Budget 2027"
    assert election.quorum_required == 25.0
    assert event_types(election) == [TimelineEventType.CREATED]


@pytest.mark.parametrize("quorum", [-1, 100.5])
def test_create_election_rejects_quorum_outside_range(db, quorum):
    with pytest.raises(InvalidDefinitionError):
        ledger.create_election(db, title="Budget", created_by="Board", quorum_required=quorum)


def test_create_election_requires_title(db):
    with pytest.raises(InvalidDefinitionError):
        ledger.create_election(db, title="   ", created_by="Board")


def test_add_and_remove_ballot_items(db):
    election = ledger.create_election(db, title="Annual meeting", created_by="Board")
    ledger.add_ballot_item(db, election.id, title="Budget")
    ledger.add_ballot_item(
        db, election.id, title="Board seats", type=BallotItemType.MULTI_SELECT,
        candidates=[{"name": "Carol"}, {"name": "Dan", "unit": "204"}], max_selections=2,
    )

    election = ledger.get_election(db, election.id)
    assert [i.title for i in election.items] == ["Budget", "Board seats"]
    assert election.items[0].required_threshold == 50.1
    assert [c.name for c in election.items[1].candidates] == ["Carol", "Dan"]

    ledger.remove_ballot_item(db, election.id, election.items[0].id)
    election = ledger.get_election(db, election.id)
    assert [(i.order, i.title) for i in election.items] == [(0, "Board seats")]


def test_ballot_item_definition_is_validated(db):
    election = ledger.create_election(db, title="Annual meeting", created_by="Board")

    with pytest.raises(InvalidDefinitionError):
        ledger.add_ballot_item(db, election.id, title="President", type=BallotItemType.MULTI_CANDIDATE)
    with pytest.raises(InvalidDefinitionError):
        ledger.add_ballot_item(
            db, election.id, title="Seats", type=BallotItemType.MULTI_SELECT,
            candidates=[{"name": "A"}], max_selections=2,
        )
    with pytest.raises(InvalidDefinitionError):
        ledger.add_ballot_item(db, election.id, title="Budget", required_threshold=0)

    assert ledger.get_election(db, election.id).items == []


def test_candidates_can_be_added_and_removed_in_draft(db):
    election = ledger.create_election(db, title="Board", created_by="Board")
    ledger.add_ballot_item(
        db, election.id, title="President", type=BallotItemType.MULTI_CANDIDATE,
        candidates=[{"name": "Alice"}],
    )
    item_id = ledger.get_election(db, election.id).items[0].id

    ledger.add_candidate(db, election.id, item_id, name="Bob")
    item = ledger.get_election(db, election.id).items[0]
    assert [c.name for c in item.candidates] == ["Alice", "Bob"]

    ledger.remove_candidate(db, election.id, item_id, item.candidates[0].id)
    item = ledger.get_election(db, election.id).items[0]
    assert [(c.order, c.name) for c in item.candidates] == [(0, "Bob")]

    with pytest.raises(InvalidDefinitionError):
        ledger.remove_candidate(db, election.id, item_id, item.candidates[0].id)


def test_attachments_follow_the_item_until_certified(db, open_motion):
    item_id = open_motion.items[0].id

    ledger.add_ballot_attachment(
        db, open_motion.id, item_id, name="Roof quote.pdf", uploaded_by="Manager", file_type="pdf",
    )
    attachment = ledger.get_election(db, open_motion.id).items[0].attachments[0]
    assert (attachment.name, attachment.file_type, attachment.uploaded_by) == ("Roof quote.pdf", "pdf", "Manager")

    ledger.remove_ballot_attachment(db, open_motion.id, item_id, attachment.id, "Manager")
    election = ledger.get_election(db, open_motion.id)
    assert election.items[0].attachments == []
    assert event_types(election)[-2:] == [TimelineEventType.DOCUMENT_ADDED, TimelineEventType.DOCUMENT_REMOVED]

    with pytest.raises(NotFoundError):
        ledger.remove_ballot_attachment(db, open_motion.id, item_id, attachment.id, "Manager")

    ledger.close_election(db, open_motion.id, "Board")
    ledger.certify_election(db, open_motion.id, "President")
    with pytest.raises(PreconditionError):
        ledger.add_ballot_attachment(db, open_motion.id, item_id, name="Late.pdf", uploaded_by="Manager")


def test_draft_ballot_item_can_be_edited_in_place(db):
    election = ledger.create_election(db, title="Annual meeting", created_by="Board")
    ledger.add_ballot_item(
        db, election.id, title="Board seats", type=BallotItemType.MULTI_SELECT,
        candidates=[{"name": "Carol"}, {"name": "Dan"}, {"name": "Eve"}], max_selections=2,
    )
    item_id = ledger.get_election(db, election.id).items[0].id
    ledger.add_ballot_attachment(db, election.id, item_id, name="Bios.pdf", uploaded_by="Secretary")

    election = ledger.update_ballot_item(
        db, election.id, item_id, "Secretary",
        title="  Board seats 2027 ", max_selections=3, required_threshold=40.0, legal_ref="Bylaws Art. IV",
    )

    item = election.items[0]
    assert item.id == item_id
    assert (item.title, item.max_selections, item.required_threshold) == ("Board seats 2027", 3, 40.0)
    assert [a.name for a in item.attachments] == ["Bios.pdf"]
    assert election.timeline[-1].type == TimelineEventType.UPDATED
    assert election.timeline[-1].actor == "Secretary"


@pytest.mark.parametrize("changes", [
    {"required_threshold": 0},
    {"required_threshold": 101},
    {"required_threshold": None},
    {"max_selections": 4},
    {"max_selections": 0},
    {"title": "  "},
    {"type": BallotItemType.YES_NO},
])
def test_ballot_item_update_is_validated(db, changes):
    election = ledger.create_election(db, title="Annual meeting", created_by="Board")
    ledger.add_ballot_item(
        db, election.id, title="Board seats", type=BallotItemType.MULTI_SELECT,
        candidates=[{"name": "Carol"}, {"name": "Dan"}, {"name": "Eve"}], max_selections=2,
    )
    item_id = ledger.get_election(db, election.id).items[0].id

    with pytest.raises(InvalidDefinitionError):
        ledger.update_ballot_item(db, election.id, item_id, "Board", **changes)

    item = ledger.get_election(db, election.id).items[0]
    assert (item.title, item.max_selections, item.required_threshold) == ("Board seats", 2, 50.1)


def test_yes_no_item_takes_no_max_selections(db):
    election = ledger.create_election(db, title="Budget", created_by="Board")
    ledger.add_ballot_item(db, election.id, title="Approve budget")
    item_id = ledger.get_election(db, election.id).items[0].id

    with pytest.raises(InvalidDefinitionError):
        ledger.update_ballot_item(db, election.id, item_id, "Board", max_selections=1)


def test_ballot_items_are_frozen_once_open(db, open_motion):
    item_id = open_motion.items[0].id
    with pytest.raises(PreconditionError):
        ledger.update_ballot_item(db, open_motion.id, item_id, "Board", title="Changed")
    assert ledger.get_election(db, open_motion.id).items[0].title == "Approve roof repair"

def test_update_election_respects_lifecycle(db, open_motion):
    ledger.update_election(db, open_motion.id, "Board", notice_date=date(2026, 4, 1), notes="Reminder sent")
    with pytest.raises(PreconditionError):
        ledger.update_election(db, open_motion.id, "Board", title="Changed")

    election = ledger.get_election(db, open_motion.id)
    assert election.title == "Roof repair"
    assert election.notice_date == date(2026, 4, 1)


def test_update_election_rejects_unknown_fields(db):
    election = ledger.create_election(db, title="Budget", created_by="Board")
    with pytest.raises(InvalidDefinitionError):
        ledger.update_election(db, election.id, "Board", status=ElectionStatus.CERTIFIED)


@pytest.mark.parametrize("field", ["type", "title", "quorum_required"])
def test_update_election_rejects_clearing_required_fields(db, field):
    election = ledger.create_election(db, title="Budget", created_by="Board", type=ElectionType.BUDGET_APPROVAL)
    with pytest.raises(InvalidDefinitionError):
        ledger.update_election(db, election.id, "Board", **{field: None})

    election = ledger.get_election(db, election.id)
    assert (election.title, election.type, election.quorum_required) == ("Budget", ElectionType.BUDGET_APPROVAL, 25.0)

def test_only_drafts_can_be_deleted(db, open_motion):
    with pytest.raises(PreconditionError):
        ledger.delete_election(db, open_motion.id, "Board")

    draft = ledger.create_election(db, title="Budget", created_by="Board")
    ledger.delete_election(db, draft.id, "Board")
    assert draft.id not in ledger._locks
    with pytest.raises(NotFoundError):
        ledger.get_election(db, draft.id)


def test_unknown_election_is_not_found(db):
    with pytest.raises(NotFoundError):
        ledger.open_election(db, 404, "Board")


# ── Lifecycle ──

def test_full_lifecycle(db, four_units, open_motion):
    registry = registry_of(four_units)
    ledger.record_ballot(db, open_motion.id, registry["101"], yes_no_payload(open_motion, "101", VoteChoice.APPROVE), "Clerk")
    ledger.close_election(db, open_motion.id, "Board")
    election = ledger.certify_election(db, open_motion.id, "President")

    assert election.status == ElectionStatus.CERTIFIED
    assert election.certified_by == "President"
    assert election.opened_at <= election.closed_at <= election.certified_at
    assert event_types(election) == [
        TimelineEventType.CREATED,
        TimelineEventType.UPDATED,
        TimelineEventType.OPENED,
        TimelineEventType.BALLOT_RECORDED,
        TimelineEventType.CLOSED,
        TimelineEventType.CERTIFIED,
    ]


def test_open_requires_ballot_items(db):
    election = ledger.create_election(db, title="Empty", created_by="Board")
    with pytest.raises(PreconditionError):
        ledger.open_election(db, election.id, "Board")
    assert ledger.get_election(db, election.id).status == ElectionStatus.DRAFT


def test_transitions_cannot_skip_or_reverse(db, open_motion):
    with pytest.raises(PreconditionError):
        ledger.certify_election(db, open_motion.id, "Board")
    with pytest.raises(PreconditionError):
        ledger.open_election(db, open_motion.id, "Board")

    ledger.close_election(db, open_motion.id, "Board")
    with pytest.raises(PreconditionError):
        ledger.open_election(db, open_motion.id, "Board")
    with pytest.raises(PreconditionError):
        ledger.close_election(db, open_motion.id, "Board")

    ledger.certify_election(db, open_motion.id, "Board")
    with pytest.raises(PreconditionError):
        ledger.certify_election(db, open_motion.id, "Board")


def test_rejected_transition_leaves_no_trace(db, open_motion):
    before = len(ledger.get_election(db, open_motion.id).timeline)
    with pytest.raises(PreconditionError):
        ledger.certify_election(db, open_motion.id, "Board")
    election = ledger.get_election(db, open_motion.id)
    assert election.status == ElectionStatus.OPEN
    assert len(election.timeline) == before


def test_definition_is_frozen_once_open(db, open_motion):
    with pytest.raises(PreconditionError):
        ledger.add_ballot_item(db, open_motion.id, title="Another motion")
    with pytest.raises(PreconditionError):
        ledger.remove_ballot_item(db, open_motion.id, open_motion.items[0].id)


# ── Ballots ──

def test_record_ballot_appends_and_logs(db, four_units, open_motion):
    registry = registry_of(four_units)
    payload = yes_no_payload(open_motion, "101", VoteChoice.APPROVE, method=VoteMethod.ORAL)

    election = ledger.record_ballot(db, open_motion.id, registry["101"], payload, "Clerk")

    assert len(election.ballots) == 1
    ballot = election.ballots[0]
    assert ballot.voting_pct == 25.0
    assert ballot.method == VoteMethod.ORAL
    assert election.timeline[-1].type == TimelineEventType.BALLOT_RECORDED
    assert "Unit 101" in election.timeline[-1].description


def test_one_ballot_per_unit(db, four_units, open_motion):
    registry = registry_of(four_units)
    ledger.record_ballot(db, open_motion.id, registry["101"], yes_no_payload(open_motion, "101", VoteChoice.APPROVE), "Clerk")

    with pytest.raises(DuplicateBallotError):
        ledger.record_ballot(db, open_motion.id, registry["101"], yes_no_payload(open_motion, "101", VoteChoice.DENY), "Clerk")

    election = ledger.get_election(db, open_motion.id)
    assert len(election.ballots) == 1
    assert election.ballots[0].votes[0].choice == VoteChoice.APPROVE


def test_duplicate_from_a_second_session_hits_the_unique_constraint(session_factory, db, four_units, open_motion):
    registry = registry_of(four_units)
    other = session_factory()
    try:
        stale = ledger.get_election(other, open_motion.id)
        assert stale.ballots == []
        ledger.record_ballot(db, open_motion.id, registry["102"], yes_no_payload(open_motion, "102", VoteChoice.APPROVE), "Clerk")
        with pytest.raises(DuplicateBallotError):
            ledger.record_ballot(other, open_motion.id, registry["102"], yes_no_payload(open_motion, "102", VoteChoice.DENY), "Clerk")
    finally:
        other.close()
    assert len(ledger.get_election(db, open_motion.id).ballots) == 1


def test_ballot_rejected_when_not_open(db, four_units):
    registry = registry_of(four_units)
    election = ledger.create_election(db, title="Draft vote", created_by="Board")
    ledger.add_ballot_item(db, election.id, title="Motion")
    election = ledger.get_election(db, election.id)

    with pytest.raises(ElectionNotOpenError):
        ledger.record_ballot(db, election.id, registry["101"], yes_no_payload(election, "101", VoteChoice.APPROVE), "Clerk")


@pytest.mark.parametrize("certify", [False, True])
def test_ballot_rejected_after_close(db, four_units, open_motion, certify):
    registry = registry_of(four_units)
    ledger.record_ballot(db, open_motion.id, registry["101"], yes_no_payload(open_motion, "101", VoteChoice.APPROVE), "Clerk")
    ledger.close_election(db, open_motion.id, "Board")
    if certify:
        ledger.certify_election(db, open_motion.id, "President")

    with pytest.raises(ElectionNotOpenError):
        ledger.record_ballot(db, open_motion.id, registry["102"], yes_no_payload(open_motion, "102", VoteChoice.DENY), "Clerk")

    election = ledger.get_election(db, open_motion.id)
    assert [b.unit_number for b in election.ballots] == ["101"]
    assert event_types(election).count(TimelineEventType.BALLOT_RECORDED) == 1

def test_proxy_without_authorization_is_rejected(db, four_units, open_motion):
    registry = registry_of(four_units)
    payload = yes_no_payload(open_motion, "103", VoteChoice.APPROVE, is_proxy=True, proxy_voter_name="Neighbour")

    with pytest.raises(MissingProxyAuthorizationError):
        ledger.record_ballot(db, open_motion.id, registry["103"], payload, "Clerk")

    election = ledger.get_election(db, open_motion.id)
    assert election.ballots == []
    assert event_types(election)[-1] == TimelineEventType.OPENED


def test_unregistered_unit_is_rejected(db, four_units, open_motion):
    with pytest.raises(IneligibleUnitError):
        ledger.record_ballot(db, open_motion.id, None, yes_no_payload(open_motion, "999", VoteChoice.APPROVE), "Clerk")


def test_selection_votes_are_stored(db, four_units):
    registry = registry_of(four_units)
    election = ledger.create_election(db, title="Board", created_by="Board")
    ledger.add_ballot_item(
        db, election.id, title="President", type=BallotItemType.MULTI_CANDIDATE,
        candidates=[{"name": "Alice"}, {"name": "Bob"}],
    )
    ledger.add_ballot_item(
        db, election.id, title="Members", type=BallotItemType.MULTI_SELECT,
        candidates=[{"name": "Carol"}, {"name": "Dan"}, {"name": "Eve"}], max_selections=2,
    )
    election = ledger.open_election(db, election.id, "Board")
    president, members = election.items
    payload = BallotPayload(unit_number="101", votes={
        president.id: SingleCandidateVote(candidate_id=president.candidates[1].id),
        members.id: MultiSelectVote(candidate_ids=[members.candidates[0].id, members.candidates[2].id]),
    })

    ledger.record_ballot(db, election.id, registry["101"], payload, "Clerk")
    results = ledger.get_results(db, election.id, registry_snapshot(db))

    assert results.item_results[0].elected == [president.candidates[1].id]
    assert sorted(results.item_results[1].elected) == sorted([members.candidates[0].id, members.candidates[2].id])


def test_remove_ballot_only_while_open(db, four_units, open_motion):
    registry = registry_of(four_units)
    election = ledger.record_ballot(
        db, open_motion.id, registry["101"], yes_no_payload(open_motion, "101", VoteChoice.APPROVE), "Clerk",
    )
    ballot_id = election.ballots[0].id

    election = ledger.remove_ballot(db, open_motion.id, ballot_id, "Clerk")
    assert election.ballots == []
    assert election.timeline[-1].type == TimelineEventType.BALLOT_REMOVED

    # the unit may vote again after its ballot was withdrawn
    ledger.record_ballot(db, open_motion.id, registry["101"], yes_no_payload(open_motion, "101", VoteChoice.DENY), "Clerk")
    election = ledger.close_election(db, open_motion.id, "Board")
    with pytest.raises(PreconditionError):
        ledger.remove_ballot(db, open_motion.id, election.ballots[0].id, "Clerk")


def test_results_follow_recorded_ballots(db, four_units, open_motion):
    registry = registry_of(four_units)
    for unit, choice in [("101", VoteChoice.APPROVE), ("102", VoteChoice.APPROVE),
                         ("103", VoteChoice.APPROVE), ("104", VoteChoice.DENY)]:
        ledger.record_ballot(db, open_motion.id, registry[unit], yes_no_payload(open_motion, unit, choice), "Clerk")

    results = ledger.get_results(db, open_motion.id, registry_snapshot(db))

    assert results.total_voted_pct == 100.0
    assert results.item_results[0].approve_pct == 75.0
    assert results.item_results[0].adopted


# ── Compliance, resolution, links, comments ──

def finding(check_id, auto_checked=True, status=ComplianceStatus.PASS):
    return ComplianceFinding(
        id=check_id, rule="Rule", requirement="Requirement", source="bylaws",
        status=status, auto_checked=auto_checked, note="",
    )


def test_set_compliance_checks_replaces_findings(db, open_motion):
    ledger.set_compliance_checks(db, open_motion.id, [finding("cc_a"), finding("cc_b")])
    election = ledger.set_compliance_checks(db, open_motion.id, [finding("cc_b", status=ComplianceStatus.FAIL)])

    assert [(c.check_key, c.status) for c in election.compliance_checks] == [("cc_b", ComplianceStatus.FAIL)]


def test_repeated_compliance_ids_are_rejected(db, open_motion):
    ledger.set_compliance_checks(db, open_motion.id, [finding("cc_a")])

    with pytest.raises(InvalidDefinitionError):
        ledger.set_compliance_checks(db, open_motion.id, [finding("cc_b"), finding("cc_b", status=ComplianceStatus.FAIL)])

    election = ledger.get_election(db, open_motion.id)
    assert [c.check_key for c in election.compliance_checks] == ["cc_a"]

def test_manual_check_can_be_overridden_but_auto_check_cannot(db, open_motion):
    ledger.set_compliance_checks(db, open_motion.id, [
        finding("cc_auto"), finding("cc_manual", auto_checked=False, status=ComplianceStatus.NOT_CHECKED),
    ])

    election = ledger.update_compliance_check(
        db, open_motion.id, "cc_manual", status=ComplianceStatus.PASS, note="Forms filed", actor="Secretary",
    )
    manual = next(c for c in election.compliance_checks if c.check_key == "cc_manual")
    assert manual.status == ComplianceStatus.PASS
    assert manual.manual_override

    with pytest.raises(PreconditionError):
        ledger.update_compliance_check(db, open_motion.id, "cc_auto", status=ComplianceStatus.FAIL, actor="Secretary")
    with pytest.raises(NotFoundError):
        ledger.update_compliance_check(db, open_motion.id, "cc_missing", status=ComplianceStatus.FAIL, actor="Secretary")


def test_refresh_keeps_manual_overrides(db, open_motion):
    election = ledger.refresh_compliance_checks(db, open_motion.id, jurisdiction="DC", documents=[])
    keys = {c.check_key for c in election.compliance_checks}
    assert {"cc_notice", "cc_quorum_config", "cc_quorum", "cc_bylaws", "cc_records"} <= keys

    secret = next(c for c in election.compliance_checks if c.check_key == "cc_secret_ballot")
    assert not secret.auto_checked
    assert secret.status == ComplianceStatus.NOT_CHECKED

    ledger.update_compliance_check(
        db, open_motion.id, "cc_secret_ballot", status=ComplianceStatus.PASS, actor="Secretary",
    )
    election = ledger.refresh_compliance_checks(db, open_motion.id, jurisdiction="DC", documents=[])
    secret = next(c for c in election.compliance_checks if c.check_key == "cc_secret_ballot")
    assert secret.status == ComplianceStatus.PASS
    assert secret.manual_override


def test_resolution_only_after_close(db, open_motion):
    with pytest.raises(PreconditionError):
        ledger.set_resolution(db, open_motion.id, text="Roof repair approved", recorded_by="Secretary")

    ledger.close_election(db, open_motion.id, "Board")
    election = ledger.set_resolution(
        db, open_motion.id, text="Roof repair approved", recorded_by="Secretary",
        effective_date=date(2026, 6, 1),
    )
    assert election.resolution.text == "Roof repair approved"
    assert election.timeline[-1].type == TimelineEventType.RESOLUTION_RECORDED

    election = ledger.set_resolution(db, open_motion.id, text="Amended text", recorded_by="Secretary")
    assert election.resolution.text == "Amended text"


def test_links_and_comments(db, open_motion):
    ledger.link_case(db, open_motion.id, "CASE-17", "Manager")
    ledger.link_meeting(db, open_motion.id, "MTG-2026-05", "Manager")
    election = ledger.add_comment(db, open_motion.id, owner="Owner 101", unit_number="101", text="When is the vote?")

    assert election.linked_case_id == "CASE-17"
    assert election.linked_meeting_id == "MTG-2026-05"
    assert election.comments[0].text == "When is the vote?"
    assert event_types(election)[-3:] == [
        TimelineEventType.CASE_LINKED, TimelineEventType.MEETING_LINKED, TimelineEventType.COMMENT,
    ]


def test_list_elections_filters_by_status(db, open_motion):
    ledger.create_election(db, title="Budget", created_by="Board")

    assert [e.title for e in ledger.list_elections(db, ElectionStatus.OPEN)] == ["Roof repair"]
    assert len(ledger.list_elections(db)) == 2
    assert isinstance(ledger.list_elections(db)[0], Election)


def test_certified_election_accepts_only_resolution_and_links(db, four_units, open_motion):
    registry = registry_of(four_units)
    ledger.record_ballot(db, open_motion.id, registry["101"], yes_no_payload(open_motion, "101", VoteChoice.APPROVE), "Clerk")
    ledger.close_election(db, open_motion.id, "Board")
    ledger.certify_election(db, open_motion.id, "President")

    ledger.set_resolution(db, open_motion.id, text="Roof repair approved", recorded_by="Secretary")
    ledger.link_case(db, open_motion.id, "CASE-18")
    with pytest.raises(PreconditionError):
        ledger.add_comment(db, open_motion.id, owner="Owner 102", text="Late question")
    with pytest.raises(PreconditionError):
        ledger.update_election(db, open_motion.id, "Board", notes="Edited after the fact")
    with pytest.raises(PreconditionError):
        ledger.set_compliance_checks(db, open_motion.id, [])

    election = ledger.get_election(db, open_motion.id)
    assert len(election.ballots) == 1
    assert election.resolution.text == "Roof repair approved"
    assert election.linked_case_id == "CASE-18"
