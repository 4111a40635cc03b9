"""
Compliance findings for an election.

``generate_compliance_checks`` derives the full list of findings from the
election's current shape, the building's jurisdiction and the governing
documents on file. Findings are recomputed, never patched: the only state
carried across regenerations are manual overrides of rules that cannot be
checked automatically, passed in by check id.

Statutory numbers and citations come from the jurisdiction tables in
``jurisdiction_rules``. A rule that cannot be verified stays ``not_checked``
until a board member sets it.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field

from app.models.election import (
    BallotItemType, ComplianceSource, ComplianceStatus, Election, ElectionStatus,
    ElectionType,
)
from app.schemas import ComplianceFinding, ComplianceOverride, GoverningDocumentRef
from app.services.document_matcher import (
    BYLAWS, COVENANTS, document_kinds, has_current_document, missing_cited_documents,
)
from app.services.jurisdiction_rules import JurisdictionRules, get_jurisdiction_rules

RECORDS_RETENTION_YEARS = 7

_KIND_LABELS = {BYLAWS: "bylaws", COVENANTS: "declaration / CC&Rs"}


@dataclass(frozen=True)
class ComplianceContext:
    election: Election
    jurisdiction: str | None = None
    documents: list[GoverningDocumentRef] = field(default_factory=list)
    rules: JurisdictionRules | None = None
    overrides: dict[str, ComplianceOverride] = field(default_factory=dict)


def _finding(check_id, rule, requirement, source, status, note, auto_checked=True) -> ComplianceFinding:
    return ComplianceFinding(
        id=check_id,
        rule=rule,
        requirement=requirement,
        source=source,
        status=status,
        auto_checked=auto_checked,
        note=note,
    )


def _notice_check(election: Election, rules: JurisdictionRules) -> ComplianceFinding:
    citation = rules.citation(
        "notice", "Bylaws: Adequate notice required before vote", ComplianceSource.BYLAWS,
    )
    requirement = f"Written notice must be provided at least {rules.notice_min_days} days"
    if rules.notice_max_days:
        requirement += f" and no more than {rules.notice_max_days} days"
    requirement += " before the vote"

    if not election.notice_date:
        status, note = ComplianceStatus.NOT_CHECKED, "Set a notice date to validate"
    elif not election.opened_at:
        status, note = ComplianceStatus.NOT_CHECKED, "Notice lead time is checked when voting opens"
    else:
        days = (election.opened_at.date() - election.notice_date).days
        note = f"{days} days notice provided"
        if days < rules.notice_warning_days:
            status = ComplianceStatus.FAIL
        elif days < rules.notice_min_days:
            status = ComplianceStatus.WARNING
        elif rules.notice_max_days and days > rules.notice_max_days:
            status = ComplianceStatus.FAIL
            note += f"; notice given more than {rules.notice_max_days} days ahead"
        else:
            status = ComplianceStatus.PASS
    return _finding("cc_notice", citation.rule, requirement, citation.source, status, note)


def _quorum_checks(election: Election, rules: JurisdictionRules) -> list[ComplianceFinding]:
    citation = rules.citation("quorum", "Bylaws: Quorum requirement", ComplianceSource.BYLAWS)
    floor = rules.quorum_floor(ElectionType(election.type))
    quorum = election.quorum_required or 0

    if quorum + 1e-9 >= floor:
        config_status = ComplianceStatus.PASS
        config_note = f"Quorum of {quorum}% meets the {floor}% floor"
    else:
        config_status = ComplianceStatus.WARNING
        config_note = f"Quorum of {quorum}% is below the {floor}% floor for this vote type"
    checks = [_finding(
        "cc_quorum_config", citation.rule,
        f"Quorum must be at least {floor}% of ownership",
        citation.source, config_status, config_note,
    )]

    if election.status in (ElectionStatus.CLOSED, ElectionStatus.CERTIFIED):
        voted = math.fsum(b.voting_pct or 0 for b in election.ballots)
        met = voted + 1e-9 >= quorum
        status = ComplianceStatus.PASS if met else ComplianceStatus.FAIL
        note = f"{round(voted, 2)}% of ownership participated"
    else:
        status, note = ComplianceStatus.NOT_CHECKED, "Will be validated when voting closes"
    checks.append(_finding(
        "cc_quorum", citation.rule,
        f"Quorum of {quorum}% of ownership must participate",
        citation.source, status, note,
    ))
    return checks


def _threshold_check(election: Election, item, rules: JurisdictionRules) -> ComplianceFinding:
    election_type = ElectionType(election.type)
    threshold = item.required_threshold
    is_selection = item.type != BallotItemType.YES_NO
    problems = []

    if election_type == ElectionType.BOARD_ELECTION and not is_selection:
        problems.append("Board elections normally use candidate items decided by plurality")
    if election_type in (ElectionType.BUDGET_APPROVAL, ElectionType.SPECIAL_ASSESSMENT):
        if is_selection:
            problems.append("Budget and assessment items should be approve/deny motions")
        elif threshold <= rules.majority_pct:
            problems.append(f"Budget and assessment items should require a majority of ballots cast (over {rules.majority_pct}%)")
    if election_type == ElectionType.BYLAW_AMENDMENT and not is_selection and threshold < rules.supermajority_pct:
        problems.append(f"Bylaw amendments typically require supermajority ({rules.supermajority_pct}%)")

    if is_selection:
        kind = "plurality"
        requirement = "Highest weighted vote wins"
        if item.type == BallotItemType.MULTI_SELECT:
            requirement += f"; top {item.max_selections} selected"
    else:
        kind = "supermajority" if threshold > 60 else "simple majority"
        requirement = f"{threshold}% approval required"

    source = ComplianceSource.BYLAWS if election_type == ElectionType.BYLAW_AMENDMENT else ComplianceSource.BEST_PRACTICE
    status = ComplianceStatus.WARNING if problems else ComplianceStatus.PASS
    note = "; ".join(problems) if problems else f"{kind} threshold set"
    return _finding(
        f"cc_threshold_{item.id}", item.legal_ref or f'{kind} required for "{item.title}"',
        requirement, source, status, note,
    )


def _legal_ref_check(check_id: str, title: str, legal_ref: str, documents) -> ComplianceFinding | None:
    kinds = document_kinds(legal_ref)
    if not kinds:
        return None
    missing = missing_cited_documents(legal_ref, documents)
    source = ComplianceSource.COVENANTS if COVENANTS in kinds else ComplianceSource.BYLAWS
    if missing:
        labels = ", ".join(_KIND_LABELS[k] for k in sorted(missing))
        status = ComplianceStatus.WARNING
        note = f"No current {labels} on file; legal basis of \"{title}\" cannot be verified"
    else:
        status = ComplianceStatus.PASS
        note = "Cited governing document on file"
    return _finding(
        check_id, legal_ref, "Cited governing document must be on file", source, status, note,
    )


def _document_checks(election: Election, documents) -> list[ComplianceFinding]:
    election_type = ElectionType(election.type)
    checks = []
    has_bylaws = has_current_document(BYLAWS, documents)
    checks.append(_finding(
        "cc_bylaws", "Governing documents must be on file",
        "Current bylaws available for voter reference", ComplianceSource.BEST_PRACTICE,
        ComplianceStatus.PASS if has_bylaws else ComplianceStatus.FAIL,
        "Bylaws on file" if has_bylaws else "Upload current bylaws to the document registry",
    ))

    if election_type in (ElectionType.BYLAW_AMENDMENT, ElectionType.RULE_CHANGE):
        has_ccrs = has_current_document(COVENANTS, documents)
        checks.append(_finding(
            "cc_ccr", "CC&Rs/Declaration must be referenced for amendments",
            "Current declaration/CC&Rs available", ComplianceSource.COVENANTS,
            ComplianceStatus.PASS if has_ccrs else ComplianceStatus.WARNING,
            "CC&Rs on file" if has_ccrs else "Consider uploading CC&Rs for reference",
        ))
    return checks


def _financial_check(election: Election) -> ComplianceFinding | None:
    if ElectionType(election.type) not in (ElectionType.BUDGET_APPROVAL, ElectionType.SPECIAL_ASSESSMENT):
        return None
    documented = any((item.financial_impact or "").strip() for item in election.items)
    return _finding(
        "cc_financial", "Financial impact must be disclosed to voters",
        "Cost/budget impact documented on ballot items", ComplianceSource.BEST_PRACTICE,
        ComplianceStatus.PASS if documented else ComplianceStatus.WARNING,
        "Financial impact documented" if documented else "Add financial impact to ballot items for transparency",
    )


def _records_check(election: Election, rules: JurisdictionRules) -> ComplianceFinding:
    citation = rules.citation(
        "records", "Best practice: Retain vote records", ComplianceSource.BEST_PRACTICE,
    )
    has_trail = bool(election.timeline)
    return _finding(
        "cc_records", citation.rule,
        f"Vote records must be retained for at least {RECORDS_RETENTION_YEARS} years",
        citation.source,
        ComplianceStatus.PASS if has_trail else ComplianceStatus.WARNING,
        "Records stored with full audit trail" if has_trail else "No audit trail recorded for this vote",
    )


def _manual_checks(election: Election, rules: JurisdictionRules) -> list[ComplianceFinding]:
    checks = []
    if any(b.is_proxy for b in election.ballots):
        citation = rules.citation(
            "proxy", "Bylaws: Proxy authorization requirements", ComplianceSource.BYLAWS,
        )
        checks.append(_finding(
            "cc_proxy", citation.rule,
            "Written proxy authorization must be on file for each proxy vote",
            citation.source, ComplianceStatus.NOT_CHECKED,
            "Verify proxy authorization forms are collected and filed",
            auto_checked=False,
        ))
    if ElectionType(election.type) == ElectionType.BOARD_ELECTION:
        citation = rules.citation(
            "secret_ballot", "Best practice: Secret ballot", ComplianceSource.BEST_PRACTICE,
        )
        checks.append(_finding(
            "cc_secret_ballot", citation.rule,
            "Board member elections should use secret ballot",
            citation.source, ComplianceStatus.NOT_CHECKED,
            "Confirm individual votes are not disclosed to other voters",
            auto_checked=False,
        ))
    return checks


def _apply_override(finding: ComplianceFinding, overrides: dict) -> ComplianceFinding:
    override = overrides.get(finding.id)
    if override is None or finding.auto_checked:
        return finding
    return finding.model_copy(update={
        "status": override.status,
        "note": override.note if override.note is not None else finding.note,
    })


def generate_compliance_checks(context: ComplianceContext) -> list[ComplianceFinding]:
    election = context.election
    rules = context.rules or get_jurisdiction_rules(context.jurisdiction)
    documents = context.documents

    checks = [_notice_check(election, rules)]
    checks.extend(_quorum_checks(election, rules))

    if election.legal_ref:
        check = _legal_ref_check("cc_legal_ref", election.title, election.legal_ref, documents)
        if check:
            checks.append(check)
    for item in election.items:
        checks.append(_threshold_check(election, item, rules))
        if item.legal_ref:
            check = _legal_ref_check(f"cc_legal_ref_{item.id}", item.title, item.legal_ref, documents)
            if check:
                checks.append(check)

    checks.extend(_document_checks(election, documents))
    financial = _financial_check(election)
    if financial:
        checks.append(financial)
    checks.append(_records_check(election, rules))
    checks.extend(_manual_checks(election, rules))

    return [_apply_override(c, context.overrides) for c in checks]
