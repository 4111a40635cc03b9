"""
Export of an election's results to Excel: a summary sheet, one row per
ballot item outcome (candidates ranked underneath) and the ballot register.
"""
from __future__ import annotations

from openpyxl import Workbook

from app.models.election import Election
from app.schemas import ElectionResults


def _bold_header(ws) -> None:
    for cell in ws[1]:
        cell.font = cell.font.copy(bold=True)


def _autosize(ws) -> None:
    for col in ws.columns:
        max_len = 0
        for cell in col:
            if cell.value is not None:
                max_len = max(max_len, len(str(cell.value)))
        ws.column_dimensions[col[0].column_letter].width = min(max_len + 2, 50)


def export_results_to_excel(election: Election, results: ElectionResults, output_path: str) -> str:
    wb = Workbook()

    ws = wb.active
    ws.title = "Summary"
    ws.append(["Field", "Value"])
    for label, value in [
        ("Vote", election.title),
        ("Type", election.type.value),
        ("Status", election.status.value),
        ("Opened", election.opened_at.isoformat() if election.opened_at else ""),
        ("Closed", election.closed_at.isoformat() if election.closed_at else ""),
        ("Certified by", election.certified_by or ""),
        ("Quorum required (%)", results.quorum_required),
        ("Ownership voted (%)", results.total_voted_pct),
        ("Quorum met", "yes" if results.quorum_met else "no"),
        ("Units balloted", results.units_balloted),
        ("Units eligible", results.units_eligible),
        ("Proxy ballots", results.proxy_count),
    ]:
        ws.append([label, value])
    for method, count in results.participation_by_method.items():
        ws.append([f"Ballots ({method.value})", count])
    _bold_header(ws)
    _autosize(ws)

    ws = wb.create_sheet("Items")
    ws.append([
        "Item", "Type", "Threshold (%)", "Option", "Weight (%)", "Share of votes (%)",
        "Ballots", "Passed", "Adopted",
    ])
    for r in results.item_results:
        if r.candidate_results is None:
            ws.append([r.title, r.type.value, r.threshold, "", "", "", "",
                       "yes" if r.passed else "no", "yes" if r.adopted else "no"])
            ws.append(["", "", "", "approve", "", r.approve_pct, r.approve_count, "", ""])
            ws.append(["", "", "", "deny", "", r.deny_pct, r.deny_count, "", ""])
            ws.append(["", "", "", "abstain", "", r.abstain_pct, r.abstain_count, "", ""])
        else:
            ws.append([r.title, r.type.value, r.threshold, "", "", "", "",
                       "yes" if r.passed else "no", "yes" if r.adopted else "no"])
            for c in r.candidate_results:
                name = f"{c.name} (elected)" if c.candidate_id in r.elected else c.name
                ws.append(["", "", "", name, c.weight, c.vote_pct, c.vote_count, "", ""])
    _bold_header(ws)
    _autosize(ws)

    ws = wb.create_sheet("Ballots")
    ws.append(["Unit", "Owner", "Weight (%)", "Method", "Proxy", "Proxy voter", "Authorized by",
               "Recorded by", "Recorded at"])
    for b in election.ballots:
        ws.append([
            b.unit_number,
            b.owner or "",
            b.voting_pct,
            b.method.value,
            "yes" if b.is_proxy else "no",
            b.proxy_voter_name or "",
            b.proxy_authorized_by or "",
            b.recorded_by,
            b.recorded_at.isoformat() if b.recorded_at else "",
        ])
    _bold_header(ws)
    _autosize(ws)

    if results.warnings:
        ws = wb.create_sheet("Warnings")
        ws.append(["Warning"])
        for w in results.warnings:
            ws.append([w])
        _bold_header(ws)
        _autosize(ws)

    wb.save(output_path)
    return output_path
