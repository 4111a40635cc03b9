from app.models.election import (
    Election, BallotItem, Candidate, BallotItemAttachment, Ballot, BallotVote,
    ComplianceCheck, TimelineEvent, ElectionComment, Resolution,
    ElectionType, ElectionStatus, BallotItemType, VoteChoice, VoteMethod,
    ComplianceSource, ComplianceStatus, TimelineEventType,
)
from app.models.unit import Unit, UnitStatus
from app.models.administration import BuildingInfo, GoverningDocument, DocumentStatus

__all__ = [
    "Election", "BallotItem", "Candidate", "BallotItemAttachment", "Ballot", "BallotVote",
    "ComplianceCheck", "TimelineEvent", "ElectionComment", "Resolution",
    "ElectionType", "ElectionStatus", "BallotItemType", "VoteChoice", "VoteMethod",
    "ComplianceSource", "ComplianceStatus", "TimelineEventType",
    "Unit", "UnitStatus",
    "BuildingInfo", "GoverningDocument", "DocumentStatus",
]
