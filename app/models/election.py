import enum
import json
from datetime import datetime

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.database import Base


class ElectionType(str, enum.Enum):
    BOARD_ELECTION = "board_election"
    BUDGET_APPROVAL = "budget_approval"
    SPECIAL_ASSESSMENT = "special_assessment"
    BYLAW_AMENDMENT = "bylaw_amendment"
    RULE_CHANGE = "rule_change"
    MEETING_MOTION = "meeting_motion"
    OTHER = "other"


class ElectionStatus(str, enum.Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    CERTIFIED = "certified"


class BallotItemType(str, enum.Enum):
    YES_NO = "yes_no"
    MULTI_CANDIDATE = "multi_candidate"
    MULTI_SELECT = "multi_select"


class VoteChoice(str, enum.Enum):
    APPROVE = "approve"
    DENY = "deny"
    ABSTAIN = "abstain"


class VoteMethod(str, enum.Enum):
    PAPER = "paper"
    ORAL = "oral"
    VIRTUAL = "virtual"


class ComplianceSource(str, enum.Enum):
    STATUTE = "statute"
    BYLAWS = "bylaws"
    COVENANTS = "covenants"
    BEST_PRACTICE = "best_practice"


class ComplianceStatus(str, enum.Enum):
    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"
    NOT_CHECKED = "not_checked"


class TimelineEventType(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    OPENED = "opened"
    BALLOT_RECORDED = "ballot_recorded"
    BALLOT_REMOVED = "ballot_removed"
    CLOSED = "closed"
    CERTIFIED = "certified"
    COMMENT = "comment"
    COMPLIANCE_UPDATED = "compliance_updated"
    DOCUMENT_ADDED = "document_added"
    DOCUMENT_REMOVED = "document_removed"
    RESOLUTION_RECORDED = "resolution_recorded"
    CASE_LINKED = "case_linked"
    MEETING_LINKED = "meeting_linked"


class Election(Base):
    __tablename__ = "elections"

    id = Column(Integer, primary_key=True)
    title = Column(String(300), nullable=False)
    type = Column(Enum(ElectionType), nullable=False, default=ElectionType.OTHER)
    status = Column(Enum(ElectionStatus), nullable=False, default=ElectionStatus.DRAFT, index=True)
    description = Column(Text, nullable=True)
    legal_ref = Column(String(300), nullable=True)
    notes = Column(Text, nullable=True)
    quorum_required = Column(Float, nullable=False, default=25.0)  # % of total ownership
    scheduled_close_date = Column(Date, nullable=True)
    notice_date = Column(Date, nullable=True)

    created_by = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    opened_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    certified_at = Column(DateTime, nullable=True)
    certified_by = Column(String(200), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Opaque references into the case tracker and meeting minutes
    linked_case_id = Column(String(100), nullable=True)
    linked_meeting_id = Column(String(100), nullable=True)

    items = relationship(
        "BallotItem", back_populates="election", cascade="all, delete-orphan",
        order_by="BallotItem.order",
    )
    ballots = relationship(
        "Ballot", back_populates="election", cascade="all, delete-orphan",
        order_by=lambda: [Ballot.recorded_at, Ballot.id],
    )
    compliance_checks = relationship(
        "ComplianceCheck", back_populates="election", cascade="all, delete-orphan",
        order_by="ComplianceCheck.id",
    )
    timeline = relationship(
        "TimelineEvent", back_populates="election", cascade="all, delete-orphan",
        order_by=lambda: [TimelineEvent.date, TimelineEvent.id],
    )
    comments = relationship(
        "ElectionComment", back_populates="election", cascade="all, delete-orphan",
        order_by="ElectionComment.created_at",
    )
    resolution = relationship(
        "Resolution", back_populates="election", cascade="all, delete-orphan",
        uselist=False,
    )

    def item_by_id(self, item_id):
        for item in self.items:
            if item.id == item_id:
                return item
        return None


class BallotItem(Base):
    __tablename__ = "ballot_items"

    id = Column(Integer, primary_key=True)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False, index=True)
    order = Column(Integer, nullable=False, default=0)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    rationale = Column(Text, nullable=True)
    type = Column(Enum(BallotItemType), nullable=False, default=BallotItemType.YES_NO)
    max_selections = Column(Integer, nullable=True)
    required_threshold = Column(Float, nullable=False, default=50.1)
    legal_ref = Column(String(300), nullable=True)
    financial_impact = Column(Text, nullable=True)

    election = relationship("Election", back_populates="items")
    candidates = relationship(
        "Candidate", back_populates="ballot_item", cascade="all, delete-orphan",
        order_by="Candidate.order",
    )
    attachments = relationship(
        "BallotItemAttachment", back_populates="ballot_item", cascade="all, delete-orphan",
        order_by="BallotItemAttachment.id",
    )

    @property
    def candidate_ids(self) -> list:
        return [c.id for c in self.candidates]


class Candidate(Base):
    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True)
    ballot_item_id = Column(Integer, ForeignKey("ballot_items.id"), nullable=False, index=True)
    order = Column(Integer, nullable=False, default=0)
    name = Column(String(300), nullable=False)
    unit = Column(String(20), nullable=True)
    bio = Column(Text, nullable=True)

    ballot_item = relationship("BallotItem", back_populates="candidates")


class BallotItemAttachment(Base):
    __tablename__ = "ballot_item_attachments"

    id = Column(Integer, primary_key=True)
    ballot_item_id = Column(Integer, ForeignKey("ballot_items.id"), nullable=False, index=True)
    name = Column(String(300), nullable=False)
    size = Column(String(50), nullable=True)
    file_type = Column(String(20), nullable=True)  # pdf, xlsx, ...
    uploaded_by = Column(String(200), nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow)

    ballot_item = relationship("BallotItem", back_populates="attachments")


class Ballot(Base):
    __tablename__ = "ballots"

    id = Column(Integer, primary_key=True)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False, index=True)
    unit_number = Column(String(20), nullable=False, index=True)
    owner = Column(String(300), nullable=True)
    # Ownership weight captured when the ballot was cast
    voting_pct = Column(Float, nullable=True)
    method = Column(Enum(VoteMethod), nullable=False, default=VoteMethod.PAPER)
    is_proxy = Column(Boolean, default=False)
    proxy_voter_name = Column(String(300), nullable=True)
    proxy_authorized_by = Column(String(300), nullable=True)
    recorded_by = Column(String(200), nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow)
    comment = Column(Text, nullable=True)

    election = relationship("Election", back_populates="ballots")
    votes = relationship("BallotVote", back_populates="ballot", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("election_id", "unit_number", name="uq_ballots_election_unit"),
    )

    def vote_for(self, item_id):
        for bv in self.votes:
            if bv.ballot_item_id == item_id:
                return bv
        return None


class BallotVote(Base):
    __tablename__ = "ballot_votes"

    id = Column(Integer, primary_key=True)
    ballot_id = Column(Integer, ForeignKey("ballots.id"), nullable=False, index=True)
    ballot_item_id = Column(Integer, ForeignKey("ballot_items.id"), nullable=False, index=True)
    choice = Column(Enum(VoteChoice), nullable=True)  # yes_no items
    selected_candidates = Column(Text, nullable=True)  # JSON list, selection items

    ballot = relationship("Ballot", back_populates="votes")
    ballot_item = relationship("BallotItem")

    @property
    def candidate_ids(self) -> list:
        if not self.selected_candidates:
            return []
        return json.loads(self.selected_candidates)

    @candidate_ids.setter
    def candidate_ids(self, value):
        self.selected_candidates = json.dumps(list(value)) if value is not None else None


class ComplianceCheck(Base):
    __tablename__ = "compliance_checks"

    id = Column(Integer, primary_key=True)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False, index=True)
    check_key = Column(String(100), nullable=False)
    rule = Column(Text, nullable=False)
    requirement = Column(Text, nullable=True)
    source = Column(Enum(ComplianceSource), nullable=False, default=ComplianceSource.BEST_PRACTICE)
    status = Column(Enum(ComplianceStatus), nullable=False, default=ComplianceStatus.NOT_CHECKED)
    auto_checked = Column(Boolean, default=False)
    note = Column(Text, nullable=True)
    manual_override = Column(Boolean, default=False)
    updated_by = Column(String(200), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    election = relationship("Election", back_populates="compliance_checks")

    __table_args__ = (
        UniqueConstraint("election_id", "check_key", name="uq_compliance_checks_election_key"),
    )


class TimelineEvent(Base):
    __tablename__ = "timeline_events"

    id = Column(Integer, primary_key=True)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False, index=True)
    type = Column(Enum(TimelineEventType), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime, default=datetime.utcnow)
    actor = Column(String(200), nullable=False)

    election = relationship("Election", back_populates="timeline")


class ElectionComment(Base):
    __tablename__ = "election_comments"

    id = Column(Integer, primary_key=True)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False, index=True)
    unit_number = Column(String(20), nullable=True)
    owner = Column(String(300), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    election = relationship("Election", back_populates="comments")


class Resolution(Base):
    __tablename__ = "resolutions"

    id = Column(Integer, primary_key=True)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False, unique=True)
    text = Column(Text, nullable=False)
    effective_date = Column(Date, nullable=True)
    recorded_by = Column(String(200), nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow)
    linked_case_id = Column(String(100), nullable=True)

    election = relationship("Election", back_populates="resolution")
