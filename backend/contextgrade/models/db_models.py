"""
ContextGrade - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, Numeric, UniqueConstraint, event, inspect,
)
from sqlalchemy.orm import relationship, foreign
from ..database import Base
from ..errors import ImmutableRecordError


# =============================================================================
# ENUMS
# =============================================================================

class ClientPlan(str, Enum):
    """Subscription tier of a client."""
    FREE = "FREE"
    STARTER = "STARTER"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"


class MembershipRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    APPROVER = "APPROVER"
    VIEWER = "VIEWER"


class MembershipStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"


class DealStage(str, Enum):
    OPEN = "OPEN"
    WON = "WON"
    LOST = "LOST"
    STALLED = "STALLED"


class DecisionType(str, Enum):
    """Category of judgment being made."""
    DISCOUNT = "DISCOUNT"
    ONBOARDING = "ONBOARDING"
    PAYMENT_TERMS = "PAYMENT_TERMS"
    CREDIT_EXTENSION = "CREDIT_EXTENSION"
    PARTNERSHIP = "PARTNERSHIP"
    RENEWAL = "RENEWAL"
    ESCALATION = "ESCALATION"
    CUSTOM = "CUSTOM"


class DecisionStatus(str, Enum):
    """States in the decision lifecycle."""
    PROPOSED = "PROPOSED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    OVERRIDDEN = "OVERRIDDEN"
    ESCALATED = "ESCALATED"
    EXPIRED = "EXPIRED"  # Set by an out-of-band expiry process only


class DecisionConfidence(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class DecisionUrgency(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class OverrideAction(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"
    MODIFIED = "MODIFIED"


class OutcomeType(str, Enum):
    """Real-world outcome observed after a decision was made."""
    PAID_ON_TIME = "PAID_ON_TIME"
    PAID_LATE = "PAID_LATE"
    CHURNED = "CHURNED"
    FRAUD = "FRAUD"
    EXPANDED = "EXPANDED"
    DOWNGRADED = "DOWNGRADED"
    DEFAULTED = "DEFAULTED"
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class RelationshipType(str, Enum):
    """Directed relationship between two decisions."""
    PRECEDENT = "PRECEDENT"
    SIMILAR_CASE = "SIMILAR_CASE"
    POLICY_EXCEPTION = "POLICY_EXCEPTION"
    CONTRADICTS = "CONTRADICTS"
    SUPPORTS = "SUPPORTS"
    FOLLOW_UP = "FOLLOW_UP"


# =============================================================================
# TENANCY / IDENTITY
# =============================================================================

class ClientDB(Base):
    """A tenant of the platform. Owns entities, decisions and policies."""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    domain = Column(String(255), nullable=True)
    plan = Column(SQLEnum(ClientPlan), default=ClientPlan.STARTER, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    api_key = Column(String(64), unique=True, nullable=True, index=True)  # Per-tenant credential

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    memberships = relationship("MembershipDB", back_populates="client")
    policies = relationship("PolicyDB", back_populates="client")


class UserDB(Base):
    """Platform user. Acts on clients through memberships."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    memberships = relationship("MembershipDB", back_populates="user")


class MembershipDB(Base):
    """User <-> Client join with role and approval status."""
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uq_memberships_user_client"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(MembershipRole), default=MembershipRole.VIEWER, nullable=False)
    status = Column(SQLEnum(MembershipStatus), default=MembershipStatus.PENDING, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("UserDB", back_populates="memberships")
    client = relationship("ClientDB", back_populates="memberships")


class PolicyDB(Base):
    """Client-owned policy. Active policies are frozen into each context snapshot."""
    __tablename__ = "policies"

    id = Column(String(36), primary_key=True)  # UUID
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    rules = Column(JSON, nullable=True)
    version = Column(Integer, default=1, nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    client = relationship("ClientDB", back_populates="policies")


# =============================================================================
# SUBJECT ENTITY / DEAL
# =============================================================================

class SubjectEntityDB(Base):
    """
    The company being evaluated.
    (client_id, external_id) is unique - the external id is the caller's own
    identifier, which makes repeated webhook deliveries idempotent.
    """
    __tablename__ = "subject_entities"
    __table_args__ = (
        UniqueConstraint("client_id", "external_id", name="uq_subject_entities_client_external"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)

    # Refreshable attributes
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=True)
    industry = Column(String(255), nullable=True)
    country = Column(String(100), nullable=True)
    metadata_json = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    deals = relationship("DealDB", back_populates="subject_entity")


class DealDB(Base):
    """Optional revenue context. Deduplicated only by external deal id."""
    __tablename__ = "deals"

    id = Column(String(36), primary_key=True)  # UUID
    subject_entity_id = Column(String(36), ForeignKey("subject_entities.id", ondelete="CASCADE"), nullable=False, index=True)
    external_deal_id = Column(String(255), nullable=True, index=True)  # CRM deal id
    amount = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    discount_requested = Column(Float, nullable=True)  # Percentage 0-100
    stage = Column(SQLEnum(DealStage), default=DealStage.OPEN, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subject_entity = relationship("SubjectEntityDB", back_populates="deals")


# =============================================================================
# DECISION LIFECYCLE
# =============================================================================

class DecisionDB(Base):
    """
    The atomic unit of truth.
    Never deleted. Client, subject entity and decision type are fixed at
    creation; status, final action, decider and decided-at change only
    through the review transition.
    """
    __tablename__ = "decisions"

    id = Column(String(36), primary_key=True)  # UUID
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    subject_entity_id = Column(String(36), ForeignKey("subject_entities.id"), nullable=False, index=True)
    deal_id = Column(String(36), ForeignKey("deals.id"), nullable=True)
    context_key = Column(String(255), nullable=True)  # Client-defined category

    decision_type = Column(SQLEnum(DecisionType), nullable=False)
    status = Column(SQLEnum(DecisionStatus), default=DecisionStatus.PROPOSED, nullable=False, index=True)
    urgency = Column(SQLEnum(DecisionUrgency), default=DecisionUrgency.NORMAL, nullable=False)

    # Recommendation
    recommended_action = Column(String(50), nullable=True)
    recommended_confidence = Column(SQLEnum(DecisionConfidence), nullable=True)
    suggested_conditions = Column(JSON, nullable=True)

    # Human verdict
    final_action = Column(Text, nullable=True)
    decided_by = Column(String(36), nullable=True)  # User id, or "system" for API-key callers

    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    decided_at = Column(DateTime, nullable=True)

    # Relationships
    subject_entity = relationship("SubjectEntityDB")
    deal = relationship("DealDB")
    context_snapshot = relationship("ContextSnapshotDB", back_populates="decision", uselist=False)
    human_overrides = relationship(
        "HumanOverrideDB", back_populates="decision", order_by="HumanOverrideDB.created_at"
    )
    outcomes = relationship(
        "DecisionOutcomeDB", back_populates="decision", order_by="DecisionOutcomeDB.recorded_at"
    )
    links_as_source = relationship(
        "DecisionLinkDB",
        foreign_keys="DecisionLinkDB.from_decision_id",
        back_populates="source_decision",
    )
    decider = relationship(
        "UserDB",
        primaryjoin=lambda: foreign(DecisionDB.decided_by) == UserDB.id,
        viewonly=True,
    )


class ContextSnapshotDB(Base):
    """
    Frozen record of what the world looked like when the recommendation
    was produced. Exactly one per decision, written with it, never changed.
    """
    __tablename__ = "decision_context_snapshots"

    id = Column(String(36), primary_key=True)  # UUID
    decision_id = Column(String(36), ForeignKey("decisions.id"), unique=True, nullable=False)

    signals = Column(JSON, nullable=False)  # Opaque signal bundle
    policies = Column(JSON, nullable=True)  # Active policies at decision time
    agent_rationale = Column(Text, nullable=True)
    agent_model = Column(String(100), nullable=True)
    processing_time_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    decision = relationship("DecisionDB", back_populates="context_snapshot")


class HumanOverrideDB(Base):
    """Append-only trace of a human overriding the recommendation."""
    __tablename__ = "decision_human_overrides"

    id = Column(String(36), primary_key=True)  # UUID
    decision_id = Column(String(36), ForeignKey("decisions.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    override_action = Column(SQLEnum(OverrideAction), nullable=False)
    override_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    decision = relationship("DecisionDB", back_populates="human_overrides")
    user = relationship(
        "UserDB",
        primaryjoin=lambda: foreign(HumanOverrideDB.user_id) == UserDB.id,
        viewonly=True,
    )


class DecisionOutcomeDB(Base):
    """Append-only real-world outcome recorded against a decision."""
    __tablename__ = "decision_outcomes"

    id = Column(String(36), primary_key=True)  # UUID
    decision_id = Column(String(36), ForeignKey("decisions.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    outcome_type = Column(SQLEnum(OutcomeType), nullable=False)
    notes = Column(Text, nullable=True)

    recorded_at = Column(DateTime, default=datetime.utcnow)

    decision = relationship("DecisionDB", back_populates="outcomes")


class DecisionLinkDB(Base):
    """Directed, typed relationship between two decisions."""
    __tablename__ = "decision_links"
    __table_args__ = (
        UniqueConstraint(
            "from_decision_id", "to_decision_id", "relationship_type",
            name="uq_decision_links_from_to_type",
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    from_decision_id = Column(String(36), ForeignKey("decisions.id"), nullable=False, index=True)
    to_decision_id = Column(String(36), ForeignKey("decisions.id"), nullable=False, index=True)
    relationship_type = Column(SQLEnum(RelationshipType), nullable=False)
    confidence = Column(Numeric(3, 2), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    source_decision = relationship(
        "DecisionDB", foreign_keys=[from_decision_id], back_populates="links_as_source"
    )
    target_decision = relationship("DecisionDB", foreign_keys=[to_decision_id])


# =============================================================================
# IMMUTABILITY GUARDS
# =============================================================================

DECISION_IDENTITY_FIELDS = ("client_id", "subject_entity_id", "decision_type")


@event.listens_for(DecisionDB, "before_update")
def _decision_before_update(_mapper, _connection, target: DecisionDB):
    state = inspect(target)
    for field in DECISION_IDENTITY_FIELDS:
        if state.attrs[field].history.has_changes():
            raise ImmutableRecordError(f"Decision.{field} cannot change after creation")


@event.listens_for(DecisionDB, "before_delete")
def _decision_before_delete(_mapper, _connection, target: DecisionDB):
    raise ImmutableRecordError("Decisions are never deleted")


def _reject_mutation(_mapper, _connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only")


for _model in (ContextSnapshotDB, HumanOverrideDB, DecisionOutcomeDB):
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
