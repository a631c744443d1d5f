"""ContextGrade - Data Models"""
from .db_models import (
    # Enums
    ClientPlan, MembershipRole, MembershipStatus, DealStage,
    DecisionType, DecisionStatus, DecisionConfidence, DecisionUrgency,
    OverrideAction, OutcomeType, RelationshipType,
    # Tenancy / identity
    ClientDB, UserDB, MembershipDB, PolicyDB,
    # Subject
    SubjectEntityDB, DealDB,
    # Decision lifecycle
    DecisionDB, ContextSnapshotDB, HumanOverrideDB, DecisionOutcomeDB, DecisionLinkDB,
)

__all__ = [
    "ClientPlan", "MembershipRole", "MembershipStatus", "DealStage",
    "DecisionType", "DecisionStatus", "DecisionConfidence", "DecisionUrgency",
    "OverrideAction", "OutcomeType", "RelationshipType",
    "ClientDB", "UserDB", "MembershipDB", "PolicyDB",
    "SubjectEntityDB", "DealDB",
    "DecisionDB", "ContextSnapshotDB", "HumanOverrideDB", "DecisionOutcomeDB", "DecisionLinkDB",
]
