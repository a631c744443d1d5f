"""
Decision State Machine

PROPOSED is the only initial state. Human review moves a decision to one
of APPROVED, REJECTED, OVERRIDDEN or ESCALATED. EXPIRED is reachable only
through an out-of-band expiry process. No transition out of a terminal
state is exposed.

The state machine only flushes; the caller owns the transaction so the
status update and the override trace commit (or roll back) together.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...errors import DecisionNotFound, DecisionAlreadyResolved, InvalidAction
from ...models.db_models import (
    DecisionDB, DecisionStatus, HumanOverrideDB, OverrideAction,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

STATE_CONFIG: Dict[DecisionStatus, Dict[str, Any]] = {
    DecisionStatus.PROPOSED: {
        "description": "Recommendation produced, awaiting human review",
        "allowed_transitions": [
            DecisionStatus.APPROVED,
            DecisionStatus.REJECTED,
            DecisionStatus.OVERRIDDEN,
            DecisionStatus.ESCALATED,
            DecisionStatus.EXPIRED,
        ],
        "terminal": False,
    },
    DecisionStatus.APPROVED: {
        "description": "Reviewer accepted the recommendation",
        "allowed_transitions": [],
        "terminal": True,
    },
    DecisionStatus.REJECTED: {
        "description": "Reviewer rejected the request",
        "allowed_transitions": [],
        "terminal": True,
    },
    DecisionStatus.OVERRIDDEN: {
        "description": "Reviewer replaced the recommendation with their own action",
        "allowed_transitions": [],
        "terminal": True,
    },
    DecisionStatus.ESCALATED: {
        "description": "Reviewer handed the decision to a higher authority",
        "allowed_transitions": [],
        "terminal": True,
    },
    DecisionStatus.EXPIRED: {
        "description": "Review window elapsed without a verdict",
        "allowed_transitions": [],
        "terminal": True,
    },
}


@dataclass(frozen=True)
class ReviewTransition:
    action: str
    status: DecisionStatus
    default_final_action: str
    records_override: bool = False


REVIEW_TRANSITIONS: Dict[str, ReviewTransition] = {
    "approve": ReviewTransition("approve", DecisionStatus.APPROVED, "approved"),
    "reject": ReviewTransition("reject", DecisionStatus.REJECTED, "rejected"),
    "override": ReviewTransition("override", DecisionStatus.OVERRIDDEN, "overridden", records_override=True),
    "escalate": ReviewTransition("escalate", DecisionStatus.ESCALATED, "escalated"),
}


# =============================================================================
# STATE MACHINE
# =============================================================================

class DecisionStateMachine:
    """
    Applies review transitions.

    With allow_rereview=False (the default) the status update is
    conditional on the decision still being PROPOSED, so of two concurrent
    reviewers exactly one wins and the other gets DecisionAlreadyResolved.
    """

    def __init__(self, db_session: Session, allow_rereview: bool = False):
        self.db = db_session
        self.allow_rereview = allow_rereview

    def get_state_config(self, state: DecisionStatus) -> Dict[str, Any]:
        return STATE_CONFIG.get(state, {})

    def can_transition(self, from_state: DecisionStatus, to_state: DecisionStatus) -> Tuple[bool, str]:
        """Returns (allowed, reason)."""
        allowed = self.get_state_config(from_state).get("allowed_transitions", [])
        if to_state in allowed:
            return True, "Transition allowed"
        return False, f"Cannot transition from {from_state.value} to {to_state.value}"

    def resolve_transition(self, action: str) -> ReviewTransition:
        transition = REVIEW_TRANSITIONS.get((action or "").strip().lower())
        if transition is None:
            raise InvalidAction(action, valid_actions=REVIEW_TRANSITIONS.keys())
        return transition

    @staticmethod
    def final_action_for(
        transition: ReviewTransition,
        decision: DecisionDB,
        final_action_text: Optional[str] = None,
    ) -> str:
        if transition.status == DecisionStatus.APPROVED:
            return decision.recommended_action or transition.default_final_action
        if transition.status == DecisionStatus.OVERRIDDEN:
            return final_action_text or transition.default_final_action
        return transition.default_final_action

    def apply_review(
        self,
        decision_id: str,
        acting_user: str,
        action: str,
        note: Optional[str] = None,
        final_action_text: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> DecisionDB:
        """
        Move a decision out of PROPOSED.

        Writes status, final action, decider and decided-at, and for
        'override' appends a HumanOverride row with the note as reason.
        Flushes but does not commit.
        """
        transition = self.resolve_transition(action)

        query = self.db.query(DecisionDB).filter(DecisionDB.id == decision_id)
        if client_id is not None:
            query = query.filter(DecisionDB.client_id == client_id)
        decision = query.first()
        if decision is None:
            raise DecisionNotFound(decision_id)

        now = datetime.utcnow()
        stmt = (
            update(DecisionDB)
            .where(DecisionDB.id == decision.id)
            .values(
                status=transition.status,
                final_action=self.final_action_for(transition, decision, final_action_text),
                decided_by=acting_user,
                decided_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if not self.allow_rereview:
            stmt = stmt.where(DecisionDB.status == DecisionStatus.PROPOSED)

        result = self.db.execute(stmt)
        if result.rowcount == 0:
            self.db.refresh(decision)
            raise DecisionAlreadyResolved(decision.id, decision.status.value)

        if transition.records_override:
            self._append_override(decision.id, acting_user, note)

        self.db.flush()
        self.db.refresh(decision)

        logger.info(f"Decision {decision.id} reviewed: {action} -> {transition.status.value} by {acting_user}")
        return decision

    def _append_override(self, decision_id: str, acting_user: str, reason: Optional[str]) -> HumanOverrideDB:
        override = HumanOverrideDB(
            id=str(uuid4()),
            decision_id=decision_id,
            user_id=acting_user,
            override_action=OverrideAction.MODIFIED,
            override_reason=reason or None,
        )
        self.db.add(override)
        return override
