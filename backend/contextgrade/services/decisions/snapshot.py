"""
Context Snapshot Builder

Pure data assembly: freezes the gathered signals, the active policies and
the recommender's rationale into a single record. The decision service
persists it as a child row in the same transaction as the decision.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import ContextSnapshotDB, PolicyDB
from ..recommendation import Recommendation


@dataclass(frozen=True)
class ContextSnapshotInput:
    signals: Dict[str, Any]
    agent_rationale: Optional[str]
    agent_model: Optional[str]
    processing_time_ms: Optional[int]
    policies: Optional[List[Dict[str, Any]]] = None

    def to_record(self, decision_id: str) -> ContextSnapshotDB:
        return ContextSnapshotDB(
            id=str(uuid4()),
            decision_id=decision_id,
            signals=self.signals,
            policies=self.policies,
            agent_rationale=self.agent_rationale,
            agent_model=self.agent_model,
            processing_time_ms=self.processing_time_ms,
        )


def build_snapshot(
    signals: Dict[str, Any],
    rationale: Optional[List[str]],
    model_id: Optional[str],
    latency_ms: Optional[int],
    policies: Optional[List[Dict[str, Any]]] = None,
) -> ContextSnapshotInput:
    """Assemble a snapshot input. No side effects."""
    rationale_text = "\n".join(line for line in (rationale or []) if line) or None
    return ContextSnapshotInput(
        signals=signals if signals is not None else {},
        agent_rationale=rationale_text,
        agent_model=model_id,
        processing_time_ms=int(latency_ms) if latency_ms is not None else None,
        policies=policies or None,
    )


def build_snapshot_from_recommendation(
    signals: Dict[str, Any],
    recommendation: Recommendation,
    latency_ms: Optional[int],
    policies: Optional[List[Dict[str, Any]]] = None,
) -> ContextSnapshotInput:
    return build_snapshot(
        signals,
        recommendation.rationale,
        recommendation.model,
        latency_ms,
        policies=policies,
    )


def load_policy_snapshot(db: Session, client_id: str) -> List[Dict[str, Any]]:
    """Active policies of a client, in a JSON-ready form."""
    policies = (
        db.query(PolicyDB)
        .filter(PolicyDB.client_id == client_id, PolicyDB.active.is_(True))
        .order_by(PolicyDB.name)
        .all()
    )
    return [
        {
            "id": p.id,
            "name": p.name,
            "version": p.version,
            "rules": p.rules,
        }
        for p in policies
    ]


def rationale_lines(snapshot: Optional[ContextSnapshotDB]) -> List[str]:
    """Split a stored rationale back into its lines."""
    if snapshot is None or not snapshot.agent_rationale:
        return []
    return [line for line in snapshot.agent_rationale.split("\n") if line]
