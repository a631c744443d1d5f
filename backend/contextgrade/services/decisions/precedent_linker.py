"""
Precedent Linker

Best-effort creation of typed links between decisions. Nothing else in the
system depends on links, so linking fails open: an existing
(from, to, type) triple is treated as success.
"""
from decimal import Decimal
from typing import Optional
from uuid import uuid4
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import DecisionLinkDB, RelationshipType

logger = logging.getLogger(__name__)


class PrecedentLinker:

    def __init__(self, db: Session):
        self.db = db

    def find_link(
        self,
        from_decision_id: str,
        to_decision_id: str,
        relationship_type: RelationshipType,
    ) -> Optional[DecisionLinkDB]:
        return (
            self.db.query(DecisionLinkDB)
            .filter(
                DecisionLinkDB.from_decision_id == from_decision_id,
                DecisionLinkDB.to_decision_id == to_decision_id,
                DecisionLinkDB.relationship_type == relationship_type,
            )
            .first()
        )

    def link_decisions(
        self,
        from_decision_id: str,
        to_decision_id: str,
        relationship_type: RelationshipType,
        confidence: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> Optional[DecisionLinkDB]:
        """
        Create a link, or return None if it already exists.

        The insert runs in a savepoint so a duplicate-key failure from a
        concurrent request does not poison the caller's transaction.
        """
        relationship_type = RelationshipType(relationship_type)

        if self.find_link(from_decision_id, to_decision_id, relationship_type) is not None:
            logger.debug(f"Decision link already exists: {from_decision_id} -> {to_decision_id} ({relationship_type.value})")
            return None

        link = DecisionLinkDB(
            id=str(uuid4()),
            from_decision_id=from_decision_id,
            to_decision_id=to_decision_id,
            relationship_type=relationship_type,
            confidence=Decimal(str(confidence)) if confidence is not None else None,
            notes=notes,
        )
        try:
            with self.db.begin_nested():
                self.db.add(link)
        except IntegrityError:
            logger.debug(f"Decision link may already exist: {from_decision_id} -> {to_decision_id}")
            return None

        return link
