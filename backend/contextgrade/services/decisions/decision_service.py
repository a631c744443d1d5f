"""
Decision Service

Main orchestration service for the decision lifecycle.

Creation:
1. Resolve subject entity and deal (own transaction, idempotent)
2. Gather context signals (external, never fails)
3. Generate recommendation (external, never fails - falls back)
4. Persist decision + context snapshot as one atomic write

Review flows only through the state machine; context is never
re-gathered because snapshots are frozen.

The service performs data scoping (client_id filters) but no
authorization - callers resolve the client before reaching it.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union
from uuid import uuid4
import logging
import time

from sqlalchemy.orm import Session, joinedload, selectinload

from ...config import Settings
from ...errors import DecisionEngineError, DecisionNotFound, ValidationError
from ...models.db_models import (
    DecisionDB, DecisionType, DecisionStatus, DecisionConfidence, DecisionUrgency,
    DecisionOutcomeDB, DecisionLinkDB, HumanOverrideDB, OutcomeType, RelationshipType,
)
from ..context import (
    ContextGatherer, EntityProfile, SignalBundle,
    empty_signal_bundle, extract_decision_facts,
)
from ..recommendation import OpenAIRecommender, Recommendation, fallback_recommendation
from .entity_resolver import EntityResolver, DealInput
from .precedent_linker import PrecedentLinker
from .snapshot import build_snapshot_from_recommendation, load_policy_snapshot
from .state_machine import DecisionStateMachine

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class SubjectEntityInput:
    external_id: str
    name: str
    domain: Optional[str] = None
    industry: Optional[str] = None
    country: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class DecisionCreationResult:
    decision: DecisionDB
    recommendation: Recommendation


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        valid = [e.value for e in enum_cls]
        raise ValidationError(
            f"Invalid {field_name}. Must be one of: {valid}",
            {"field": field_name, "value": value},
        )


class DecisionService:
    """
    Orchestrates entity resolution, collaborators and the state machine.

    Collaborators default to the real implementations built from settings;
    tests inject fakes.
    """

    def __init__(
        self,
        db_session: Session,
        settings: Settings,
        gatherer: Optional[ContextGatherer] = None,
        recommender: Optional[OpenAIRecommender] = None,
    ):
        self.db = db_session
        self.settings = settings
        self.gatherer = gatherer or ContextGatherer(settings)
        self.recommender = recommender or OpenAIRecommender(settings)
        self.resolver = EntityResolver(db_session)
        self.state_machine = DecisionStateMachine(db_session, allow_rereview=settings.allow_rereview)
        self.linker = PrecedentLinker(db_session)

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_decision(
        self,
        client_id: str,
        subject_entity: SubjectEntityInput,
        decision_type: Union[DecisionType, str],
        deal: Optional[DealInput] = None,
        context_key: Optional[str] = None,
        urgency: Union[DecisionUrgency, str, None] = None,
    ) -> DecisionCreationResult:
        decision_type = _coerce_enum(DecisionType, decision_type, "decision_type")
        urgency = _coerce_enum(DecisionUrgency, urgency, "urgency") if urgency else DecisionUrgency.NORMAL

        logger.info(
            f"Processing decision creation for client {client_id}: "
            f"{subject_entity.name} ({subject_entity.external_id}), {decision_type.value}"
        )

        # Step 1: subject entity + deal
        try:
            entity = self.resolver.resolve_subject_entity(
                client_id=client_id,
                external_id=subject_entity.external_id,
                name=subject_entity.name,
                domain=subject_entity.domain,
                industry=subject_entity.industry,
                country=subject_entity.country,
                metadata=subject_entity.metadata,
            )
            deal_record = self.resolver.resolve_deal(entity, deal)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        profile = EntityProfile(
            name=entity.name,
            domain=entity.domain,
            industry=entity.industry,
            country=entity.country,
        )
        deal_amount = float(deal_record.amount) if deal_record is not None and deal_record.amount is not None else None

        # Steps 2-3: external collaborators, bounded and absorbed
        started = time.monotonic()
        signals = self._gather_context(profile)
        recommendation = self._recommend(profile, signals, decision_type, deal_amount)
        latency_ms = int((time.monotonic() - started) * 1000)

        # Step 4: decision + snapshot, atomically
        snapshot_input = build_snapshot_from_recommendation(
            signals,
            recommendation,
            latency_ms,
            policies=load_policy_snapshot(self.db, client_id),
        )
        decision = DecisionDB(
            id=str(uuid4()),
            client_id=client_id,
            subject_entity_id=entity.id,
            deal_id=deal_record.id if deal_record is not None else None,
            context_key=context_key or None,
            decision_type=decision_type,
            status=DecisionStatus.PROPOSED,
            urgency=urgency,
            recommended_action=recommendation.action.value,
            recommended_confidence=DecisionConfidence(recommendation.confidence.value.upper()),
            suggested_conditions=recommendation.suggested_conditions,
        )
        try:
            self.db.add(decision)
            self.db.add(snapshot_input.to_record(decision.id))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Decision persistence failed for client {client_id}: {e}")
            raise

        logger.info(
            f"Decision {decision.id} created: {recommendation.action.value} "
            f"({recommendation.confidence.value}){' [fallback]' if recommendation.is_fallback else ''}"
        )
        return DecisionCreationResult(
            decision=self.get_decision(decision.id),
            recommendation=recommendation,
        )

    def _gather_context(self, profile: EntityProfile) -> SignalBundle:
        try:
            signals = self.gatherer.gather(profile)
        except Exception as e:
            logger.error(f"Context gathering failed for {profile.name}: {e}", exc_info=True)
            return empty_signal_bundle()
        return signals if isinstance(signals, dict) else empty_signal_bundle()

    def _recommend(
        self,
        profile: EntityProfile,
        signals: SignalBundle,
        decision_type: DecisionType,
        deal_amount: Optional[float],
    ) -> Recommendation:
        try:
            recommendation = self.recommender.recommend(profile, signals, decision_type.value, deal_amount)
        except Exception as e:
            logger.error(f"Recommender failed for {profile.name}: {e}", exc_info=True)
            return fallback_recommendation(facts=extract_decision_facts(signals))
        if not isinstance(recommendation, Recommendation):
            logger.error(f"Recommender returned {type(recommendation).__name__}, using fallback")
            return fallback_recommendation(facts=extract_decision_facts(signals))
        return recommendation

    # =========================================================================
    # REVIEW
    # =========================================================================

    def review_decision(
        self,
        decision_id: str,
        acting_user: Optional[str],
        action: str,
        note: Optional[str] = None,
        final_action_text: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> DecisionDB:
        """
        Apply a human verdict. Status, decider, decided-at and (for override)
        the override row commit as one transaction.
        """
        acting_user = acting_user or SYSTEM_ACTOR
        logger.info(f"Processing decision review {decision_id}: {action} by {acting_user}")

        try:
            self.state_machine.apply_review(
                decision_id=decision_id,
                acting_user=acting_user,
                action=action,
                note=note,
                final_action_text=final_action_text,
                client_id=client_id,
            )
            self.db.commit()
        except DecisionEngineError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Decision review failed for {decision_id}: {e}")
            raise

        return self.get_decision(decision_id, client_id)

    # =========================================================================
    # RETRIEVAL
    # =========================================================================

    def find_decision(self, decision_id: str, client_id: Optional[str] = None) -> Optional[DecisionDB]:
        query = (
            self.db.query(DecisionDB)
            .options(
                joinedload(DecisionDB.context_snapshot),
                joinedload(DecisionDB.subject_entity),
                joinedload(DecisionDB.deal),
                joinedload(DecisionDB.decider),
                selectinload(DecisionDB.human_overrides).joinedload(HumanOverrideDB.user),
                selectinload(DecisionDB.outcomes),
                selectinload(DecisionDB.links_as_source).joinedload(DecisionLinkDB.target_decision),
            )
            .filter(DecisionDB.id == decision_id)
        )
        if client_id is not None:
            query = query.filter(DecisionDB.client_id == client_id)
        return query.populate_existing().first()

    def get_decision(self, decision_id: str, client_id: Optional[str] = None) -> DecisionDB:
        """
        Read-only. A decision owned by another client resolves as not found,
        never as forbidden.
        """
        decision = self.find_decision(decision_id, client_id)
        if decision is None:
            raise DecisionNotFound(decision_id)
        return decision

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    def record_outcome(
        self,
        decision_id: str,
        acting_user: Optional[str],
        outcome_type: Union[OutcomeType, str],
        notes: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> DecisionOutcomeDB:
        """Append a real-world outcome. Outcomes never change decision status."""
        outcome_type = _coerce_enum(OutcomeType, outcome_type, "outcome_type")
        decision = self.get_decision(decision_id, client_id)

        outcome = DecisionOutcomeDB(
            id=str(uuid4()),
            decision_id=decision.id,
            user_id=acting_user or SYSTEM_ACTOR,
            outcome_type=outcome_type,
            notes=notes,
            recorded_at=datetime.utcnow(),
        )
        try:
            self.db.add(outcome)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Outcome {outcome_type.value} recorded for decision {decision.id}")
        return outcome

    # =========================================================================
    # LINKS
    # =========================================================================

    def link_decisions(
        self,
        from_decision_id: str,
        to_decision_id: str,
        relationship_type: Union[RelationshipType, str],
        confidence: Optional[float] = None,
        notes: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> Optional[DecisionLinkDB]:
        """
        Both endpoints must exist in the caller's scope. Returns None when the
        link already existed.
        """
        relationship_type = _coerce_enum(RelationshipType, relationship_type, "relationship_type")
        if confidence is not None and not 0 <= confidence <= 1:
            raise ValidationError("confidence must be between 0 and 1", {"confidence": confidence})

        source = self.get_decision(from_decision_id, client_id)
        target = self.get_decision(to_decision_id, client_id)

        try:
            link = self.linker.link_decisions(source.id, target.id, relationship_type, confidence, notes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return link

