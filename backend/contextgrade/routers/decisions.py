"""
Decisions API Router

Endpoints for the decision lifecycle: creation (webhook entry point),
human review, audit retrieval, outcomes and precedent links.

Every route resolves the caller's client first; the decision service only
ever sees a resolved client id.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_caller
from ..config import Settings, get_settings
from ..database import get_db
from ..models.db_models import DecisionDB, DecisionType, DecisionUrgency, DecisionLinkDB
from ..services.access import Caller, ScopeResolver
from ..services.context import ContextGatherer
from ..services.decisions import DecisionService, DealInput, SubjectEntityInput
from ..services.decisions.snapshot import rationale_lines
from ..services.recommendation import OpenAIRecommender, Recommendation


router = APIRouter(prefix="/decisions", tags=["decisions"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SubjectEntityPayload(BaseModel):
    external_id: str = Field(..., min_length=1, description="Caller's own identifier for the entity")
    name: str = Field(..., min_length=1)
    domain: Optional[str] = None
    industry: Optional[str] = None
    country: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class DealPayload(BaseModel):
    external_deal_id: Optional[str] = Field(None, description="CRM deal id - used for deduplication")
    amount: Optional[Decimal] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    discount_requested: Optional[float] = Field(None, ge=0, le=100)


class CreateDecisionRequest(BaseModel):
    client_id: Optional[str] = Field(None, description="Required only with the administrative API key")
    subject_entity: SubjectEntityPayload
    deal: Optional[DealPayload] = None
    decision_type: DecisionType
    context_key: Optional[str] = None
    urgency: Optional[DecisionUrgency] = None


class ReviewDecisionRequest(BaseModel):
    action: str = Field(..., description="approve | reject | override | escalate")
    note: Optional[str] = None
    final_action: Optional[str] = Field(None, description="Custom final action when overriding")
    client_id: Optional[str] = None


class RecordOutcomeRequest(BaseModel):
    outcome_type: str
    notes: Optional[str] = None
    client_id: Optional[str] = None


class LinkDecisionRequest(BaseModel):
    to_decision_id: str
    relationship_type: str
    confidence: Optional[float] = Field(None, ge=0, le=1)
    notes: Optional[str] = None
    client_id: Optional[str] = None


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class RecommendationView(BaseModel):
    recommendation: str
    confidence: str
    rationale: List[str]
    suggested_conditions: Optional[List[str]] = None


class ContextView(BaseModel):
    signals: Any
    policies: Optional[Any] = None
    agent_rationale: Optional[str] = None
    agent_model: Optional[str] = None
    processing_time_ms: Optional[int] = None


class OverrideView(BaseModel):
    user_id: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    override_action: str
    override_reason: Optional[str] = None
    created_at: datetime


class OutcomeView(BaseModel):
    id: str
    outcome_type: str
    user_id: Optional[str] = None
    notes: Optional[str] = None
    recorded_at: datetime


class LinkView(BaseModel):
    id: str
    relationship_type: str
    target_decision_id: str
    target_decision_type: Optional[str] = None
    target_status: Optional[str] = None
    confidence: Optional[float] = None
    notes: Optional[str] = None


class SubjectEntityView(BaseModel):
    id: str
    external_id: str
    name: str
    domain: Optional[str] = None
    industry: Optional[str] = None
    country: Optional[str] = None


class DeciderView(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class DecisionResponse(BaseModel):
    id: str
    client_id: str
    subject_entity_id: str
    deal_id: Optional[str] = None
    context_key: Optional[str] = None
    decision_type: str
    status: str
    urgency: str
    recommended_action: Optional[str] = None
    recommended_confidence: Optional[str] = None
    suggested_conditions: Optional[Any] = None
    final_action: Optional[str] = None
    decided_by: Optional[str] = None
    created_at: datetime
    decided_at: Optional[datetime] = None
    recommendation: Optional[RecommendationView] = None
    context: Optional[ContextView] = None
    overrides: List[OverrideView] = []
    outcomes: List[OutcomeView] = []
    links: List[LinkView] = []
    subject_entity: Optional[SubjectEntityView] = None
    decider: Optional[DeciderView] = None


class LinkResponse(BaseModel):
    created: bool
    link: Optional[LinkView] = None


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_context_gatherer(settings: Settings = Depends(get_settings)) -> ContextGatherer:
    return ContextGatherer(settings)


def get_recommender(settings: Settings = Depends(get_settings)) -> OpenAIRecommender:
    return OpenAIRecommender(settings)


def get_decision_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gatherer: ContextGatherer = Depends(get_context_gatherer),
    recommender: OpenAIRecommender = Depends(get_recommender),
) -> DecisionService:
    return DecisionService(db, settings, gatherer=gatherer, recommender=recommender)


def get_scope_resolver(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ScopeResolver:
    return ScopeResolver(db, settings)


# =============================================================================
# FORMATTING
# =============================================================================

def _recommendation_view(
    decision: DecisionDB,
    recommendation: Optional[Recommendation] = None,
) -> Optional[RecommendationView]:
    if recommendation is not None:
        return RecommendationView(**recommendation.to_dict())
    if not decision.recommended_action:
        return None
    # Rebuilt from the frozen snapshot for later reads
    confidence = decision.recommended_confidence.value if decision.recommended_confidence else "LOW"
    return RecommendationView(
        recommendation=decision.recommended_action,
        confidence=confidence.lower(),
        rationale=rationale_lines(decision.context_snapshot),
        suggested_conditions=decision.suggested_conditions or None,
    )


def _link_view(link: DecisionLinkDB) -> LinkView:
    target = link.target_decision
    return LinkView(
        id=link.id,
        relationship_type=link.relationship_type.value,
        target_decision_id=link.to_decision_id,
        target_decision_type=target.decision_type.value if target else None,
        target_status=target.status.value if target else None,
        confidence=float(link.confidence) if link.confidence is not None else None,
        notes=link.notes,
    )


def decision_to_response(
    decision: DecisionDB,
    recommendation: Optional[Recommendation] = None,
) -> DecisionResponse:
    snapshot = decision.context_snapshot
    entity = decision.subject_entity
    decider = decision.decider

    return DecisionResponse(
        id=decision.id,
        client_id=decision.client_id,
        subject_entity_id=decision.subject_entity_id,
        deal_id=decision.deal_id,
        context_key=decision.context_key,
        decision_type=decision.decision_type.value,
        status=decision.status.value,
        urgency=decision.urgency.value,
        recommended_action=decision.recommended_action,
        recommended_confidence=decision.recommended_confidence.value if decision.recommended_confidence else None,
        suggested_conditions=decision.suggested_conditions,
        final_action=decision.final_action,
        decided_by=decision.decided_by,
        created_at=decision.created_at,
        decided_at=decision.decided_at,
        recommendation=_recommendation_view(decision, recommendation),
        context=ContextView(
            signals=snapshot.signals,
            policies=snapshot.policies,
            agent_rationale=snapshot.agent_rationale,
            agent_model=snapshot.agent_model,
            processing_time_ms=snapshot.processing_time_ms,
        ) if snapshot else None,
        overrides=[
            OverrideView(
                user_id=o.user_id,
                user_email=o.user.email if o.user else None,
                user_name=o.user.name if o.user else None,
                override_action=o.override_action.value,
                override_reason=o.override_reason,
                created_at=o.created_at,
            )
            for o in decision.human_overrides
        ],
        outcomes=[
            OutcomeView(
                id=o.id,
                outcome_type=o.outcome_type.value,
                user_id=o.user_id,
                notes=o.notes,
                recorded_at=o.recorded_at,
            )
            for o in decision.outcomes
        ],
        links=[_link_view(link) for link in decision.links_as_source],
        subject_entity=SubjectEntityView(
            id=entity.id,
            external_id=entity.external_id,
            name=entity.name,
            domain=entity.domain,
            industry=entity.industry,
            country=entity.country,
        ) if entity else None,
        decider=DeciderView(id=decider.id, email=decider.email, name=decider.name) if decider else None,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("", response_model=DecisionResponse, status_code=status.HTTP_201_CREATED)
def create_decision(
    request: CreateDecisionRequest,
    caller: Caller = Depends(get_caller),
    resolver: ScopeResolver = Depends(get_scope_resolver),
    service: DecisionService = Depends(get_decision_service),
):
    """
    Create a decision.

    Resolves the subject entity and deal, gathers context, asks the
    recommender, and persists the decision with its frozen context
    snapshot. A recommender outage yields a PROPOSED decision flagged
    for manual review, never an error.
    """
    scope = resolver.resolve(caller, explicit_client_id=request.client_id)

    entity = request.subject_entity
    deal = request.deal
    result = service.create_decision(
        client_id=scope.client_id,
        subject_entity=SubjectEntityInput(
            external_id=entity.external_id,
            name=entity.name,
            domain=entity.domain,
            industry=entity.industry,
            country=entity.country,
            metadata=entity.metadata,
        ),
        decision_type=request.decision_type,
        deal=DealInput(
            external_deal_id=deal.external_deal_id,
            amount=deal.amount,
            currency=deal.currency,
            discount_requested=deal.discount_requested,
        ) if deal else None,
        context_key=request.context_key,
        urgency=request.urgency,
    )
    return decision_to_response(result.decision, result.recommendation)


@router.post("/{decision_id}/review", response_model=DecisionResponse)
def review_decision(
    decision_id: str,
    request: ReviewDecisionRequest,
    caller: Caller = Depends(get_caller),
    resolver: ScopeResolver = Depends(get_scope_resolver),
    service: DecisionService = Depends(get_decision_service),
):
    """Human verdict: approve, reject, override or escalate."""
    scope = resolver.resolve(caller, explicit_client_id=request.client_id)

    decision = service.review_decision(
        decision_id=decision_id,
        acting_user=scope.acting_user,
        action=request.action,
        note=request.note,
        final_action_text=request.final_action,
        client_id=scope.client_id,
    )
    return decision_to_response(decision)


@router.get("/{decision_id}", response_model=DecisionResponse)
def get_decision(
    decision_id: str,
    client_id: Optional[str] = Query(None, description="Required only with the administrative API key"),
    caller: Caller = Depends(get_caller),
    resolver: ScopeResolver = Depends(get_scope_resolver),
    service: DecisionService = Depends(get_decision_service),
):
    """Audit view: decision with snapshot, overrides, outcomes and links."""
    scope = resolver.resolve(caller, explicit_client_id=client_id)
    return decision_to_response(service.get_decision(decision_id, scope.client_id))


@router.post("/{decision_id}/outcomes", response_model=OutcomeView, status_code=status.HTTP_201_CREATED)
def record_outcome(
    decision_id: str,
    request: RecordOutcomeRequest,
    caller: Caller = Depends(get_caller),
    resolver: ScopeResolver = Depends(get_scope_resolver),
    service: DecisionService = Depends(get_decision_service),
):
    """Record what actually happened after the decision."""
    scope = resolver.resolve(caller, explicit_client_id=request.client_id)

    outcome = service.record_outcome(
        decision_id=decision_id,
        acting_user=scope.acting_user,
        outcome_type=request.outcome_type,
        notes=request.notes,
        client_id=scope.client_id,
    )
    return OutcomeView(
        id=outcome.id,
        outcome_type=outcome.outcome_type.value,
        user_id=outcome.user_id,
        notes=outcome.notes,
        recorded_at=outcome.recorded_at,
    )


@router.post("/{decision_id}/links", response_model=LinkResponse, status_code=status.HTTP_201_CREATED)
def link_decision(
    decision_id: str,
    request: LinkDecisionRequest,
    caller: Caller = Depends(get_caller),
    resolver: ScopeResolver = Depends(get_scope_resolver),
    service: DecisionService = Depends(get_decision_service),
):
    """
    Link this decision to another one of the same client.

    Linking an existing (from, to, type) triple again succeeds with
    created=false.
    """
    scope = resolver.resolve(caller, explicit_client_id=request.client_id)

    link = service.link_decisions(
        from_decision_id=decision_id,
        to_decision_id=request.to_decision_id,
        relationship_type=request.relationship_type,
        confidence=request.confidence,
        notes=request.notes,
        client_id=scope.client_id,
    )
    if link is None:
        return JSONResponse(status_code=status.HTTP_200_OK, content={"created": False, "link": None})
    return LinkResponse(created=True, link=_link_view(link))
