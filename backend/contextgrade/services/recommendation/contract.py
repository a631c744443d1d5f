"""
Recommendation Contract

Shape and degradation rules for AI output consumed by the decision engine.

A recommender returns either a valid recommendation or a fallback. The
fallback is always review_manually / low and carries a rationale saying
why. The engine persists both the same way: a decision-creation request
never fails because the recommender is unavailable.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import logging

logger = logging.getLogger(__name__)


class RecommendedAction(str, Enum):
    APPROVE = "approve"
    APPROVE_WITH_CONDITIONS = "approve_with_conditions"
    REJECT = "reject"
    REVIEW_MANUALLY = "review_manually"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MalformedRecommendation(ValueError):
    """Provider payload is missing required fields or has the wrong types."""


@dataclass
class Recommendation:
    action: RecommendedAction
    confidence: Confidence
    rationale: List[str]
    suggested_conditions: Optional[List[str]] = None
    model: Optional[str] = None
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "recommendation": self.action.value,
            "confidence": self.confidence.value,
            "rationale": list(self.rationale),
        }
        if self.suggested_conditions:
            data["suggested_conditions"] = list(self.suggested_conditions)
        return data

    @property
    def rationale_text(self) -> str:
        return "\n".join(self.rationale)


# Reasons used in fallback rationales
REASON_NOT_CONFIGURED = "AI service not configured. Manual review required."
REASON_UNAVAILABLE = "Insufficient AI service availability. Manual review required."
REASON_NO_INFORMATION = "Insufficient information available. Manual review required."


def fallback_recommendation(
    reason: Optional[str] = None,
    facts: Optional[List[str]] = None,
    model: Optional[str] = None,
) -> Recommendation:
    """
    Safe degraded recommendation.

    With no explicit reason, the rationale depends on whether any facts
    were gathered at all.
    """
    facts = list(facts or [])
    if reason is None:
        reason = REASON_UNAVAILABLE if facts else REASON_NO_INFORMATION
    return Recommendation(
        action=RecommendedAction.REVIEW_MANUALLY,
        confidence=Confidence.LOW,
        rationale=[reason, *facts],
        model=model,
        is_fallback=True,
    )


def parse_recommendation(payload: Any, model: Optional[str] = None) -> Recommendation:
    """
    Validate and normalize a provider payload.

    Unknown action values become review_manually, unknown confidence values
    become low. Missing fields raise MalformedRecommendation.
    """
    if not isinstance(payload, dict):
        raise MalformedRecommendation("Recommendation payload must be an object")

    action_raw = payload.get("recommendation") or payload.get("action")
    confidence_raw = payload.get("confidence")
    rationale = payload.get("rationale")

    if not action_raw or not confidence_raw or not isinstance(rationale, list):
        raise MalformedRecommendation("Invalid recommendation structure")

    try:
        action = RecommendedAction(str(action_raw).lower())
    except ValueError:
        logger.warning(f"Invalid recommendation value {action_raw!r}, defaulting to review_manually")
        action = RecommendedAction.REVIEW_MANUALLY

    try:
        confidence = Confidence(str(confidence_raw).lower())
    except ValueError:
        logger.warning(f"Invalid confidence value {confidence_raw!r}, defaulting to low")
        confidence = Confidence.LOW

    conditions = payload.get("suggested_conditions")
    if conditions is not None and not isinstance(conditions, list):
        conditions = None

    return Recommendation(
        action=action,
        confidence=confidence,
        rationale=[str(r) for r in rationale],
        suggested_conditions=[str(c) for c in conditions] if conditions else None,
        model=model,
    )
