"""
Decision Recommender

Generates AI recommendations from context signals and decision type.

- Asks the provider for strict JSON only
- Conservative when information is incomplete
- Advisory only: a human always makes the final call
- Never raises; every failure path returns the fallback recommendation
"""
import json
import logging
from typing import List, Optional

from openai import OpenAI

from ...config import Settings
from ..context import EntityProfile, SignalBundle, extract_decision_facts
from .contract import (
    Recommendation,
    MalformedRecommendation,
    fallback_recommendation,
    parse_recommendation,
    REASON_NOT_CONFIGURED,
)

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a decision intelligence agent for ContextGrade, a B2B tool that helps companies make onboarding, pricing, and trust decisions.

Your role:
- Analyze company context and provide recommendations
- Output ONLY valid JSON (no markdown, no prose, no explanations outside JSON)
- Be conservative when information is incomplete
- Explicitly state uncertainty in rationale

Decision Types:
- DISCOUNT: Should a discount be granted?
- ONBOARDING: Should this company be onboarded?
- PAYMENT_TERMS: What payment terms should be offered?
- CREDIT_EXTENSION: Should credit be extended?
- PARTNERSHIP: Should a partnership be pursued?
- RENEWAL: Should the contract be renewed on the proposed terms?
- ESCALATION: Should this case be escalated?
- CUSTOM: Client-defined decision; judge from the context given

Recommendation values:
- "approve": Clear positive signals
- "approve_with_conditions": Positive but with safeguards
- "reject": Clear negative signals
- "review_manually": Insufficient information or conflicting signals

Output format (STRICT JSON only):
{
  "recommendation": "approve|approve_with_conditions|reject|review_manually",
  "confidence": "low|medium|high",
  "rationale": ["Reason 1", "Reason 2"],
  "suggested_conditions": ["Condition 1"]
}
Include suggested_conditions only when recommendation is approve_with_conditions."""


def build_user_prompt(
    entity: EntityProfile,
    facts: List[str],
    decision_type: str,
    deal_amount: Optional[float] = None,
) -> str:
    signal_lines = "\n".join(f"{i}. {fact}" for i, fact in enumerate(facts, start=1))
    return (
        f"Company: {entity.name}\n"
        f"Domain: {entity.domain or 'Not provided'}\n"
        f"Industry: {entity.industry or 'Not provided'}\n"
        f"Country: {entity.country or 'Not provided'}\n"
        f"Decision Type: {decision_type}\n"
        f"Deal Amount: {f'${deal_amount}' if deal_amount else 'Not provided'}\n"
        "\n"
        "Context Signals:\n"
        f"{signal_lines or 'No signals available'}\n"
        "\n"
        "Provide your recommendation as JSON only (no markdown, no code blocks, just the JSON object)."
    )


class OpenAIRecommender:
    """
    Recommender backed by the OpenAI chat completions API.

    The client is created lazily from settings unless one is injected.
    """

    TEMPERATURE = 0.3
    MAX_TOKENS = 500

    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.settings = settings
        self.model = settings.recommender_model
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.settings.openai_api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.recommender_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def recommend(
        self,
        entity: EntityProfile,
        signals: SignalBundle,
        decision_type: str,
        deal_amount: Optional[float] = None,
    ) -> Recommendation:
        logger.info(f"Generating AI decision recommendation for {entity.name} ({decision_type})")
        if not self.configured:
            logger.warning("No AI API key configured, using fallback recommendation")
            return fallback_recommendation(REASON_NOT_CONFIGURED)

        facts: List[str] = []
        try:
            facts = extract_decision_facts(signals)
            recommendation = self._generate(entity, facts, decision_type, deal_amount)
        except MalformedRecommendation as e:
            logger.error(f"Malformed AI recommendation for {entity.name}: {e}")
            return fallback_recommendation(facts=facts, model=self.model)
        except Exception as e:
            logger.error(f"AI recommendation generation failed for {entity.name}: {e}", exc_info=True)
            return fallback_recommendation(facts=facts, model=self.model)

        logger.info(
            f"AI recommendation generated: {recommendation.action.value} "
            f"({recommendation.confidence.value})"
        )
        return recommendation

    def _generate(
        self,
        entity: EntityProfile,
        facts: List[str],
        decision_type: str,
        deal_amount: Optional[float],
    ) -> Recommendation:
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(entity, facts, decision_type, deal_amount)},
            ],
            temperature=self.TEMPERATURE,
            response_format={"type": "json_object"},
            max_tokens=self.MAX_TOKENS,
        )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise MalformedRecommendation("Empty response from OpenAI")

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedRecommendation(f"Invalid JSON response from AI: {e}") from e

        return parse_recommendation(payload, model=self.model)
