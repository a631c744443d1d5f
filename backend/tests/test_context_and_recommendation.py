"""
Tests for context gathering and the recommendation contract.

Test Coverage:
1. Website signals via a mocked HTTP transport (no network)
2. Gatherer never raises
3. Fact extraction from signal bundles
4. Provider payload normalization and fallback rules
5. OpenAI recommender degradation paths (mocked client)
"""
import json
from unittest.mock import MagicMock

import httpx
import pytest

from contextgrade.services.context import (
    ContextGatherer, EntityProfile, empty_signal_bundle, extract_decision_facts,
)
from contextgrade.services.context.sources import (
    extract_description, gather_website_signals, normalize_domain,
)
from contextgrade.services.recommendation import (
    Confidence,
    MalformedRecommendation,
    OpenAIRecommender,
    RecommendedAction,
    fallback_recommendation,
    parse_recommendation,
)
from contextgrade.services.recommendation.contract import (
    REASON_NO_INFORMATION, REASON_NOT_CONFIGURED, REASON_UNAVAILABLE,
)


def mock_http_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# =============================================================================
# TEST: WEBSITE SOURCE
# =============================================================================

class TestWebsiteSignals:

    def test_normalize_domain(self):
        assert normalize_domain("https://Acme.io/") == "Acme.io"
        assert normalize_domain("http://acme.io") == "acme.io"
        assert normalize_domain("acme.io") == "acme.io"

    def test_description_prefers_meta_tag(self):
        html = (
            '<html><head><meta name="description" content="Meta text">'
            '<meta property="og:description" content="OG text"></head>'
            '<body><p>Paragraph text</p></body></html>'
        )
        assert extract_description(html) == "Meta text"

    def test_description_falls_back_to_first_paragraph(self):
        html = "<html><body><p>" + "x" * 400 + "</p></body></html>"
        assert extract_description(html) == "x" * 300

    def test_reachable_site(self):
        def handler(request):
            assert request.url.host == "acme.io"
            return httpx.Response(200, text='<meta name="description" content="We build sensors">')

        with mock_http_client(handler) as client:
            signals = gather_website_signals("https://acme.io/", client=client)

        assert signals["exists"] is True
        assert signals["description"] == "We build sensors"
        assert signals["content_length"] > 0

    def test_error_status_means_missing(self):
        with mock_http_client(lambda request: httpx.Response(503)) as client:
            assert gather_website_signals("acme.io", client=client) == {"exists": False}

    def test_timeout_means_missing(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with mock_http_client(handler) as client:
            assert gather_website_signals("acme.io", client=client) == {"exists": False}


# =============================================================================
# TEST: GATHERER
# =============================================================================

class TestContextGatherer:

    def test_gathers_all_sources(self, settings):
        client = mock_http_client(lambda request: httpx.Response(200, text="<p>Hello</p>"))
        gatherer = ContextGatherer(settings, http_client=client)

        signals = gatherer.gather(EntityProfile(name="Acme", domain="acme.io"))

        assert signals["website"]["exists"] is True
        assert {"search", "reddit", "twitter"} <= set(signals)

    def test_no_domain_skips_website(self, settings):
        gatherer = ContextGatherer(settings, http_client=MagicMock())

        signals = gatherer.gather(EntityProfile(name="Acme"))

        assert signals["website"] == {"exists": False}
        gatherer.http_client.get.assert_not_called()

    def test_failing_client_never_raises(self, settings):
        broken = MagicMock()
        broken.get.side_effect = httpx.ConnectError("refused")
        gatherer = ContextGatherer(settings, http_client=broken)

        signals = gatherer.gather(EntityProfile(name="Acme", domain="acme.io"))

        assert signals["website"] == {"exists": False}


class TestExtractDecisionFacts:

    def test_empty_bundle(self):
        assert extract_decision_facts(empty_signal_bundle()) == [
            "No website found or website inaccessible",
        ]

    def test_negative_signals(self):
        facts = extract_decision_facts({
            "website": {"exists": True, "description": "Payments platform"},
            "search": {"sentiment": "negative"},
            "reddit": {"complaints": 3},
            "twitter": {"sentiment": "negative"},
            "trustpilot": {"rating": 2.1},
        })

        assert "Company description: Payments platform" in facts
        assert "Negative sentiment detected in search results" in facts
        assert "3 complaint(s) found on Reddit" in facts
        assert "Negative sentiment detected on Twitter/X" in facts
        assert "Low Trustpilot rating: 2.1/5" in facts

    @pytest.mark.parametrize("signals", [
        None,
        "garbage",
        {"website": "reachable", "reddit": {"complaints": "many"}},
        {"website": {"exists": False}, "g2": {"rating": "bad"}, "trustpilot": ["2.0"], "search": None},
    ])
    def test_unexpected_shapes_contribute_nothing(self, signals):
        assert extract_decision_facts(signals) == ["No website found or website inaccessible"]


# =============================================================================
# TEST: CONTRACT
# =============================================================================

class TestRecommendationContract:

    def test_parse_valid_payload(self):
        rec = parse_recommendation({
            "recommendation": "approve_with_conditions",
            "confidence": "high",
            "rationale": ["Strong web presence"],
            "suggested_conditions": ["Net 30"],
        }, model="gpt-4o-mini")

        assert rec.action == RecommendedAction.APPROVE_WITH_CONDITIONS
        assert rec.confidence == Confidence.HIGH
        assert rec.suggested_conditions == ["Net 30"]
        assert rec.model == "gpt-4o-mini"
        assert rec.is_fallback is False

    def test_unknown_values_are_normalized(self):
        rec = parse_recommendation({
            "recommendation": "maybe",
            "confidence": "certain",
            "rationale": ["?"],
        })

        assert rec.action == RecommendedAction.REVIEW_MANUALLY
        assert rec.confidence == Confidence.LOW

    @pytest.mark.parametrize("payload", [
        None,
        [],
        {"confidence": "high", "rationale": []},
        {"recommendation": "approve", "rationale": []},
        {"recommendation": "approve", "confidence": "high", "rationale": "not a list"},
    ])
    def test_missing_fields_are_malformed(self, payload):
        with pytest.raises(MalformedRecommendation):
            parse_recommendation(payload)

    def test_fallback_reason_depends_on_facts(self):
        assert fallback_recommendation().rationale == [REASON_NO_INFORMATION]
        assert fallback_recommendation(facts=["No website"]).rationale == [REASON_UNAVAILABLE, "No website"]

    def test_fallback_is_manual_review_low(self):
        rec = fallback_recommendation(REASON_NOT_CONFIGURED)

        assert rec.to_dict() == {
            "recommendation": "review_manually",
            "confidence": "low",
            "rationale": [REASON_NOT_CONFIGURED],
        }
        assert rec.is_fallback is True


# =============================================================================
# TEST: OPENAI RECOMMENDER
# =============================================================================

def completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class TestOpenAIRecommender:

    @pytest.fixture
    def entity(self):
        return EntityProfile(name="Acme", domain="acme.io", industry="Logistics")

    def test_not_configured_returns_fallback(self, settings, entity):
        recommender = OpenAIRecommender(settings)

        rec = recommender.recommend(entity, empty_signal_bundle(), "DISCOUNT")

        assert rec.is_fallback is True
        assert rec.rationale == [REASON_NOT_CONFIGURED]

    def test_valid_completion(self, settings, entity):
        client = MagicMock()
        client.chat.completions.create.return_value = completion(json.dumps({
            "recommendation": "approve",
            "confidence": "medium",
            "rationale": ["Looks established"],
        }))
        recommender = OpenAIRecommender(settings, client=client)

        rec = recommender.recommend(entity, empty_signal_bundle(), "ONBOARDING", deal_amount=12000.0)

        assert rec.action == RecommendedAction.APPROVE
        assert rec.confidence == Confidence.MEDIUM
        assert rec.model == settings.recommender_model
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Deal Amount: $12000.0" in kwargs["messages"][1]["content"]

    def test_invalid_json_returns_fallback_with_facts(self, settings, entity):
        client = MagicMock()
        client.chat.completions.create.return_value = completion("not json at all")
        recommender = OpenAIRecommender(settings, client=client)

        rec = recommender.recommend(entity, empty_signal_bundle(), "DISCOUNT")

        assert rec.is_fallback is True
        assert rec.rationale == [REASON_UNAVAILABLE, "No website found or website inaccessible"]

    def test_malformed_bundle_returns_fallback(self, settings, entity):
        client = MagicMock()
        client.chat.completions.create.side_effect = RuntimeError("provider down")
        recommender = OpenAIRecommender(settings, client=client)

        rec = recommender.recommend(entity, {"website": "reachable", "reddit": {"complaints": "many"}}, "DISCOUNT")

        assert rec.is_fallback is True
        assert rec.rationale == [REASON_UNAVAILABLE, "No website found or website inaccessible"]

    def test_provider_error_returns_fallback(self, settings, entity):
        client = MagicMock()
        client.chat.completions.create.side_effect = RuntimeError("503 from provider")
        recommender = OpenAIRecommender(settings, client=client)

        rec = recommender.recommend(entity, empty_signal_bundle(), "DISCOUNT")

        assert rec.action == RecommendedAction.REVIEW_MANUALLY
        assert rec.confidence == Confidence.LOW
