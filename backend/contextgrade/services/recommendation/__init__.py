"""
Recommendation Services

Contract types for AI output plus the OpenAI-backed recommender.
"""

from .contract import (
    Recommendation,
    RecommendedAction,
    Confidence,
    MalformedRecommendation,
    fallback_recommendation,
    parse_recommendation,
)
from .recommender import OpenAIRecommender

__all__ = [
    'Recommendation',
    'RecommendedAction',
    'Confidence',
    'MalformedRecommendation',
    'fallback_recommendation',
    'parse_recommendation',
    'OpenAIRecommender',
]
