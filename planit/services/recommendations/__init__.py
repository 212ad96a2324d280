"""Recommendation oracle: Gemini (primary) + Groq (fallback)."""

from .service import (
    FALLBACK_RECOMMENDATIONS,
    GeminiRecommendationOracle,
    GroqRecommendationOracle,
    Recommendation,
    RecommendationContext,
    RecommendationOracle,
    create_recommendation_oracle,
)

__all__ = [
    "FALLBACK_RECOMMENDATIONS",
    "GeminiRecommendationOracle",
    "GroqRecommendationOracle",
    "Recommendation",
    "RecommendationContext",
    "RecommendationOracle",
    "create_recommendation_oracle",
]
