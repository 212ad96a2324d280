"""Recommendation oracle: Gemini (primary) + Groq (fallback).

Provider-agnostic base class with two concrete implementations:
- GeminiRecommendationOracle: Google Gemini via google-genai
- GroqRecommendationOracle:   Groq LPU, llama-3.1-8b-instant

The oracle is a single request/response text endpoint. Everything above
``_generate()`` (prompt construction, JSON extraction, fallbacks) lives in
the base class. The model only ever suggests names and reasons; place data
itself comes from the places provider.
"""

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from planit.models import (
    Coordinates,
    DetailedPlaceRecord,
    PlaceCategory,
    PlaceRecord,
    TransportFailure,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a local guide who recommends restaurants, cafes, bars, venues and "
    "shops near the user. Recommend places that fit the user's context: time of "
    "day, mood, energy and the categories they like. Prefer places from the "
    "provided nearby list when they fit. Never invent addresses, coordinates, "
    "prices or opening hours. "
    "Respond ONLY with valid JSON. No explanations, no markdown, no extra text."
)

DEFAULT_DESCRIPTION = "Discover this amazing place and what it has to offer!"


@dataclass
class RecommendationContext:
    """What the oracle knows about the user's situation."""
    coordinates: Coordinates
    time_of_day: str = ""
    day_of_week: str = ""
    preferred_categories: list[str] = field(default_factory=list)
    avoided_categories: list[str] = field(default_factory=list)
    mood: Optional[str] = None
    energy: Optional[str] = None
    weather: Optional[str] = None
    nearby_places: list[PlaceRecord] = field(default_factory=list)
    count: int = 6

    @classmethod
    def at(
        cls, coordinates: Coordinates, when: datetime | None = None, **kwargs
    ) -> "RecommendationContext":
        """Context with time of day and weekday filled in from ``when``."""
        when = when or datetime.now()
        return cls(
            coordinates=coordinates,
            time_of_day=time_of_day(when.hour),
            day_of_week=when.strftime("%A"),
            **kwargs,
        )


@dataclass
class Recommendation:
    """One recommended place, as parsed from the oracle's answer."""
    name: str
    category: Optional[PlaceCategory]
    reasoning: str
    confidence: float = 0.7
    mood_alignment: str = ""
    timing: str = ""
    motivational_hook: str = ""
    place_id: Optional[str] = None


def time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


FALLBACK_RECOMMENDATIONS = [
    Recommendation(
        name="Local Coffee Shop",
        category=PlaceCategory.CAFES,
        reasoning="Based on general preferences",
        confidence=0.75,
        mood_alignment="Matches your energy level",
        timing="Great for this time of day",
        motivational_hook="Discover your new favorite spot",
    ),
    Recommendation(
        name="Popular Restaurant",
        category=PlaceCategory.RESTAURANTS,
        reasoning="Popular choice for diverse tastes",
        confidence=0.8,
        mood_alignment="Enhances your current vibe",
        timing="Perfect for a meal right now",
        motivational_hook="A culinary adventure awaits",
    ),
]


class RecommendationOracle(ABC):
    """Base class for generative-text recommendation providers.

    Subclasses only implement ``_generate()`` for their specific API client.
    """

    MAX_PROMPT_LENGTH = 8000
    MAX_OUTPUT_TOKENS = 1024

    _timeout: float

    @abstractmethod
    async def _generate(self, prompt: str, timeout: float | None = None) -> str:
        """Send prompt to the AI provider and return raw text."""
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable provider name for logging."""
        ...

    # ── Utilities ─────────────────────────────────────────────────────

    @staticmethod
    def _sanitize_input(text: str, max_length: int = 500) -> str:
        """Strip control characters and limit length of user-provided text."""
        cleaned = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
        return cleaned[:max_length].strip()

    @staticmethod
    def _extract_json(text: str) -> str:
        if "```json" in text:
            text = text.split("```json")[1].split("```")[0]
        elif "```" in text:
            text = text.split("```")[1].split("```")[0]
        text = text.strip()
        # Models like to wrap the array in prose
        start, end = text.find("["), text.rfind("]")
        if start != -1 and end > start:
            return text[start:end + 1]
        return text

    @staticmethod
    def _truncate(prompt: str, limit: int) -> str:
        if len(prompt) <= limit:
            return prompt
        return prompt[:limit] + "..."

    # ── Request/response ──────────────────────────────────────────────

    async def generate(self, prompt: str) -> str:
        """Single request/response call.

        Raises:
            TransportFailure: On timeout or any provider error.
        """
        prompt = self._truncate(prompt, self.MAX_PROMPT_LENGTH)
        try:
            return await self._generate(prompt)
        except asyncio.TimeoutError as e:
            raise TransportFailure(f"{self.provider_name} timed out") from e
        except TransportFailure:
            raise
        except Exception as e:
            raise TransportFailure(f"{self.provider_name} request failed: {e}") from e

    # ── Recommendations ───────────────────────────────────────────────

    def build_prompt(self, context: RecommendationContext) -> str:
        preferred = ", ".join(
            self._sanitize_input(c, max_length=30) for c in context.preferred_categories
        ) or "no strong preference"
        avoided = ", ".join(
            self._sanitize_input(c, max_length=30) for c in context.avoided_categories
        ) or "none"
        nearby = "\n".join(
            f"- {p.name} ({p.category.value}, {p.rating:.1f}★)"
            for p in context.nearby_places[:30]
        ) or "- none loaded yet"
        categories = "|".join(c.value for c in PlaceCategory)
        return (
            f"Recommend {context.count} places for the user right now.\n\n"
            f"Context:\n"
            f"- Time: {context.time_of_day or 'unknown'} on {context.day_of_week or 'unknown'}\n"
            f"- Weather: {self._sanitize_input(context.weather or 'unknown', 50)}\n"
            f"- Mood: {self._sanitize_input(context.mood or 'unknown', 50)} "
            f"({self._sanitize_input(context.energy or 'unknown', 30)} energy)\n"
            f"- Likes: {preferred}\n- Avoids: {avoided}\n"
            f"- Location: {context.coordinates.lat:.4f}, {context.coordinates.lng:.4f}\n\n"
            f"Nearby places:\n{nearby}\n\n"
            f"Return ONLY a JSON array:\n"
            f'[{{"name": "Place Name", "category": "{categories}", '
            f'"reasoning": "One sentence", "confidence": 0.85, '
            f'"moodAlignment": "How it fits the mood", '
            f'"timing": "Why now", "motivationalHook": "What makes it compelling"}}]'
        )

    @classmethod
    def parse_recommendations(
        cls, text: str, nearby: list[PlaceRecord] | None = None
    ) -> list[Recommendation]:
        """Parse the oracle's free text into recommendations.

        Malformed items are skipped. Names that match a nearby place
        (case-insensitively) carry that place's id.
        """
        try:
            data = json.loads(cls._extract_json(text))
        except (ValueError, TypeError):
            return []
        if not isinstance(data, list):
            return []

        by_name = {p.name.casefold(): p for p in nearby or []}
        recommendations: list[Recommendation] = []
        seen: set[str] = set()
        for item in data:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name") or item.get("placeName") or "").strip()
            if not name or name.casefold() in seen:
                continue
            try:
                confidence = min(1.0, max(0.0, float(item.get("confidence", 0.7))))
            except (TypeError, ValueError):
                confidence = 0.7
            match = by_name.get(name.casefold())
            category = PlaceCategory.from_string(str(item.get("category") or ""))
            recommendations.append(Recommendation(
                name=name,
                category=category or (match.category if match else None),
                reasoning=str(item.get("reasoning", "")),
                confidence=confidence,
                mood_alignment=str(item.get("moodAlignment", "")),
                timing=str(item.get("timing", "")),
                motivational_hook=str(item.get("motivationalHook", "")),
                place_id=match.place_id if match else None,
            ))
            seen.add(name.casefold())
        return recommendations

    async def recommend(self, context: RecommendationContext) -> list[Recommendation]:
        """Recommendations for ``context``; built-in fallbacks if the oracle fails."""
        try:
            text = await self.generate(self.build_prompt(context))
        except TransportFailure as e:
            logger.info(f"[{self.provider_name}] Recommendation error: {e}")
            return list(FALLBACK_RECOMMENDATIONS)
        recommendations = self.parse_recommendations(text, context.nearby_places)
        if not recommendations:
            logger.info(f"[{self.provider_name}] No parsable recommendations, using fallback")
            return list(FALLBACK_RECOMMENDATIONS)
        logger.info(f"[{self.provider_name}] Got {len(recommendations)} recommendations")
        return recommendations[: context.count]

    async def describe_place(self, place: DetailedPlaceRecord) -> str:
        """Short enticing description of a place, or a generic one on failure."""
        prompt = (
            f"Write a concise, enthusiastic 2-sentence description (max 45 words) "
            f"that would entice a user to visit the following place.\n"
            f"Be specific and highlight what makes it special.\n\n"
            f"Place name: {self._sanitize_input(place.name, 100)}\n"
            f"Category types: {', '.join(place.types) or 'unknown'}\n"
            f"Average rating: {place.rating:.1f} ({place.review_count} reviews)\n"
            f"Address: {self._sanitize_input(place.address, 200)}\n\n"
            f"Respond with plain text only."
        )
        try:
            text = await self.generate(prompt)
        except TransportFailure as e:
            logger.info(f"[{self.provider_name}] Description error: {e}")
            return DEFAULT_DESCRIPTION
        cleaned = text.replace("```", "").strip()
        return cleaned or DEFAULT_DESCRIPTION


# ═══════════════════════════════════════════════════════════════════════
# Provider: Gemini  (primary)
# ═══════════════════════════════════════════════════════════════════════

class GeminiRecommendationOracle(RecommendationOracle):
    """Google Gemini through the google-genai SDK."""

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        from google import genai
        from google.genai import types

        self._api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not self._api_key:
            raise ValueError("GEMINI_API_KEY not provided")
        self._client = genai.Client(api_key=self._api_key)
        self._model_name = model_name or os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
        self._timeout = timeout_seconds
        self._config = types.GenerateContentConfig(
            temperature=0.7,
            top_k=40,
            top_p=0.95,
            max_output_tokens=self.MAX_OUTPUT_TOKENS,
        )
        logger.info(f"[AI] Gemini ready: {self._model_name}")

    @property
    def provider_name(self) -> str:
        return "Gemini"

    async def _generate(self, prompt: str, timeout: float | None = None) -> str:
        t = timeout or self._timeout
        try:
            full_prompt = f"{SYSTEM_PROMPT}\n\n{prompt}"
            resp = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model_name,
                    contents=full_prompt,
                    config=self._config,
                ),
                timeout=t,
            )
            return (resp.text or "").strip()
        except asyncio.TimeoutError:
            logger.warning(f"[Gemini] Timeout after {t}s")
            raise
        except Exception as e:
            logger.warning(f"[Gemini] Error: {e}")
            raise


# ═══════════════════════════════════════════════════════════════════════
# Provider: Groq  (fallback)
# ═══════════════════════════════════════════════════════════════════════

class GroqRecommendationOracle(RecommendationOracle):
    """Groq LPU with Llama 3.1 8B Instant."""

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        from groq import AsyncGroq

        self._api_key = api_key or os.getenv("GROQ_API_KEY")
        if not self._api_key:
            raise ValueError("GROQ_API_KEY not provided")
        self._client = AsyncGroq(api_key=self._api_key)
        self._model_name = model_name or os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
        self._timeout = timeout_seconds
        logger.info(f"[AI] Groq ready: {self._model_name}")

    @property
    def provider_name(self) -> str:
        return "Groq"

    async def _generate(self, prompt: str, timeout: float | None = None) -> str:
        t = timeout or self._timeout
        try:
            resp = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model_name,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0.7,
                    max_tokens=self.MAX_OUTPUT_TOKENS,
                ),
                timeout=t,
            )
            return (resp.choices[0].message.content or "").strip()
        except asyncio.TimeoutError:
            logger.warning(f"[Groq] Timeout after {t}s")
            raise
        except Exception as e:
            logger.warning(f"[Groq] Error: {e}")
            raise


# ═══════════════════════════════════════════════════════════════════════
# Factory: Gemini → Groq
# ═══════════════════════════════════════════════════════════════════════

def create_recommendation_oracle(
    gemini_api_key: str | None = None,
    groq_api_key: str | None = None,
    timeout_seconds: float = 30.0,
) -> RecommendationOracle:
    """Create the best available oracle.  Gemini first, Groq fallback."""
    gemini_key = gemini_api_key or os.getenv("GEMINI_API_KEY")
    if gemini_key:
        try:
            return GeminiRecommendationOracle(api_key=gemini_key, timeout_seconds=timeout_seconds)
        except Exception as e:
            logger.info(f"[AI] Gemini init failed: {e}")

    groq_key = groq_api_key or os.getenv("GROQ_API_KEY")
    if groq_key:
        try:
            return GroqRecommendationOracle(api_key=groq_key, timeout_seconds=timeout_seconds)
        except Exception as e:
            logger.info(f"[AI] Groq init failed: {e}")

    raise ValueError("No AI provider available. Set GEMINI_API_KEY or GROQ_API_KEY in .env")
