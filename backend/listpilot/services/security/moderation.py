"""Content moderation boundary.

The classifier is external; this module maps its raw categories onto the fixed
set the pipeline reasons about and picks the dominant violation type.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from openai import AsyncOpenAI

from listpilot.core.config import settings
from listpilot.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)

# Ordered by priority: the first flagged category is the dominant violation type.
CATEGORIES = ("self_harm", "sexual", "violence", "harassment", "hate", "other")

# Raw provider category -> pipeline category
CATEGORY_MAP = {
    "self-harm": "self_harm",
    "self-harm/intent": "self_harm",
    "self-harm/instructions": "self_harm",
    "sexual": "sexual",
    "sexual/minors": "sexual",
    "violence": "violence",
    "violence/graphic": "violence",
    "harassment": "harassment",
    "harassment/threatening": "harassment",
    "hate": "hate",
    "hate/threatening": "hate",
}


@dataclass(frozen=True)
class ModerationVerdict:
    flagged: bool
    categories: dict[str, bool] = field(default_factory=dict)
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def flagged_categories(self) -> list[str]:
        return [c for c in CATEGORIES if self.categories.get(c)]

    @property
    def violation_type(self) -> str:
        flagged = self.flagged_categories
        return flagged[0] if flagged else "other"


def normalize_categories(raw_flags: dict[str, bool], raw_scores: dict[str, float]) -> ModerationVerdict:
    """Fold provider categories into the fixed category set.

    Unknown flagged categories count as ``other``; scores keep the maximum per bucket.
    """
    categories = {c: False for c in CATEGORIES}
    scores = {c: 0.0 for c in CATEGORIES}

    for raw_name, is_flagged in raw_flags.items():
        bucket = CATEGORY_MAP.get(raw_name, "other")
        categories[bucket] = categories[bucket] or bool(is_flagged)

    for raw_name, score in raw_scores.items():
        bucket = CATEGORY_MAP.get(raw_name, "other")
        scores[bucket] = max(scores[bucket], float(score or 0.0))

    return ModerationVerdict(flagged=any(categories.values()), categories=categories, scores=scores)


class ModerationClassifier(ABC):
    @abstractmethod
    async def classify(self, text: str) -> ModerationVerdict:
        """Classify text. Raises UpstreamFailure when the service is unavailable."""
        ...


class DisabledModerationClassifier(ModerationClassifier):
    """Used when moderation is turned off: nothing is ever flagged."""

    async def classify(self, text: str) -> ModerationVerdict:
        return ModerationVerdict(flagged=False)


class OpenAIModerationClassifier(ModerationClassifier):
    def __init__(self, api_key: str | None = None, model: str | None = None):
        self.client = AsyncOpenAI(api_key=api_key or settings.openai_api_key)
        self.model = model or settings.moderation_model

    async def classify(self, text: str) -> ModerationVerdict:
        if not text.strip():
            return ModerationVerdict(flagged=False)
        try:
            response = await self.client.moderations.create(model=self.model, input=text)
        except Exception as e:
            logger.error(f"Moderation API call failed: {e}")
            raise UpstreamFailure(f"moderation call failed: {e}") from e

        if not response.results:
            raise UpstreamFailure("moderation returned no results")

        result = response.results[0]
        raw_flags = result.categories.model_dump(by_alias=True)
        raw_scores = result.category_scores.model_dump(by_alias=True)
        return normalize_categories(
            {k: bool(v) for k, v in raw_flags.items() if v is not None},
            {k: v for k, v in raw_scores.items() if v is not None},
        )


def get_moderation_classifier() -> ModerationClassifier:
    """Factory: returns the configured classifier."""
    if settings.moderation_enabled and settings.openai_api_key:
        return OpenAIModerationClassifier()
    if settings.moderation_enabled:
        logger.warning("Moderation enabled but no OpenAI API key configured; moderation is off")
    return DisabledModerationClassifier()
