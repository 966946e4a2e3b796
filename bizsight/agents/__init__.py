"""AI Agents package."""

from bizsight.agents.insight_agent import (
    GETTING_STARTED_MESSAGE,
    InsightAgent,
    InsightGenerationError,
    InsightRateLimitedError,
    InsightRequest,
    InsightResult,
    InsightService,
    InsightStatus,
)

__all__ = [
    "GETTING_STARTED_MESSAGE",
    "InsightAgent",
    "InsightGenerationError",
    "InsightRateLimitedError",
    "InsightRequest",
    "InsightResult",
    "InsightService",
    "InsightStatus",
]
