"""
Financial Insight Agent

DESIGN DECISION: The LLM only ever sees aggregates the store already
computed. It never reads raw records and never writes anything.

CRITICAL BOUNDARIES:
- CAN: Comment on totals and the recent monthly trend it is given
- CANNOT: Invent figures that are not in the request
- CANNOT: Modify data

Failures are split in two so the UI can react differently:
- InsightRateLimitedError: quota exhausted (HTTP 429), ask the user to retry later
- InsightGenerationError: anything else, including an empty response

Transient unavailability (503, deadline exceeded) is retried with
tenacity before it surfaces as InsightGenerationError.
"""

from enum import Enum
from typing import Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bizsight.audit.logger import AuditLogger
from bizsight.config import get_settings
from bizsight.models.records import AggregateTotals, MonthlySummary


logger = structlog.get_logger(__name__)


GETTING_STARTED_MESSAGE = (
    "It looks like you're just getting started or haven't entered much "
    "financial data yet. Add some income and expenses to start seeing "
    "valuable insights!"
)

RATE_LIMITED_MESSAGE = (
    "The insight service is busy right now. Please try again in a minute."
)

FAILED_MESSAGE = (
    "We couldn't generate an insight at the moment. Your figures above are "
    "still up to date."
)

MAX_MONTHS = 6

_TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
)


class InsightRequest(BaseModel):
    """Aggregates handed to the model. Monthly entries are oldest first."""

    totals: AggregateTotals
    monthly: list[MonthlySummary] = Field(
        default_factory=list,
        max_length=MAX_MONTHS,
    )


class InsightStatus(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


class InsightResult(BaseModel):
    """What the dashboard shows in the insight card."""

    status: InsightStatus
    message: str


def build_prompt(request: InsightRequest) -> str:
    """Render the analyst prompt for one request."""
    totals = request.totals

    if request.monthly:
        monthly_lines = "Recent Monthly Performance:\n" + "\n".join(
            f"- {m.month} {m.year}: Income: ${m.income:,.2f}, "
            f"Expenses: ${m.expenses:,.2f}, Profit: ${m.profit:,.2f}"
            for m in request.monthly
        )
    else:
        monthly_lines = "(No recent monthly data provided for trend analysis)"

    return f"""You are a helpful financial assistant for a small business owner using the BizSight app.
Analyze the following financial data and provide a concise (1-3 sentences) insight or observation.
Focus on identifying key trends, areas of concern, or positive developments.
If possible, make it actionable or suggest something to look into.

Financial Summary:
- Total Revenue: ${totals.total_revenue:,.2f}
- Total Expenses: ${totals.total_expenses:,.2f}
- Net Profit: ${totals.total_profit:,.2f}

{monthly_lines}

Important:
- Use ONLY the figures above. Do not invent numbers.
- Be empathetic and encouraging.
- If data is sparse, acknowledge that and suggest adding more data.

Respond with the insight text only, no headings or lists."""


class InsightAgent:
    """
    Thin wrapper around a Gemini model that turns aggregates into a sentence or three.

    A pre-built model can be injected (tests pass a mock); otherwise
    the model is configured from GeminiSettings.
    """

    def __init__(self, model=None, max_retries: Optional[int] = None):
        if model is None:
            settings = get_settings().gemini
            model = self._configure_genai(settings)
            max_retries = max_retries or settings.max_retries
        self._model = model
        self._max_retries = max_retries or 3

    @staticmethod
    def _configure_genai(settings):
        """Configure Google Generative AI."""
        genai.configure(api_key=settings.api_key)
        return genai.GenerativeModel(
            model_name=settings.model_name,
            generation_config={
                "temperature": settings.temperature,
                "max_output_tokens": settings.max_tokens,
            },
        )

    async def _generate(self, prompt: str):
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            reraise=True,
        ):
            with attempt:
                return await self._model.generate_content_async(prompt)

    async def generate_insight(self, request: InsightRequest) -> str:
        """
        Ask the model for one insight about the request's figures.

        Raises:
            InsightRateLimitedError: quota exhausted
            InsightGenerationError: any other failure, or an empty answer
        """
        prompt = build_prompt(request)

        try:
            response = await self._generate(prompt)
        except google_exceptions.ResourceExhausted as e:
            raise InsightRateLimitedError(str(e)) from e
        except Exception as e:
            raise InsightGenerationError(f"Insight request failed: {e}") from e

        try:
            text = (response.text or "").strip()
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked or has no parts
            raise InsightGenerationError(f"Model returned no usable text: {e}") from e

        if not text:
            raise InsightGenerationError("Model returned an empty insight")

        return text


class InsightService:
    """
    Decides whether to ask the model at all, and maps failures to UI messages.

    With no financial activity there is nothing to analyze, so the
    getting-started message is returned without a model call.
    """

    def __init__(
        self,
        agent: InsightAgent,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._agent = agent
        self._audit = audit_logger

    async def summarize(
        self,
        totals: AggregateTotals,
        monthly: list[MonthlySummary],
    ) -> InsightResult:
        # Zero months carry no trend; the breakdown pads them for the chart
        active = [m for m in monthly if m.income or m.expenses][-MAX_MONTHS:]

        if totals.is_empty and not active:
            return InsightResult(status=InsightStatus.OK, message=GETTING_STARTED_MESSAGE)

        request = InsightRequest(totals=totals, monthly=active)

        try:
            text = await self._agent.generate_insight(request)
        except InsightRateLimitedError as e:
            logger.warning("insight_rate_limited", error=str(e))
            if self._audit:
                await self._audit.log_insight_failed(rate_limited=True, error_message=str(e))
            return InsightResult(status=InsightStatus.RATE_LIMITED, message=RATE_LIMITED_MESSAGE)
        except InsightGenerationError as e:
            logger.error("insight_failed", error=str(e))
            if self._audit:
                await self._audit.log_insight_failed(rate_limited=False, error_message=str(e))
            return InsightResult(status=InsightStatus.FAILED, message=FAILED_MESSAGE)

        if self._audit:
            await self._audit.log_insight_generated(months=len(active))
        return InsightResult(status=InsightStatus.OK, message=text)


class InsightGenerationError(Exception):
    """The model could not produce an insight."""
    pass


class InsightRateLimitedError(InsightGenerationError):
    """The model's quota is exhausted; retry later."""
    pass
