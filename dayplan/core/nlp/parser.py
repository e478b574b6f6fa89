"""
Plan parser: free-text daily plans -> structured events via the Anthropic Messages API
"""

import json
import logging
import re
import time
from datetime import date
from typing import Any, List, Optional

import anthropic
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dayplan.core.settings import settings

# Configure logging
logger = logging.getLogger(__name__)

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)

PROMPT_TEMPLATE = """Parse this daily plan into structured events. For each event:
1. Create a simplified activity title by:
   - Removing location names from the activity
   - Using concise action verbs (e.g., "Get lunch" instead of "Get lunch at Restaurant X")
   - Keeping only the core activity description
2. Store the full location separately

Return ONLY a JSON array of objects with these exact fields:
- activity (string, simplified title)
- location (string, full location name)
- startTime (ISO string)
- endTime (ISO string, estimate 1 hour duration if not specified)

The plan is for {plan_date}.

Plan text: {plan_text}

Example transformations:
"Take the cable car to Ghirardelli Square for chocolate sampling" -> activity: "Sample chocolate"
"Get lunch at House of Prime Rib" -> activity: "Get lunch"
"Visit Golden Gate Bridge for photos" -> activity: "Take photos"

Important: Return ONLY the JSON array, no other text or explanation."""


class PlanParseError(Exception):
    """Raised when a plan cannot be turned into events"""


class EmptyPlanError(PlanParseError):
    """The plan text is blank"""


class ParserNotConfiguredError(PlanParseError):
    """No API key is available for the language model"""


class ParsedEvent(BaseModel):
    """One event as returned by the language model"""
    model_config = ConfigDict(populate_by_name=True)

    activity: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    start_time: str = Field(..., min_length=1, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")

    @field_validator('activity', 'location', 'start_time')
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


def build_prompt(plan_text: str, plan_date: Optional[date] = None) -> str:
    return PROMPT_TEMPLATE.format(
        plan_text=plan_text.strip(),
        plan_date=(plan_date or date.today()).isoformat(),
    )


def extract_json_array(text: str) -> List[Any]:
    """Pull the JSON array out of a model reply that may carry extra prose"""
    match = _JSON_ARRAY.search(text or "")
    if not match:
        logger.error(f"No JSON array found in model response: {text!r}")
        raise PlanParseError("Failed to extract events from model response")

    try:
        events = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {e}")
        raise PlanParseError("Failed to parse events JSON") from e

    if not isinstance(events, list):
        raise PlanParseError("Invalid events format - expected array")
    return events


def validate_events(items: List[Any]) -> List[ParsedEvent]:
    events = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise PlanParseError(f"Event at index {index} is missing required fields")
        try:
            events.append(ParsedEvent.model_validate(item))
        except ValidationError as e:
            logger.error(f"Invalid event format at index {index}: {item} ({e.error_count()} errors)")
            raise PlanParseError(f"Event at index {index} is missing required fields") from e
    return events


class PlanParser:
    """Wraps the Anthropic client; one request per plan"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[Any] = None,
    ):
        self.model = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens or settings.ANTHROPIC_MAX_TOKENS
        self._api_key = api_key if api_key is not None else settings.ANTHROPIC_API_KEY
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self._api_key:
                logger.error("Anthropic API key not found")
                raise ParserNotConfiguredError("API key configuration missing")
            self._client = anthropic.Anthropic(
                api_key=self._api_key,
                timeout=settings.LLM_TIMEOUT_SECONDS,
            )
        return self._client

    def _reply_text(self, message: Any) -> str:
        blocks = getattr(message, "content", None) or []
        texts = [getattr(b, "text", "") for b in blocks if getattr(b, "type", "text") == "text"]
        text = "".join(t for t in texts if t)
        if not text:
            raise PlanParseError("Invalid response from language model")
        return text

    def parse(self, plan_text: str, plan_date: Optional[date] = None) -> List[ParsedEvent]:
        """Parse a plan into events; raises PlanParseError on any failure"""
        if not plan_text or not plan_text.strip():
            logger.error("No plan text provided")
            raise EmptyPlanError("Plan text is required")

        start_time = time.time()
        logger.info(f"Sending plan to language model ({len(plan_text)} chars)")

        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": build_prompt(plan_text, plan_date)}],
            )
        except anthropic.APIError as e:
            logger.error(f"Language model API error: {e}")
            raise PlanParseError("Failed to process plan with language model") from e

        events = validate_events(extract_json_array(self._reply_text(message)))

        logger.info(
            f"Parsed {len(events)} events in {(time.time() - start_time) * 1000:.0f}ms"
        )
        return events
