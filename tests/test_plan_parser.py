"""
Plan parser tests with a mocked Anthropic client
"""

import json
from datetime import date
from types import SimpleNamespace
from unittest.mock import Mock

import anthropic
import httpx
import pytest

from dayplan.core.nlp.parser import (
    EmptyPlanError,
    ParserNotConfiguredError,
    PlanParseError,
    PlanParser,
    build_prompt,
    extract_json_array,
    validate_events,
)

EVENTS = [
    {"activity": "Get coffee", "location": "Blue Bottle, Ferry Building",
     "startTime": "2024-06-15T09:00:00", "endTime": "2024-06-15T10:00:00"},
    {"activity": "Watch sunset", "location": "Twin Peaks", "startTime": "sunset"},
]


def reply(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def make_parser(text=None, error=None):
    client = Mock()
    if error is not None:
        client.messages.create.side_effect = error
    else:
        client.messages.create.return_value = reply(text)
    return PlanParser(api_key="sk-ant-test", model="test-model", max_tokens=256, client=client), client


class TestExtraction:

    def test_array_inside_prose(self):
        text = "Sure! Here is your plan:\n" + json.dumps(EVENTS) + "\nEnjoy."
        assert extract_json_array(text) == EVENTS

    def test_no_array(self):
        with pytest.raises(PlanParseError, match="Failed to extract events"):
            extract_json_array("I could not find any events.")

    def test_broken_json(self):
        with pytest.raises(PlanParseError, match="Failed to parse events JSON"):
            extract_json_array('[{"activity": "x",]')

    def test_validate_events_accepts_aliases_and_missing_end(self):
        events = validate_events(EVENTS)
        assert events[0].start_time == "2024-06-15T09:00:00"
        assert events[1].end_time is None

    @pytest.mark.parametrize("item", [
        {"activity": "Lunch", "startTime": "noon"},
        {"activity": " ", "location": "Cafe", "startTime": "noon"},
        "lunch at noon",
    ])
    def test_validate_events_reports_index(self, item):
        with pytest.raises(PlanParseError, match="Event at index 1 is missing required fields"):
            validate_events([EVENTS[0], item])


def test_prompt_mentions_date_and_text():
    prompt = build_prompt("  coffee at 9  ", date(2024, 6, 15))
    assert "2024-06-15" in prompt
    assert "Plan text: coffee at 9" in prompt


class TestPlanParser:

    def test_parse_success(self):
        parser, client = make_parser(json.dumps(EVENTS))
        events = parser.parse("coffee at 9, sunset at twin peaks", date(2024, 6, 15))

        assert [e.activity for e in events] == ["Get coffee", "Watch sunset"]
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 256
        assert "twin peaks" in kwargs["messages"][0]["content"]

    def test_empty_text(self):
        parser, client = make_parser("[]")
        with pytest.raises(EmptyPlanError, match="Plan text is required"):
            parser.parse("   ")
        client.messages.create.assert_not_called()

    def test_api_error_is_wrapped(self):
        error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        parser, _ = make_parser(error=error)
        with pytest.raises(PlanParseError, match="Failed to process plan with language model"):
            parser.parse("coffee at 9")

    def test_reply_without_text_blocks(self):
        parser, client = make_parser()
        client.messages.create.return_value = SimpleNamespace(content=[])
        with pytest.raises(PlanParseError, match="Invalid response"):
            parser.parse("coffee at 9")

    def test_missing_api_key(self):
        parser = PlanParser(api_key="")
        with pytest.raises(ParserNotConfiguredError, match="API key configuration missing"):
            parser.parse("coffee at 9")
