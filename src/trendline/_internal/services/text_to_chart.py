"""Text-to-chart translation boundary.

The translator itself is an opaque chat completion. This module builds its
prompt, validates its answer, and maps the chosen names onto stored events.
Malformed answers yield no suggestion rather than a guessed default chart.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from trendline._literal_types import ChartType, ReportType
from trendline.exceptions import TranslationError
from trendline.types import ANY_EVENT, ChartSuggestion, EventChoice

if TYPE_CHECKING:
    from trendline._internal.completion_client import CompletionClient
    from trendline._internal.services.schema import SchemaService

_logger = logging.getLogger(__name__)

ANY_EVENT_TOKEN = "AnyEvent"
ALL_EVENTS_TOKEN = "AllEvents"

_WILDCARD_CHOICES: dict[str, EventChoice] = {
    ANY_EVENT_TOKEN: EventChoice(name="Any event", value=ANY_EVENT),
    ALL_EVENTS_TOKEN: EventChoice(name="All events", value=ANY_EVENT),
}

_CHART_TYPES: dict[str, tuple[ChartType, ReportType]] = {
    "line": ("line", "insight"),
    "bar": ("bar", "insight"),
    "donut": ("donut", "insight"),
    "funnel": ("funnel", "funnel"),
    "retention": ("retention", "retention"),
}


class _TranslatorAnswer(BaseModel):
    """Shape of the translator's JSON object."""

    model_config = ConfigDict(extra="ignore")

    report_type: Literal["line", "bar", "donut", "funnel", "retention"] = Field(
        alias="reportType"
    )
    event_names: list[str] = Field(default_factory=list, alias="eventNames")
    step1: str | None = Field(default=None, alias="step1EventName")
    step2: str | None = Field(default=None, alias="step2EventName")
    initial: str | None = Field(default=None, alias="initialEventName")
    retaining: str | None = Field(default=None, alias="retainingEventName")
    measurement: (
        Literal["event_count", "unique_users", "frequency_per_user"] | None
    ) = None

    def ordered_names(self) -> list[str]:
        """Event names in step/cohort order, then the plain list."""
        names = [
            name
            for name in (self.initial, self.retaining, self.step1, self.step2)
            if name
        ]
        return names + self.event_names


def build_prompt(text: str, event_names: Sequence[str]) -> str:
    """Prompt asking for one JSON object describing a chart."""
    choices = "\n".join([*event_names, ANY_EVENT_TOKEN, ALL_EVENTS_TOKEN])
    return (
        f'Given the input "{text}"\n\n'
        "And the following potential event names:\n\n"
        f"{choices}\n\n"
        "ONLY RETURN JSON\n\n"
        "Return exactly one JSON object of one of these shapes:\n"
        "{ \"reportType\": \"line\" | \"bar\" | \"donut\", "
        "\"eventNames\": string[], \"measurement\"?: \"event_count\" | "
        "\"unique_users\" | \"frequency_per_user\" }\n"
        "{ \"reportType\": \"funnel\", \"step1EventName\": string, "
        "\"step2EventName\": string }\n"
        "{ \"reportType\": \"retention\", \"initialEventName\": string, "
        "\"retainingEventName\": string }"
    )


def parse_chart_suggestion(
    raw: str | None, known_events: Sequence[str]
) -> ChartSuggestion:
    """Validate the translator's answer and map it onto stored events.

    The wildcard tokens map to the any-event selector; names that are not
    stored events are dropped.

    Args:
        raw: Raw completion text.
        known_events: Event names stored for the project.

    Returns:
        Validated ChartSuggestion.

    Raises:
        TranslationError: If the answer is not a JSON object of a known shape,
            or if no chosen event survives the mapping.

    Example:
        ```python
        parse_chart_suggestion(
            '{"reportType": "bar", "eventNames": ["Signup", "Nope"]}',
            ["Signup", "Purchase"],
        )
        # ChartSuggestion(chart_type='bar', report_type='insight',
        #                 events=(EventChoice('Signup', 'Signup'),), ...)
        ```
    """
    if not raw or not raw.strip():
        raise TranslationError("Translator returned no output", raw_output=raw)

    try:
        payload = json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError as e:
        raise TranslationError(
            f"Translator output is not JSON: {e.msg}", raw_output=raw
        ) from e
    if not isinstance(payload, dict):
        raise TranslationError("Translator output is not a JSON object", raw_output=raw)

    try:
        answer = _TranslatorAnswer.model_validate(payload)
    except ValidationError as e:
        raise TranslationError(
            f"Translator output has an unknown shape: {e.errors()[0]['msg']}",
            raw_output=raw,
        ) from e

    known = set(known_events)
    events: list[EventChoice] = []
    for name in answer.ordered_names():
        if name in _WILDCARD_CHOICES:
            events.append(_WILDCARD_CHOICES[name])
        elif name in known:
            events.append(EventChoice(name=name, value=name))
        else:
            _logger.debug("Dropping unknown event %r from translator output", name)

    if not events:
        raise TranslationError("Translator chose no known events", raw_output=raw)

    chart_type, report_type = _CHART_TYPES[answer.report_type]
    return ChartSuggestion(
        chart_type=chart_type,
        report_type=report_type,
        events=tuple(events),
        measurement=answer.measurement or "unique_users",
    )


def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text


class TextToChartService:
    """Turns free text into a chart suggestion for one project.

    Example:
        ```python
        service = TextToChartService(schema_service, client)
        suggestion = service.suggest("weekly signups as bars")
        if suggestion is not None:
            metrics = suggestion.metrics()
        ```
    """

    def __init__(self, schema: SchemaService, client: CompletionClient) -> None:
        self._schema = schema
        self._client = client

    def suggest(self, text: str) -> ChartSuggestion | None:
        """Ask the translator for a chart; None when its answer is unusable.

        Raises:
            APIError: If the translator endpoint fails.
        """
        event_names = self._schema.list_events()
        raw = self._client.complete(build_prompt(text, event_names))
        try:
            return parse_chart_suggestion(raw, event_names)
        except TranslationError as e:
            _logger.info("No chart suggestion for %r: %s", text, e.message)
            return None
