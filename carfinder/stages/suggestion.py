"""Suggestion stage: intent and context to a ranked candidate list."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from carfinder.candidates import Candidate
from carfinder.models.ollama import system, user
from carfinder.schemas import SearchIntent, SuggestionsSchema
from carfinder.stages import Stage, to_json, validate

SUGGESTION_TEMPLATE = "cars_suggestions.md"


@dataclass
class Suggestions:
    analysis: str
    choices: List[Candidate] = field(default_factory=list)
    pinned_cars: List[Candidate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"analysis": self.analysis, "choices": self.choices, "pinned_cars": self.pinned_cars}


class SuggestionStage(Stage):
    operation = "car_suggestions"

    def suggest(self, intent: SearchIntent, context: str, pinned_hint: str = "", trace_id: str = "") -> Suggestions:
        with self.tracer.span("get_car_suggestions", trace_id=trace_id, input=context) as span:
            messages = [
                system(self.prompts.load(SUGGESTION_TEMPLATE)),
                system("User intent JSON: " + to_json(intent)),
            ]
            if pinned_hint:
                messages.append(system(pinned_hint))
            messages.extend([system(self.prompts.json_guard()), user(context)])
            schema = SuggestionsSchema.model_json_schema()
            parsed = validate(SuggestionsSchema, self.invoke_json(messages, format=schema, trace_id=trace_id))
            result = Suggestions(
                analysis=parsed.analysis,
                choices=[c.model_dump() for c in parsed.choices],
                pinned_cars=[c.model_dump() for c in parsed.pinned_cars],
            )
            span.end({"choices": len(result.choices), "pinned_cars": len(result.pinned_cars)})
            return result
