"""Intent stage: free text to a structured SearchIntent."""
from __future__ import annotations

from carfinder.models.ollama import system, user
from carfinder.schemas import SearchIntent
from carfinder.stages import Stage, validate

INTENT_TEMPLATE = "search_intent.md"


class IntentStage(Stage):
    operation = "search_intent"

    def extract(self, context: str, language: str, trace_id: str = "") -> SearchIntent:
        """Failures propagate: without an intent no later stage can run."""
        with self.tracer.span("determine_search_intent", trace_id=trace_id, input=context) as span:
            messages = [
                system(self.prompts.render(INTENT_TEMPLATE, language=language)),
                system(self.prompts.json_guard()),
                user(context),
            ]
            intent = validate(SearchIntent, self.invoke_json(messages, format="json", trace_id=trace_id))
            span.end(intent.model_dump())
            return intent
