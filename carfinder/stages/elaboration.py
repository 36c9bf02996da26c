"""Elaboration stage: per-candidate enrichment with isolated failures."""
from __future__ import annotations

from typing import Any, Dict, List
import logging

from carfinder.candidates import IDENTITY_FIELDS, Candidate, describe
from carfinder.models.ollama import system
from carfinder.schemas import ElaborationSchema, SearchIntent
from carfinder.stages import Stage, date_message, run_items, to_json, validate

logger = logging.getLogger(__name__)

ELABORATION_TEMPLATE = "elaborate_suggestion.md"
# Fields the elaboration may echo back but must not overwrite.
PROTECTED_FIELDS = IDENTITY_FIELDS + ("pinned",)


class ElaborationStage(Stage):
    operation = "elaborate"

    def __init__(self, *args: Any, max_workers: int = 4, sequential: bool = False, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.max_workers = max_workers
        self.sequential = sequential

    def elaborate(self, candidates: List[Candidate], intent: SearchIntent, trace_id: str = "") -> List[Candidate]:
        """Return one candidate per input, in input order.

        A candidate whose elaboration fails is returned unchanged; only
        batch-level problems (such as a missing template) raise.
        """
        with self.tracer.span("elaborate_cars", trace_id=trace_id, input={"count": len(candidates)}) as span:
            template = self.prompts.load(ELABORATION_TEMPLATE)
            guard = self.prompts.json_guard()
            intent_json = to_json(intent)

            def _one(index: int, candidate: Candidate) -> Candidate:
                return self._elaborate_one(candidate, template, guard, intent_json, trace_id)

            elaborated = run_items(_one, candidates, self.max_workers, self.sequential)
            span.end({"count": len(elaborated)})
            return elaborated

    def _elaborate_one(
        self,
        candidate: Candidate,
        template: str,
        guard: str,
        intent_json: str,
        trace_id: str,
    ) -> Candidate:
        messages = [
            system(date_message()),
            system(template),
            system("Current car to elaborate: " + to_json(candidate)),
            system("User intent JSON: " + intent_json),
            system(guard),
        ]
        try:
            parsed = self.invoke_json(
                messages,
                operation=f"elaborate_{candidate.get('make')}_{candidate.get('model')}",
                format=ElaborationSchema.model_json_schema(),
                trace_id=trace_id,
            )
            # Some models still wrap the answer in {"car": {...}}.
            if isinstance(parsed, dict) and isinstance(parsed.get("car"), dict):
                parsed = parsed["car"]
            elaboration = validate(ElaborationSchema, parsed)
        except Exception as exc:
            logger.error(f"Elaboration failed for {describe(candidate)}: {exc}")
            return candidate
        return merge_elaboration(candidate, elaboration.merge_fields())


def merge_elaboration(candidate: Candidate, fields: Dict[str, Any]) -> Candidate:
    merged = dict(candidate)
    for key, value in fields.items():
        if key in PROTECTED_FIELDS and key in candidate:
            continue
        merged[key] = value
    return merged
