"""Best-effort quality verdict on a finished search response."""
from __future__ import annotations

from typing import Any, Dict, Optional
import json
import logging

from carfinder.models.ollama import system, user
from carfinder.schemas import JudgeVerdictSchema
from carfinder.stages import Stage, validate

logger = logging.getLogger(__name__)

JUDGE_TEMPLATE = "judge.md"


class JudgeStage(Stage):
    operation = "judge_evaluation"

    def __init__(self, *args: Any, pass_threshold: float = 70.0, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.pass_threshold = pass_threshold

    def evaluate(self, requirements: str, response: Dict[str, Any], trace_id: str = "") -> Optional[Dict[str, Any]]:
        """Returns ``{verdict, vote, passed}`` or None when the judge fails."""
        context = json.dumps(
            {"analysis": response.get("analysis"), "cars": response.get("cars")},
            indent=2,
            ensure_ascii=False,
            default=str,
        )
        try:
            with self.tracer.span("judge_evaluation", trace_id=trace_id) as span:
                messages = [
                    user(self.prompts.render(JUDGE_TEMPLATE, requirements=requirements, response=context)),
                    system(self.prompts.json_guard()),
                ]
                verdict = validate(
                    JudgeVerdictSchema,
                    self.invoke_json(messages, format=JudgeVerdictSchema.model_json_schema(), trace_id=trace_id),
                )
                result = {
                    "verdict": verdict.verdict,
                    "vote": verdict.vote,
                    "passed": verdict.vote >= self.pass_threshold,
                }
                span.end(result)
        except Exception as exc:
            logger.warning(f"Judge evaluation failed: {exc}")
            return None
        logger.info(f"Judge vote {result['vote']} ({'pass' if result['passed'] else 'fail'})")
        return result
