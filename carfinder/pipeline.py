"""Recommendation pipeline: intent, suggestions, elaboration, translation, images."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging
import time

from carfinder.cache import TTLCache
from carfinder.candidates import Candidate, dedup_key, pinned_hint, pinned_keys
from carfinder.config import Config
from carfinder.conversation import ConversationStore, FindCars, RefineSearch, build_context
from carfinder.errors import ConversationNotFound, PipelineError
from carfinder.models.images import ImageSearchClient, fetch_image
from carfinder.models.ollama import OllamaClient
from carfinder.prompts import PromptLibrary
from carfinder.stages.elaboration import ElaborationStage
from carfinder.stages.enrichment import EnrichmentStage
from carfinder.stages.intent import IntentStage
from carfinder.stages.judge import JudgeStage
from carfinder.stages.suggestion import Suggestions, SuggestionStage
from carfinder.stages.translation import TranslationStage
from carfinder.tracing import AuditLog, LogTracer, Tracer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Phase(str, Enum):
    START = "start"
    INTENT = "intent"
    SUGGEST = "suggest"
    ELABORATE = "elaborate"
    TRANSLATE = "translate"
    ENRICH = "enrich"
    DONE = "done"
    FAILED = "failed"


_NEXT_PHASE = {
    Phase.START: Phase.INTENT,
    Phase.INTENT: Phase.SUGGEST,
    Phase.SUGGEST: Phase.ELABORATE,
    Phase.ELABORATE: Phase.TRANSLATE,
    Phase.TRANSLATE: Phase.ENRICH,
    Phase.ENRICH: Phase.DONE,
}
FAILABLE_PHASES = (Phase.INTENT, Phase.SUGGEST, Phase.ELABORATE)


@dataclass
class PipelineRun:
    """State of one find/refine invocation."""

    run_id: str
    session_id: str
    kind: str
    phase: Phase = Phase.START
    events: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)

    def advance(self, phase: Phase) -> None:
        expected = _NEXT_PHASE.get(self.phase)
        if phase != expected:
            raise RuntimeError(f"Invalid phase transition {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.events.append({"phase": phase.value, "status": "start", "at": time.time()})

    def fail(self, error: BaseException) -> None:
        if self.phase not in FAILABLE_PHASES:
            raise RuntimeError(f"Phase {self.phase.value} cannot fail")
        self.error = str(error)
        self.events.append({"phase": self.phase.value, "status": "failed", "error": self.error, "at": time.time()})
        self.phase = Phase.FAILED

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.started_at


def merge_pinned(pinned_cars: List[Candidate], choices: List[Candidate], keys: set[str]) -> List[Candidate]:
    """Pinned cars first, then choices; ``pinned`` from ``keys``; first occurrence per make-model wins."""
    merged: List[Candidate] = []
    seen: set[str] = set()
    for car in list(pinned_cars) + list(choices):
        key = dedup_key(car)
        if key in seen:
            continue
        seen.add(key)
        merged.append({**car, "pinned": key in keys})
    return merged


class RecommendationPipeline:
    def __init__(
        self,
        intent: IntentStage,
        suggestion: SuggestionStage,
        elaboration: ElaborationStage,
        translation: TranslationStage,
        enrichment: EnrichmentStage,
        store: ConversationStore,
        judge: JudgeStage | None = None,
        tracer: Tracer | None = None,
        audit: AuditLog | None = None,
        retry_count: int = 0,
    ) -> None:
        self.intent = intent
        self.suggestion = suggestion
        self.elaboration = elaboration
        self.translation = translation
        self.enrichment = enrichment
        self.store = store
        self.judge = judge
        self.tracer = tracer or Tracer()
        self.audit = audit
        self.retry_count = retry_count

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: ConversationStore | None = None,
        client: OllamaClient | None = None,
        images: ImageSearchClient | None = None,
    ) -> "RecommendationPipeline":
        audit = AuditLog(config.audit_path) if config.audit_path else None
        tracer = LogTracer(audit)
        client = client or OllamaClient(config.ollama_url, timeout=config.request_timeout_seconds, tracer=tracer)
        prompts = PromptLibrary(config.prompts_dir)
        images = images or ImageSearchClient.from_config(config.image_search, cache=TTLCache())
        store = store or ConversationStore(
            ttl_seconds=config.conversation_ttl_seconds,
            sweep_interval_seconds=config.sweep_interval_seconds,
        )

        def _common(operation: str) -> Dict[str, Any]:
            return {
                "client": client,
                "prompts": prompts,
                "model": config.model_for(operation),
                "tracer": tracer,
                "temperature": config.temperature,
                "max_tokens": config.max_tokens,
            }

        judge = None
        if config.judge.get("enabled", False):
            judge = JudgeStage(
                **_common("judge"),
                pass_threshold=float(config.judge.get("pass_threshold", 70)),
            )
        return cls(
            intent=IntentStage(**_common("intent")),
            suggestion=SuggestionStage(**_common("suggestion")),
            elaboration=ElaborationStage(
                **_common("elaboration"),
                max_workers=config.max_workers,
                sequential=config.sequential_elaboration,
            ),
            translation=TranslationStage(
                **_common("translation"),
                max_workers=config.max_workers,
                sequential=config.sequential_translation,
            ),
            enrichment=EnrichmentStage(
                **_common("vision"),
                images=images,
                fetcher=partial(fetch_image, timeout=float(config.vision.get("download_timeout_seconds", 10))),
                images_per_car=int(config.image_search.get("images_per_car", 4)),
                model_threshold=config.model_confidence_threshold,
                text_threshold=config.text_confidence_threshold,
                fallback_images=int(config.vision.get("fallback_images", 3)),
                vision_enabled=config.vision_enabled,
                max_workers=config.max_workers,
            ),
            store=store,
            judge=judge,
            tracer=tracer,
            audit=audit,
            retry_count=config.retry_count,
        )

    def find_cars(self, session_id: str, requirements: str, language: str = "en") -> Dict[str, Any]:
        run = PipelineRun(run_id=self.tracer.new_trace_id(), session_id=session_id, kind=FindCars.kind)
        result = self._execute(run, context=requirements, language=language, judge_context=requirements)
        self.store.append(
            session_id,
            FindCars(requirements=requirements, result=result),
            user_language=language,
        )
        return result

    def refine_search(
        self,
        session_id: str,
        feedback: str,
        language: str = "en",
        pinned_cars: Optional[List[Candidate]] = None,
    ) -> Dict[str, Any]:
        pinned_cars = list(pinned_cars or [])
        conversation = self.store.get(session_id)
        if conversation is None:
            raise ConversationNotFound(session_id)
        with self.store.session(session_id):
            history = build_context(conversation)
        context = f"Conversation History:\n{history}\n\nLatest Feedback: {feedback}"
        run = PipelineRun(run_id=self.tracer.new_trace_id(), session_id=session_id, kind=RefineSearch.kind)
        result = self._execute(
            run,
            context=context,
            language=language,
            pinned=pinned_cars,
            judge_context=f"Current Feedback: {feedback}\n\nConversation History:\n{history}",
        )
        self.store.append(
            session_id,
            RefineSearch(feedback=feedback, pinned_cars=pinned_cars, result=result),
            user_language=language,
        )
        return result

    def _execute(
        self,
        run: PipelineRun,
        context: str,
        language: str,
        pinned: Optional[List[Candidate]] = None,
        judge_context: str = "",
    ) -> Dict[str, Any]:
        pinned = pinned or []
        trace_id = run.run_id
        self._log(run, "run.start", {"kind": run.kind, "language": language, "pinned": len(pinned)})
        with self.tracer.span(f"{run.kind}_API", trace_id=trace_id, input=context, session_id=run.session_id) as span:
            run.advance(Phase.INTENT)
            intent = self._stage(run, lambda: self.intent.extract(context, language, trace_id))

            run.advance(Phase.SUGGEST)
            hint = pinned_hint(pinned)
            suggestions: Suggestions = self._stage(
                run, lambda: self.suggestion.suggest(intent, context, hint, trace_id)
            )
            # The model's pinned_cars only count on a refinement that pinned something.
            candidates = merge_pinned(
                suggestions.pinned_cars if pinned else [], suggestions.choices, pinned_keys(pinned)
            )
            logger.info(f"[{trace_id}] {len(candidates)} candidates after merge")

            run.advance(Phase.ELABORATE)
            elaborated = self._stage(run, lambda: self.elaboration.elaborate(candidates, intent, trace_id))

            run.advance(Phase.TRANSLATE)
            translated = self.translation.translate(
                {"analysis": suggestions.analysis, "cars": elaborated}, language, trace_id
            )

            run.advance(Phase.ENRICH)
            cars = translated.get("cars") or []
            try:
                cars = self.enrichment.enrich(cars, trace_id)
            except Exception as exc:
                logger.error(f"[{trace_id}] Image enrichment failed, returning cars without images: {exc}")
                cars = [{**car, "images": []} for car in cars]

            result: Dict[str, Any] = {
                "run_id": run.run_id,
                "analysis": translated.get("analysis", suggestions.analysis),
                "cars": cars,
                "user_market": intent.user_country,
                "search_intent": intent.model_dump(),
                "suggestions": suggestions.to_dict(),
            }
            if self.judge is not None:
                verdict = self.judge.evaluate(judge_context or context, result, trace_id)
                if verdict is not None:
                    result["judge"] = verdict

            run.advance(Phase.DONE)
            span.end({"cars": len(cars)})
        self._log(run, "run.done", {"cars": len(cars), "elapsed_seconds": round(run.elapsed_seconds, 2)})
        return result

    def _stage(self, run: PipelineRun, func: Callable[[], T]) -> T:
        """Run a stage that aborts the pipeline, retrying ``retry_count`` times."""
        attempts = self.retry_count + 1
        attempt = 1
        while True:
            try:
                return func()
            except Exception as exc:
                if attempt < attempts:
                    logger.warning(
                        f"[{run.run_id}] Stage {run.phase.value} failed (attempt {attempt}/{attempts}), retrying: {exc}"
                    )
                    attempt += 1
                    continue
                logger.error(f"[{run.run_id}] Stage {run.phase.value} failed after {attempts} attempt(s): {exc}")
                stage = run.phase.value
                run.fail(exc)
                self._log(run, "run.failed", {"stage": stage, "error": str(exc)})
                raise PipelineError(stage, exc) from exc

    def _log(self, run: PipelineRun, event: str, data: Dict[str, Any]) -> None:
        if self.audit:
            self.audit.log(event, {"run_id": run.run_id, "session_id": run.session_id, **data})
