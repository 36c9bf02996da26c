"""Translation stage.

Only linguistic fields are translated. Identity fields must come back unchanged
or the translated car is discarded, and the non-linguistic fields are always
restored from the original.
"""
from __future__ import annotations

from typing import Any, Dict
import logging

from carfinder.candidates import LOCKED_FIELDS, Candidate, describe, identity_matches
from carfinder.models.ollama import system, user
from carfinder.schemas import AnalysisTranslationSchema, CarTranslationSchema
from carfinder.stages import Stage, run_items, to_json, validate

logger = logging.getLogger(__name__)

CAR_TEMPLATE = "translate-car.md"
ANALYSIS_TEMPLATE = "translate-analysis.md"
MIN_ANALYSIS_LENGTH = 10


class TranslationStage(Stage):
    operation = "translate"

    def __init__(self, *args: Any, max_workers: int = 4, sequential: bool = False, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.max_workers = max_workers
        self.sequential = sequential

    def translate(self, response: Dict[str, Any], language: str, trace_id: str = "") -> Dict[str, Any]:
        """Translate ``analysis`` and every car; on any stage failure return ``response`` as is."""
        cars = response.get("cars") if isinstance(response.get("cars"), list) else []
        with self.tracer.span("translate_results", trace_id=trace_id, target_language=language, cars=len(cars)) as span:
            logger.info(f"Translating results to {language} ({len(cars)} cars)")
            try:
                analysis = response.get("analysis")
                if analysis:
                    analysis = self.translate_analysis(analysis, language, trace_id)

                def _one(index: int, car: Candidate) -> Candidate:
                    return self.translate_car(car, language, index, trace_id)

                translated = run_items(_one, cars, self.max_workers, self.sequential)
            except Exception as exc:
                logger.error(f"Translation failed, returning original results: {exc}")
                span.fail(exc)
                return response
            span.end({"cars_translated": len(translated)})
            return {**response, "analysis": analysis, "cars": translated}

    def translate_analysis(self, text: str, language: str, trace_id: str = "") -> str:
        with self.tracer.span("translate_analysis", trace_id=trace_id, input=text) as span:
            try:
                messages = [
                    system(self.prompts.render(ANALYSIS_TEMPLATE, targetLanguage=language)),
                    user(text),
                ]
                parsed = validate(
                    AnalysisTranslationSchema,
                    self.invoke_json(messages, operation="translate_analysis", trace_id=trace_id),
                )
            except Exception as exc:
                logger.warning(f"Failed to translate analysis, using original: {exc}")
                span.fail(exc)
                return text
            translated = parsed.analysis
            if len(translated.strip()) < MIN_ANALYSIS_LENGTH:
                logger.warning("Analysis translation seems invalid, using original")
                span.end(text)
                return text
            span.end(translated)
            return translated

    def translate_car(self, car: Candidate, language: str, index: int = 0, trace_id: str = "") -> Candidate:
        try:
            messages = [
                system(self.prompts.render(CAR_TEMPLATE, targetLanguage=language)),
                system(self.prompts.json_guard()),
                user(to_json(car)),
            ]
            parsed = self.invoke_json(
                messages,
                operation=f"translate_car_{car.get('make')}_{car.get('model')}",
                trace_id=trace_id,
            )
            validate(CarTranslationSchema, parsed)
        except Exception as exc:
            logger.warning(f"Failed to translate car #{index} {describe(car)}, using original: {exc}")
            return car
        if not identity_matches(car, parsed):
            logger.warning(
                f"Car translation #{index} changed identity "
                f"({describe(car)} -> {describe(parsed)}), using original"
            )
            return car
        return restore_locked_fields(car, parsed)


def restore_locked_fields(original: Candidate, translated: Candidate) -> Candidate:
    restored = dict(translated)
    # Keep the original's year representation ("2020" vs 2020).
    restored["year"] = original.get("year")
    for key in LOCKED_FIELDS:
        if key in original:
            if restored.get(key) != original[key]:
                logger.warning(f"Car translation changed {key}; keeping original")
                restored[key] = original[key]
        else:
            restored.pop(key, None)
    if "pinned" in original:
        restored["pinned"] = original["pinned"]
    else:
        restored.pop("pinned", None)
    return restored
