"""Image enrichment: search per make/model, then keep the images a vision model accepts."""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Sequence
import logging

from carfinder.candidates import Candidate, image_key
from carfinder.models.images import ImageRecord, ImageSearchClient, fetch_image
from carfinder.models.ollama import system, user
from carfinder.schemas import VerifyCarSchema
from carfinder.stages import Stage, run_items, validate

logger = logging.getLogger(__name__)

VERIFY_TEMPLATE = "verify-car.md"

Fetcher = Callable[[str], bytes]


class EnrichmentStage(Stage):
    operation = "verify_image"

    def __init__(
        self,
        *args: Any,
        images: ImageSearchClient,
        fetcher: Fetcher = fetch_image,
        images_per_car: int = 4,
        model_threshold: float = 0.8,
        text_threshold: float = 0.2,
        fallback_images: int = 3,
        vision_enabled: bool = True,
        max_workers: int = 4,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.images = images
        self.fetcher = fetcher
        self.images_per_car = images_per_car
        self.model_threshold = model_threshold
        self.text_threshold = text_threshold
        self.fallback_images = fallback_images
        self.vision_enabled = vision_enabled
        self.max_workers = max_workers

    def enrich(self, candidates: List[Candidate], trace_id: str = "") -> List[Candidate]:
        if not candidates:
            return []
        with self.tracer.span("enrich_with_images", trace_id=trace_id, input={"count": len(candidates)}) as span:
            logger.info(f"Searching images for {len(candidates)} cars")
            image_map = self.search_all(candidates)

            def _one(index: int, car: Candidate) -> Candidate:
                raw = image_map.get(image_key(car), [])
                verified = self.filter_images(car, raw, trace_id)
                return {**car, "images": [image.to_dict() for image in verified]}

            enriched = run_items(_one, candidates, self.max_workers)
            span.end({"count": len(enriched)})
            return enriched

    def search_all(self, candidates: Sequence[Candidate]) -> Dict[str, List[ImageRecord]]:
        """One search per distinct make/model pair."""
        keys: List[str] = []
        queries: List[str] = []
        for car in candidates:
            key = image_key(car)
            if key in keys:
                continue
            keys.append(key)
            queries.append(" ".join(str(car.get(f) or "") for f in ("make", "model", "year")).strip())

        def _search(index: int, query: str) -> List[ImageRecord]:
            return self.images.search(query, self.images_per_car)

        results = run_items(_search, queries, self.max_workers)
        return dict(zip(keys, results))

    def filter_images(self, car: Candidate, images: List[ImageRecord], trace_id: str = "") -> List[ImageRecord]:
        if not images:
            return []
        if not self.vision_enabled:
            return list(images)
        label = f"{car.get('make', '')} {car.get('model', '')}".strip()
        with self.tracer.span("filter_images_vision", trace_id=trace_id, input={"car": label, "count": len(images)}) as span:
            try:
                verified = [image for image in images if self.verify_image(car, image, trace_id)]
            except Exception as exc:
                logger.warning(f"Vision filtering failed for {label}, keeping first {self.fallback_images} images: {exc}")
                span.fail(exc)
                return list(images[: self.fallback_images])
            logger.info(f"Vision kept {len(verified)}/{len(images)} images for {label}")
            span.end({"verified": len(verified)})
            return verified

    def verify_image(self, car: Candidate, image: ImageRecord, trace_id: str = "") -> bool:
        data = self.fetcher(image.verify_url)
        label = f"{car.get('make', '')} {car.get('model', '')}".strip()
        messages = [
            system(self.prompts.render(VERIFY_TEMPLATE, car=label, year=str(car.get("year", "")))),
            system(self.prompts.json_guard()),
            user(f"Does this photo show a {label}?", images=[data]),
        ]
        verdict = validate(
            VerifyCarSchema,
            self.invoke_json(messages, format=VerifyCarSchema.model_json_schema(), trace_id=trace_id),
        )
        return self.accepts(verdict)

    def accepts(self, verdict: VerifyCarSchema) -> bool:
        return verdict.modelConfidence >= self.model_threshold and verdict.textConfidence <= self.text_threshold
