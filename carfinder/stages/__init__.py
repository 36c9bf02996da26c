"""LLM-backed pipeline stages."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Callable, List, Optional, Sequence, Type, TypeVar
import json

from pydantic import BaseModel, ValidationError as PydanticValidationError

from carfinder.errors import ParseError
from carfinder.models.ollama import Message, OllamaClient, OutputFormat
from carfinder.prompts import PromptLibrary
from carfinder.repair import parse_model_json
from carfinder.tracing import Tracer

T = TypeVar("T")
R = TypeVar("R")
M = TypeVar("M", bound=BaseModel)


def run_items(
    func: Callable[[int, T], R],
    items: Sequence[T],
    max_workers: int = 4,
    sequential: bool = False,
) -> List[R]:
    """Apply ``func(index, item)`` to every item; results keep input order."""
    if not items:
        return []
    if sequential or max_workers <= 1 or len(items) == 1:
        return [func(index, item) for index, item in enumerate(items)]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        return list(executor.map(func, range(len(items)), items))


def to_json(value: Any) -> str:
    if hasattr(value, "model_dump"):
        value = value.model_dump()
    return json.dumps(value, ensure_ascii=False, default=str)


def date_message() -> str:
    return f"Today is: {date.today().isoformat()}"


def validate(schema: Type[M], data: Any) -> M:
    """Validate parsed model output; shape mismatches surface as ParseError."""
    if not isinstance(data, dict):
        raise ParseError(f"{schema.__name__}: expected a JSON object, got {type(data).__name__}")
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        raise ParseError(f"{schema.__name__}: {exc.error_count()} validation error(s)", details=exc.errors()) from exc


class Stage:
    operation = "stage"

    def __init__(
        self,
        client: OllamaClient,
        prompts: PromptLibrary,
        model: str,
        tracer: Tracer | None = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.client = client
        self.prompts = prompts
        self.model = model
        self.tracer = tracer or Tracer()
        self.temperature = temperature
        self.max_tokens = max_tokens

    def invoke(
        self,
        messages: Sequence[Message],
        operation: str | None = None,
        format: OutputFormat = "json",
        trace_id: str = "",
    ) -> str:
        return self.client.chat(
            messages,
            model=self.model,
            format=format,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            operation=operation or self.operation,
            trace_id=trace_id,
        )

    def invoke_json(
        self,
        messages: Sequence[Message],
        operation: str | None = None,
        format: OutputFormat = "json",
        trace_id: str = "",
    ) -> Any:
        return parse_model_json(self.invoke(messages, operation=operation, format=format, trace_id=trace_id))
