"""Ollama chat client used by every pipeline stage."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union
import base64
import logging
import time
import httpx

from carfinder.errors import ModelHTTPError, ModelUnavailableError
from carfinder.tracing import Tracer

logger = logging.getLogger(__name__)

OutputFormat = Union[str, Dict[str, Any], None]


@dataclass
class Message:
    role: str  # system, user, assistant
    content: str
    images: List[bytes] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.images:
            payload["images"] = [base64.b64encode(data).decode("ascii") for data in self.images]
        return payload


def system(content: str) -> Message:
    return Message(role="system", content=content)


def user(content: str, images: Optional[List[bytes]] = None) -> Message:
    return Message(role="user", content=content, images=list(images or []))


class OllamaClient:
    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        tracer: Tracer | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.tracer = tracer or Tracer()

    def list_models(self) -> list[dict]:
        try:
            with httpx.Client(timeout=5.0) as client:
                resp = client.get(f"{self.base_url}/api/tags")
                resp.raise_for_status()
                data = resp.json()
                return data.get("models", [])
        except Exception as exc:
            logger.warning(f"Could not list Ollama models: {exc}")
            return []

    def verify_backend(self, model: str) -> bool:
        """True when ``model`` is a substring of one of the backend's model names."""
        names = [str(m.get("name") or m.get("model") or "") for m in self.list_models()]
        return any(model in name for name in names if name)

    def chat(
        self,
        messages: Sequence[Message],
        model: str,
        format: OutputFormat = "json",
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        operation: str = "chat",
        trace_id: str = "",
    ) -> str:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [m.to_payload() for m in messages],
            "stream": False,
            "options": {
                "temperature": temperature,
            },
        }
        if format:
            payload["format"] = format
        if max_tokens is not None:
            payload["options"]["num_predict"] = max_tokens

        summary = {
            "messages": len(messages),
            "images": sum(len(m.images) for m in messages),
            "last": messages[-1].content[:200] if messages else "",
        }
        with self.tracer.span(f"generation.{operation}", trace_id=trace_id, input=summary, model=model) as span:
            start = time.perf_counter()
            try:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(f"{self.base_url}/api/chat", json=payload)
            except httpx.HTTPError as exc:
                raise ModelUnavailableError(f"Unable to connect to Ollama: {exc}") from exc
            duration = (time.perf_counter() - start) * 1000
            if resp.status_code < 200 or resp.status_code >= 300:
                raise ModelHTTPError(
                    f"Ollama HTTP {resp.status_code}: {resp.text[:500]}",
                    http_status=resp.status_code,
                )
            try:
                data = resp.json()
            except ValueError as exc:
                raise ModelHTTPError(f"Ollama returned a non-JSON body: {exc}", http_status=resp.status_code) from exc
            text = (data.get("message") or {}).get("content", "") or ""
            span.metadata["duration_ms"] = round(duration, 2)
            span.end(text)
            return text
