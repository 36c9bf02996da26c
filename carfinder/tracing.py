"""Observability port: spans around stages and model calls, plus a JSONL audit log."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
import json
import logging
import threading
import time
import uuid

logger = logging.getLogger(__name__)


@dataclass
class AuditLog:
    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(self, event: str, data: Dict[str, Any] | None = None) -> None:
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "event": event,
            "data": data or {},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, default=str) + "\n")


def summarize(value: Any, limit: int = 200) -> str:
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            text = repr(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass
class Span:
    name: str
    trace_id: str
    input: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.perf_counter)
    output: Any = None
    error: Optional[str] = None

    def end(self, output: Any = None) -> None:
        self.output = output

    def fail(self, error: BaseException | str) -> None:
        self.error = str(error)

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


class Tracer:
    """No-op tracer. Subclasses receive start/end events for every span."""

    def new_trace_id(self) -> str:
        return uuid.uuid4().hex[:12]

    @contextmanager
    def span(self, name: str, trace_id: str = "", input: Any = None, **metadata: Any) -> Iterator[Span]:
        span = Span(name=name, trace_id=trace_id, input=input, metadata=metadata)
        self._emit("start", span)
        try:
            yield span
        except BaseException as exc:
            if span.error is None:
                span.fail(exc)
            raise
        finally:
            self._emit("end", span)

    def _emit(self, phase: str, span: Span) -> None:
        try:
            self.on_event(phase, span)
        except Exception:
            logger.debug("Tracer event dropped", exc_info=True)

    def on_event(self, phase: str, span: Span) -> None:
        return None


class LogTracer(Tracer):
    """Writes span events to the logger and, optionally, to an AuditLog."""

    def __init__(self, audit: AuditLog | None = None) -> None:
        self.audit = audit

    def on_event(self, phase: str, span: Span) -> None:
        if phase == "start":
            logger.debug(f"span.start {span.name} trace={span.trace_id}")
            return
        payload = {
            "name": span.name,
            "trace_id": span.trace_id,
            "duration_ms": round(span.duration_ms, 2),
            "input": summarize(span.input),
            "output": summarize(span.output),
            "error": span.error,
            **span.metadata,
        }
        if span.error:
            logger.warning(f"span.error {span.name} trace={span.trace_id}: {span.error}")
        else:
            logger.debug(f"span.end {span.name} trace={span.trace_id} {payload['duration_ms']}ms")
        if self.audit:
            self.audit.log("span.error" if span.error else "span.end", payload)
