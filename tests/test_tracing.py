import json
import tempfile
import unittest
from pathlib import Path

from carfinder.tracing import AuditLog, LogTracer, Tracer, summarize


class TracerTests(unittest.TestCase):
    def test_span_records_error_and_reraises(self):
        seen = []

        class Recording(Tracer):
            def on_event(self, phase, span):
                seen.append((phase, span.error))

        with self.assertRaises(ValueError):
            with Recording().span("stage"):
                raise ValueError("boom")
        self.assertEqual(seen, [("start", None), ("end", "boom")])

    def test_log_tracer_writes_audit(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "audit.jsonl"
            tracer = LogTracer(AuditLog(path))
            with tracer.span("intent", trace_id="t1", input="hello", model="m") as span:
                span.end({"ok": True})
            record = json.loads(path.read_text().strip())
        self.assertEqual(record["event"], "span.end")
        self.assertEqual(record["data"]["name"], "intent")
        self.assertEqual(record["data"]["model"], "m")
        self.assertEqual(record["data"]["output"], '{"ok": true}')

    def test_summarize_truncates(self):
        self.assertEqual(summarize("x" * 300, limit=10), "x" * 10 + "...")
        self.assertEqual(summarize({"a": 1}), '{"a": 1}')

    def test_new_trace_ids_are_unique(self):
        tracer = Tracer()
        self.assertNotEqual(tracer.new_trace_id(), tracer.new_trace_id())


if __name__ == "__main__":
    unittest.main()
