"""Tests for the intent and suggestion stages and shared stage helpers."""
import threading
import time
import unittest

from carfinder.errors import ModelUnavailableError, ParseError, TemplateNotFoundError
from carfinder.prompts import PromptLibrary
from carfinder.stages import run_items, validate
from carfinder.stages.intent import IntentStage
from carfinder.stages.suggestion import SuggestionStage
from carfinder.schemas import SearchIntent

from fakes import INTENT, SUGGESTIONS, FakeChatClient, default_responder, prompts


class RunItemsTests(unittest.TestCase):
    def test_preserves_order_when_parallel(self):
        def slow(index, item):
            time.sleep(0.01 * (5 - index))
            return item * 2

        self.assertEqual(run_items(slow, [1, 2, 3, 4, 5], max_workers=5), [2, 4, 6, 8, 10])

    def test_sequential_runs_on_calling_thread(self):
        threads = set()

        def record(index, item):
            threads.add(threading.get_ident())
            return index

        self.assertEqual(run_items(record, ["a", "b", "c"], sequential=True), [0, 1, 2])
        self.assertEqual(threads, {threading.get_ident()})

    def test_empty(self):
        self.assertEqual(run_items(lambda i, x: x, []), [])


class ValidateTests(unittest.TestCase):
    def test_non_object_is_parse_error(self):
        with self.assertRaises(ParseError):
            validate(SearchIntent, ["not", "an", "object"])

    def test_schema_mismatch_is_parse_error(self):
        with self.assertRaises(ParseError) as ctx:
            validate(SearchIntent, {"user_country": "France"})
        self.assertTrue(ctx.exception.details)


class IntentStageTests(unittest.TestCase):
    def test_extract(self):
        client = FakeChatClient(default_responder())
        stage = IntentStage(client, prompts(), model="m")

        intent = stage.extract("cheap family car in France", "fr")

        self.assertEqual(intent.user_country, "France")
        self.assertEqual(intent.constraints.must_have, ["5 seats"])
        messages = client.calls[0]["messages"]
        self.assertEqual([m.role for m in messages], ["system", "system", "user"])
        self.assertIn("fr", messages[0].content)
        self.assertNotIn("${language}", messages[0].content)
        self.assertEqual(messages[2].content, "cheap family car in France")

    def test_intent_is_frozen(self):
        intent = SearchIntent.model_validate(INTENT)
        with self.assertRaises(Exception):
            intent.user_country = "Germany"

    def test_numeric_budget_becomes_text(self):
        data = dict(INTENT, constraints={"budget": 15000})
        self.assertEqual(SearchIntent.model_validate(data).constraints.budget, "15000")

    def test_unparseable_output_propagates(self):
        client = FakeChatClient(default_responder({"search_intent": "I cannot help with that"}))
        with self.assertRaises(ParseError):
            IntentStage(client, prompts(), model="m").extract("text", "en")

    def test_backend_failure_propagates(self):
        client = FakeChatClient(default_responder({"search_intent": ModelUnavailableError("down")}))
        with self.assertRaises(ModelUnavailableError):
            IntentStage(client, prompts(), model="m").extract("text", "en")

    def test_missing_template(self):
        client = FakeChatClient(default_responder())
        with self.assertRaises(TemplateNotFoundError):
            IntentStage(client, PromptLibrary("/nonexistent"), model="m").extract("text", "en")


class SuggestionStageTests(unittest.TestCase):
    def test_suggest(self):
        client = FakeChatClient(default_responder())
        intent = SearchIntent.model_validate(INTENT)

        result = SuggestionStage(client, prompts(), model="m").suggest(intent, "family car")

        self.assertEqual(result.analysis, SUGGESTIONS["analysis"])
        self.assertEqual([c["make"] for c in result.choices], ["Toyota", "Skoda", "Mazda"])
        self.assertEqual(result.pinned_cars, [])
        self.assertFalse(result.choices[0]["pinned"])
        # Structured output: the schema is sent as the format.
        self.assertIsInstance(client.calls[0]["format"], dict)

    def test_pinned_hint_is_added(self):
        client = FakeChatClient(default_responder())
        intent = SearchIntent.model_validate(INTENT)

        SuggestionStage(client, prompts(), model="m").suggest(intent, "ctx", pinned_hint="PINNED: Toyota Corolla")

        contents = [m.content for m in client.calls[0]["messages"]]
        self.assertIn("PINNED: Toyota Corolla", contents)
        self.assertTrue(contents[1].startswith("User intent JSON: "))
        self.assertEqual(client.calls[0]["messages"][-1].content, "ctx")

    def test_missing_choices_is_parse_error(self):
        client = FakeChatClient(default_responder({"car_suggestions": {"analysis": "x"}}))
        intent = SearchIntent.model_validate(INTENT)
        with self.assertRaises(ParseError):
            SuggestionStage(client, prompts(), model="m").suggest(intent, "ctx")


if __name__ == "__main__":
    unittest.main()
