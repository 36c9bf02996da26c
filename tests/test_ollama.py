"""Tests for carfinder.models.ollama module."""
import base64
import unittest
from unittest.mock import MagicMock, patch

import httpx

from carfinder.errors import ModelHTTPError, ModelUnavailableError
from carfinder.models.ollama import Message, OllamaClient, system, user
from carfinder.tracing import Tracer


def _mock_client(mock_client_cls, response=None, post_side_effect=None, get_response=None):
    mock_client = MagicMock()
    mock_client.__enter__ = MagicMock(return_value=mock_client)
    mock_client.__exit__ = MagicMock(return_value=False)
    if post_side_effect is not None:
        mock_client.post.side_effect = post_side_effect
    else:
        mock_client.post.return_value = response
    if get_response is not None:
        mock_client.get.return_value = get_response
    mock_client_cls.return_value = mock_client
    return mock_client


class RecordingTracer(Tracer):
    def __init__(self):
        self.events = []

    def on_event(self, phase, span):
        self.events.append((phase, span.name, span.error))


class BrokenTracer(Tracer):
    def on_event(self, phase, span):
        raise RuntimeError("tracing backend down")


class MessageTests(unittest.TestCase):
    def test_images_are_base64_encoded(self):
        payload = user("look", images=[b"\x89PNG"]).to_payload()
        self.assertEqual(payload["role"], "user")
        self.assertEqual(payload["images"], [base64.b64encode(b"\x89PNG").decode("ascii")])

    def test_text_only_message_has_no_images_key(self):
        self.assertNotIn("images", system("rules").to_payload())


class OllamaClientTests(unittest.TestCase):
    @patch("carfinder.models.ollama.httpx.Client")
    def test_chat_returns_message_content(self, mock_client_cls):
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"message": {"role": "assistant", "content": '{"ok": true}'}}
        mock_client = _mock_client(mock_client_cls, response)

        client = OllamaClient("http://ollama:11434/")
        text = client.chat([system("s"), user("u")], model="ministral-3:3b", max_tokens=256)

        self.assertEqual(text, '{"ok": true}')
        url, kwargs = mock_client.post.call_args[0][0], mock_client.post.call_args[1]
        self.assertEqual(url, "http://ollama:11434/api/chat")
        body = kwargs["json"]
        self.assertFalse(body["stream"])
        self.assertEqual(body["format"], "json")
        self.assertEqual(body["options"]["num_predict"], 256)
        self.assertEqual([m["role"] for m in body["messages"]], ["system", "user"])

    @patch("carfinder.models.ollama.httpx.Client")
    def test_schema_format_is_sent_as_is(self, mock_client_cls):
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"message": {"content": "{}"}}
        mock_client = _mock_client(mock_client_cls, response)
        schema = {"type": "object", "properties": {"a": {"type": "string"}}}

        OllamaClient().chat([user("u")], model="m", format=schema)

        self.assertEqual(mock_client.post.call_args[1]["json"]["format"], schema)

    @patch("carfinder.models.ollama.httpx.Client")
    def test_connection_error_is_unavailable(self, mock_client_cls):
        _mock_client(mock_client_cls, post_side_effect=httpx.ConnectError("refused"))
        with self.assertRaises(ModelUnavailableError) as ctx:
            OllamaClient().chat([user("u")], model="m")
        self.assertEqual(ctx.exception.status_code, 503)

    @patch("carfinder.models.ollama.httpx.Client")
    def test_non_2xx_is_http_error(self, mock_client_cls):
        response = MagicMock()
        response.status_code = 500
        response.text = "model crashed"
        _mock_client(mock_client_cls, response)
        with self.assertRaises(ModelHTTPError) as ctx:
            OllamaClient().chat([user("u")], model="m")
        self.assertEqual(ctx.exception.http_status, 500)
        self.assertIn("500", str(ctx.exception))

    @patch("carfinder.models.ollama.httpx.Client")
    def test_generation_span_is_emitted(self, mock_client_cls):
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"message": {"content": "{}"}}
        _mock_client(mock_client_cls, response)
        tracer = RecordingTracer()

        OllamaClient(tracer=tracer).chat([user("u")], model="m", operation="search_intent")

        self.assertEqual(tracer.events, [("start", "generation.search_intent", None), ("end", "generation.search_intent", None)])

    @patch("carfinder.models.ollama.httpx.Client")
    def test_tracer_failure_does_not_fail_call(self, mock_client_cls):
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"message": {"content": "hello"}}
        _mock_client(mock_client_cls, response)

        self.assertEqual(OllamaClient(tracer=BrokenTracer()).chat([user("u")], model="m"), "hello")

    @patch("carfinder.models.ollama.httpx.Client")
    def test_verify_backend_substring_match(self, mock_client_cls):
        tags = MagicMock()
        tags.json.return_value = {"models": [{"name": "ministral-3:3b-instruct"}, {"name": "llava:7b"}]}
        tags.raise_for_status.return_value = None
        _mock_client(mock_client_cls, get_response=tags)

        client = OllamaClient()
        self.assertTrue(client.verify_backend("ministral-3:3b"))
        self.assertFalse(client.verify_backend("qwen"))

    @patch("carfinder.models.ollama.httpx.Client")
    def test_list_models_failure_returns_empty(self, mock_client_cls):
        mock_client = _mock_client(mock_client_cls)
        mock_client.get.side_effect = httpx.ConnectError("refused")
        client = OllamaClient()
        self.assertEqual(client.list_models(), [])
        self.assertFalse(client.verify_backend("anything"))

    def test_message_defaults(self):
        self.assertEqual(Message(role="user", content="x").images, [])


if __name__ == "__main__":
    unittest.main()
