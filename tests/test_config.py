import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from carfinder.config import PACKAGE_PROMPTS_DIR, Config, load_config


class LoadConfigTests(unittest.TestCase):
    def _write(self, tmpdir: str, text: str) -> Path:
        path = Path(tmpdir) / "config.yaml"
        path.write_text(text)
        return path

    def test_defaults_from_empty_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict(os.environ, {}, clear=True):
                config = Config(load_config(self._write(tmpdir, "")))
        self.assertEqual(config.default_model, "ministral-3:3b")
        self.assertEqual(config.model_confidence_threshold, 0.8)
        self.assertEqual(config.text_confidence_threshold, 0.2)
        self.assertEqual(config.conversation_ttl_seconds, 3600)
        self.assertEqual(config.retry_count, 0)
        self.assertFalse(config.sequential_translation)
        self.assertTrue(config.vision_enabled)
        self.assertEqual(config.prompts_dir, PACKAGE_PROMPTS_DIR)
        self.assertIsNone(config.audit_path)
        self.assertFalse(config.debug_routes)

    def test_model_for_falls_back_to_default(self):
        config = Config({"ollama": {"model": "base", "models": {"vision": "llava"}}})
        self.assertEqual(config.model_for("vision"), "llava")
        self.assertEqual(config.model_for("intent"), "base")

    def test_environment_overrides(self):
        env = {
            "OLLAMA_URL": "http://gpu:11434",
            "OLLAMA_MODEL": "qwen3:8b",
            "CARFINDER_PORT": "8080",
            "GOOGLE_API_KEY": "key",
            "GOOGLE_CX": "cx",
            "VISION_MODEL_CONFIDENCE_THRESHOLD": "0.6",
            "VISION_TEXT_CONFIDENCE_THRESHOLD": "not-a-number",
            "CARFINDER_SEQUENTIAL_TRANSLATION": "true",
            "CARFINDER_LOG_LEVEL": "debug",
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write(tmpdir, "vision:\n  text_confidence_threshold: 0.3\n")
            with patch.dict(os.environ, env, clear=True):
                config = Config(load_config(path))
        self.assertEqual(config.ollama_url, "http://gpu:11434")
        self.assertEqual(config.default_model, "qwen3:8b")
        self.assertEqual(config.server["port"], 8080)
        self.assertEqual(config.image_search["api_key"], "key")
        self.assertEqual(config.model_confidence_threshold, 0.6)
        self.assertEqual(config.text_confidence_threshold, 0.3)
        self.assertTrue(config.sequential_translation)
        self.assertEqual(config.log_level, "DEBUG")

    def test_default_file_is_loadable(self):
        with patch.dict(os.environ, {}, clear=True):
            with patch("carfinder.config.USER_CONFIG_PATH", Path("/nonexistent/config.yaml")):
                config = Config(load_config())
        self.assertEqual(config.server.get("port"), 3000)
        self.assertFalse(config.judge.get("enabled"))
        self.assertEqual(config.max_workers, 4)


if __name__ == "__main__":
    unittest.main()
