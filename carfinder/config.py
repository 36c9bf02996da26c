"""Configuration loader for carfinder."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
import os
import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "carfinder" / "config.yaml"
PACKAGE_PROMPTS_DIR = Path(__file__).resolve().parent / "templates"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _env_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def load_config(path: Path | None = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    default_path = path or DEFAULT_CONFIG_PATH
    if default_path.exists():
        data = yaml.safe_load(default_path.read_text()) or {}
    if path is None and USER_CONFIG_PATH.exists():
        override = yaml.safe_load(USER_CONFIG_PATH.read_text()) or {}
        data = _deep_merge(data, override)

    # Environment overrides - Server
    host = os.getenv("CARFINDER_HOST")
    port = os.getenv("CARFINDER_PORT")
    if host:
        data.setdefault("server", {})["host"] = host
    if port:
        try:
            data.setdefault("server", {})["port"] = int(port)
        except ValueError:
            pass

    # Environment overrides - Model backend
    ollama_url = os.getenv("OLLAMA_URL")
    if ollama_url:
        data.setdefault("ollama", {})["base_url"] = ollama_url
    ollama_model = os.getenv("OLLAMA_MODEL")
    if ollama_model:
        data.setdefault("ollama", {})["model"] = ollama_model

    # Environment overrides - Image search
    api_key = os.getenv("GOOGLE_API_KEY")
    if api_key:
        data.setdefault("image_search", {})["api_key"] = api_key
    cx = os.getenv("GOOGLE_CX")
    if cx:
        data.setdefault("image_search", {})["cx"] = cx

    # Environment overrides - Vision thresholds
    for env_name, key in (
        ("VISION_MODEL_CONFIDENCE_THRESHOLD", "model_confidence_threshold"),
        ("VISION_TEXT_CONFIDENCE_THRESHOLD", "text_confidence_threshold"),
    ):
        raw = os.getenv(env_name)
        if raw:
            try:
                data.setdefault("vision", {})[key] = float(raw)
            except ValueError:
                pass

    sequential = os.getenv("CARFINDER_SEQUENTIAL_TRANSLATION")
    if sequential is not None:
        data.setdefault("translation", {})["sequential"] = _env_flag(sequential)

    log_level = os.getenv("CARFINDER_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level.upper()

    return data


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def server(self) -> Dict[str, Any]:
        return self.raw.get("server", {})

    @property
    def debug_routes(self) -> bool:
        return bool(self.server.get("debug_routes", False))

    @property
    def ollama(self) -> Dict[str, Any]:
        return self.raw.get("ollama", {})

    @property
    def ollama_url(self) -> str:
        return str(self.ollama.get("base_url", "http://localhost:11434"))

    @property
    def default_model(self) -> str:
        return str(self.ollama.get("model", "ministral-3:3b"))

    def model_for(self, operation: str) -> str:
        """Model for an operation (intent, suggestion, elaboration, translation, vision, judge)."""
        models = self.ollama.get("models", {}) or {}
        return str(models.get(operation) or self.default_model)

    @property
    def temperature(self) -> float:
        return float(self.ollama.get("temperature", 0.2))

    @property
    def max_tokens(self) -> int | None:
        value = self.ollama.get("max_tokens")
        return int(value) if value else None

    @property
    def request_timeout_seconds(self) -> float:
        return float(self.ollama.get("timeout_seconds", 120))

    @property
    def image_search(self) -> Dict[str, Any]:
        return self.raw.get("image_search", {})

    @property
    def vision(self) -> Dict[str, Any]:
        return self.raw.get("vision", {})

    @property
    def vision_enabled(self) -> bool:
        return bool(self.vision.get("enabled", True))

    @property
    def model_confidence_threshold(self) -> float:
        return float(self.vision.get("model_confidence_threshold", 0.8))

    @property
    def text_confidence_threshold(self) -> float:
        return float(self.vision.get("text_confidence_threshold", 0.2))

    @property
    def translation(self) -> Dict[str, Any]:
        return self.raw.get("translation", {})

    @property
    def sequential_translation(self) -> bool:
        return bool(self.translation.get("sequential", False))

    @property
    def pipeline(self) -> Dict[str, Any]:
        return self.raw.get("pipeline", {})

    @property
    def max_workers(self) -> int:
        return max(1, int(self.pipeline.get("max_workers", 4)))

    @property
    def retry_count(self) -> int:
        return max(0, int(self.pipeline.get("retry_count", 0)))

    @property
    def sequential_elaboration(self) -> bool:
        return bool(self.pipeline.get("sequential_elaboration", False))

    @property
    def conversations(self) -> Dict[str, Any]:
        return self.raw.get("conversations", {})

    @property
    def conversation_ttl_seconds(self) -> float:
        """Conversation lifetime measured from creation. Default one hour."""
        return float(self.conversations.get("ttl_seconds", 3600))

    @property
    def sweep_interval_seconds(self) -> float:
        return float(self.conversations.get("sweep_interval_seconds", 300))

    @property
    def judge(self) -> Dict[str, Any]:
        return self.raw.get("judge", {})

    @property
    def prompts_dir(self) -> Path:
        path = self.raw.get("prompts_dir")
        return Path(path) if path else PACKAGE_PROMPTS_DIR

    @property
    def audit_path(self) -> Path | None:
        path = (self.raw.get("tracing", {}) or {}).get("audit_path")
        return Path(path).expanduser() if path else None

    @property
    def log_level(self) -> str:
        return str((self.raw.get("logging", {}) or {}).get("level", "INFO")).upper()


def get_config() -> Config:
    return Config(load_config())
