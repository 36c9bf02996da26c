"""Command line interface for carfinder."""
from __future__ import annotations

import argparse
import json
import sys
import uuid
from typing import Any

from carfinder.config import get_config
from carfinder.errors import CarfinderError, PipelineError
from carfinder.models.images import ImageSearchClient
from carfinder.models.ollama import OllamaClient
from carfinder.pipeline import RecommendationPipeline
from carfinder.server import configure_logging


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _health_payload(config: Any) -> dict:
    client = OllamaClient(config.ollama_url, timeout=config.request_timeout_seconds)
    models = [str(m.get("name") or m.get("model") or "") for m in client.list_models()]
    connected = client.verify_backend(config.default_model)
    return {
        "ok": connected,
        "ollama_url": config.ollama_url,
        "model": config.default_model,
        "ollama": "connected" if connected else "disconnected",
        "available_models": models,
        "image_search_configured": ImageSearchClient.from_config(config.image_search).configured,
    }


def cmd_health(args: argparse.Namespace) -> None:
    config = get_config()
    payload = _health_payload(config)
    _print(payload)
    if not payload.get("ok", False):
        raise SystemExit(2)


def cmd_find(args: argparse.Namespace) -> None:
    config = get_config()
    configure_logging(config)
    pipeline = RecommendationPipeline.from_config(config)
    session_id = args.session or uuid.uuid4().hex
    try:
        result = pipeline.find_cars(session_id, args.requirements, args.language)
    except CarfinderError as exc:
        message = exc.public_message if isinstance(exc, PipelineError) else exc.message
        print(f"error: {message} ({exc})", file=sys.stderr)
        raise SystemExit(1)
    if args.json:
        _print({"session_id": session_id, **result})
        return
    print(result.get("analysis") or "")
    print()
    for index, car in enumerate(result.get("cars") or [], start=1):
        pinned = " [pinned]" if car.get("pinned") else ""
        print(f"{index}. {car.get('make')} {car.get('model')} ({car.get('year')}){pinned}")
        if car.get("price"):
            print(f"   price: {car.get('price')}")
        if car.get("reason"):
            print(f"   {car.get('reason')}")
        print(f"   images: {len(car.get('images') or [])}")


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn
    config = get_config()
    host = args.host or config.server.get("host", "127.0.0.1")
    port = args.port or int(config.server.get("port", 3000))
    uvicorn.run("carfinder.server:app", host=host, port=port, reload=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="carfinder")
    sub = parser.add_subparsers(dest="command")

    find = sub.add_parser("find", help="Recommend cars for a free-text request")
    find.add_argument("requirements")
    find.add_argument("--language", default="en")
    find.add_argument("--session", default=None)
    find.add_argument("--json", action="store_true", help="Print the full response as JSON")

    sub.add_parser("health")

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if args.command == "find":
        cmd_find(args)
    elif args.command == "health":
        cmd_health(args)
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
