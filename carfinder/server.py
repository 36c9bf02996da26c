"""FastAPI server for carfinder."""
from __future__ import annotations

from typing import Any, Dict
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from carfinder.config import Config, get_config
from carfinder.errors import CarfinderError, NotFoundError, PipelineError, ValidationError
from carfinder.pipeline import RecommendationPipeline

logger = logging.getLogger(__name__)

app = FastAPI(title="carfinder")

MIN_REQUIREMENTS_LENGTH = 10
DEFAULT_LANGUAGE = "en"


def configure_logging(config: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _language(payload: dict, request: Request) -> str:
    language = str(payload.get("language") or "").strip()
    if language:
        return language
    header = request.headers.get("accept-language", "")
    first = header.split(",")[0].split(";")[0].strip()
    return first or DEFAULT_LANGUAGE


def _session_id(payload: dict) -> str:
    session_id = str(payload.get("session_id") or "").strip()
    if not session_id:
        raise ValidationError("session_id required")
    return session_id


def _success(result: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, **result}


@app.exception_handler(CarfinderError)
async def _carfinder_error(request: Request, exc: CarfinderError) -> JSONResponse:
    message = exc.public_message if isinstance(exc, PipelineError) else exc.message
    if exc.status_code >= 500:
        logger.error(f"Server error on {request.method} {request.url.path}: {exc}")
    else:
        logger.warning(f"Client error on {request.method} {request.url.path}: {exc}")
    return JSONResponse({"success": False, "message": message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Invalid request body on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse({"success": False, "message": "Invalid request body"}, status_code=400)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse({"success": False, "message": "Internal server error"}, status_code=500)


@app.on_event("startup")
def _startup() -> None:
    config = get_config()
    configure_logging(config)
    pipeline = RecommendationPipeline.from_config(config)
    app.state.config = config
    app.state.pipeline = pipeline
    app.state.store = pipeline.store
    pipeline.store.start()
    if not pipeline.intent.client.verify_backend(config.default_model):
        logger.warning(f"Model {config.default_model} not available at {config.ollama_url}")
    logger.info(f"carfinder ready, model backend {config.ollama_url}")


@app.on_event("shutdown")
def _shutdown() -> None:
    store = getattr(app.state, "store", None)
    if store is not None:
        store.stop()


@app.get("/health")
def health(request: Request):
    config = request.app.state.config
    pipeline = request.app.state.pipeline
    connected = pipeline.intent.client.verify_backend(config.default_model)
    return {
        "status": "ok" if connected else "degraded",
        "ollama": "connected" if connected else "disconnected",
        "model": config.default_model,
        "image_search_configured": pipeline.enrichment.images.configured,
        "active_conversations": request.app.state.store.count(),
    }


@app.post("/api/find-cars")
def find_cars_api(payload: dict, request: Request):
    session_id = _session_id(payload)
    requirements = str(payload.get("requirements") or "").strip()
    if len(requirements) < MIN_REQUIREMENTS_LENGTH:
        raise ValidationError("Describe your needs in more detail (at least 10 characters)")
    language = _language(payload, request)
    logger.info(f"Car search request for session {session_id} ({language})")
    result = request.app.state.pipeline.find_cars(session_id, requirements, language)
    return _success(result)


@app.post("/api/refine-search")
def refine_search_api(payload: dict, request: Request):
    session_id = _session_id(payload)
    feedback = str(payload.get("feedback") or "").strip()
    if not feedback:
        raise ValidationError("Please provide some feedback to refine the search")
    pinned = payload.get("pinned_cars")
    pinned_cars = [car for car in pinned if isinstance(car, dict)] if isinstance(pinned, list) else []
    language = _language(payload, request)
    logger.info(f"Refining search for session {session_id} with {len(pinned_cars)} pinned car(s)")
    result = request.app.state.pipeline.refine_search(session_id, feedback, language, pinned_cars)
    return _success(result)


@app.post("/api/reset")
def reset_api(payload: dict, request: Request):
    session_id = _session_id(payload)
    request.app.state.store.delete(session_id)
    logger.info(f"Conversation reset for session {session_id}")
    return {"success": True, "message": "Conversation reset"}


@app.get("/api/conversations")
def conversations_api(request: Request):
    if not request.app.state.config.debug_routes:
        raise NotFoundError("Not found")
    conversations = request.app.state.store.all()
    return {
        "success": True,
        "count": len(conversations),
        "conversations": [c.to_dict() for c in conversations],
    }


def main():
    import uvicorn
    config = get_config()
    host = config.server.get("host", "127.0.0.1")
    port = int(config.server.get("port", 3000))
    uvicorn.run("carfinder.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
