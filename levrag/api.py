"""FastAPI application exposing the RAG, conversational and evaluation APIs."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any
from uuid import uuid4

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import config
from .container import Container
from .errors import (
    ErrorResponse,
    GroundTruthPairNotFound,
    InvalidRequest,
    LevRAGError,
    SessionNotFound,
)
from .models import AskResponse

logger = config.get_logger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AskRequest(CamelModel):
    user_question: str | None = None


class QuestionRequest(CamelModel):
    user_question: str = Field(min_length=1)


class CreateSessionRequest(CamelModel):
    title: str | None = None


class GroundTruthRequest(CamelModel):
    question: str = Field(min_length=1)
    expected_answer: str = Field(min_length=1)


class EvaluateRequest(CamelModel):
    pair_id: str = Field(min_length=1)
    actual_answer: str


class BatchEvaluateRequest(CamelModel):
    evaluations: list[EvaluateRequest]


class RunRequest(CamelModel):
    pair_ids: list[str] | None = None


def get_container(request: Request) -> Container:
    return request.app.state.container


ContainerDep = Annotated[Container, Depends(get_container)]


def _session_not_found(session_id: str) -> SessionNotFound:
    return SessionNotFound(f"Session not found: {session_id}")


def _export_response(content: dict[str, Any], filename: str) -> JSONResponse:
    return JSONResponse(
        content=content,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Core RAG endpoints

rag_router = APIRouter(tags=["rag"])


@rag_router.post("/ask")
async def ask(container: ContainerDep, body: AskRequest | None = None) -> JSONResponse:
    question = body.user_question if body else None
    if not question or not question.strip():
        failure = AskResponse.failure("You must provide the userQuestion")
        return JSONResponse(status_code=400, content=failure.to_dict())

    response = await container.composer.ask(question)
    return JSONResponse(content=response.to_dict())


@rag_router.post("/ask/stats")
async def ask_stats(container: ContainerDep, body: QuestionRequest) -> dict[str, Any]:
    stats = await container.pipeline.question_stats(body.user_question)
    return {"ok": True, "stats": stats}


@rag_router.post("/load-data")
async def load_data(container: ContainerDep) -> JSONResponse:
    result = await container.pipeline.load_corpus()
    if result["success"]:
        return JSONResponse(content={"ok": True, "message": result["message"]})
    logger.warning("Load data returned failure: %s", result.get("error"))
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": result.get("error") or result["message"]},
    )


@rag_router.get("/knowledge-base/stats")
async def knowledge_base_stats(container: ContainerDep) -> dict[str, Any]:
    return {
        "ok": True,
        **container.pipeline.knowledge_base_stats(),
        "sources": container.pipeline.list_sources(),
    }


@rag_router.delete("/knowledge-base")
async def clear_knowledge_base(container: ContainerDep) -> dict[str, Any]:
    container.pipeline.clear_knowledge_base()
    return {"ok": True, "message": "Knowledge base cleared successfully."}


@rag_router.get("/health")
async def health(container: ContainerDep) -> dict[str, Any]:
    return {
        "ok": True,
        "status": "healthy",
        "totalEntries": container.pipeline.repository.count(),
    }


# Conversational endpoints

conversation_router = APIRouter(prefix="/conversational", tags=["conversational"])


@conversation_router.post("/session/create", status_code=201)
async def create_session(
    container: ContainerDep, body: CreateSessionRequest | None = None
) -> dict[str, Any]:
    session = container.sessions.create_session(body.title if body else None)
    return {"ok": True, "session": session.to_dict()}


@conversation_router.post("/session/import", status_code=201)
async def import_session(
    container: ContainerDep, payload: Annotated[dict[str, Any], Body()]
) -> dict[str, Any]:
    session = container.sessions.import_session(payload)
    return {"ok": True, "session": session.to_dict()}


@conversation_router.get("/sessions")
async def list_sessions(container: ContainerDep) -> dict[str, Any]:
    sessions = container.sessions.list_sessions()
    return {
        "ok": True,
        "count": len(sessions),
        "sessions": [session.to_dict() for session in sessions],
    }


@conversation_router.get("/session/{session_id}")
async def get_session(session_id: str, container: ContainerDep) -> dict[str, Any]:
    session = container.sessions.get_session(session_id)
    if session is None:
        raise _session_not_found(session_id)
    return {"ok": True, "session": session.to_dict()}


@conversation_router.delete("/session/{session_id}")
async def delete_session(session_id: str, container: ContainerDep) -> dict[str, Any]:
    if not container.sessions.delete_session(session_id):
        raise _session_not_found(session_id)
    return {"ok": True, "message": "Session deleted successfully"}


@conversation_router.post("/session/{session_id}/message")
async def send_message(
    session_id: str, container: ContainerDep, body: QuestionRequest
) -> dict[str, Any]:
    turn = await container.conversations.send_message(session_id, body.user_question)
    return {"ok": True, **turn}


@conversation_router.get("/session/{session_id}/messages")
async def get_messages(session_id: str, container: ContainerDep) -> dict[str, Any]:
    messages = container.sessions.get_messages(session_id)
    if messages is None:
        raise _session_not_found(session_id)
    return {
        "ok": True,
        "count": len(messages),
        "messages": [message.to_dict() for message in messages],
    }


@conversation_router.post("/session/{session_id}/clear")
async def clear_session(session_id: str, container: ContainerDep) -> dict[str, Any]:
    if not container.sessions.clear_session(session_id):
        raise _session_not_found(session_id)
    return {"ok": True, "message": "Session cleared successfully"}


@conversation_router.post("/session/{session_id}/compress")
async def compress_session(session_id: str, container: ContainerDep) -> dict[str, Any]:
    if container.sessions.get_session(session_id) is None:
        raise _session_not_found(session_id)
    compressed = container.sessions.compress(session_id)
    session = container.sessions.get_session(session_id)
    if session is None:
        raise _session_not_found(session_id)
    return {
        "ok": True,
        "compressed": compressed,
        "messageCount": len(session.messages),
        "contextUsage": session.context_usage,
    }


@conversation_router.get("/session/{session_id}/stats")
async def session_stats(session_id: str, container: ContainerDep) -> dict[str, Any]:
    stats = container.sessions.session_stats(session_id)
    if stats is None:
        raise _session_not_found(session_id)
    return {"ok": True, "stats": stats}


@conversation_router.get("/session/{session_id}/export")
async def export_session(session_id: str, container: ContainerDep) -> JSONResponse:
    exported = container.sessions.export_session(session_id)
    if exported is None:
        raise _session_not_found(session_id)
    logger.info("Exported session: %s", session_id)
    return _export_response(exported, f"session_{session_id}.json")


# Evaluation endpoints

ragas_router = APIRouter(prefix="/ragas", tags=["ragas"])


@ragas_router.post("/ground-truth/add", status_code=201)
async def add_ground_truth(container: ContainerDep, body: GroundTruthRequest) -> dict[str, Any]:
    pair = container.evaluation.add_pair(body.question, body.expected_answer)
    return {"ok": True, "pair": pair.to_dict()}


@ragas_router.post("/ground-truth/import")
async def import_ground_truth(
    container: ContainerDep, payload: Annotated[dict[str, Any], Body()]
) -> dict[str, Any]:
    pairs = container.evaluation.import_pairs(payload)
    return {"ok": True, "count": len(pairs), "pairs": [pair.to_dict() for pair in pairs]}


# Declared before /ground-truth/{pair_id} so "list" is not taken as an id.
@ragas_router.get("/ground-truth/list")
async def list_ground_truth(container: ContainerDep) -> dict[str, Any]:
    pairs = container.evaluation.list_pairs()
    return {"ok": True, "count": len(pairs), "pairs": [pair.to_dict() for pair in pairs]}


@ragas_router.get("/ground-truth/{pair_id}")
async def get_ground_truth(pair_id: str, container: ContainerDep) -> dict[str, Any]:
    return {"ok": True, "pair": container.evaluation.get_pair(pair_id).to_dict()}


@ragas_router.delete("/ground-truth/{pair_id}")
async def delete_ground_truth(pair_id: str, container: ContainerDep) -> dict[str, Any]:
    if not container.evaluation.delete_pair(pair_id):
        msg = f"Ground truth pair not found: {pair_id}"
        raise GroundTruthPairNotFound(msg)
    return {"ok": True, "message": "Ground truth pair deleted successfully"}


@ragas_router.post("/evaluate")
async def evaluate(container: ContainerDep, body: EvaluateRequest) -> dict[str, Any]:
    result = container.evaluation.evaluate(body.pair_id, body.actual_answer)
    return {"ok": True, "result": result.to_dict()}


@ragas_router.post("/batch-evaluate")
async def batch_evaluate(container: ContainerDep, body: BatchEvaluateRequest) -> dict[str, Any]:
    results = container.evaluation.batch_evaluate(
        (item.pair_id, item.actual_answer) for item in body.evaluations
    )
    return {
        "ok": True,
        "count": len(results),
        "results": [result.to_dict() for result in results],
    }


@ragas_router.post("/run")
async def run_ground_truth(
    container: ContainerDep, body: RunRequest | None = None
) -> dict[str, Any]:
    run = await container.evaluation.run_ground_truth(
        container.composer, body.pair_ids if body else None
    )
    return {"ok": True, **run}


@ragas_router.get("/results/{pair_id}")
async def evaluation_results(pair_id: str, container: ContainerDep) -> dict[str, Any]:
    container.evaluation.get_pair(pair_id)
    results = container.evaluation.results_for(pair_id)
    return {
        "ok": True,
        "pairId": pair_id,
        "count": len(results),
        "results": [result.to_dict() for result in results],
    }


@ragas_router.get("/metrics")
async def metrics(container: ContainerDep) -> dict[str, Any]:
    return {"ok": True, "metrics": container.evaluation.metrics()}


@ragas_router.get("/trends")
async def trends(container: ContainerDep) -> dict[str, Any]:
    trend_list = container.evaluation.trends()
    return {"ok": True, "count": len(trend_list), "trends": trend_list}


@ragas_router.get("/distribution")
async def distribution(container: ContainerDep) -> dict[str, Any]:
    return {"ok": True, "distribution": container.evaluation.distribution()}


@ragas_router.get("/report")
async def report(container: ContainerDep) -> dict[str, Any]:
    return {"ok": True, "report": container.evaluation.report()}


@ragas_router.get("/export")
async def export_evaluation(container: ContainerDep) -> JSONResponse:
    return _export_response(container.evaluation.export(), "ragas_export.json")


@ragas_router.delete("/data")
async def clear_evaluation(container: ContainerDep) -> dict[str, Any]:
    container.evaluation.clear_all()
    return {"ok": True, "message": "All evaluation data cleared"}


# Error handling


async def levrag_error_handler(request: Request, exc: LevRAGError) -> JSONResponse:
    """Render domain errors; server-side failures carry a redacted message."""
    redact = exc.status_code >= 500
    log = logger.error if redact else logger.warning
    log(
        "%s: %s | error_id=%s | path=%s",
        exc.error_code,
        exc.message,
        exc.error_id,
        request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(redact=redact).to_dict(),
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    error = InvalidRequest(details or "Invalid request")
    logger.warning(
        "Invalid request: %s | error_id=%s | path=%s",
        error.message,
        error.error_id,
        request.url.path,
    )
    return JSONResponse(status_code=400, content=error.to_response().to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = str(uuid4())
    logger.exception(
        "Unhandled error | error_id=%s | path=%s", error_id, request.url.path, exc_info=exc
    )
    body = ErrorResponse(
        error_code="INTERNAL_ERROR", message="Internal server error", error_id=error_id
    )
    return JSONResponse(status_code=500, content=body.to_dict())


def create_app(container: Container | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        container: Pre-built collaborators. If None, one is built from
            configuration at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if container is not None:
            yield
            return

        config.validate()
        owned = Container.from_config()
        app.state.container = owned
        logger.info(
            "LevRAG API starting up (chunk store=%s, index=%s)",
            config.CHUNK_STORE_BACKEND,
            config.SIMILARITY_INDEX,
        )
        try:
            yield
        finally:
            await owned.aclose()
            logger.info("LevRAG API shutting down")

    docs_url = None if config.is_production() else "/docs"
    app = FastAPI(
        title="LevRAG API",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=docs_url,
        redoc_url=None,
    )
    if container is not None:
        app.state.container = container

    app.include_router(rag_router)
    app.include_router(conversation_router)
    app.include_router(ragas_router)

    app.add_exception_handler(LevRAGError, levrag_error_handler)  # pyright: ignore[reportArgumentType]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # pyright: ignore[reportArgumentType]
    app.add_exception_handler(Exception, unhandled_error_handler)
    return app
