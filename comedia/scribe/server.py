"""
Scribe Server

FastAPI server exposing the capture pipeline and the task board.

Endpoints:
- GET /health: Health check
- POST /sessions, DELETE /sessions/{id}: open/close a capture session
- POST /sessions/{id}/fragments: push a caption/chat fragment
- POST /sessions/{id}/flush: force a flush
- POST /transcripts: single-shot transcript processing
- POST /extract: preview extraction over several texts (nothing stored)
- POST /messages/scan: batch processing of Gmail/Slack messages
- POST /slack/events: Slack webhook endpoint
- GET /tasks, PATCH /tasks/{id}/status, DELETE /tasks/{id}: task board
- POST /recurrence/scan: run one recurrence pass now

Pipeline:
1. Receive fragments, transcripts or messages
2. Normalize and extract candidates (primary provider, one fallback)
3. Drop candidates that duplicate an existing task
4. Store the rest as incoming tasks
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..common.config import ComediaConfig, build_llm_client, ensure_directories, load_config
from ..common.errors import MalformedResponseError, PersistenceError, UpstreamServiceError
from ..common.schemas import SourceType, TaskStatus
from ..common.task_store import JsonTaskStore, TaskStore
from ..lifecycle import RecurrenceEngine, TaskBoard
from .capture_buffer import CaptureBuffer, FlushPolicy
from .dispatcher import Dispatcher
from .extractor import ExtractionSource, SourceMetadata, TaskExtractor
from .handlers import BaseHandler, EmailHandler, Message, SlackHandler
from .normalizer import clean_transcript

logger = logging.getLogger("comedia.scribe.server")


# Global state
config: Optional[ComediaConfig] = None
store: Optional[TaskStore] = None
extractor: Optional[TaskExtractor] = None
dispatcher: Optional[Dispatcher] = None
capture_buffer: Optional[CaptureBuffer] = None
recurrence_engine: Optional[RecurrenceEngine] = None
board: Optional[TaskBoard] = None
slack_handler: Optional[SlackHandler] = None
email_handler: Optional[EmailHandler] = None


def build_extractor(config: ComediaConfig) -> TaskExtractor:
    """Primary client plus the configured fallback (if different)"""
    primary = build_llm_client(config)
    fallback = None
    fallback_provider = (config.llm.fallback_provider or "").lower()
    if fallback_provider and fallback_provider != primary.provider:
        fallback = build_llm_client(config, fallback_provider)
    return TaskExtractor(
        primary=primary,
        fallback=fallback,
        confidence_floor=config.extraction.confidence_floor,
    )


def build_store(config: ComediaConfig) -> TaskStore:
    return JsonTaskStore(Path(config.store.path).expanduser())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup"""
    global config, store, extractor, dispatcher, capture_buffer
    global recurrence_engine, board, slack_handler, email_handler

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting up...")

    ensure_directories()
    config = load_config()

    store = build_store(config)
    logger.info("Task store ready (%d tasks)", len(store.list()))

    extractor = build_extractor(config)
    if extractor.is_available:
        logger.info("Extractor ready (primary: %s)", config.llm.provider)
    else:
        logger.warning("No LLM provider available, extraction requests will fail")

    dispatcher = Dispatcher(
        extractor,
        store,
        similarity_threshold=config.extraction.similarity_threshold,
        recurrence_days=config.recurrence.default_recurrence_days,
        boost_confidence=config.extraction.boost_confidence,
    )
    capture_buffer = CaptureBuffer(
        dispatcher.handle_flush,
        FlushPolicy(
            periodic_interval=config.capture.periodic_interval,
            silence_timeout=config.capture.silence_timeout,
        ),
    )
    board = TaskBoard(store)

    slack_handler = SlackHandler(signing_secret=config.server.slack_signing_secret)
    email_handler = EmailHandler()

    recurrence_engine = RecurrenceEngine(store, interval=config.recurrence.scan_interval)
    recurrence_engine.start()

    logger.info("Ready to receive events")

    yield

    logger.info("Shutting down...")
    await capture_buffer.close()
    await recurrence_engine.stop()


app = FastAPI(
    title="Comedia Scribe",
    description="Task extraction from meetings, chat and email",
    version="0.1.0",
    lifespan=lifespan
)


# =============================================================================
# Request Models
# =============================================================================

class SessionRequest(BaseModel):
    source_type: SourceType = SourceType.GOOGLE_MEET
    title: str = ""
    slow_polling: bool = False


class FragmentRequest(BaseModel):
    text: str


class TranscriptRequest(BaseModel):
    transcript: str
    source_type: SourceType = SourceType.MANUAL
    title: Optional[str] = None
    participants: Optional[List[str]] = None
    transcript_id: Optional[str] = None


class ExtractRequestItem(BaseModel):
    content: str
    source_type: SourceType = SourceType.MANUAL
    title: Optional[str] = None


class ExtractPreviewRequest(BaseModel):
    sources: List[ExtractRequestItem] = Field(default_factory=list)


class MessageScanRequest(BaseModel):
    """Raw Gmail message resources or Slack event payloads"""
    source_type: SourceType = SourceType.GMAIL
    messages: List[Dict[str, Any]] = Field(default_factory=list)


class StatusUpdate(BaseModel):
    status: TaskStatus
    rollback: bool = True


def _require(component, name: str):
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return component


def _handler_for(source_type: SourceType) -> BaseHandler:
    if source_type is SourceType.GMAIL:
        return _require(email_handler, "Email handler")
    if source_type is SourceType.SLACK:
        return _require(slack_handler, "Slack handler")
    raise HTTPException(status_code=400, detail=f"Unsupported message source: {source_type.value}")


# =============================================================================
# Background Tasks
# =============================================================================

async def process_message(message: Message):
    """Run one webhook message through the batch path"""
    if not dispatcher:
        logger.warning("Not initialized, skipping message")
        return
    report = await dispatcher.process_messages([message])
    logger.info("Processed %s message %s: %s", message.source_type.value, message.message_id, report)


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "scribe",
        "initialized": dispatcher is not None,
        "extractor_available": extractor.is_available if extractor else False,
        "active_sessions": len(capture_buffer.sessions) if capture_buffer else 0,
        "recurrence_running": recurrence_engine.is_running if recurrence_engine else False,
    }


@app.post("/sessions")
async def start_session(request: SessionRequest):
    buffer = _require(capture_buffer, "Capture buffer")
    policy = None
    if request.slow_polling:
        policy = FlushPolicy.slow_polling(config.capture.slow_poll_interval)

    session = buffer.start_session(request.source_type, title=request.title, policy=policy)
    return {
        "session_id": session.session_id,
        "source_type": session.source_type.value,
        "title": session.title,
    }


@app.delete("/sessions/{session_id}")
async def end_session(session_id: str):
    buffer = _require(capture_buffer, "Capture buffer")
    try:
        result = await buffer.end_session(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    return {
        "status": "ended",
        "session_id": session_id,
        "result": result.to_dict() if result else None,
    }


@app.post("/sessions/{session_id}/fragments")
async def add_fragment(session_id: str, fragment: FragmentRequest):
    buffer = _require(capture_buffer, "Capture buffer")
    try:
        accepted = buffer.append(session_id, fragment.text)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    return {
        "accepted": accepted,
        "buffered": buffer.get_session(session_id).buffered,
    }


@app.post("/sessions/{session_id}/flush")
async def flush_session(session_id: str):
    buffer = _require(capture_buffer, "Capture buffer")
    try:
        result = await buffer.flush(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    if result is None:
        return {"flushed": False}
    return {"flushed": True, **result.to_dict()}


@app.post("/transcripts")
async def process_transcript(request: TranscriptRequest):
    """Single-shot processing; the first error is surfaced to the caller"""
    _require(dispatcher, "Dispatcher")
    try:
        tasks = await dispatcher.process_transcript(
            request.transcript,
            source_type=request.source_type,
            title=request.title,
            participants=request.participants,
            transcript_id=request.transcript_id,
        )
    except UpstreamServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except MalformedResponseError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "tasks_created": len(tasks),
        "tasks": [task.to_row() for task in tasks],
    }


@app.post("/extract")
async def extract_preview(request: ExtractPreviewRequest):
    """Extract candidates from several texts without storing anything"""
    task_extractor = _require(extractor, "Extractor")
    sources = [
        ExtractionSource(
            content=clean_transcript(item.content),
            source_type=item.source_type,
            metadata=SourceMetadata(subject=item.title),
        )
        for item in request.sources
    ]
    batch = await asyncio.to_thread(task_extractor.batch_extract, sources)
    return {
        "total_tasks": batch.total_tasks,
        "errors": batch.errors,
        "results": [
            {
                "provider": result.provider,
                "error": result.error,
                "tasks": [c.model_dump(mode="json", by_alias=True) for c in result.tasks],
            }
            for result in batch.results
        ],
    }


@app.post("/messages/scan")
async def scan_messages(request: MessageScanRequest):
    _require(dispatcher, "Dispatcher")
    handler = _handler_for(request.source_type)

    messages = []
    for raw in request.messages:
        message = await handler.parse_event(raw)
        if message and handler.should_process(message):
            messages.append(message)

    report = await dispatcher.process_messages(messages)
    return {
        "received": len(request.messages),
        **report.to_dict(),
    }


@app.post("/slack/events")
async def slack_events(
    request: Request,
    background_tasks: BackgroundTasks,
    x_slack_signature: Optional[str] = Header(None),
    x_slack_request_timestamp: Optional[str] = Header(None)
):
    """Handle Slack webhook events"""
    handler = _require(slack_handler, "Handler")

    body = await request.body()

    if not handler.verify_signature(
        body,
        x_slack_signature or "",
        x_slack_request_timestamp or ""
    ):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if handler.is_url_verification(data):
        return JSONResponse({"challenge": handler.get_challenge(data)})

    message = await handler.parse_event(data)
    if message and handler.should_process(message):
        # Don't block the acknowledgement on extraction
        background_tasks.add_task(process_message, message)

    return JSONResponse({"ok": True})


@app.get("/tasks")
async def list_tasks(status: Optional[TaskStatus] = None):
    task_board = _require(board, "Task board")
    tasks = task_board.refresh()
    if status is not None:
        tasks = [t for t in tasks if t.status == status]
    return {
        "count": len(tasks),
        "tasks": [task.to_row() for task in tasks],
    }


@app.patch("/tasks/{task_id}/status")
async def update_status(task_id: str, update: StatusUpdate):
    task_board = _require(board, "Task board")
    try:
        task = task_board.move(task_id, update.status, rollback=update.rollback)
    except KeyError:
        raise HTTPException(status_code=404, detail="Task not found")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return task.to_row()


@app.delete("/tasks/{task_id}")
async def delete_task(task_id: str):
    task_board = _require(board, "Task board")
    try:
        removed = task_board.delete(task_id)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if not removed:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted", "task_id": task_id}


@app.post("/recurrence/scan")
async def run_recurrence_scan():
    engine = _require(recurrence_engine, "Recurrence engine")
    return engine.scan_once().to_dict()


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the Scribe server"""
    import uvicorn

    load_dotenv()
    port = load_config().server.port

    logger.info("Starting server on port %d", port)
    uvicorn.run(
        "comedia.scribe.server:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
