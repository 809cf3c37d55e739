"""
MeetSync Server

FastAPI server that receives meeting transcripts and drives the Slack
approval loop.

Endpoints:
- GET /health: Health check
- POST /api/v1/webhook: Read AI / generic transcript webhook (acks immediately)
- POST /api/v1/process-transcript: Synchronous pipeline run
- POST /api/v1/slack-interaction: Slack buttons and feedback forms
- GET /api/v1/sessions: Open proposal sessions
- GET /api/v1/sessions/{session_id}: One session and its current proposal
- GET /api/v1/destinations: Destination databases visible to the record store

Pipeline:
1. Receive transcript (webhook or API)
2. Extract candidate tasks
3. Resolve destination and fetch its records
4. Reconcile CREATE vs UPDATE
5. Queue proposals and post the first card
6. Commit / skip / refine as the human clicks
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException, Header
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from ..common.config import load_config, MeetSyncConfig, ensure_directories
from ..common.llm_client import LLMClient
from ..common.notion_client import NotionClient, RecordKeepingError, RecordStore
from ..common.slack_client import SlackClient, MessagingClient
from ..common.tracing import configure_logging, trace_logger
from ..common.transcript_store import TranscriptStore
from .alerts import install_alert_handler
from .cards import PayloadError
from .comparator import LLMComparator, TitleMatchComparator
from .destination import DestinationNotFoundError, DestinationResolver
from .dispatcher import BackgroundDispatcher
from .extractor import ExtractionError, TranscriptExtractor
from .feedback import FeedbackSessionStore
from .interaction import ActionEvent, InteractionStateMachine
from .pipeline import MissingProjectError, SyncPipeline, TranscriptJob, new_session_id
from .proposal_queue import SessionExistsError, SessionNotFoundError, SessionRegistry
from .reconciler import Reconciler
from .handlers import BaseHandler, ReadAIHandler, SlackInteractionHandler, WebhookHandler

logger = logging.getLogger("meetsync.sync.server")


# Global state
config: Optional[MeetSyncConfig] = None
record_store: Optional[RecordStore] = None
messenger: Optional[MessagingClient] = None
registry: Optional[SessionRegistry] = None
feedback_store: Optional[FeedbackSessionStore] = None
dispatcher: Optional[BackgroundDispatcher] = None
machine: Optional[InteractionStateMachine] = None
pipeline: Optional[SyncPipeline] = None
slack_interactions: Optional[SlackInteractionHandler] = None
transcript_handlers: List[BaseHandler] = []
llm_available: bool = False


async def sweep_sessions(interval: float) -> None:
    """Periodically evict abandoned sessions and feedback forms."""
    while True:
        await asyncio.sleep(interval)
        if registry:
            registry.evict_expired()
        if feedback_store:
            feedback_store.evict_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup"""
    global config, record_store, messenger, registry, feedback_store, dispatcher
    global machine, pipeline, slack_interactions, transcript_handlers, llm_available

    config = load_config()
    configure_logging(config.server.log_level)
    logger.info("Starting up...")
    ensure_directories(config)

    llm = LLMClient.from_config(config.llm)
    llm_available = llm.is_available
    if llm_available:
        logger.info("LLM ready (%s, %s)", llm.provider, llm.model)
    else:
        logger.warning("LLM not available, extraction disabled and title matching used for comparison")

    record_store = NotionClient(api_key=config.notion.api_key, api_version=config.notion.api_version)
    messenger = SlackClient(bot_token=config.slack.bot_token)
    if not config.slack.approval_channel:
        logger.warning("SLACK_APPROVAL_CHANNEL not set, proposal cards cannot be posted")

    registry = SessionRegistry(ttl_seconds=config.session.session_ttl_seconds)
    feedback_store = FeedbackSessionStore(ttl_seconds=config.session.feedback_ttl_seconds)
    dispatcher = BackgroundDispatcher(max_concurrency=config.session.max_background_tasks)
    machine = InteractionStateMachine(
        registry=registry,
        feedback_store=feedback_store,
        record_store=record_store,
        messenger=messenger,
        dispatcher=dispatcher,
        channel=config.slack.approval_channel,
    )

    comparator = LLMComparator(llm) if llm_available else TitleMatchComparator()
    pipeline = SyncPipeline(
        extractor=TranscriptExtractor(llm),
        resolver=DestinationResolver(llm),
        reconciler=Reconciler(comparator),
        record_store=record_store,
        registry=registry,
        machine=machine,
        transcript_store=TranscriptStore(Path(config.transcripts_dir)),
        fallback_destination_id=config.notion.fallback_database_id,
    )

    slack_interactions = SlackInteractionHandler(signing_secret=config.slack.signing_secret)
    transcript_handlers = [ReadAIHandler(), WebhookHandler()]

    alert_handler = None
    if config.slack.bot_token and config.slack.approval_channel:
        alert_handler = install_alert_handler(
            messenger, config.slack.approval_channel, dispatcher, loop=asyncio.get_running_loop(),
        )
        logger.info("Slack error alerts enabled for %s", config.slack.approval_channel)

    sweep_task = asyncio.create_task(sweep_sessions(config.session.sweep_interval_seconds))
    logger.info("Ready to receive transcripts (session TTL %ss)", config.session.session_ttl_seconds)

    yield

    # Cleanup
    logger.info("Shutting down...")
    sweep_task.cancel()
    if alert_handler:
        logging.getLogger("meetsync").removeHandler(alert_handler)
    await dispatcher.shutdown()
    await messenger.close()
    await record_store.close()


app = FastAPI(
    title="MeetSync",
    description="Meeting transcripts to human-approved task records",
    version="0.1.0",
    lifespan=lifespan
)


# =============================================================================
# Request/Response Models
# =============================================================================

class ProcessTranscriptRequest(BaseModel):
    """Synchronous pipeline request"""
    transcript: str = ""
    trace_id: Optional[str] = None
    request_id: Optional[str] = None
    source: str = "api"
    source_id: str = "anonymous"
    meeting_title: str = "Untitled"
    participants: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Background Tasks
# =============================================================================

async def run_pipeline_background(job: TranscriptJob) -> None:
    """Run the pipeline after the webhook was acknowledged; failures are logged."""
    log = trace_logger(logger, job.session_id)
    try:
        await pipeline.process(job)
    except (ExtractionError, DestinationNotFoundError, RecordKeepingError, SessionExistsError) as e:
        log.error("Pipeline failed: %s", e)


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "meetsync",
        "initialized": pipeline is not None,
        "llm_available": llm_available,
        "active_sessions": len(registry.active_sessions()) if registry else 0,
        "open_feedback_forms": len(feedback_store) if feedback_store else 0,
        "background_pending": dispatcher.pending if dispatcher else 0,
        "background_failures": [f.to_dict() for f in dispatcher.failures] if dispatcher else [],
    }


@app.post("/api/v1/webhook")
async def webhook(request: Request):
    """
    Receive a transcript webhook.

    Replies immediately so the sender does not time out; the pipeline runs
    in the background under a freshly minted trace id.
    """
    if not pipeline or not dispatcher:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")

    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    trace_id = new_session_id()
    log = trace_logger(logger, trace_id)
    handler = next((h for h in transcript_handlers if h.can_handle(data)), None)
    if handler is None:
        raise HTTPException(status_code=400, detail="Missing transcript")

    event = handler.parse_event(data)
    if event is None or not handler.should_process(event):
        if isinstance(handler, ReadAIHandler):
            # Read AI always gets an ack so it does not retry
            log.error("Read AI payload has no usable speaker_blocks")
            return {"status": "received", "trace_id": trace_id}
        raise HTTPException(status_code=400, detail="Missing transcript")

    log.info("Received %s webhook: %r", handler.source_name, event.meeting_title)
    job = TranscriptJob(
        transcript=event.transcript,
        session_id=trace_id,
        meeting_title=event.meeting_title,
        source=event.source,
        source_id=event.source_id,
        participants=event.participants,
    )
    dispatcher.submit(run_pipeline_background(job), session_id=trace_id, label="pipeline")
    return {"status": "received", "trace_id": trace_id}


@app.post("/api/v1/process-transcript")
async def process_transcript(submission: ProcessTranscriptRequest):
    """Run the full pipeline and wait for the first card to be posted"""
    if not pipeline:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")

    if not submission.transcript.strip():
        raise HTTPException(status_code=400, detail="Missing transcript")

    job = TranscriptJob(
        transcript=submission.transcript,
        session_id=submission.trace_id or submission.request_id or new_session_id(),
        meeting_title=submission.meeting_title,
        source=submission.source,
        source_id=submission.source_id,
        participants=submission.participants,
    )

    try:
        result = await pipeline.process(job)
    except SessionExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MissingProjectError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DestinationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ExtractionError, RecordKeepingError) as e:
        trace_logger(logger, job.session_id).error("Pipeline failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))

    return {"status": "success", **result.to_dict()}


@app.post("/api/v1/slack-interaction")
async def slack_interaction(
    request: Request,
    x_slack_signature: Optional[str] = Header(None),
    x_slack_request_timestamp: Optional[str] = Header(None)
):
    """
    Handle Slack interactivity (button clicks, feedback form submits).

    Acknowledges within Slack's deadline; writes and card updates happen in
    the background.
    """
    if not slack_interactions or not machine:
        raise HTTPException(status_code=503, detail="Handler not initialized")

    body = await request.body()

    if not slack_interactions.verify_signature(
        body,
        x_slack_signature or "",
        x_slack_request_timestamp or ""
    ):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        data = slack_interactions.decode_body(body)
        interaction = slack_interactions.parse_interaction(data)
    except PayloadError as e:
        logger.warning("Rejected Slack interaction: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    if interaction is None:
        return Response(status_code=200)

    if isinstance(interaction, ActionEvent):
        ack = await machine.handle_action(interaction)
    else:
        ack = await machine.handle_feedback_submission(interaction)

    if ack.body is None:
        return Response(status_code=200)
    return JSONResponse(ack.body)


@app.get("/api/v1/sessions")
async def list_sessions():
    """Open proposal sessions"""
    if not registry:
        raise HTTPException(status_code=503, detail="Registry not initialized")

    sessions = registry.active_sessions()
    return {
        "count": len(sessions),
        "sessions": [queue.summary() for queue in sessions],
    }


@app.get("/api/v1/sessions/{session_id}")
async def get_session(session_id: str):
    """One session and the proposal awaiting a decision"""
    if not registry:
        raise HTTPException(status_code=503, detail="Registry not initialized")

    try:
        queue = registry.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")

    head = queue.current()
    return {
        **queue.summary(),
        "current": head.model_dump(mode="json") if head else None,
    }


@app.get("/api/v1/destinations")
async def list_destinations():
    """Destination databases visible to the record store"""
    if not record_store:
        raise HTTPException(status_code=503, detail="Record store not initialized")

    try:
        destinations = await record_store.list_destinations()
    except RecordKeepingError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "count": len(destinations),
        "destinations": [d.model_dump() for d in destinations],
    }


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the MeetSync server"""
    import uvicorn

    config = load_config()
    logger.info("Starting server on %s:%s", config.server.host, config.server.port)
    uvicorn.run(
        "meetsync.sync.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
