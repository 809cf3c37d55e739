"""
Sync Pipeline

One transcript end to end:
1. Extract candidate tasks (LLM)
2. Persist the transcript to history (failure is logged, never fatal)
3. Resolve the destination store from the project name
4. Fetch the destination's existing records
5. Reconcile every candidate (per-candidate failures are dropped)
6. Register the proposal queue and render its first card
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.notion_client import RecordStore
from ..common.schemas import Destination, TranscriptDocument
from ..common.tracing import trace_logger
from ..common.transcript_store import TranscriptStore, TranscriptStoreError
from .destination import DestinationNotFoundError, DestinationResolver
from .extractor import ExtractionError, ExtractionResult, TranscriptExtractor
from .interaction import InteractionStateMachine
from .proposal_queue import ProposalQueue, SessionExistsError, SessionRegistry
from .reconciler import ReconciliationFailure, Reconciler

logger = logging.getLogger("meetsync.sync.pipeline")


class MissingProjectError(ExtractionError):
    """The extraction produced no project name to route the tasks by."""
    pass


def new_session_id() -> str:
    """Session/trace id minted at ingress."""
    return str(uuid.uuid4())


@dataclass
class TranscriptJob:
    """A transcript accepted at ingress"""
    transcript: str
    session_id: str = field(default_factory=new_session_id)
    meeting_title: str = "Untitled"
    source: str = "webhook"
    source_id: str = "anonymous"
    participants: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class PipelineResult:
    """Outcome of one pipeline run"""
    session_id: str
    project_name: str
    destination: Destination
    queue: ProposalQueue
    failures: List[ReconciliationFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.session_id,
            "project": self.project_name,
            "destination": self.destination.model_dump(),
            "proposals": len(self.queue),
            "dropped": [{"title": f.candidate.title, "reason": f.reason} for f in self.failures],
        }


class SyncPipeline:
    """Transcript -> proposal queue -> first card."""

    def __init__(
        self,
        extractor: TranscriptExtractor,
        resolver: DestinationResolver,
        reconciler: Reconciler,
        record_store: RecordStore,
        registry: SessionRegistry,
        machine: InteractionStateMachine,
        transcript_store: Optional[TranscriptStore] = None,
        fallback_destination_id: str = "",
    ):
        self._extractor = extractor
        self._resolver = resolver
        self._reconciler = reconciler
        self._records = record_store
        self._registry = registry
        self._machine = machine
        self._transcripts = transcript_store
        self._fallback_destination_id = fallback_destination_id

    def _save_transcript(self, job: TranscriptJob, extraction: ExtractionResult) -> None:
        if self._transcripts is None:
            return
        document = TranscriptDocument(
            transcript_id=job.session_id,
            source=job.source,
            source_id=job.source_id,
            meeting_title=job.meeting_title,
            participants=job.participants or extraction.participants,
            raw_transcript=job.transcript,
            summary=extraction.summary,
            extracted_entities=extraction.entities,
        )
        try:
            path = self._transcripts.save(document)
            trace_logger(logger, job.session_id).info("Saved transcript to %s", path)
        except TranscriptStoreError as e:
            trace_logger(logger, job.session_id).error("Transcript save failed, continuing: %s", e)

    async def _resolve_destination(self, project_name: str, session_id: str) -> Destination:
        destinations = await self._records.list_destinations()
        if not destinations and self._fallback_destination_id:
            trace_logger(logger, session_id).warning(
                "No destinations visible, using fallback %s", self._fallback_destination_id
            )
            return Destination(id=self._fallback_destination_id, title=project_name)

        destination = await asyncio.to_thread(self._resolver.resolve, project_name, destinations, session_id)
        if destination is None:
            raise DestinationNotFoundError(f"No destination matches project {project_name!r}")
        return destination

    async def process(self, job: TranscriptJob) -> PipelineResult:
        """
        Run the pipeline for one transcript.

        Raises:
            SessionExistsError: if the session id is already in use
            ExtractionError: if extraction fails (MissingProjectError if no project)
            DestinationNotFoundError: if no destination matches the project
            RecordKeepingError: if destinations or records cannot be read
        """
        log = trace_logger(logger, job.session_id)
        if self._registry.exists(job.session_id):
            raise SessionExistsError(f"Session already exists: {job.session_id}")

        log.info("Pipeline started: %r from %s", job.meeting_title, job.source)
        extraction = await asyncio.to_thread(
            self._extractor.extract, job.transcript, job.meeting_title, job.session_id
        )
        await asyncio.to_thread(self._save_transcript, job, extraction)

        if not extraction.project_name:
            log.warning("No project name found in extraction")
            raise MissingProjectError("No project name found in normalized data")

        destination = await self._resolve_destination(extraction.project_name, job.session_id)

        log.info("Fetching existing records from %s", destination.id)
        existing = await self._records.fetch_records(destination.id)

        result = await asyncio.to_thread(
            self._reconciler.reconcile_all, extraction.candidates, existing, job.session_id
        )

        queue = self._registry.create(
            job.session_id, result.proposals, destination.id, job.meeting_title,
        )
        await self._machine.start_session(queue)
        log.info("Pipeline finished: %d proposal(s), %d dropped", len(queue), len(result.failures))

        return PipelineResult(
            session_id=job.session_id,
            project_name=extraction.project_name,
            destination=destination,
            queue=queue,
            failures=result.failures,
        )
