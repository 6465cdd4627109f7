"""
Extraction pipeline.

The caller-facing boundary. Every entry point resolves the caller first;
collaborators (model clients, stores) are injected through the constructor so
tests can substitute fakes. `build_pipeline` wires the production ones.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import structlog
from pydantic import BaseModel

from tasklens.agent.graph import DispatchLoop
from tasklens.agent.state import ExtractionOutcome
from tasklens.agent.tools import ToolContext
from tasklens.auth.identity import IdentityResolver, require_principal
from tasklens.config import Settings, get_settings
from tasklens.extraction.normalizer import normalize
from tasklens.extraction.schemas import AnalysisResult
from tasklens.imaging.blob_store import BlobStore, InMemoryBlobStore, LocalBlobStore
from tasklens.imaging.transport import ImageTransport
from tasklens.kernel.errors import InvalidImageFormatError
from tasklens.llm.prompts import get_agent_messages, get_thread_request_message
from tasklens.llm.providers import AgentModel, LiteLLMAgentModel, LiteLLMVisionClient, VisionModelClient
from tasklens.llm.vision import VisionExtractor
from tasklens.materialize.materializer import CommitResult, MaterializeDefaults, TaskMaterializer
from tasklens.tasks.http_store import HttpTaskStore
from tasklens.tasks.store import TaskStore
from tasklens.threads.models import MessagePage, MessageRole, NewMessage, StreamSync
from tasklens.threads.redis_store import RedisThreadStore
from tasklens.threads.store import DEFAULT_PAGE_SIZE, InMemoryThreadStore, ThreadStore, iter_stream_deltas

logger = structlog.get_logger()

SESSION_TITLE = "Image analysis session"


class SessionMessages(BaseModel):
    """A page of finalized messages plus, when requested, live stream deltas."""

    messages: MessagePage
    streams: StreamSync | None = None


class ExtractionPipeline:
    def __init__(
        self,
        *,
        vision_client: VisionModelClient,
        agent_model: AgentModel,
        blob_store: BlobStore,
        thread_store: ThreadStore,
        task_store: TaskStore,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.agent_model = agent_model
        self.blob_store = blob_store
        self.threads = thread_store
        self.task_store = task_store
        self.transport = ImageTransport(
            blob_store,
            self.settings.allowed_image_media_types,
            max_bytes=self.settings.max_image_bytes,
        )
        self.extractor = VisionExtractor(
            vision_client,
            max_tokens=self.settings.vision_max_tokens,
            temperature=self.settings.vision_temperature,
            max_tasks=self.settings.max_extracted_tasks,
        )
        self.materializer = TaskMaterializer(task_store)

    # =========================================================================
    # Sessions
    # =========================================================================

    async def create_session(self, identity: IdentityResolver, title: str = SESSION_TITLE) -> str:
        principal = await require_principal(identity)
        thread = await self.threads.create_thread(principal.subject, title)
        return thread.thread_id

    async def run_extraction(
        self,
        identity: IdentityResolver,
        thread_id: str,
        *,
        image_data_url: str | None = None,
        storage_id: str | None = None,
        context: str | None = None,
    ) -> ExtractionOutcome:
        """Drive one dispatch loop on a session to completion or budget exhaustion.

        Inline images are staged in blob storage first; the model only ever sees
        the storage reference. The staged blob is discarded when the loop ends.
        """
        principal = await require_principal(identity)
        await self.threads.get_thread(thread_id, principal.subject)

        if image_data_url:
            storage_id = await self.transport.stage(image_data_url)
        elif not storage_id:
            raise InvalidImageFormatError(message="Provide either imageDataUrl or storageId")

        tool_args: dict[str, Any] = {"storageId": storage_id}
        if context:
            tool_args["context"] = context

        try:
            await self.threads.append_message(
                thread_id,
                principal.subject,
                NewMessage(role=MessageRole.USER, content=get_thread_request_message(storage_id, context)),
            )
            loop = DispatchLoop(
                self.agent_model,
                self.threads,
                ToolContext(
                    owner_id=principal.subject,
                    identity=identity,
                    transport=self.transport,
                    extractor=self.extractor,
                    task_store=self.task_store,
                ),
            )
            return await loop.run(
                thread_id=thread_id,
                owner_id=principal.subject,
                messages=get_agent_messages(tool_args),
                max_steps=self.settings.agent_max_steps,
            )
        finally:
            await self.transport.discard(storage_id)

    async def list_session_messages(
        self,
        identity: IdentityResolver,
        thread_id: str,
        *,
        cursor: str | None = None,
        num_items: int = DEFAULT_PAGE_SIZE,
        stream_cursors: dict[str, int] | None = None,
    ) -> SessionMessages:
        principal = await require_principal(identity)
        page = await self.threads.list_messages(thread_id, principal.subject, cursor, num_items)
        streams = None
        if stream_cursors is not None:
            streams = await self.threads.sync_streams(thread_id, principal.subject, stream_cursors)
        return SessionMessages(messages=page, streams=streams)

    async def follow_session_streams(
        self,
        identity: IdentityResolver,
        thread_id: str,
        stream_cursors: dict[str, int] | None = None,
    ) -> AsyncIterator[StreamSync]:
        principal = await require_principal(identity)
        await self.threads.get_thread(thread_id, principal.subject)
        return iter_stream_deltas(self.threads, thread_id, principal.subject, stream_cursors)

    # =========================================================================
    # Direct analysis
    # =========================================================================

    async def analyze_image_direct(
        self,
        identity: IdentityResolver,
        image_data_url: str,
        context: str | None = None,
    ) -> AnalysisResult:
        """One vision call without a thread or agent loop."""
        principal = await require_principal(identity)
        image = self.transport.from_inline(image_data_url)
        analysis = normalize(await self.extractor.analyze(image, context))
        logger.info("Direct analysis complete", owner_id=principal.subject, task_count=len(analysis.tasks))
        return analysis

    # =========================================================================
    # Materialization
    # =========================================================================

    async def commit_selected_tasks(
        self,
        identity: IdentityResolver,
        analysis: Any,
        selected_ids: list[str],
        *,
        project_id: str | None = None,
        default_priority: str | None = None,
        default_hours: float | None = None,
    ) -> CommitResult:
        principal = await require_principal(identity)
        return await self.materializer.commit_selected(
            principal,
            analysis,
            selected_ids,
            project_id=project_id,
            defaults=MaterializeDefaults.of(default_priority, default_hours),
        )

    async def commit_single_task(
        self,
        identity: IdentityResolver,
        analysis: Any,
        task: Any,
        *,
        project_id: str | None = None,
        default_priority: str | None = None,
        default_hours: float | None = None,
    ) -> dict[str, str]:
        principal = await require_principal(identity)
        task_id = await self.materializer.commit_single(
            principal,
            analysis,
            task,
            project_id=project_id,
            defaults=MaterializeDefaults.of(default_priority, default_hours),
        )
        return {"taskId": task_id}

    async def close(self) -> None:
        disconnect = getattr(self.threads, "disconnect", None)
        if disconnect is not None:
            await disconnect()


def build_pipeline(settings: Settings | None = None) -> ExtractionPipeline:
    """Wire production collaborators from settings."""
    settings = settings or get_settings()

    if settings.blob_store_backend == "local":
        blob_store: BlobStore = LocalBlobStore(settings.blob_store_root)
    else:
        blob_store = InMemoryBlobStore()

    if settings.thread_store_backend == "redis":
        thread_store: ThreadStore = RedisThreadStore(
            settings.redis_url,
            prefix=settings.thread_key_prefix,
            ttl_seconds=settings.thread_ttl_seconds or None,
            stream_retention_seconds=settings.stream_retention_seconds,
        )
    else:
        thread_store = InMemoryThreadStore()

    return ExtractionPipeline(
        vision_client=LiteLLMVisionClient(settings.vision_model, timeout=settings.llm_timeout_seconds),
        agent_model=LiteLLMAgentModel(
            settings.agent_model,
            timeout=settings.llm_timeout_seconds,
            max_tokens=settings.agent_max_tokens,
        ),
        blob_store=blob_store,
        thread_store=thread_store,
        task_store=HttpTaskStore(
            settings.task_store_url,
            settings.task_store_internal_secret,
            timeout=settings.task_store_timeout_seconds,
        ),
        settings=settings,
    )
