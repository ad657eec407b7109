"""ProcessorPipeline — runs request and response processors in registration order."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

from .artifact_store import ArtifactStore
from .memory import MemoryService
from .processors import (
    ArtifactsConfig,
    CompactionFilterConfig,
    ContentsConfig,
    ContextCacheConfig,
    InstructionsConfig,
    MemoryConfig,
    RequestProcessor,
    ResponseProcessor,
    SlidingWindowConfig,
    agent_message_response_processor,
    artifacts_request_processor,
    basic_request_processor,
    compaction_filter_request_processor,
    context_cache_request_processor,
    contents_request_processor,
    identity_request_processor,
    instructions_request_processor,
    memory_request_processor,
    sliding_window_request_processor,
    statistics_response_processor,
    token_limit_request_processor,
)
from .session import Session
from .telemetry import trace_processor, trace_request_pipeline, trace_response_pipeline
from .working_context import AgentIdentity, ContextWindowConfig, WorkingContext

_log = logging.getLogger(__name__)

P = TypeVar("P")


@dataclass
class ProcessorEntry(Generic[P]):
    """Named processor plus its per-entry config."""

    name: str
    processor: P
    config: Any = None
    enabled: bool = True


@dataclass
class PipelineConfig:
    request_processors: list[ProcessorEntry[RequestProcessor]] = field(default_factory=list)
    response_processors: list[ProcessorEntry[ResponseProcessor]] = field(default_factory=list)


class ProcessorPipeline:
    """Ordered request/response processor lists.

    Stages run strictly one after another: each one receives the context (or
    session) produced by the previous stage, and async stages are awaited
    before the next starts. A raising stage aborts the rest of its pipeline.
    Response processors mutate the session in place, so a failure midway
    leaves the updates of the stages that already ran.
    """

    def __init__(self, config: PipelineConfig | None = None) -> None:
        self._request: list[ProcessorEntry[RequestProcessor]] = []
        self._response: list[ProcessorEntry[ResponseProcessor]] = []
        if config is not None:
            self._request = list(config.request_processors)
            self._response = list(config.response_processors)

    # -- registration --------------------------------------------------------

    def add_request_processor(
        self,
        name: str,
        processor: RequestProcessor,
        config: Any = None,
        *,
        enabled: bool = True,
    ) -> ProcessorPipeline:
        self._request.append(ProcessorEntry(name, processor, config, enabled))
        return self

    def add_response_processor(
        self,
        name: str,
        processor: ResponseProcessor,
        config: Any = None,
        *,
        enabled: bool = True,
    ) -> ProcessorPipeline:
        self._response.append(ProcessorEntry(name, processor, config, enabled))
        return self

    def insert_request_processor(
        self,
        index: int,
        name: str,
        processor: RequestProcessor,
        config: Any = None,
        *,
        enabled: bool = True,
    ) -> ProcessorPipeline:
        self._request.insert(index, ProcessorEntry(name, processor, config, enabled))
        return self

    def remove_request_processor(self, name: str) -> ProcessorPipeline:
        self._request = [e for e in self._request if e.name != name]
        return self

    def remove_response_processor(self, name: str) -> ProcessorPipeline:
        self._response = [e for e in self._response if e.name != name]
        return self

    def set_enabled(self, name: str, enabled: bool) -> ProcessorPipeline:
        """Toggle every entry called *name*, on both the request and response side."""
        for entries in (self._request, self._response):
            for i, entry in enumerate(entries):
                if entry.name == name:
                    entries[i] = replace(entry, enabled=enabled)
        return self

    def get_config(self) -> PipelineConfig:
        return PipelineConfig(
            request_processors=list(self._request),
            response_processors=list(self._response),
        )

    @property
    def request_processor_names(self) -> list[str]:
        return [e.name for e in self._request]

    @property
    def response_processor_names(self) -> list[str]:
        return [e.name for e in self._response]

    # -- execution -----------------------------------------------------------

    async def execute_request_pipeline(self, session: Session) -> WorkingContext:
        """Compile *session* into a fresh working context."""
        context = WorkingContext(session.session_id)
        with trace_request_pipeline(session.session_id):
            for entry in self._request:
                if not entry.enabled:
                    _log.debug("Skipping disabled request processor %s", entry.name)
                    continue
                _log.debug("Running request processor %s", entry.name)
                with trace_processor("request", entry.name):
                    result = entry.processor(session, context, entry.config)
                    if inspect.isawaitable(result):
                        result = await result
                context = result
        return context

    async def execute_response_pipeline(
        self,
        session: Session,
        response: Any,
        context: WorkingContext,
    ) -> Session:
        """Fold a model *response* back into *session*."""
        with trace_response_pipeline(session.session_id):
            for entry in self._response:
                if not entry.enabled:
                    _log.debug("Skipping disabled response processor %s", entry.name)
                    continue
                _log.debug("Running response processor %s", entry.name)
                with trace_processor("response", entry.name):
                    result = entry.processor(session, response, context, entry.config)
                    if inspect.isawaitable(result):
                        result = await result
                session = result
        return session


# ---------------------------------------------------------------------------
# Default pipeline
# ---------------------------------------------------------------------------


@dataclass
class DefaultPipelineOptions:
    """Options for :func:`create_default_pipeline`.

    History shaping uses exactly one strategy: the compaction filter unless
    ``use_compaction_filter`` is False, then the sliding window if
    ``use_sliding_window`` is set, otherwise the bare contents projection.
    """

    system_instructions: list[str] = field(default_factory=list)
    agent_identity: AgentIdentity | None = None
    window_size: int | None = None
    context_window_config: ContextWindowConfig | None = None
    enable_caching: bool = False
    use_compaction_filter: bool = True
    use_sliding_window: bool = False
    memory_service: MemoryService | None = None
    memory_top_k: int = 5
    artifact_store: ArtifactStore | None = None
    record_responses: bool = False


def create_default_pipeline(options: DefaultPipelineOptions | None = None) -> ProcessorPipeline:
    """Assemble the standard pipeline.

    Request side: basic -> instructions -> identity -> memory -> artifacts ->
    history shaping -> context-cache -> token-limit, where the optional stages
    are only registered when configured. Response side: statistics, then
    agent-message when ``record_responses`` is set.
    """
    opts = options or DefaultPipelineOptions()
    pipeline = ProcessorPipeline()

    pipeline.add_request_processor("basic", basic_request_processor)
    pipeline.add_request_processor(
        "instructions",
        instructions_request_processor,
        InstructionsConfig(instructions=list(opts.system_instructions)),
    )
    if opts.agent_identity is not None:
        pipeline.add_request_processor("identity", identity_request_processor, opts.agent_identity)
    if opts.memory_service is not None:
        pipeline.add_request_processor(
            "memory",
            memory_request_processor,
            MemoryConfig(service=opts.memory_service, top_k=opts.memory_top_k),
        )
    if opts.artifact_store is not None:
        pipeline.add_request_processor(
            "artifacts", artifacts_request_processor, ArtifactsConfig(store=opts.artifact_store)
        )

    if opts.use_compaction_filter:
        pipeline.add_request_processor(
            "compaction-filter",
            compaction_filter_request_processor,
            CompactionFilterConfig(keep_compaction_summaries=True),
        )
    elif opts.use_sliding_window:
        pipeline.add_request_processor(
            "sliding-window",
            sliding_window_request_processor,
            SlidingWindowConfig(turns=opts.window_size or 3),
        )
    else:
        pipeline.add_request_processor(
            "contents", contents_request_processor, ContentsConfig(include_tool_calls=True)
        )

    if opts.enable_caching:
        pipeline.add_request_processor(
            "context-cache", context_cache_request_processor, ContextCacheConfig(enable_caching=True)
        )
    if opts.context_window_config is not None:
        pipeline.add_request_processor(
            "token-limit", token_limit_request_processor, opts.context_window_config
        )

    pipeline.add_response_processor("statistics", statistics_response_processor)
    if opts.record_responses:
        pipeline.add_response_processor("agent-message", agent_message_response_processor)
    return pipeline
