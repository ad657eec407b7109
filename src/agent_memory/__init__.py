"""Agent memory — durable session logs compiled into budget-aware working contexts."""

from __future__ import annotations

__version__ = "0.1.0"

from .artifact_store import ArtifactStore, InMemoryArtifactStore, SqliteArtifactStore
from .events import (
    AgentMessageEvent,
    AgentTransferEvent,
    BaseEvent,
    CompactionEvent,
    CompactionStrategy,
    ControlSignalEvent,
    ErrorEvent,
    Event,
    EventAction,
    SignalType,
    SystemInstructionEvent,
    ToolCallEvent,
    ToolResultEvent,
    UserMessageEvent,
    dump_event,
    generate_event_id,
    parse_event,
)
from .memory import InMemoryBackend, MemoryEntry, MemoryService
from .pipeline import (
    DefaultPipelineOptions,
    PipelineConfig,
    ProcessorEntry,
    ProcessorPipeline,
    create_default_pipeline,
)
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
    project_events,
    sliding_window_request_processor,
    statistics_response_processor,
    token_limit_request_processor,
)
from .session import (
    CompactionConfig,
    ConversationTurn,
    MalformedSessionError,
    Session,
    SessionMetadata,
    SessionSnapshot,
    SessionStatistics,
)
from .telemetry import MemoryTracer, TelemetryConfig, configure_tracing
from .token_budget import estimate_tokens
from .working_context import (
    TOOL_ROLE_SUPPORT,
    AgentIdentity,
    ArtifactReference,
    Content,
    ContentRole,
    ContextWindowConfig,
    UnsupportedModelTypeError,
    WorkingContext,
    WorkingContextMetadata,
)

__all__ = [
    "TOOL_ROLE_SUPPORT",
    "AgentIdentity",
    "AgentMessageEvent",
    "AgentTransferEvent",
    "ArtifactReference",
    "ArtifactStore",
    "ArtifactsConfig",
    "BaseEvent",
    "CompactionConfig",
    "CompactionEvent",
    "CompactionFilterConfig",
    "CompactionStrategy",
    "Content",
    "ContentRole",
    "ContentsConfig",
    "ContextCacheConfig",
    "ContextWindowConfig",
    "ControlSignalEvent",
    "ConversationTurn",
    "DefaultPipelineOptions",
    "ErrorEvent",
    "Event",
    "EventAction",
    "InMemoryArtifactStore",
    "InMemoryBackend",
    "InstructionsConfig",
    "MalformedSessionError",
    "MemoryConfig",
    "MemoryEntry",
    "MemoryService",
    "MemoryTracer",
    "PipelineConfig",
    "ProcessorEntry",
    "ProcessorPipeline",
    "RequestProcessor",
    "ResponseProcessor",
    "Session",
    "SessionMetadata",
    "SessionSnapshot",
    "SessionStatistics",
    "SignalType",
    "SlidingWindowConfig",
    "SqliteArtifactStore",
    "SystemInstructionEvent",
    "TelemetryConfig",
    "ToolCallEvent",
    "ToolResultEvent",
    "UnsupportedModelTypeError",
    "UserMessageEvent",
    "WorkingContext",
    "WorkingContextMetadata",
    "agent_message_response_processor",
    "artifacts_request_processor",
    "basic_request_processor",
    "compaction_filter_request_processor",
    "configure_tracing",
    "context_cache_request_processor",
    "contents_request_processor",
    "create_default_pipeline",
    "dump_event",
    "estimate_tokens",
    "generate_event_id",
    "identity_request_processor",
    "instructions_request_processor",
    "memory_request_processor",
    "parse_event",
    "project_events",
    "sliding_window_request_processor",
    "statistics_response_processor",
    "token_limit_request_processor",
]
