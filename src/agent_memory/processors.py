"""Context processors — named, composable pipeline stages.

Request processors compile a :class:`Session` into a :class:`WorkingContext`
before a model call; response processors fold the model's reply back into the
session afterwards. Every processor may be sync or async.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from .artifact_store import ArtifactStore
from .events import (
    AgentMessageEvent,
    CompactionEvent,
    Event,
    EventAction,
    SystemInstructionEvent,
    ToolCallEvent,
    ToolResultEvent,
    UserMessageEvent,
)
from .memory import MemoryService
from .session import Session
from .token_budget import compact_json
from .working_context import (
    AgentIdentity,
    Content,
    ContentRole,
    ContextWindowConfig,
    WorkingContext,
)

_log = logging.getLogger(__name__)


class RequestProcessor(Protocol):
    """Session + context (+ config) -> context."""

    def __call__(
        self,
        session: Session,
        context: WorkingContext,
        config: Any = None,
    ) -> WorkingContext | Awaitable[WorkingContext]: ...


class ResponseProcessor(Protocol):
    """Session + raw response + context (+ config) -> session."""

    def __call__(
        self,
        session: Session,
        response: Any,
        context: WorkingContext,
        config: Any = None,
    ) -> Session | Awaitable[Session]: ...


# ---------------------------------------------------------------------------
# Processor configs
# ---------------------------------------------------------------------------


@dataclass
class InstructionsConfig:
    instructions: list[str] = field(default_factory=list)


@dataclass
class ContentsConfig:
    """Event -> content projection options.

    ``window_size`` limits the raw events considered (most recent N) before
    ``filter_actions`` drops whole action types.
    """

    window_size: int | None = None
    include_tool_calls: bool = True
    filter_actions: list[EventAction] = field(default_factory=list)


@dataclass
class SlidingWindowConfig:
    turns: int = 3


@dataclass
class CompactionFilterConfig:
    keep_compaction_summaries: bool = True


@dataclass
class ContextCacheConfig:
    enable_caching: bool = False


@dataclass
class MemoryConfig:
    service: MemoryService
    top_k: int = 5


@dataclass
class ArtifactsConfig:
    store: ArtifactStore


# ---------------------------------------------------------------------------
# Event projection
# ---------------------------------------------------------------------------


def _event_to_content(event: Event, include_tool_calls: bool) -> Content | None:
    base_meta: dict[str, Any] = {"event_id": event.id, "timestamp": event.timestamp}

    match event:
        case UserMessageEvent():
            return Content(role=ContentRole.USER, content=event.content, metadata=base_meta)
        case AgentMessageEvent():
            return Content(
                role=ContentRole.ASSISTANT,
                content=event.content,
                metadata=base_meta | {
                    "model_used": event.model_used,
                    "gateway_log_id": event.gateway_log_id,
                },
            )
        case ToolCallEvent():
            if not include_tool_calls:
                return None
            return Content(
                role=ContentRole.ASSISTANT,
                content=(
                    f"Tool call: {event.tool_name} with arguments: "
                    f"{compact_json(event.arguments)}"
                ),
                metadata=base_meta | {
                    "tool_call_id": event.tool_call_id,
                    "tool_name": event.tool_name,
                },
            )
        case ToolResultEvent():
            if not include_tool_calls:
                return None
            result = event.result if isinstance(event.result, str) else compact_json(event.result)
            return Content(
                role=ContentRole.TOOL,
                content=result,
                name=event.tool_name,
                tool_call_id=event.tool_call_id,
                metadata=base_meta | {"is_success": event.is_success},
            )
        case CompactionEvent():
            return Content(
                role=ContentRole.SYSTEM,
                content=f"[Conversation Summary]: {event.summary}",
                metadata=base_meta | {"compacted_event_ids": list(event.compacted_event_ids)},
            )
        case _:
            # Errors, control signals, transfers and instructions have no
            # conversational rendering.
            return None


def project_events(
    events: Iterable[Event],
    context: WorkingContext,
    config: ContentsConfig | None = None,
) -> WorkingContext:
    """Append the content rendering of *events* to *context*, in order."""
    cfg = config or ContentsConfig()
    selected = list(events)
    if cfg.window_size and cfg.window_size > 0:
        selected = selected[-cfg.window_size:]
    if cfg.filter_actions:
        dropped = set(cfg.filter_actions)
        selected = [e for e in selected if e.action not in dropped]

    for event in selected:
        content = _event_to_content(event, cfg.include_tool_calls)
        if content is not None:
            context.add_content(content)

    context.metadata.window_size = len(context.contents)
    return context


# ---------------------------------------------------------------------------
# Built-in request processors
# ---------------------------------------------------------------------------


def basic_request_processor(
    session: Session,
    context: WorkingContext,
    config: Any = None,
) -> WorkingContext:
    """Copy session bookkeeping into the context metadata."""
    context.metadata.session_id = session.session_id
    context.metadata.total_events = len(session.events)
    return context


def instructions_request_processor(
    session: Session,
    context: WorkingContext,
    config: InstructionsConfig | None = None,
) -> WorkingContext:
    """Add configured instructions, then every static instruction event.

    Dynamic (non-static) instruction events are left out on purpose.
    """
    if config is not None:
        for instruction in config.instructions:
            context.add_system_instruction(instruction)

    for event in session.events:
        if isinstance(event, SystemInstructionEvent) and event.is_static:
            context.add_system_instruction(event.instruction)
    return context


def identity_request_processor(
    session: Session,
    context: WorkingContext,
    config: AgentIdentity | None = None,
) -> WorkingContext:
    if config is not None:
        context.set_agent_identity(config)
    return context


def contents_request_processor(
    session: Session,
    context: WorkingContext,
    config: ContentsConfig | None = None,
) -> WorkingContext:
    """Project the session's events into role-tagged contents."""
    return project_events(session.events, context, config)


def sliding_window_request_processor(
    session: Session,
    context: WorkingContext,
    config: SlidingWindowConfig | None = None,
) -> WorkingContext:
    """Keep events from the last N user turns, plus every compaction summary."""
    turns = config.turns if config is not None and config.turns > 0 else 3

    user_messages = [e for e in session.events if e.action == EventAction.USER_MESSAGE]
    recent = user_messages[-turns:]
    if not recent:
        return context

    window_start = recent[0].timestamp
    window = [
        e
        for e in session.events
        if e.timestamp >= window_start or e.action == EventAction.COMPACTION
    ]
    _log.debug(
        "Sliding window for %s: %d of %d events from %d turn(s)",
        session.session_id,
        len(window),
        len(session.events),
        len(recent),
    )
    return project_events(window, context, ContentsConfig(include_tool_calls=True))


def compaction_filter_request_processor(
    session: Session,
    context: WorkingContext,
    config: CompactionFilterConfig | None = None,
) -> WorkingContext:
    """Hide events already covered by a compaction summary."""
    keep_summaries = config.keep_compaction_summaries if config is not None else True

    compacted_ids: set[str] = set()
    for event in session.events:
        if isinstance(event, CompactionEvent):
            compacted_ids.update(event.compacted_event_ids)

    visible = [
        e
        for e in session.events
        if e.id not in compacted_ids
        or (keep_summaries and e.action == EventAction.COMPACTION)
    ]
    context.metadata.compacted_events = len(compacted_ids)
    return project_events(visible, context)


def context_cache_request_processor(
    session: Session,
    context: WorkingContext,
    config: ContextCacheConfig | None = None,
) -> WorkingContext:
    """Mark the system-instruction prefix as cacheable for the transport."""
    if config is not None and config.enable_caching:
        context.metadata.cache_enabled = True
        context.metadata.cacheable_prefix = len(context.system_instructions)
    return context


def token_limit_request_processor(
    session: Session,
    context: WorkingContext,
    config: ContextWindowConfig | None = None,
) -> WorkingContext:
    if config is None:
        return context
    before = len(context.contents)
    context.truncate_to_fit(config)
    if len(context.contents) < before:
        _log.debug(
            "Truncated context for %s: kept %d of %d contents",
            session.session_id,
            len(context.contents),
            before,
        )
    return context


def memory_request_processor(
    session: Session,
    context: WorkingContext,
    config: MemoryConfig | None = None,
) -> WorkingContext:
    """Recall memories relevant to the latest user message."""
    if config is None:
        return context
    user_events = [e for e in session.events if isinstance(e, UserMessageEvent)]
    if not user_events:
        return context
    query = user_events[-1].content.strip()
    if not query:
        return context

    entries = config.service.recall(query, limit=config.top_k)
    context.add_memory_results(entry.render() for entry in entries)
    return context


def artifacts_request_processor(
    session: Session,
    context: WorkingContext,
    config: ArtifactsConfig | None = None,
) -> WorkingContext:
    if config is None:
        return context
    for ref in config.store.list_references(session.session_id):
        context.add_artifact_reference(ref)
    return context


# ---------------------------------------------------------------------------
# Built-in response processors
# ---------------------------------------------------------------------------


def _response_field(obj: Any, *names: str) -> Any:
    """Read the first present field of a mapping or attribute-bearing object."""
    if obj is None:
        return None
    for name in names:
        if isinstance(obj, Mapping):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return None


def statistics_response_processor(
    session: Session,
    response: Any,
    context: WorkingContext,
    config: Any = None,
) -> Session:
    """Fold ``metadata.responseTimeMs`` into the running latency average."""
    metadata = _response_field(response, "metadata")
    response_time = _response_field(metadata, "responseTimeMs", "response_time_ms")
    if not response_time:
        return session

    stats = session.statistics
    prior = stats.total_agent_messages
    stats.average_response_time_ms = (
        stats.average_response_time_ms * prior + float(response_time)
    ) / (prior + 1)
    return session


def agent_message_response_processor(
    session: Session,
    response: Any,
    context: WorkingContext,
    config: Any = None,
) -> Session:
    """Record the response text as an agent message event.

    Must run after :func:`statistics_response_processor`, which averages over
    the agent messages recorded before this response.
    """
    content = _response_field(response, "content")
    if not isinstance(content, str):
        return session

    metadata = _response_field(response, "metadata")
    session.add_event(
        AgentMessageEvent(
            content=content,
            agent_id=session.agent_id,
            model_used=_response_field(response, "model")
            or _response_field(metadata, "modelUsed", "model_used"),
            tokens_used=_response_field(metadata, "tokensUsed", "tokens_used"),
            gateway_log_id=_response_field(metadata, "gatewayLogId", "gateway_log_id"),
        )
    )
    return session
