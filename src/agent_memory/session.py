"""Session — the durable, append-only log of one conversation.

A Session is the single source of truth for an agent's interaction history.
Working contexts are derived from it on every model invocation; the session
itself only ever grows by :meth:`Session.add_event`.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .events import (
    AgentMessageEvent,
    CompactionStrategy,
    Event,
    EventAction,
    ToolCallEvent,
    ToolResultEvent,
    UserMessageEvent,
    now_ms,
)

_log = logging.getLogger(__name__)


class MalformedSessionError(ValueError):
    """Raised when a serialized session does not match the snapshot shape."""


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


# ---------------------------------------------------------------------------
# Session data types
# ---------------------------------------------------------------------------


class SessionMetadata(_CamelModel):
    session_id: str
    agent_id: str
    created_at: int
    updated_at: int


class SessionStatistics(_CamelModel):
    """Running fold over the event log.

    Counters are only ever touched by :meth:`Session.add_event`;
    ``average_response_time_ms`` is maintained by response processors.
    """

    total_events: int = 0
    total_user_messages: int = 0
    total_agent_messages: int = 0
    total_tool_calls: int = 0
    total_errors: int = 0
    total_compactions: int = 0
    average_response_time_ms: float = 0.0
    total_tokens_used: int = 0


class CompactionConfig(_CamelModel):
    """When and how a session should be compacted."""

    enabled: bool = True
    trigger_threshold: int = Field(default=50, ge=1)
    window_size: int = Field(default=10, ge=1)
    overlap_size: int = Field(default=2, ge=0)
    strategy: CompactionStrategy = CompactionStrategy.SLIDING_WINDOW

    @classmethod
    def from_env(cls) -> CompactionConfig:
        """Build a config from ``AGENT_MEMORY_COMPACTION_*`` environment variables.

        Unset variables fall back to the field defaults:
            - ``AGENT_MEMORY_COMPACTION_ENABLED``: ``true`` / ``false``
            - ``AGENT_MEMORY_COMPACTION_THRESHOLD``: trigger threshold (50)
            - ``AGENT_MEMORY_COMPACTION_WINDOW``: window size (10)
            - ``AGENT_MEMORY_COMPACTION_OVERLAP``: overlap size (2)
            - ``AGENT_MEMORY_COMPACTION_STRATEGY``: strategy name (sliding_window)
        """
        env_map = {
            "enabled": "AGENT_MEMORY_COMPACTION_ENABLED",
            "trigger_threshold": "AGENT_MEMORY_COMPACTION_THRESHOLD",
            "window_size": "AGENT_MEMORY_COMPACTION_WINDOW",
            "overlap_size": "AGENT_MEMORY_COMPACTION_OVERLAP",
            "strategy": "AGENT_MEMORY_COMPACTION_STRATEGY",
        }
        values: dict[str, Any] = {}
        for field_name, env_name in env_map.items():
            raw = os.environ.get(env_name, "").strip()
            if raw:
                values[field_name] = raw
        return cls.model_validate(values)


@dataclass
class ConversationTurn:
    """One user message and the agent/tool events that answered it."""

    user: UserMessageEvent
    agent: AgentMessageEvent | None = None
    tools: list[ToolCallEvent | ToolResultEvent] = field(default_factory=list)


class SessionSnapshot(_CamelModel):
    """Structural, serializable form of a :class:`Session`."""

    metadata: SessionMetadata
    events: list[Event]
    statistics: SessionStatistics
    compaction_config: CompactionConfig


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def _generate_session_id() -> str:
    return f"session_{now_ms()}_{uuid.uuid4().hex[:9]}"


class Session:
    """Append-only event log plus derived statistics and compaction policy.

    A session has exactly one writer. Callers running the request or response
    pipeline concurrently against the same session must serialize access
    themselves.
    """

    def __init__(
        self,
        agent_id: str,
        session_id: str | None = None,
        compaction_config: CompactionConfig | None = None,
    ) -> None:
        now = now_ms()
        self.metadata = SessionMetadata(
            session_id=session_id or _generate_session_id(),
            agent_id=agent_id,
            created_at=now,
            updated_at=now,
        )
        self.events: list[Event] = []
        self.statistics = SessionStatistics()
        self.compaction_config = compaction_config or CompactionConfig()

    @property
    def session_id(self) -> str:
        return self.metadata.session_id

    @property
    def agent_id(self) -> str:
        return self.metadata.agent_id

    # -- mutation ------------------------------------------------------------

    def add_event(self, event: Event) -> Session:
        """Append *event* and fold it into the statistics."""
        self.events.append(event)
        self.metadata.updated_at = now_ms()
        stats = self.statistics
        stats.total_events += 1

        match event.action:
            case EventAction.USER_MESSAGE:
                stats.total_user_messages += 1
            case EventAction.AGENT_MESSAGE:
                stats.total_agent_messages += 1
                if event.tokens_used:
                    stats.total_tokens_used += event.tokens_used
            case EventAction.TOOL_CALL:
                stats.total_tool_calls += 1
            case EventAction.ERROR:
                stats.total_errors += 1
            case EventAction.COMPACTION:
                stats.total_compactions += 1
            case _:
                pass

        pending = stats.total_events - stats.total_compactions
        if self.compaction_config.enabled and pending == self.compaction_config.trigger_threshold:
            _log.info(
                "Session %s reached compaction threshold (%d events)",
                self.session_id,
                self.compaction_config.trigger_threshold,
            )
        return self

    def add_events(self, *events: Event) -> Session:
        for event in events:
            self.add_event(event)
        return self

    def update_compaction_config(self, **updates: Any) -> Session:
        """Shallow-merge *updates* into the compaction config.

        Raises:
            ValueError: On an unknown field name or an invalid value.
        """
        unknown = set(updates) - set(CompactionConfig.model_fields)
        if unknown:
            msg = f"Unknown compaction config field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        merged = self.compaction_config.model_dump() | updates
        self.compaction_config = CompactionConfig.model_validate(merged)
        return self

    # -- queries -------------------------------------------------------------

    def needs_compaction(self) -> bool:
        """True once non-compaction events reach the trigger threshold.

        Earlier compaction events never count toward the trigger.
        """
        if not self.compaction_config.enabled:
            return False
        pending = sum(1 for e in self.events if e.action != EventAction.COMPACTION)
        return pending >= self.compaction_config.trigger_threshold

    def get_events_by_time_range(self, start_time: int, end_time: int) -> list[Event]:
        return [e for e in self.events if start_time <= e.timestamp <= end_time]

    def get_events_by_action(self, action: EventAction | str) -> list[Event]:
        return [e for e in self.events if e.action == action]

    def get_last_n_events(self, n: int) -> list[Event]:
        if n <= 0:
            return []
        return self.events[-n:]

    def get_conversation_turns(self) -> list[ConversationTurn]:
        """Group the log into user-led turns.

        Events before the first user message belong to no turn.
        """
        turns: list[ConversationTurn] = []
        current: ConversationTurn | None = None

        for event in self.events:
            if isinstance(event, UserMessageEvent):
                if current is not None:
                    turns.append(current)
                current = ConversationTurn(user=event)
            elif current is None:
                continue
            elif isinstance(event, AgentMessageEvent):
                current.agent = event
            elif isinstance(event, ToolCallEvent | ToolResultEvent):
                current.tools.append(event)

        if current is not None:
            turns.append(current)
        return turns

    # -- serialization -------------------------------------------------------

    def to_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            metadata=self.metadata.model_copy(),
            events=list(self.events),
            statistics=self.statistics.model_copy(),
            compaction_config=self.compaction_config.model_copy(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Structural snapshot ``{metadata, events, statistics, compactionConfig}``."""
        return self.to_snapshot().model_dump(mode="json", by_alias=True, exclude_none=True)

    def serialize(self) -> str:
        return self.to_snapshot().model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: Any) -> Session:
        """Rebuild a session from :meth:`to_dict` output.

        Raises:
            MalformedSessionError: If *data* does not match the snapshot shape.
        """
        try:
            snapshot = SessionSnapshot.model_validate(data)
        except ValidationError as exc:
            msg = f"Malformed session snapshot: {exc.error_count()} validation error(s)"
            raise MalformedSessionError(msg) from exc
        return cls._from_snapshot(snapshot)

    @classmethod
    def deserialize(cls, data: str | bytes) -> Session:
        """Rebuild a session from :meth:`serialize` output.

        Raises:
            MalformedSessionError: On invalid JSON or a non-conforming snapshot.
        """
        try:
            snapshot = SessionSnapshot.model_validate_json(data)
        except ValidationError as exc:
            msg = f"Malformed session snapshot: {exc.error_count()} validation error(s)"
            raise MalformedSessionError(msg) from exc
        return cls._from_snapshot(snapshot)

    @classmethod
    def _from_snapshot(cls, snapshot: SessionSnapshot) -> Session:
        session = cls(
            agent_id=snapshot.metadata.agent_id,
            session_id=snapshot.metadata.session_id,
            compaction_config=snapshot.compaction_config,
        )
        session.metadata = snapshot.metadata
        session.statistics = snapshot.statistics
        session.events = list(snapshot.events)
        return session
