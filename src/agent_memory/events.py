"""Event model — immutable, tagged records of agent interactions.

Events are the atomic units of a :class:`~agent_memory.session.Session`.
Every variant carries an ``action`` discriminator, so a serialized event can
be parsed back into the right model without any out-of-band type info.
"""

from __future__ import annotations

import time
import uuid
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class EventAction(StrEnum):
    """Closed set of interaction kinds recorded in a session."""

    USER_MESSAGE = "user_message"
    AGENT_MESSAGE = "agent_message"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    CONTROL_SIGNAL = "control_signal"
    COMPACTION = "compaction"
    AGENT_TRANSFER = "agent_transfer"
    SYSTEM_INSTRUCTION = "system_instruction"


class CompactionStrategy(StrEnum):
    SLIDING_WINDOW = "sliding_window"
    SEMANTIC = "semantic"
    TIME_BASED = "time_based"


class SignalType(StrEnum):
    RESET = "reset"
    HANDOFF = "handoff"
    PAUSE = "pause"
    RESUME = "resume"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_event_id() -> str:
    """Generate a time-prefixed, process-unique event id."""
    return f"event_{now_ms()}_{uuid.uuid4().hex[:9]}"


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------


class BaseEvent(BaseModel):
    """Fields shared by every event. Instances are write-once."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(default_factory=generate_event_id)
    timestamp: int = Field(default_factory=now_ms)
    metadata: dict[str, Any] | None = None


class UserMessageEvent(BaseEvent):
    action: Literal["user_message"] = "user_message"
    content: str
    custom_params: dict[str, Any] | None = None


class AgentMessageEvent(BaseEvent):
    action: Literal["agent_message"] = "agent_message"
    content: str
    agent_id: str
    model_used: str | None = None
    tokens_used: int | None = None
    gateway_log_id: str | None = None
    custom_params: dict[str, Any] | None = None


class ToolCallEvent(BaseEvent):
    action: Literal["tool_call"] = "tool_call"
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    tool_call_id: str
    server_id: str | None = None
    custom_params: dict[str, Any] | None = None


class ToolResultEvent(BaseEvent):
    action: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    tool_name: str
    result: str | dict[str, Any] | list[Any]
    is_success: bool
    execution_time_ms: float | None = None
    custom_params: dict[str, Any] | None = None


class ErrorEvent(BaseEvent):
    action: Literal["error"] = "error"
    error_type: str
    error_message: str
    error_stack: str | None = None
    recoverable: bool


class ControlSignalEvent(BaseEvent):
    """Context reset, agent handoff, pause or resume."""

    action: Literal["control_signal"] = "control_signal"
    signal_type: SignalType
    payload: dict[str, Any] | None = None


class CompactionEvent(BaseEvent):
    """Summary standing in for a range of earlier events.

    ``compacted_event_ids`` must reference events already in the session;
    the originals stay in the log and are only hidden from the working view.
    """

    action: Literal["compaction"] = "compaction"
    summary: str
    compacted_event_ids: list[str]
    compaction_strategy: CompactionStrategy
    original_token_count: int | None = None
    compacted_token_count: int | None = None
    custom_params: dict[str, Any] | None = None


class AgentTransferEvent(BaseEvent):
    action: Literal["agent_transfer"] = "agent_transfer"
    from_agent: str
    to_agent: str
    transfer_reason: str
    scoped_context: list[str] | None = None


class SystemInstructionEvent(BaseEvent):
    action: Literal["system_instruction"] = "system_instruction"
    instruction: str
    is_static: bool
    custom_params: dict[str, Any] | None = None


Event = Annotated[
    UserMessageEvent
    | AgentMessageEvent
    | ToolCallEvent
    | ToolResultEvent
    | ErrorEvent
    | ControlSignalEvent
    | CompactionEvent
    | AgentTransferEvent
    | SystemInstructionEvent,
    Field(discriminator="action"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(data: dict[str, Any]) -> Event:
    """Validate one tagged event object (camelCase or snake_case keys).

    Raises:
        pydantic.ValidationError: If ``action`` is unknown or fields do not
            match the variant.
    """
    return _EVENT_ADAPTER.validate_python(data)


def dump_event(event: BaseEvent) -> dict[str, Any]:
    """JSON-compatible camelCase dict of *event*, unset optionals omitted."""
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)
