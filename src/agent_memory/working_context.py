"""WorkingContext — ephemeral, compiled view of a Session, ready for LLM consumption.

Built fresh for every model invocation by the request pipeline and discarded
afterwards. Nothing in here is persisted.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .events import now_ms
from .token_budget import CHARS_PER_TOKEN, compact_json, estimate_tokens

# Models configured to receive tool output as "assistant" messages because
# they reject a dedicated "tool" role. Models absent from the table support it.
TOOL_ROLE_SUPPORT: dict[str, bool] = {
    "@cf/mistralai/mistral-small-3.1-24b-instruct": False,
}

SUPPORTED_MODEL_TYPES = frozenset({"workers-ai"})

REASONING_OPTIONS: dict[str, str] = {"effort": "medium", "summary": "concise"}


class UnsupportedModelTypeError(ValueError):
    """Raised when a context is formatted for an unknown model type."""

    def __init__(self, model_type: str) -> None:
        self.model_type = model_type
        super().__init__(f"Unsupported model type: {model_type}")


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class ContentRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Content(BaseModel):
    """Role-tagged message fragment."""

    role: ContentRole
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    metadata: dict[str, Any] | None = None


class AgentIdentity(BaseModel):
    name: str
    role: str
    capabilities: list[str] = Field(default_factory=list)


class ArtifactReference(BaseModel):
    """Pointer to an externally stored artifact, summarized for the model."""

    id: str
    name: str
    type: str
    summary: str


class WorkingContextMetadata(BaseModel):
    session_id: str
    total_events: int = 0
    compacted_events: int = 0
    window_size: int = 0
    created_at: int = Field(default_factory=now_ms)
    cache_enabled: bool = False
    cacheable_prefix: int | None = None


class ContextWindowConfig(BaseModel):
    """Token budget of one model invocation."""

    max_tokens: int
    reserved_for_response: int = 0
    reserved_for_tools: int = 0
    available_for_history: int

    @model_validator(mode="after")
    def _check_budget(self) -> ContextWindowConfig:
        if self.available_for_history < 0:
            msg = "available_for_history must not be negative"
            raise ValueError(msg)
        return self

    @classmethod
    def from_max_tokens(
        cls,
        max_tokens: int,
        reserved_for_response: int = 0,
        reserved_for_tools: int = 0,
    ) -> ContextWindowConfig:
        """Derive ``available_for_history`` from the model window and reservations."""
        return cls(
            max_tokens=max_tokens,
            reserved_for_response=reserved_for_response,
            reserved_for_tools=reserved_for_tools,
            available_for_history=max_tokens - reserved_for_response - reserved_for_tools,
        )


# ---------------------------------------------------------------------------
# WorkingContext
# ---------------------------------------------------------------------------


class WorkingContext:
    """Mutable builder for the context of a single LLM call.

    Every ``add_*``/``set_*`` method returns the context so calls can be
    chained::

        ctx.add_system_instruction("Be brief.").add_content(Content(...))
    """

    def __init__(self, session_id: str) -> None:
        self.system_instructions: list[str] = []
        self.agent_identity: AgentIdentity | None = None
        self.contents: list[Content] = []
        self.memory_results: list[str] = []
        self.artifact_references: list[ArtifactReference] = []
        self.metadata = WorkingContextMetadata(session_id=session_id)

    # -- builder -------------------------------------------------------------

    def add_system_instruction(self, instruction: str) -> WorkingContext:
        self.system_instructions.append(instruction)
        return self

    def set_agent_identity(self, identity: AgentIdentity) -> WorkingContext:
        self.agent_identity = identity
        return self

    def add_content(self, content: Content) -> WorkingContext:
        self.contents.append(content)
        return self

    def add_contents(self, contents: Iterable[Content]) -> WorkingContext:
        self.contents.extend(contents)
        return self

    def add_memory_results(self, results: Iterable[str]) -> WorkingContext:
        self.memory_results.extend(results)
        return self

    def add_artifact_reference(self, reference: ArtifactReference) -> WorkingContext:
        self.artifact_references.append(reference)
        return self

    # -- token budget --------------------------------------------------------

    def _identity_json(self) -> str:
        if self.agent_identity is None:
            return ""
        return compact_json(self.agent_identity.model_dump())

    def estimate_token_count(self) -> int:
        """Rough estimate of the whole context: total characters / 4, rounded up."""
        total_chars = len("\n".join(self.system_instructions))
        total_chars += len(self._identity_json())
        total_chars += sum(len(c.content) for c in self.contents)
        if self.memory_results:
            total_chars += len("\n".join(self.memory_results))
        if self.artifact_references:
            total_chars += len(compact_json([a.model_dump() for a in self.artifact_references]))
        return math.ceil(total_chars / CHARS_PER_TOKEN)

    def fits_within_limit(self, config: ContextWindowConfig) -> bool:
        return self.estimate_token_count() <= config.available_for_history

    def overflow(self, config: ContextWindowConfig) -> int:
        return max(0, self.estimate_token_count() - config.available_for_history)

    def truncate_to_fit(self, config: ContextWindowConfig) -> WorkingContext:
        """Drop the oldest contents until the rest fits the history budget.

        System instructions and identity are always kept. The retained
        contents are the longest contiguous suffix that fits; an older item is
        never kept once a newer one was dropped.
        """
        if self.estimate_token_count() <= config.available_for_history:
            return self

        system_tokens = (
            len("\n".join(self.system_instructions)) + len(self._identity_json())
        ) / CHARS_PER_TOKEN
        available_for_contents = config.available_for_history - system_tokens

        kept: list[Content] = []
        used = 0
        for content in reversed(self.contents):
            cost = estimate_tokens(content.content)
            if used + cost > available_for_contents:
                break
            kept.append(content)
            used += cost
        kept.reverse()

        self.contents = kept
        self.metadata.window_size = len(kept)
        return self

    # -- model formatting ----------------------------------------------------

    def system_text(self) -> str:
        """Synthesize the system prompt from instructions, identity, memory and artifacts."""
        sections: list[str] = []
        if self.system_instructions:
            sections.append("\n\n".join(self.system_instructions))
        if self.agent_identity is not None:
            identity = self.agent_identity
            sections.append(
                "Agent Identity:\n"
                f"Name: {identity.name}\n"
                f"Role: {identity.role}\n"
                f"Capabilities: {', '.join(identity.capabilities)}"
            )
        if self.memory_results:
            sections.append("Relevant Memory:\n" + "\n\n".join(self.memory_results))
        if self.artifact_references:
            lines = [f"- {a.name} ({a.type}): {a.summary}" for a in self.artifact_references]
            sections.append("Available Artifacts:\n" + "\n".join(lines))
        return "\n\n".join(sections)

    def to_model_format(
        self,
        model_type: str = "workers-ai",
        *,
        format: str = "chat_completions",  # noqa: A002
        model: str | None = None,
        tool_role_support: Mapping[str, bool] | None = None,
    ) -> dict[str, Any]:
        """Convert the context into a provider payload.

        ``format="responses"`` yields ``{instructions, input, reasoning}``;
        any other format yields ``{messages}`` (chat-completions style).

        Raises:
            UnsupportedModelTypeError: If *model_type* is not supported.
        """
        if model_type not in SUPPORTED_MODEL_TYPES:
            raise UnsupportedModelTypeError(model_type)

        if format == "responses":
            return self._to_responses_format()

        support = TOOL_ROLE_SUPPORT if tool_role_support is None else tool_role_support
        supports_tool_role = support.get(model, True) if model else True
        return self._to_chat_format(supports_tool_role)

    def _to_responses_format(self) -> dict[str, Any]:
        items: list[dict[str, Any]] = []
        for content in self.contents:
            if content.role == ContentRole.TOOL:
                items.append({
                    "type": "function_call_output",
                    "call_id": content.tool_call_id,
                    "output": content.content,
                })
                continue
            item: dict[str, Any] = {"role": content.role.value, "content": content.content}
            if content.name:
                item["name"] = content.name
            items.append(item)

        return {
            "instructions": self.system_text(),
            "input": items,
            "reasoning": dict(REASONING_OPTIONS),
        }

    def _to_chat_format(self, supports_tool_role: bool) -> dict[str, Any]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": self.system_text()}]
        for content in self.contents:
            if content.role == ContentRole.TOOL:
                if not supports_tool_role:
                    messages.append({"role": "assistant", "content": content.content})
                    continue
                msg: dict[str, Any] = {"role": "tool", "content": content.content}
                if content.tool_call_id:
                    msg["tool_call_id"] = content.tool_call_id
                messages.append(msg)
                continue

            msg = {"role": content.role.value, "content": content.content}
            if content.name:
                msg["name"] = content.name
            if content.tool_call_id:
                msg["tool_call_id"] = content.tool_call_id
            messages.append(msg)
        return {"messages": messages}
