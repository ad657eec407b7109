"""Tests for WorkingContext."""

import pytest

from agent_memory.working_context import (
    AgentIdentity,
    ArtifactReference,
    Content,
    ContextWindowConfig,
    UnsupportedModelTypeError,
    WorkingContext,
)

MISTRAL = "@cf/mistralai/mistral-small-3.1-24b-instruct"


def _window(available: int) -> ContextWindowConfig:
    return ContextWindowConfig(max_tokens=available, available_for_history=available)


def _tool_context() -> WorkingContext:
    ctx = WorkingContext("s1")
    ctx.add_system_instruction("Be brief.")
    ctx.add_contents([
        Content(role="user", content="weather?"),
        Content(role="assistant", content="Tool call: weather", name="planner"),
        Content(role="tool", content="sunny", name="weather", tool_call_id="c1"),
    ])
    return ctx


def test_builder_methods_chain():
    ctx = WorkingContext("s1")
    result = (
        ctx.add_system_instruction("a")
        .set_agent_identity(AgentIdentity(name="Ada", role="helper", capabilities=["math"]))
        .add_content(Content(role="user", content="hi"))
        .add_memory_results(["m1", "m2"])
        .add_artifact_reference(ArtifactReference(id="1", name="f", type="csv", summary="data"))
    )
    assert result is ctx
    assert ctx.metadata.session_id == "s1"
    assert ctx.system_instructions == ["a"]
    assert ctx.agent_identity.name == "Ada"
    assert len(ctx.contents) == 1
    assert ctx.memory_results == ["m1", "m2"]
    assert len(ctx.artifact_references) == 1


def test_estimate_single_instruction():
    ctx = WorkingContext("s1").add_system_instruction("x" * 40)
    assert ctx.estimate_token_count() == 10


def test_estimate_counts_every_section():
    ctx = WorkingContext("s1")
    ctx.add_system_instruction("ab").add_system_instruction("cd")  # "ab\ncd" = 5
    ctx.add_content(Content(role="user", content="x" * 10))  # 10
    ctx.add_memory_results(["m", "n"])  # "m\nn" = 3
    identity = AgentIdentity(name="A", role="r", capabilities=[])
    ctx.set_agent_identity(identity)  # {"name":"A","role":"r","capabilities":[]} = 41
    total = 5 + 10 + 3 + 41
    assert ctx.estimate_token_count() == -(-total // 4)


def test_fits_within_limit_and_overflow():
    ctx = WorkingContext("s1").add_content(Content(role="user", content="x" * 40))
    assert ctx.fits_within_limit(_window(10))
    assert not ctx.fits_within_limit(_window(9))
    assert ctx.overflow(_window(6)) == 4
    assert ctx.overflow(_window(100)) == 0


def test_truncate_noop_when_within_budget():
    ctx = WorkingContext("s1").add_content(Content(role="user", content="hello"))
    ctx.truncate_to_fit(_window(100))
    assert len(ctx.contents) == 1
    assert ctx.metadata.window_size == 0


def test_truncate_keeps_contiguous_recent_suffix():
    ctx = WorkingContext("s1")
    ctx.add_system_instruction("x" * 8)  # 2 tokens
    ctx.add_contents([
        Content(role="user", content="a" * 4),  # 1 token, would fit but is older
        Content(role="assistant", content="b" * 40),  # 10 tokens, does not fit
        Content(role="user", content="c" * 12),  # 3 tokens
        Content(role="assistant", content="d" * 16),  # 4 tokens
    ])
    ctx.truncate_to_fit(_window(10))
    assert [c.content[0] for c in ctx.contents] == ["c", "d"]
    assert ctx.metadata.window_size == 2


def test_truncate_is_idempotent():
    ctx = WorkingContext("s1")
    for i in range(10):
        ctx.add_content(Content(role="user", content=str(i) * 20))
    config = _window(17)
    ctx.truncate_to_fit(config)
    once = list(ctx.contents)
    ctx.truncate_to_fit(config)
    assert ctx.contents == once
    assert len(once) == 3


def test_window_config_from_max_tokens():
    cfg = ContextWindowConfig.from_max_tokens(8000, reserved_for_response=1000, reserved_for_tools=500)
    assert cfg.available_for_history == 6500
    with pytest.raises(ValueError):
        ContextWindowConfig.from_max_tokens(100, reserved_for_response=200)


def test_chat_format_synthesizes_system_message():
    ctx = WorkingContext("s1")
    ctx.add_system_instruction("Rule one.").add_system_instruction("Rule two.")
    ctx.set_agent_identity(AgentIdentity(name="Ada", role="analyst", capabilities=["sql", "csv"]))
    ctx.add_memory_results(["likes tea"])
    ctx.add_artifact_reference(ArtifactReference(id="1", name="q3.csv", type="csv", summary="sales"))

    messages = ctx.to_model_format()["messages"]
    assert messages[0] == {
        "role": "system",
        "content": (
            "Rule one.\n\nRule two.\n\n"
            "Agent Identity:\nName: Ada\nRole: analyst\nCapabilities: sql, csv\n\n"
            "Relevant Memory:\nlikes tea\n\n"
            "Available Artifacts:\n- q3.csv (csv): sales"
        ),
    }


def test_chat_format_keeps_tool_role_by_default():
    messages = _tool_context().to_model_format(format="chat_completions")["messages"]
    assert messages[1] == {"role": "user", "content": "weather?"}
    assert messages[2] == {"role": "assistant", "content": "Tool call: weather", "name": "planner"}
    assert messages[3] == {"role": "tool", "content": "sunny", "tool_call_id": "c1"}


def test_chat_format_remaps_tool_role_for_configured_models():
    messages = _tool_context().to_model_format(model=MISTRAL)["messages"]
    assert messages[3] == {"role": "assistant", "content": "sunny"}


def test_chat_format_uses_explicit_capability_table():
    ctx = _tool_context()
    messages = ctx.to_model_format(model="my-model", tool_role_support={"my-model": False})
    assert messages["messages"][3]["role"] == "assistant"
    # A custom table replaces the built-in one
    messages = ctx.to_model_format(model=MISTRAL, tool_role_support={})
    assert messages["messages"][3]["role"] == "tool"


def test_unknown_format_falls_back_to_chat():
    out = _tool_context().to_model_format(format="native")
    assert set(out) == {"messages"}


def test_responses_format():
    out = _tool_context().to_model_format(format="responses")
    assert out["instructions"] == "Be brief."
    assert out["reasoning"] == {"effort": "medium", "summary": "concise"}
    assert out["input"] == [
        {"role": "user", "content": "weather?"},
        {"role": "assistant", "content": "Tool call: weather", "name": "planner"},
        {"type": "function_call_output", "call_id": "c1", "output": "sunny"},
    ]


def test_unsupported_model_type_raises():
    with pytest.raises(UnsupportedModelTypeError, match="Unsupported model type: openai"):
        _tool_context().to_model_format("openai")
