"""Agent memory end-to-end demo.

Walks one conversation through the full stack:
1. Session log records user, tool and agent events
2. Default pipeline compiles a working context (memory, artifacts, budget)
3. Working context rendered as a chat-completions and a responses payload
4. Response pipeline folds the reply back into the session
5. Session serialized and restored

Uses canned responses -- no real LLM needed.

Run: python examples/conversation_pipeline.py
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

MISTRAL = "@cf/mistralai/mistral-small-3.1-24b-instruct"

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from agent_memory import (
    AgentIdentity,
    ContextWindowConfig,
    DefaultPipelineOptions,
    InMemoryArtifactStore,
    InMemoryBackend,
    Session,
    SystemInstructionEvent,
    TelemetryConfig,
    ToolCallEvent,
    ToolResultEvent,
    UserMessageEvent,
    configure_tracing,
    create_default_pipeline,
)


def _check(condition: bool, msg: str) -> None:  # noqa: FBT001
    """Raise RuntimeError if *condition* is False (demo validation)."""
    if not condition:
        raise RuntimeError(msg)


async def run_demo() -> None:
    print("=" * 60)
    print("Agent Memory Demo")
    print("=" * 60)

    configure_tracing(TelemetryConfig(exporter="none"))

    # ------------------------------------------------------------------
    # Step 1: Record a conversation
    # ------------------------------------------------------------------
    print("\n[1/5] Recording session events...")
    session = Session("travel-agent")
    session.add_events(
        SystemInstructionEvent(instruction="Answer in one short paragraph.", is_static=True),
        UserMessageEvent(content="How long is the drive from Lyon to Geneva?"),
        ToolCallEvent(
            tool_name="route_planner",
            arguments={"from": "Lyon", "to": "Geneva"},
            tool_call_id="call-1",
        ),
        ToolResultEvent(
            tool_call_id="call-1",
            tool_name="route_planner",
            result={"distance_km": 150, "duration_min": 105},
            is_success=True,
        ),
    )
    print(f"  Session : {session.session_id}")
    print(f"  Events  : {session.statistics.total_events}")

    # ------------------------------------------------------------------
    # Step 2: Compile the working context
    # ------------------------------------------------------------------
    print("\n[2/5] Compiling working context...")
    memory = InMemoryBackend()
    memory.store("vehicle", "The user drives an electric car and needs charging stops")
    artifacts = InMemoryArtifactStore()
    artifacts.put(session.session_id, "route.gpx", "gpx", "<gpx>" + "<trkpt/>" * 500 + "</gpx>")

    window = ContextWindowConfig.from_max_tokens(2000, reserved_for_response=500)
    pipeline = create_default_pipeline(
        DefaultPipelineOptions(
            system_instructions=["You are a travel assistant."],
            agent_identity=AgentIdentity(
                name="Atlas", role="travel planner", capabilities=["route_planner"]
            ),
            memory_service=memory,
            artifact_store=artifacts,
            context_window_config=window,
            enable_caching=True,
            record_responses=True,
        )
    )
    ctx = await pipeline.execute_request_pipeline(session)
    print(f"  Processors : {', '.join(pipeline.request_processor_names)}")
    print(f"  Contents   : {len(ctx.contents)}")
    print(f"  Memory     : {ctx.memory_results}")
    print(f"  Tokens     : {ctx.estimate_token_count()} / {window.available_for_history}")
    _check(ctx.fits_within_limit(window), "Context should fit the history budget")

    # ------------------------------------------------------------------
    # Step 3: Render model payloads
    # ------------------------------------------------------------------
    print("\n[3/5] Rendering model payloads...")
    chat = ctx.to_model_format(model=MISTRAL)
    responses = ctx.to_model_format(format="responses")
    print(f"  Chat roles      : {[m['role'] for m in chat['messages']]}")
    print(f"  Responses input : {len(responses['input'])} items")
    print("\n  System prompt:")
    for line in chat["messages"][0]["content"].splitlines():
        print(f"    {line}")
    _check("tool" not in [m["role"] for m in chat["messages"]], "mistral-small has no tool role")

    # ------------------------------------------------------------------
    # Step 4: Fold the reply back into the session
    # ------------------------------------------------------------------
    print("\n[4/5] Running response pipeline...")
    reply = {
        "content": "About 1h45 for 150 km; one charging stop near Bellegarde is enough.",
        "model": MISTRAL,
        "metadata": {"responseTimeMs": 640, "tokensUsed": 42},
    }
    await pipeline.execute_response_pipeline(session, reply, ctx)
    stats = session.statistics
    print(f"  Agent messages : {stats.total_agent_messages}")
    print(f"  Avg latency ms : {stats.average_response_time_ms}")
    print(f"  Tokens used    : {stats.total_tokens_used}")
    _check(stats.total_agent_messages == 1, "Reply should be recorded")

    # ------------------------------------------------------------------
    # Step 5: Persist and restore
    # ------------------------------------------------------------------
    print("\n[5/5] Serializing session...")
    blob = session.serialize()
    restored = Session.deserialize(blob)
    print(f"  Snapshot bytes : {len(blob)}")
    print(f"  Turns          : {len(restored.get_conversation_turns())}")
    print(f"  Statistics     : {json.dumps(restored.statistics.model_dump(by_alias=True))}")
    _check(restored.statistics == session.statistics, "Statistics should survive round trip")

    print("\n" + "=" * 60)
    print("Demo complete.")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(run_demo())
