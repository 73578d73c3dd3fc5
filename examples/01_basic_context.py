"""
Example 01: Basic Context
=========================

Demonstrates the simplest end-to-end usage of ContextManager:
- Creating a session record and its context
- Appending turns in a loop
- Watching compaction kick in once the budget threshold is crossed
- Inspecting usage and the stored summary

Run without an API key:
    CONTEXTBOUND_MOCK_LLM=1 uv run python examples/01_basic_context.py

Run with a real LLM (set your API key first):
    GEMINI_API_KEY=... uv run python examples/01_basic_context.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from contextbound import (
        ContextConfig,
        ContextEvent,
        ContextManager,
        ContextManagerConfig,
        OwnerRef,
        new_turn,
    )

    print("=== contextbound Basic Context Example ===\n")

    # A tiny budget so compaction triggers within a few turns
    config = ContextManagerConfig(
        context=ContextConfig(max_tokens=400, recency_window_size=4),
    )

    async with ContextManager.open(
        config=config, db_path="/tmp/contextbound_example_01.db"
    ) as manager:
        manager.subscribe(
            ContextEvent.COMPACTION_COMPLETED,
            lambda event, payload: print(
                f"  *** Compacted {payload['compacted_turn_count']} turns: "
                f"{payload['tokens_before']} -> {payload['tokens_after']} tokens ***"
            ),
        )

        session_id = "sess_example_01"
        if await manager.store.get_owner_record(OwnerRef.session(session_id)) is None:
            await manager.store.create_session(session_id, title="Example chat")
        context = await manager.get_or_create(OwnerRef.session(session_id))
        await manager.reset(context.id)
        print(f"Context: {context.id} (budget {context.max_tokens} tokens)\n")

        exchanges = [
            ("What is Python's GIL?", "A mutex that lets one thread execute bytecode at a time."),
            ("How does asyncio work?", "An event loop multiplexes coroutines over non-blocking I/O."),
            ("async/await vs threads?", "Coroutines switch cooperatively; threads are preempted."),
            ("When to use multiprocessing?", "For CPU-bound work that must escape the GIL."),
            ("Show an asyncio example.", "asyncio.run(main()) with await asyncio.sleep(1) inside."),
        ]

        for i, (question, answer) in enumerate(exchanges, 1):
            for role, text in (("user", question), ("assistant", answer * 4)):
                result = await manager.append_turn(context.id, new_turn(role, text))
                usage = result.usage
                print(
                    f"Turn {i} {role:<9} +{result.turn.token_count:>3} tokens "
                    f"-> {usage.total_tokens}/{usage.max_tokens} ({usage.percentage_used:.0f}%)"
                )
                for warning in result.warnings:
                    print(f"  ! {warning}")

        summary = await manager.context_summary(context.id)
        print(f"\nTurns in context: {summary.total_turns}")
        if summary.has_summary:
            print(f"Summary:\n{summary.summary}")

    print("\nManager closed cleanly.")


if __name__ == "__main__":
    asyncio.run(main())
