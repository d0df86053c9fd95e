# finalizer.py
# Optional terminal step: turn the full result log into a summary message.
# Best-effort: a failure here only leaves the summary absent.

import json

from mcp_loop import display
from mcp_loop.context import ContextStore
from mcp_loop.models import ActionResult, PlannedAction
from mcp_loop.registry import ToolRegistry


def finalize(
    registry: ToolRegistry,
    finalize_tool_id: str,
    plan: list[PlannedAction],
    results: list[ActionResult],
    context: ContextStore,
) -> str | None:
    """
    Run the reserved summary tool when it is registered and was planned.
    Returns its output as text, or None.
    """
    tool = registry.get(finalize_tool_id)
    if tool is None or not any(step.tool == finalize_tool_id for step in plan):
        return None

    payload = context.execution_input(
        {
            "intermediate_results": [r.model_dump() for r in results],
            "plan": [step.model_dump() for step in plan],
        }
    )
    try:
        summary = tool.run(payload)
        text = summary if isinstance(summary, str) else json.dumps(summary, default=str)
    except Exception as exc:
        display.warning("Summary generation failed", f"{type(exc).__name__}: {exc}")
        return None

    display.final_summary(text)
    return text
