# tools.py
# Built-in tools. The loop only ever reaches these through a ToolRegistry;
# nothing here is called directly.

import json

from pydantic import BaseModel, Field

from mcp_loop.config import FINALIZE_TOOL_ID
from mcp_loop.interfaces import ModelInvoker
from mcp_loop.models import ModelOptions, ModelPrompt, Tool

SUMMARY_LIMIT = 4000

SYNTHESIS_PROMPT = """\
You write the closing message of an assistant turn. You are given the user's \
latest message and the log of tool steps that ran for it. Answer the user \
directly from the step results. Mention failed steps briefly; never invent \
results that are not in the log.\
"""


class EchoArgs(BaseModel):
    message: str = Field(..., description="Text to send back unchanged.")


class SummarizeArgs(BaseModel):
    text: str = Field(..., min_length=1, description="Text to condense.")


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


def _tool_echo(args: dict) -> str:
    return args.get("message", "")


def _tool_summarize(args: dict) -> str:
    text = args.get("text", "").strip()
    if not text:
        return "Error: no text provided."
    return text[:SUMMARY_LIMIT] if len(text) > SUMMARY_LIMIT else text


def _format_results(results: list[dict]) -> str:
    """Render intermediate results as a structured string for synthesis."""
    lines: list[str] = []
    for index, result in enumerate(results, start=1):
        status = "reused" if result.get("reused") else ("ok" if result.get("success") else "failed")
        lines.append(f"-- Step {index}: {result.get('tool')}")
        lines.append(f"   Args:   {json.dumps(result.get('input') or {}, default=str)}")
        lines.append(f"   Status: {status}")
        if result.get("success"):
            lines.append(f"   Output: {json.dumps(result.get('output'), default=str)}")
        else:
            lines.append(f"   Error:  {result.get('error')}")
    return "\n".join(lines)


def make_finalize_summary_tool(
    model: ModelInvoker | None = None,
    model_name: str = "anthropic/claude-3.5-haiku",
) -> Tool:
    """
    The reserved summary tool. Without a model it returns the formatted
    step log; with one it asks the model to synthesize a reply from it.
    """

    def _tool_finalize(args: dict) -> str:
        # Earlier steps are summarized; this step's own entry is not.
        results = [r for r in args.get("intermediate_results", []) if r.get("tool") != FINALIZE_TOOL_ID]
        log = _format_results(results) or "No steps ran."
        if model is None:
            return log

        user = f"User message: {args.get('latest_message') or ''}\n\nStep log:\n{log}"
        reply = model.invoke(
            ModelPrompt(
                system=SYNTHESIS_PROMPT,
                user=user,
                messages=[
                    {"role": "system", "content": SYNTHESIS_PROMPT},
                    {"role": "user", "content": user},
                ],
            ),
            ModelOptions(model=model_name, temperature=0.2),
        )
        if not reply.success or not reply.output:
            raise RuntimeError(f"Summary synthesis failed: {reply.error or 'empty output'}")
        return reply.output

    return Tool(
        id=FINALIZE_TOOL_ID,
        title="Finalize summary",
        description="Write the closing message for the user from the results of earlier steps. "
        "Place it last in the plan.",
        tags=("summary",),
        uses_ai=model is not None,
        run=_tool_finalize,
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def builtin_tools(model: ModelInvoker | None = None, model_name: str = "anthropic/claude-3.5-haiku") -> list[Tool]:
    return [
        Tool(
            id="echo",
            title="Echo",
            description="Repeat a message back to the user verbatim.",
            required_args=("message",),
            args_schema=EchoArgs,
            default_args=lambda context: {"message": context.get("latest_message") or ""},
            tags=("utility",),
            run=_tool_echo,
        ),
        Tool(
            id="summarize",
            title="Summarize",
            description=f"Condense a block of text to at most {SUMMARY_LIMIT} characters.",
            required_args=("text",),
            args_schema=SummarizeArgs,
            recommended_before=(FINALIZE_TOOL_ID,),
            tags=("text",),
            run=_tool_summarize,
        ),
        make_finalize_summary_tool(model, model_name),
    ]
