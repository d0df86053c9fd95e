# planner.py
# Planner — turns (context, tool catalog) into an ordered, resolvable plan.
#
# The model's output is untrusted data: it is only ever JSON-parsed, its
# shape is checked, every tool id is resolved against the registry and the
# hard planning rules are enforced mechanically before a single step runs.
# Planning is all-or-nothing; any failure raises a PlanningError.

import json
import re
from typing import Any

from pydantic import ValidationError

from mcp_loop import display
from mcp_loop.config import LoopConfig
from mcp_loop.context import ContextStore
from mcp_loop.exceptions import (
    PlanningError,
    PlanParseError,
    PlanValidationError,
    UnknownToolError,
)
from mcp_loop.interfaces import ModelInvoker
from mcp_loop.models import ModelOptions, ModelPrompt, PlannedAction, Tool
from mcp_loop.registry import ToolRegistry


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

PLANNER_SYSTEM_PROMPT = """\
You are a structured planning agent. Solve the user's request by selecting \
and sequencing tools from the catalog below.

{mode_notice}

{pathways}

Tool argument schemas (JSON):
{catalog}

HARD RULES:
1. Include a tool only if every one of its Required Inputs is known from the \
context, or is produced by a tool placed earlier in the plan.
2. Every Required Prerequisite of a tool must already have run in this \
session (see "Completed tools") or appear EARLIER in the same plan.
3. Recommended After / Recommended Before are soft hints: follow them when \
they help, they never block a tool.
4. Use at most {max_steps} steps.
5. If a required argument is unknown, leave that tool out.

OUTPUT CONTRACT:
Respond with ONLY a JSON array — no prose, no markdown, no code fences:
[
  {{"tool": "tool_id", "args": {{"key": "value"}}, "reason": "why this step", \
"announcement": "short progress message for the user"}}
]
An empty array [] means no tool is needed.\
"""

DISCOVERY_NOTICE = """\
DISCOVERY MODE: no profile or role is known for this request. Tools that \
need a profile_id or role_id have been removed from the catalog; use only \
the exploratory tools listed.\
"""

IDENTIFIED_NOTICE = "Identifying context is available; every catalog tool is eligible."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json … ``` fence if the model added one."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = re.sub(r"^```[a-zA-Z]*\s*", "", stripped)
        stripped = re.sub(r"\s*```$", "", stripped)
    return stripped.strip()


def parse_plan_output(text: str) -> list[dict[str, Any]]:
    """
    Parse raw model output into a list of step objects.
    Raises PlanParseError on anything but a JSON array of objects.
    """
    try:
        data = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"Plan output is not valid JSON: {exc}", details=text[:500]) from exc

    if not isinstance(data, list):
        raise PlanParseError(
            f"Plan must be a JSON array, got {type(data).__name__}.", details=text[:500]
        )
    for index, element in enumerate(data):
        if not isinstance(element, dict):
            raise PlanParseError(f"Plan step {index} is not an object.", details=element)
        if not isinstance(element.get("tool"), str) or not element["tool"].strip():
            raise PlanParseError(f"Plan step {index} has no 'tool' field.", details=element)
    return data


def _eligible_tools(registry: ToolRegistry, context: ContextStore) -> list[Tool]:
    if context.discovery_mode:
        return [t for t in registry.list() if not t.requires_identity]
    return registry.list()


def check_plan_rules(
    plan: list[PlannedAction],
    registry: ToolRegistry,
    context: ContextStore,
    enforce_prerequisites: bool = True,
) -> None:
    """
    Enforce the hard planning rules the prompt states.
    Raises PlanValidationError naming the first offending step.
    """
    done = context.completed_tools()
    for index, step in enumerate(plan):
        tool = registry.get(step.tool)
        if tool is None:
            raise UnknownToolError(f"Unknown tool: {step.tool}", details={"step": index})

        if context.discovery_mode and tool.requires_identity:
            raise PlanValidationError(
                f"Step {index} uses {tool.id}, which needs a profile or role; "
                "none is known (discovery mode).",
                details={"step": index, "tool": tool.id},
            )

        if enforce_prerequisites:
            missing = [p for p in tool.required_prerequisites if p not in done]
            if missing:
                raise PlanValidationError(
                    f"Step {index} ({tool.id}) runs before its prerequisite(s): {', '.join(missing)}",
                    details={"step": index, "tool": tool.id, "missing": missing},
                )
        done.add(tool.id)


def rule_based_plan(context: ContextStore, registry: ToolRegistry, max_steps: int) -> list[PlannedAction]:
    """
    Deterministic plan without a model: every tool whose required inputs are
    present and whose prerequisites are satisfied, in registration order.
    """
    done = context.completed_tools()
    plan: list[PlannedAction] = []
    for tool in _eligible_tools(registry, context):
        if len(plan) >= max_steps:
            break
        if tool.id in done:
            continue
        if any(context.get(key) is None for key in tool.required_inputs):
            continue
        if any(p not in done for p in tool.required_prerequisites):
            continue
        plan.append(PlannedAction(tool=tool.id, reason="Rule-based selection: all inputs available."))
        done.add(tool.id)
    return plan


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------


class Planner:
    """
    Model-backed planner.

    Example:
        planner = Planner(registry, model, LoopConfig())
        plan = planner.plan(context)
    """

    def __init__(self, registry: ToolRegistry, model: ModelInvoker, config: LoopConfig | None = None) -> None:
        self._registry = registry
        self._model = model
        self._config = config or LoopConfig()

    # ------------------------------------------------------------------
    # Prompt construction
    # ------------------------------------------------------------------

    def build_system_prompt(self, context: ContextStore) -> str:
        tools = _eligible_tools(self._registry, context)
        return PLANNER_SYSTEM_PROMPT.format(
            mode_notice=DISCOVERY_NOTICE if context.discovery_mode else IDENTIFIED_NOTICE,
            pathways=self._registry.describe_pathways(tools),
            catalog=self._registry.to_prompt_json(tools),
            max_steps=self._config.max_plan_steps,
        )

    def build_user_message(self, context: ContextStore) -> str:
        focus = context.get("focus") or context.get("current_focus")
        completed = sorted(context.completed_tools())
        lines = [
            "Context:",
            f"- Requested mode: {context.get('mode') or 'general'}",
            f"- Session ID: {context.session_id or 'Not provided'}",
            f"- Profile ID: {context.profile_id or 'Not provided'}",
            f"- Role ID: {context.role_id or 'Not provided'}",
            f"- Current focus: {focus or 'None'}",
            f"- Completed tools: {', '.join(completed) or 'None'}",
        ]
        if context.get("summary"):
            lines.append(f"- Conversation summary: {context['summary']}")
        lines.append(f"- User message: {context.latest_message or 'No message provided'}")
        lines.append("")
        lines.append("Return the JSON array plan now.")
        return "\n".join(lines)

    def _session_context(self, context: ContextStore) -> dict[str, Any]:
        if context.profile_id:
            return {"entity_type": "profile", "entity_id": context.profile_id}
        if context.role_id:
            return {"entity_type": "role", "entity_id": context.role_id}
        if context.session_id:
            return {"entity_type": "chat", "entity_id": context.session_id}
        return {}

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, context: ContextStore) -> list[PlannedAction]:
        """
        Produce the ordered plan for `context`.

        Raises PlanningError (or a subclass) on model failure, unparseable
        output, an unknown tool or a broken planning rule.
        """
        display.planning_start(len(_eligible_tools(self._registry, context)), context.discovery_mode)

        system = self.build_system_prompt(context)
        user = self.build_user_message(context)
        prompt = ModelPrompt(
            system=system,
            user=user,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        options = ModelOptions(
            model=self._config.planner_model,
            temperature=self._config.planner_temperature,
            max_tokens=self._config.planner_max_tokens,
            session_context=self._session_context(context),
        )

        try:
            reply = self._model.invoke(prompt, options)
        except Exception as exc:
            raise PlanningError(f"AI planning failed: {exc}") from exc
        if not reply.success or not reply.output:
            raise PlanningError(f"AI planning failed: {reply.error or 'empty model output'}")

        elements = parse_plan_output(reply.output)
        # Steps past the cap are still resolved and can still fail planning.
        plan = [self._resolve(index, element, context) for index, element in enumerate(elements)]
        if len(plan) > self._config.max_plan_steps:
            display.plan_truncated(len(plan), self._config.max_plan_steps)
            plan = plan[: self._config.max_plan_steps]

        check_plan_rules(plan, self._registry, context, self._config.enforce_prerequisites)

        display.plan_parsed(plan)
        return plan

    def _resolve(self, index: int, element: dict[str, Any], context: ContextStore) -> PlannedAction:
        """Resolve one step against the registry and bind its args speculatively."""
        args = element.get("args") or {}
        if not isinstance(args, dict):
            raise PlanParseError(f"Plan step {index} has non-object args.", details=element)

        try:
            bound = self._registry.bind_args(element["tool"], context, args)
        except Exception as exc:
            raise PlanValidationError(
                f"Could not bind arguments for {element['tool']}: {exc}", details=element
            ) from exc
        if bound is None:
            raise UnknownToolError(f"Unknown tool: {element['tool']}", details={"step": index})

        try:
            return PlannedAction.model_validate(
                {
                    "tool": element["tool"],
                    "args": args,
                    "reason": element.get("reason"),
                    "announcement": element.get("announcement"),
                }
            )
        except ValidationError as exc:
            raise PlanParseError(f"Plan step {index} is malformed: {exc}", details=element) from exc


class FallbackPlanner:
    """
    Explicit graceful-degradation policy layered over a Planner: when model
    planning fails, fall back to rule_based_plan() instead of failing the request.
    """

    def __init__(self, primary: Planner, registry: ToolRegistry, max_steps: int) -> None:
        self._primary = primary
        self._registry = registry
        self._max_steps = max_steps

    def plan(self, context: ContextStore) -> list[PlannedAction]:
        try:
            return self._primary.plan(context)
        except PlanningError as exc:
            plan = rule_based_plan(context, self._registry, self._max_steps)
            display.fallback_plan(str(exc), len(plan))
            return plan
