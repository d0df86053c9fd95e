# executor.py
# Executor — runs a plan against the context, one step at a time.
#
# Per step:
#   announce → re-bind args from the *current* context → validate
#   → request hash → cache lookup → run → persist → record
#
# Results and log entries hold deep copies of a tool's output, so a later
# tool that mutates what it reads cannot rewrite them.
#
# A step's failure is captured as a failed ActionResult and never stops the
# steps after it. Side calls (notifications, log appends, embeddings) are
# best-effort: their failures are reported through display, never raised.

import copy
from datetime import datetime, timezone
from typing import Any, Mapping

from mcp_loop import display
from mcp_loop.config import LoopConfig
from mcp_loop.context import ContextStore
from mcp_loop.exceptions import ToolNotFoundError
from mcp_loop.hashing import request_hash
from mcp_loop.interfaces import ActionLog, Embedder, ProgressNotifier, attempt
from mcp_loop.models import DOWNSTREAM_KEY, ActionLogEntry, ActionResult, PlannedAction
from mcp_loop.registry import BoundTool, ToolRegistry
from mcp_loop.validator import validate_step

GENERIC_ERROR_MESSAGE = "I encountered an error while running {tool}. Continuing with the remaining steps."


def _downstream_of(output: Any) -> dict[str, Any] | None:
    """The downstream payload a tool result declares, if any."""
    payload = None
    if isinstance(output, Mapping):
        payload = output.get(DOWNSTREAM_KEY)
    elif hasattr(output, DOWNSTREAM_KEY):
        payload = getattr(output, DOWNSTREAM_KEY)
    if isinstance(payload, Mapping):
        return dict(payload)
    return None


def cache_rejection(entry: ActionLogEntry, fresh_hash: str, ttl_seconds: float | None) -> str | None:
    """
    Why a persisted entry may not stand in for a fresh run, or None when it may.

    Any structural doubt forces re-execution: correctness over hit rate.
    """
    if entry.outcome == "error":
        return "stored outcome was an error"
    success = entry.output.get("success")
    if not isinstance(success, bool):
        return "stored payload has no boolean success flag"
    if not success:
        return "stored payload is not a success"
    if "data" not in entry.output:
        return "stored payload has no data"
    if entry.request_hash != fresh_hash:
        return "argument hash mismatch"
    if ttl_seconds is not None:
        created = entry.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - created).total_seconds()
        if age > ttl_seconds:
            return f"entry expired ({int(age)}s old)"
    return None


class Executor:
    """
    Sequential, failure-isolated plan runner.

    Example:
        executor = Executor(registry, action_log=log, notifier=notifier)
        results = executor.execute(plan, context)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        action_log: ActionLog | None = None,
        embedder: Embedder | None = None,
        notifier: ProgressNotifier | None = None,
        config: LoopConfig | None = None,
    ) -> None:
        self._registry = registry
        self._action_log = action_log
        self._embedder = embedder
        self._notifier = notifier
        self._config = config or LoopConfig()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(self, plan: list[PlannedAction], context: ContextStore) -> list[ActionResult]:
        """
        Run every step in plan order and return one ActionResult per step.

        Never raises for a step-level failure.
        """
        display.execution_start(len(plan))

        results: list[ActionResult] = []
        for index, step in enumerate(plan):
            results.append(self._execute_step(index, len(plan), step, context))

        display.execution_summary(results)
        return results

    # ------------------------------------------------------------------
    # One step
    # ------------------------------------------------------------------

    def _execute_step(
        self,
        index: int,
        total: int,
        step: PlannedAction,
        context: ContextStore,
    ) -> ActionResult:
        display.step_start(index, total, step.tool, step.reason)
        session_id = context.session_id

        if step.announcement and session_id:
            self._notify(session_id, step.announcement, {"tool": step.tool, "step": index, "phase": "start"})

        bound: BoundTool | None = None
        fresh_hash: str | None = None
        invoked = False
        try:
            bound = self._registry.bind_args(step.tool, context, step.args)
            if bound is None:
                raise ToolNotFoundError(f"Tool not found: {step.tool}")

            validate_step(bound.tool, bound.args, context)
            fresh_hash = request_hash(bound.args)

            cached = self._cached_entry(session_id, bound.tool.id, fresh_hash)
            if cached is not None:
                data = copy.deepcopy(cached.output["data"])
                downstream = _downstream_of(data)
                context.record_result(bound.tool.id, data, downstream)
                display.cache_hit(bound.tool.id, fresh_hash)
                return ActionResult(
                    tool=step.tool,
                    input=bound.args,
                    output=copy.deepcopy(data),
                    success=True,
                    reused=True,
                    downstream_data=downstream,
                )

            invoked = True
            output = bound.tool.run(context.execution_input(bound.args))
            downstream = _downstream_of(output)

            self._persist(
                session_id, step, bound, fresh_hash, index,
                {"success": True, "data": copy.deepcopy(output), "error": None},
            )
            context.record_result(bound.tool.id, output, downstream)
            display.step_succeeded(bound.tool.id, output)
            return ActionResult(
                tool=step.tool,
                input=bound.args,
                output=copy.deepcopy(output),
                success=True,
                downstream_data=downstream,
            )

        except Exception as exc:
            message = str(exc) or type(exc).__name__
            display.step_failed(step.tool, message)

            if invoked and bound is not None and fresh_hash is not None:
                self._persist(
                    session_id, step, bound, fresh_hash, index,
                    {"success": False, "data": None, "error": message},
                )
            if session_id and not getattr(exc, "user_notified", False):
                self._notify(
                    session_id,
                    GENERIC_ERROR_MESSAGE.format(tool=step.tool),
                    {"tool": step.tool, "step": index, "phase": "error", "error": message},
                )

            return ActionResult(
                tool=step.tool,
                input=bound.args if bound is not None else dict(step.args),
                output=None,
                success=False,
                error=message,
            )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cached_entry(self, session_id: str | None, tool_id: str, fresh_hash: str) -> ActionLogEntry | None:
        """The latest persisted entry for (session, tool) if it may be reused."""
        if self._action_log is None or not session_id:
            return None
        try:
            entry = self._action_log.find_latest_matching(session_id, tool_id)
        except Exception as exc:
            display.warning(f"Cache lookup for {tool_id} failed", str(exc))
            return None
        if entry is None:
            return None

        reason = cache_rejection(entry, fresh_hash, self._config.cache_ttl_seconds)
        if reason is not None:
            display.cache_rejected(tool_id, reason)
            return None
        return entry

    # ------------------------------------------------------------------
    # Best-effort side calls
    # ------------------------------------------------------------------

    def _persist(
        self,
        session_id: str | None,
        step: PlannedAction,
        bound: BoundTool,
        fresh_hash: str,
        index: int,
        output: dict[str, Any],
    ) -> None:
        if self._action_log is None:
            return
        entry = ActionLogEntry(
            session_id=session_id,
            tool=bound.tool.id,
            request_hash=fresh_hash,
            input=bound.args,
            output=output,
            outcome="success" if output["success"] else "error",
            step_index=index,
            embedding=self._embed_step(step, bound),
        )
        outcome = attempt(self._action_log.append, entry)
        if not outcome.ok:
            display.warning(f"Could not persist {bound.tool.id} step", outcome.error or "unknown error")

    def _embed_step(self, step: PlannedAction, bound: BoundTool) -> list[float] | None:
        if self._embedder is None:
            return None
        text = step.reason or f"{bound.tool.id}: {bound.tool.description}"
        try:
            return self._embedder.embed(text)
        except Exception as exc:
            display.warning(f"Could not embed {bound.tool.id} step", str(exc))
            return None

    def _notify(self, session_id: str, message: str, meta: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        outcome = attempt(self._notifier.notify, session_id, message, meta)
        if not outcome.ok:
            display.warning("Progress notification failed", outcome.error or "unknown error")
