# loop.py
# Request boundary — load context, plan, execute, finalize.
#
# Flow per request:
#   validate request → latest message → embed (best effort) → seed context
#   → load history (best effort) → plan → execute → finalize → LoopResponse
#
# Only request-level errors (McpLoopError) end a request early; they come
# back as an unsuccessful LoopResponse rather than an exception.

import json
from typing import Any, Mapping

from pydantic import ValidationError

from mcp_loop import display
from mcp_loop.config import LoopConfig
from mcp_loop.context import ContextStore
from mcp_loop.exceptions import InvalidRequestError, McpLoopError, MissingMessageError
from mcp_loop.executor import Executor
from mcp_loop.finalizer import finalize
from mcp_loop.interfaces import ActionLog, ConversationLoader, Embedder, ModelInvoker, ProgressNotifier
from mcp_loop.models import (
    DOWNSTREAM_KEY,
    ConversationOptions,
    LoopData,
    LoopError,
    LoopRequest,
    LoopResponse,
)
from mcp_loop.planner import FallbackPlanner, Planner
from mcp_loop.registry import ToolRegistry

# camelCase keys accepted inside request.context, and where they land.
CONTEXT_ALIASES: dict[str, str] = {
    "sessionId": "session_id",
    "profileId": "profile_id",
    "roleId": "role_id",
    "lastMessage": "latest_message",
    "last_message": "latest_message",
    "currentFocus": "current_focus",
}

# Request modes that cannot run without a specific identity.
MODE_REQUIREMENTS: dict[str, tuple[str, str]] = {
    "candidate": ("profile_id", "Profile ID is required for candidate mode"),
    "hiring": ("role_id", "Role ID is required for hiring mode"),
}


def _normalize_context(raw: Mapping[str, Any]) -> dict[str, Any]:
    return {CONTEXT_ALIASES.get(key, key): value for key, value in raw.items()}


def parse_request(raw: LoopRequest | Mapping[str, Any]) -> LoopRequest:
    if isinstance(raw, LoopRequest):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidRequestError(f"Request must be an object, got {type(raw).__name__}")
    try:
        return LoopRequest.model_validate(dict(raw))
    except ValidationError as exc:
        raise InvalidRequestError(
            "Request does not match the expected shape",
            details=json.loads(exc.json(include_url=False)),
        ) from exc


def check_request(request: LoopRequest, extra: Mapping[str, Any]) -> None:
    """Reject requests whose mode lacks its identity or whose downstream data is not an object."""
    requirement = MODE_REQUIREMENTS.get(request.mode)
    if requirement is not None:
        key, message = requirement
        if not (getattr(request, key) or extra.get(key)):
            raise InvalidRequestError(message)
    downstream = extra.get(DOWNSTREAM_KEY)
    if downstream is not None and not isinstance(downstream, Mapping):
        raise InvalidRequestError(f"{DOWNSTREAM_KEY} must be an object, got {type(downstream).__name__}")


def latest_message_of(request: LoopRequest, extra: Mapping[str, Any]) -> str:
    """The last message's content, else the context's last message."""
    if request.messages and request.messages[-1].content:
        return request.messages[-1].content
    fallback = extra.get("latest_message")
    if isinstance(fallback, str) and fallback:
        return fallback
    raise MissingMessageError("No message content provided in either messages array or context")


class McpLoop:
    """
    Plan-then-execute loop over a ToolRegistry.

    Example:
        loop = McpLoop(registry, OpenAICompatibleModel(), config=LoopConfig.from_env())
        response = loop.run({"sessionId": "s1", "messages": [{"role": "user", "content": "hi"}]})
    """

    def __init__(
        self,
        registry: ToolRegistry,
        model: ModelInvoker,
        embedder: Embedder | None = None,
        conversation_loader: ConversationLoader | None = None,
        action_log: ActionLog | None = None,
        notifier: ProgressNotifier | None = None,
        config: LoopConfig | None = None,
    ) -> None:
        self._registry = registry
        self._embedder = embedder
        self._conversation_loader = conversation_loader
        self._config = config or LoopConfig()

        display.set_quiet(self._config.quiet)

        primary = Planner(registry, model, self._config)
        self._planner = (
            FallbackPlanner(primary, registry, self._config.max_plan_steps)
            if self._config.planner_fallback
            else primary
        )
        self._executor = Executor(
            registry,
            action_log=action_log,
            embedder=embedder,
            notifier=notifier,
            config=self._config,
        )
        display.banner(self._config.planner_model, len(registry))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, request: LoopRequest | Mapping[str, Any]) -> LoopResponse:
        """
        Handle one request end to end. Never raises for request-level
        failures; they are reported in the response's error field.
        """
        try:
            request = parse_request(request)
            context = self.load_context(request)
            plan = self._planner.plan(context)
            results = self._executor.execute(plan, context)
            summary = finalize(self._registry, self._config.finalize_tool_id, plan, results, context)
        except McpLoopError as exc:
            display.plan_rejected(exc.error_type, str(exc))
            return LoopResponse(
                success=False,
                error=LoopError(type=exc.error_type, message=str(exc), details=exc.details),
            )

        return LoopResponse(
            success=True,
            data=LoopData(
                context=context.snapshot(),
                intermediate_results=results,
                plan=plan,
                summary_message=summary,
            ),
        )

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def load_context(self, request: LoopRequest) -> ContextStore:
        """Seed the context store from the request and, with a session, its history."""
        extra = _normalize_context(request.context)
        check_request(request, extra)
        latest = latest_message_of(request, extra)
        session_id = request.session_id or extra.get("session_id")

        display.request_received(request.mode, session_id, latest)

        context = ContextStore(extra)
        context.update(
            {
                "mode": request.mode,
                "session_id": session_id,
                "profile_id": request.profile_id or extra.get("profile_id"),
                "role_id": request.role_id or extra.get("role_id"),
                "messages": [m.model_dump() for m in request.messages],
                "latest_message": latest,
                "embedded_message": self._embed(latest),
            }
        )

        if session_id and self._conversation_loader is not None:
            self._load_history(session_id, context)
        else:
            display.context_loaded(None, 0, 0)
        return context

    def _embed(self, text: str) -> list[float] | None:
        if self._embedder is None:
            return None
        try:
            return self._embedder.embed(text)
        except Exception as exc:
            display.warning("Could not embed the latest message", str(exc))
            return None

    def _load_history(self, session_id: str, context: ContextStore) -> None:
        options = ConversationOptions(
            message_limit=self._config.message_limit,
            action_limit=self._config.action_limit,
            embedding_average_count=self._config.embedding_average_count,
        )
        try:
            history = self._conversation_loader.load(session_id, options)
        except Exception as exc:
            display.warning("Conversation history unavailable, planning without it", str(exc))
            return

        context.update(
            {
                "recent_messages": history.past_messages,
                "agent_actions": history.agent_actions,
                "summary": history.summary,
                "context_embedding": history.context_embedding,
            }
        )
        display.context_loaded(session_id, len(history.past_messages), len(history.agent_actions))
