# interfaces.py
# Collaborator contracts consumed by the loop. Implementations live in
# providers.py (model + embeddings) and stores.py (log, history, notifier);
# tests substitute their own.

from typing import Any, Callable, Protocol, runtime_checkable

from mcp_loop.models import (
    ActionLogEntry,
    ConversationContext,
    ConversationOptions,
    ModelOptions,
    ModelPrompt,
    ModelReply,
    Outcome,
)


@runtime_checkable
class ModelInvoker(Protocol):
    def invoke(self, prompt: ModelPrompt, options: ModelOptions) -> ModelReply: ...


@runtime_checkable
class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


@runtime_checkable
class ConversationLoader(Protocol):
    def load(self, session_id: str, options: ConversationOptions) -> ConversationContext: ...


@runtime_checkable
class ActionLog(Protocol):
    def append(self, entry: ActionLogEntry) -> Outcome: ...

    def find_latest_matching(self, session_id: str, tool: str) -> ActionLogEntry | None: ...


@runtime_checkable
class ProgressNotifier(Protocol):
    def notify(self, session_id: str, message: str, meta: dict[str, Any]) -> Outcome: ...


def attempt(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Outcome:
    """
    Run a best-effort side call and report how it went as an Outcome.

    Collaborators that already return an Outcome pass it through; any other
    return value counts as success. Exceptions become a failed Outcome.
    """
    try:
        result = fn(*args, **kwargs)
    except Exception as exc:
        return Outcome.failure(f"{type(exc).__name__}: {exc}")
    if isinstance(result, Outcome):
        return result
    return Outcome.success()
