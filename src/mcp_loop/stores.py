# stores.py
# In-process collaborator implementations: action log, conversation history
# and a console notifier. Suitable for a single process and for tests;
# durable backends implement the same Protocols from interfaces.py.

import threading
from collections import defaultdict
from typing import Any

from mcp_loop import display
from mcp_loop.models import (
    ActionLogEntry,
    ChatMessage,
    ConversationContext,
    ConversationOptions,
    Outcome,
)


def average_embedding(embeddings: list[list[float]]) -> list[float]:
    """Element-wise mean of equally sized vectors; [] for no input."""
    if not embeddings:
        return []
    width = len(embeddings[0])
    totals = [0.0] * width
    for vector in embeddings:
        for i in range(width):
            totals[i] += vector[i]
    return [total / len(embeddings) for total in totals]


# ---------------------------------------------------------------------------
# Action log
# ---------------------------------------------------------------------------


class InMemoryActionLog:
    """Append-only list of step attempts; newest entry wins on lookup."""

    def __init__(self) -> None:
        self._entries: list[ActionLogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: ActionLogEntry) -> Outcome:
        with self._lock:
            self._entries.append(entry)
        return Outcome.success()

    def find_latest_matching(self, session_id: str, tool: str) -> ActionLogEntry | None:
        matches = [e for e in self._entries if e.session_id == session_id and e.tool == tool]
        if not matches:
            return None
        # Ties on created_at go to the entry appended last.
        return max(reversed(matches), key=lambda e: e.created_at)

    def for_session(self, session_id: str) -> list[ActionLogEntry]:
        """Entries for one session, oldest first."""
        return sorted(
            (e for e in self._entries if e.session_id == session_id),
            key=lambda e: e.created_at,
        )

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------


class InMemoryConversationLoader:
    """
    Conversation context assembled from stored messages and the action log.

    Agent actions are reported without their input/output payloads to keep
    planner prompts small; the context embedding is the mean of the most
    recent step embeddings.
    """

    def __init__(self, action_log: InMemoryActionLog | None = None) -> None:
        self._action_log = action_log
        self._messages: dict[str, list[ChatMessage]] = defaultdict(list)
        self._summaries: dict[str, str] = {}

    def record_message(self, session_id: str, message: ChatMessage) -> None:
        self._messages[session_id].append(message)

    def set_summary(self, session_id: str, summary: str) -> None:
        self._summaries[session_id] = summary

    def load(self, session_id: str, options: ConversationOptions) -> ConversationContext:
        messages = self._messages.get(session_id, [])[-options.message_limit:] if options.message_limit else []
        entries = self._action_log.for_session(session_id) if self._action_log else []
        recent = entries[-options.action_limit:] if options.action_limit else []

        embedded = [e.embedding for e in reversed(entries) if e.embedding][: options.embedding_average_count]

        return ConversationContext(
            past_messages=[{"role": m.role, "content": m.content} for m in messages],
            agent_actions=[
                {
                    "tool": e.tool,
                    "outcome": e.outcome,
                    "step_index": e.step_index,
                    "request_hash": e.request_hash,
                    "created_at": e.created_at.isoformat(),
                }
                for e in recent
            ],
            summary=self._summaries.get(session_id),
            context_embedding=average_embedding(embedded) or None,
        )


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class ConsoleNotifier:
    """Prints user-facing progress messages and keeps them for inspection."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    def notify(self, session_id: str, message: str, meta: dict[str, Any]) -> Outcome:
        self.sent.append((session_id, message, meta))
        display.notification(session_id, message)
        return Outcome.success()
