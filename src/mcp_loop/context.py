# context.py
# Context store — everything known about the current request.
#
# Append-oriented: keys are written, overwritten (last writer wins) and read,
# never deleted. Tool outputs land under the tool's id; downstream payloads
# accumulate under DOWNSTREAM_KEY.

from collections.abc import Mapping
from typing import Any, Iterator

from mcp_loop.models import DOWNSTREAM_KEY, IDENTITY_KEYS


class ContextStore(Mapping):
    """
    Mapping view over the request context with typed accessors for the
    request fields and an explicit record of which tools have written.
    """

    def __init__(self, seed: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = {DOWNSTREAM_KEY: {}}
        self._results: list[str] = []
        if seed:
            self.update(seed)

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update(self, values: Mapping[str, Any]) -> None:
        """Write every non-None value. Downstream payloads are merged, not replaced."""
        for key, value in values.items():
            if value is None:
                continue
            if key == DOWNSTREAM_KEY:
                self.merge_downstream(value)
            else:
                self._data[key] = value

    def record_result(self, tool_id: str, output: Any, downstream: Mapping[str, Any] | None = None) -> None:
        """Store a tool's raw output under its id and merge its downstream payload."""
        self._data[tool_id] = output
        if tool_id not in self._results:
            self._results.append(tool_id)
        if downstream:
            self.merge_downstream(downstream)

    def merge_downstream(self, payload: Mapping[str, Any]) -> None:
        if not isinstance(payload, Mapping):
            raise TypeError(f"{DOWNSTREAM_KEY} must be a mapping, got {type(payload).__name__}")
        self._data[DOWNSTREAM_KEY].update(payload)

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str | None:
        return self._data.get("session_id")

    @property
    def profile_id(self) -> str | None:
        return self._data.get("profile_id")

    @property
    def role_id(self) -> str | None:
        return self._data.get("role_id")

    @property
    def latest_message(self) -> str | None:
        return self._data.get("latest_message")

    @property
    def downstream_data(self) -> dict[str, Any]:
        return self._data[DOWNSTREAM_KEY]

    @property
    def results(self) -> dict[str, Any]:
        """Outputs of tools executed in this run, in write order."""
        return {tool_id: self._data[tool_id] for tool_id in self._results}

    @property
    def discovery_mode(self) -> bool:
        """True when no identifying context (profile or role) is known."""
        return not any(self._data.get(key) for key in IDENTITY_KEYS)

    def completed_tools(self) -> set[str]:
        """
        Tools that already ran: earlier in this session or earlier in this run.

        Session actions whose outcome was an error do not count.
        """
        done = set(self._results)
        for action in self._data.get("agent_actions") or []:
            if not isinstance(action, Mapping) or action.get("outcome") == "error":
                continue
            if action.get("tool"):
                done.add(action["tool"])
        return done

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def execution_input(self, args: Mapping[str, Any]) -> dict[str, Any]:
        """The object a tool receives: the full live context overlaid by its args."""
        return {**self._data, **args}

    def snapshot(self) -> dict[str, Any]:
        """Top-level copy for responses; later key writes do not leak into it."""
        return {**self._data, DOWNSTREAM_KEY: dict(self._data[DOWNSTREAM_KEY])}
