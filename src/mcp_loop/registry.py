# registry.py
# Tool registry — the catalog the planner reads and the executor resolves against.
#
# One instance per loop (or per test). Nothing here is process-global; build
# the registry at startup and treat it as read-only while requests run.

from __future__ import annotations

import copy
import csv
import io
import json
from typing import Any, Iterable, Mapping, NamedTuple

from pydantic import ValidationError

from mcp_loop.models import InputCheck, Tool, ToolMetadata


class BoundTool(NamedTuple):
    """A resolved tool plus the argument object bound for one step."""

    tool: Tool
    args: dict[str, Any]


class ToolRegistry:
    """
    Catalog of registered tools keyed by id.

    Example:
        registry = ToolRegistry([echo_tool])
        registry.register(summary_tool)
        bound = registry.bind_args("echo", context, {"message": "hi"})
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, tool: Tool) -> None:
        """Add a tool, replacing any tool already registered under the same id."""
        if not tool.id:
            raise ValueError("Cannot register a tool without an id.")
        self._tools[tool.id] = tool

    def clear(self) -> None:
        self._tools.clear()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, tool_id: str) -> Tool | None:
        """Return the tool, or None when the id is not registered."""
        return self._tools.get(tool_id)

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def list(self) -> list[Tool]:
        """All tools in registration order."""
        return list(self._tools.values())

    def get_by_tag(self, tag: str) -> list[Tool]:
        return [t for t in self._tools.values() if tag in t.tags]

    def get_applicable(self, role: str) -> list[Tool]:
        return [t for t in self._tools.values() if role in t.applicable_roles]

    def __len__(self) -> int:
        return len(self._tools)

    # ------------------------------------------------------------------
    # Prompt projections
    # ------------------------------------------------------------------

    def get_tool_metadata_list(self, tools: Iterable[Tool] | None = None) -> list[ToolMetadata]:
        """Callable-free metadata for every tool (or the given subset)."""
        selected = self.list() if tools is None else list(tools)
        return [
            ToolMetadata(
                id=t.id,
                title=t.title or t.id,
                description=t.description,
                required_inputs=list(t.required_inputs),
                required_args=list(t.required_args),
                args_schema=t.args_schema.model_json_schema() if t.args_schema else None,
                recommended_after=list(t.recommended_after),
                recommended_before=list(t.recommended_before),
                required_prerequisites=list(t.required_prerequisites),
                tags=list(t.tags),
            )
            for t in selected
        ]

    def to_prompt_json(self, tools: Iterable[Tool] | None = None) -> str:
        return json.dumps(
            [m.model_dump(exclude_none=True) for m in self.get_tool_metadata_list(tools)],
            indent=2,
        )

    def to_prompt_csv(self, tools: Iterable[Tool] | None = None) -> str:
        """Compact one-line-per-tool projection for token-constrained prompts."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["id", "description", "required_inputs", "required_prerequisites"])
        for meta in self.get_tool_metadata_list(tools):
            writer.writerow([
                meta.id,
                meta.description,
                ";".join(meta.required_inputs),
                ";".join(meta.required_prerequisites),
            ])
        return buffer.getvalue()

    def describe_pathways(self, tools: Iterable[Tool] | None = None) -> str:
        """Tool descriptions with their ordering hints, for the planner prompt."""
        selected = self.list() if tools is None else list(tools)
        blocks = ["Available Actions:"]
        for t in selected:
            after = ", ".join(t.recommended_after) or "none"
            before = ", ".join(t.recommended_before) or "none"
            required = ", ".join(t.required_prerequisites) or "none"
            inputs = ", ".join(t.required_inputs) or "none"
            blocks.append(
                f"- {t.id}: {t.description}\n"
                f"  Required Inputs: {inputs}\n"
                f"  Required Prerequisites: {required}\n"
                f"  Recommended After: {after}\n"
                f"  Recommended Before: {before}"
            )
        return "\n\n".join(blocks)

    # ------------------------------------------------------------------
    # Input checks and binding
    # ------------------------------------------------------------------

    def validate_inputs(self, tool_id: str, values: Mapping[str, Any]) -> InputCheck:
        """
        Structural check of `values` against a tool.

        Uses the args schema when the tool declares one, otherwise requires
        every required input to be present and not None.
        """
        tool = self.get(tool_id)
        if tool is None:
            return InputCheck(valid=False, found=False)

        if tool.args_schema is not None:
            try:
                tool.args_schema.model_validate(dict(values))
            except ValidationError as exc:
                missing = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
                return InputCheck(valid=False, missing=missing)
            return InputCheck(valid=True)

        missing = [key for key in tool.required_inputs if values.get(key) is None]
        return InputCheck(valid=not missing, missing=missing)

    def bind_args(
        self,
        tool_id: str,
        context: Mapping[str, Any],
        provided: Mapping[str, Any] | None = None,
    ) -> BoundTool | None:
        """
        Resolve a tool and bind its arguments against `context`.

        Precedence, lowest first: context_args copied from context, the
        tool's default_args(context), then the provided args. Every value
        is deep-copied so tools never share objects with the context.
        Returns None when the tool is not registered.
        """
        tool = self.get(tool_id)
        if tool is None:
            return None

        args: dict[str, Any] = {
            key: copy.deepcopy(context[key])
            for key in tool.context_args
            if context.get(key) is not None
        }
        if tool.default_args is not None:
            args.update(copy.deepcopy(tool.default_args(context)))
        if provided:
            args.update(copy.deepcopy(dict(provided)))
        return BoundTool(tool=tool, args=args)
