# validator.py
# Per-step gate run by the executor before any tool is invoked.
# Passing is a precondition for invocation, not a promise of success.

from typing import Any, Mapping

from pydantic import ValidationError

from mcp_loop.exceptions import StepValidationError
from mcp_loop.models import Tool


def validate_step(tool: Tool, args: Mapping[str, Any], context: Mapping[str, Any]) -> None:
    """
    Fail fast with a descriptive StepValidationError when:
      - the tool's args schema rejects the bound args,
      - a required context key is absent (or None),
      - a required argument key is absent (or None).
    """
    if tool.args_schema is not None:
        try:
            tool.args_schema.model_validate(dict(args))
        except ValidationError as exc:
            raise StepValidationError(
                f"Invalid arguments for {tool.id}: {exc.json(include_url=False)}"
            ) from exc

    for key in tool.required_inputs:
        if context.get(key) is None:
            raise StepValidationError(f"Missing required context for {tool.id}: {key}")

    for key in tool.required_args:
        if args.get(key) is None:
            raise StepValidationError(f"Missing required argument for {tool.id}: {key}")
