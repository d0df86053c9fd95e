# exceptions.py
# Error taxonomy for the MCP loop.
#
# Request-level errors derive from McpLoopError and are the only ones that
# reach the loop boundary. Step-level errors are caught by the executor and
# folded into a failed ActionResult.


# ---------------------------------------------------------------------------
# Request-level
# ---------------------------------------------------------------------------


class McpLoopError(Exception):
    """Base class for failures that abort the whole request."""

    error_type = "MCP_LOOP_ERROR"

    def __init__(self, message: str, details: object = None) -> None:
        super().__init__(message)
        self.details = details


class InvalidRequestError(McpLoopError):
    """Raised when a request is malformed or lacks the identity its mode needs."""

    error_type = "INVALID_REQUEST"


class MissingMessageError(McpLoopError):
    """Raised when neither the messages list nor the context carries a message."""

    error_type = "MISSING_MESSAGE"


class PlanningError(McpLoopError):
    """Raised when the planner's model call fails outright."""

    error_type = "PLANNING_FAILED"


class PlanParseError(PlanningError):
    """Raised when the model output is not a JSON array of plan steps."""

    error_type = "PLAN_PARSE_ERROR"


class UnknownToolError(PlanningError):
    """Raised when a planned step names a tool absent from the registry."""

    error_type = "UNKNOWN_TOOL"


class PlanValidationError(PlanningError):
    """Raised when a parsed plan breaks a hard planning rule."""

    error_type = "INVALID_PLAN"


# ---------------------------------------------------------------------------
# Step-level
# ---------------------------------------------------------------------------


class StepValidationError(Exception):
    """Raised by the validator when a step may not be invoked."""


class ToolNotFoundError(Exception):
    """Raised when a step's tool cannot be resolved at execution time."""


class ToolReportedError(Exception):
    """
    Raised by a tool that has already told the user about its failure.

    The executor skips its generic error notification for these so the user
    is never messaged twice for the same step.
    """

    user_notified = True
