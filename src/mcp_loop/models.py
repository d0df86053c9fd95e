# models.py
# Data contracts for the MCP loop.
# No business logic lives here — pure schema and validation.

from datetime import datetime, timezone
from typing import Any, Callable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Context keys that identify who the request is about. With none of them
# present the planner runs in discovery mode.
IDENTITY_KEYS: tuple[str, ...] = ("profile_id", "role_id")

DOWNSTREAM_KEY = "downstream_data"


# ---------------------------------------------------------------------------
# Tools and plans
# ---------------------------------------------------------------------------


class Tool(BaseModel):
    """A named, schema-described unit of work the planner may select."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(..., description="Unique tool identifier used in plans.")
    title: str = ""
    description: str = ""
    required_inputs: tuple[str, ...] = Field(
        default=(), description="Context keys that must be present before the tool runs."
    )
    required_args: tuple[str, ...] = Field(
        default=(), description="Keys that must be present in the bound arguments."
    )
    context_args: tuple[str, ...] = Field(
        default=(), description="Context keys copied into the arguments when a step omits them."
    )
    args_schema: type[BaseModel] | None = None
    default_args: Callable[[Mapping[str, Any]], dict] | None = None
    recommended_after: tuple[str, ...] = ()
    recommended_before: tuple[str, ...] = ()
    required_prerequisites: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    applicable_roles: tuple[str, ...] = ()
    capability_tags: tuple[str, ...] = ()
    uses_ai: bool = False
    run: Callable[[dict], Any]

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Tool id must be a non-empty string.")
        return value

    @property
    def requires_identity(self) -> bool:
        return any(key in IDENTITY_KEYS for key in self.required_inputs)


class ToolMetadata(BaseModel):
    """Prompt-safe projection of a Tool (no callables)."""

    id: str
    title: str
    description: str
    required_inputs: list[str]
    required_args: list[str]
    args_schema: dict | None = None
    recommended_after: list[str] = Field(default_factory=list)
    recommended_before: list[str] = Field(default_factory=list)
    required_prerequisites: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class InputCheck(BaseModel):
    """Outcome of ToolRegistry.validate_inputs."""

    valid: bool
    missing: list[str] = Field(default_factory=list)
    found: bool = True


class PlannedAction(BaseModel):
    """One step of a plan. Immutable once planned, consumed exactly once."""

    model_config = ConfigDict(frozen=True)

    tool: str = Field(..., description="Tool id; must resolve against the registry.")
    args: dict = Field(default_factory=dict, description="Arguments supplied by the planner.")
    reason: str | None = None
    announcement: str | None = None


class ActionResult(BaseModel):
    """Append-only log entry for one executed (or refused) step."""

    model_config = ConfigDict(frozen=True)

    tool: str
    input: dict = Field(default_factory=dict)
    output: Any = None
    success: bool
    error: str | None = None
    reused: bool = False
    downstream_data: dict | None = None


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------


class Outcome(BaseModel):
    """Explicit result of a best-effort side call (log append, notification)."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "Outcome":
        return cls(ok=False, error=error)


class ModelPrompt(BaseModel):
    system: str
    user: str = ""
    messages: list[dict] = Field(default_factory=list)


class ModelOptions(BaseModel):
    model: str
    temperature: float = 0.0
    max_tokens: int = 1000
    session_context: dict = Field(default_factory=dict)


class ModelReply(BaseModel):
    success: bool
    output: str | None = None
    error: str | None = None


class ConversationOptions(BaseModel):
    message_limit: int = 10
    action_limit: int = 5
    embedding_average_count: int = 3


class ConversationContext(BaseModel):
    past_messages: list[dict] = Field(default_factory=list)
    agent_actions: list[dict] = Field(default_factory=list)
    summary: str | None = None
    context_embedding: list[float] | None = None


class ActionLogEntry(BaseModel):
    """A persisted step attempt. Backs the executor's result cache."""

    session_id: str | None
    tool: str
    request_hash: str
    input: dict = Field(default_factory=dict)
    output: dict = Field(default_factory=dict)
    outcome: Literal["success", "error"]
    step_index: int
    embedding: list[float] | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Loop boundary
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str | None = None
    id: str | None = None
    timestamp: str | None = None


class LoopRequest(BaseModel):
    """Input accepted by McpLoop.run. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    mode: str = "general"
    session_id: str | None = Field(default=None, alias="sessionId")
    profile_id: str | None = Field(default=None, alias="profileId")
    role_id: str | None = Field(default=None, alias="roleId")
    messages: list[ChatMessage] = Field(default_factory=list)
    context: dict = Field(default_factory=dict)


class LoopData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    context: dict
    intermediate_results: list[ActionResult] = Field(alias="intermediateResults")
    plan: list[PlannedAction]
    summary_message: str | None = Field(default=None, alias="summaryMessage")


class LoopError(BaseModel):
    type: str
    message: str
    details: Any = None


class LoopResponse(BaseModel):
    success: bool
    data: LoopData | None = None
    error: LoopError | None = None

    def to_dict(self) -> dict:
        """Wire shape: camelCase keys, absent fields dropped."""
        return self.model_dump(by_alias=True, exclude_none=True)
