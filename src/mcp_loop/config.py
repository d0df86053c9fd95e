# config.py
# Runtime configuration. Defaults live on the model; from_env() overlays
# MCP_LOOP_* variables (a local .env file is honoured via python-dotenv).

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

FINALIZE_TOOL_ID = "finalize_summary"


class LoopConfig(BaseModel):
    """Knobs for planning, caching and presentation."""

    planner_model: str = "anthropic/claude-3.5-haiku"
    planner_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    planner_max_tokens: int = Field(default=1000, gt=0)
    max_plan_steps: int = Field(default=5, gt=0)
    enforce_prerequisites: bool = True
    planner_fallback: bool = False

    cache_ttl_seconds: float | None = Field(default=3600.0, gt=0)

    message_limit: int = 10
    action_limit: int = 5
    embedding_average_count: int = 3

    finalize_tool_id: str = FINALIZE_TOOL_ID

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str | None = None
    embedding_model: str = "openai/text-embedding-3-small"

    quiet: bool = False

    @classmethod
    def from_env(cls) -> "LoopConfig":
        load_dotenv()

        overrides: dict[str, object] = {}
        for field_name in cls.model_fields:
            raw = os.getenv(f"MCP_LOOP_{field_name.upper()}")
            if raw is None:
                continue
            if field_name == "cache_ttl_seconds" and raw.strip().lower() in ("", "none", "0"):
                overrides[field_name] = None
            else:
                overrides[field_name] = raw

        if "api_key" not in overrides and os.getenv("OPENROUTER_API_KEY"):
            overrides["api_key"] = os.getenv("OPENROUTER_API_KEY")

        return cls.model_validate(overrides)
