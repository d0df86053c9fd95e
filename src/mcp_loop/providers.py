# providers.py
# OpenAI-compatible model and embedding adapters.
#
# Swap model strings for any OpenRouter-supported model.
# https://openrouter.ai/models

import os

from openai import OpenAI

from mcp_loop.models import ModelOptions, ModelPrompt, ModelReply

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


def make_client(api_key: str | None = None, base_url: str = DEFAULT_BASE_URL) -> OpenAI:
    return OpenAI(
        base_url=base_url,
        api_key=api_key or os.getenv("OPENROUTER_API_KEY"),
    )


class OpenAICompatibleModel:
    """
    ModelInvoker backed by a chat-completions endpoint.

    Transport and API errors are returned as an unsuccessful ModelReply;
    the planner decides what a failed reply means.
    """

    def __init__(
        self,
        client: OpenAI | None = None,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._client = client or make_client(api_key, base_url)

    def invoke(self, prompt: ModelPrompt, options: ModelOptions) -> ModelReply:
        messages = prompt.messages or [
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": prompt.user},
        ]
        try:
            response = self._client.chat.completions.create(
                model=options.model,
                messages=messages,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
            )
        except Exception as exc:
            return ModelReply(success=False, error=f"{type(exc).__name__}: {exc}")

        if not response.choices:
            return ModelReply(success=False, error="Model returned no choices.")
        content = response.choices[0].message.content
        if not content:
            return ModelReply(success=False, error="Model returned empty content.")
        return ModelReply(success=True, output=content.strip())


class OpenAIEmbedder:
    """Embedder backed by the embeddings endpoint."""

    def __init__(
        self,
        client: OpenAI | None = None,
        model: str = "openai/text-embedding-3-small",
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._client = client or make_client(api_key, base_url)
        self._model = model

    def embed(self, text: str) -> list[float]:
        response = self._client.embeddings.create(model=self._model, input=text)
        return list(response.data[0].embedding)
