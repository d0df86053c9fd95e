from types import SimpleNamespace
from unittest.mock import MagicMock

from mcp_loop.models import ModelOptions, ModelPrompt
from mcp_loop.providers import OpenAICompatibleModel, OpenAIEmbedder


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


PROMPT = ModelPrompt(system="plan", user="hi")
OPTIONS = ModelOptions(model="test/model", temperature=0.0, max_tokens=50)

# ---------------------------------------------------------------------------
# Chat Model Tests
# ---------------------------------------------------------------------------

def test_invoke_success_strips_output():
    client = MagicMock()
    client.chat.completions.create.return_value = completion('  [{"tool": "echo"}]\n')

    reply = OpenAICompatibleModel(client=client).invoke(PROMPT, OPTIONS)

    assert reply.success is True
    assert reply.output == '[{"tool": "echo"}]'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test/model"
    assert kwargs["max_tokens"] == 50
    assert kwargs["messages"] == [
        {"role": "system", "content": "plan"},
        {"role": "user", "content": "hi"},
    ]


def test_invoke_prefers_explicit_messages():
    client = MagicMock()
    client.chat.completions.create.return_value = completion("ok")
    messages = [{"role": "user", "content": "only this"}]

    OpenAICompatibleModel(client=client).invoke(ModelPrompt(system="s", messages=messages), OPTIONS)

    assert client.chat.completions.create.call_args.kwargs["messages"] == messages


def test_invoke_transport_error_becomes_failed_reply():
    client = MagicMock()
    client.chat.completions.create.side_effect = ConnectionError("refused")

    reply = OpenAICompatibleModel(client=client).invoke(PROMPT, OPTIONS)

    assert reply.success is False
    assert reply.error == "ConnectionError: refused"


def test_invoke_empty_content_is_failure():
    client = MagicMock()
    client.chat.completions.create.return_value = completion(None)

    reply = OpenAICompatibleModel(client=client).invoke(PROMPT, OPTIONS)

    assert reply.success is False
    assert "empty" in reply.error


# ---------------------------------------------------------------------------
# Embedder Tests
# ---------------------------------------------------------------------------

def test_embed_returns_first_vector():
    client = MagicMock()
    client.embeddings.create.return_value = SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2])])

    vector = OpenAIEmbedder(client=client, model="emb/model").embed("hello")

    assert vector == [0.1, 0.2]
    client.embeddings.create.assert_called_once_with(model="emb/model", input="hello")
