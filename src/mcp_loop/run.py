# run.py
# Entry point. Config and wiring only — no logic lives here.
#
# Model strings and limits come from LoopConfig.from_env(); see config.py
# for the MCP_LOOP_* variables.

import json

from mcp_loop.config import LoopConfig
from mcp_loop.loop import McpLoop
from mcp_loop.providers import OpenAICompatibleModel, OpenAIEmbedder, make_client
from mcp_loop.registry import ToolRegistry
from mcp_loop.stores import ConsoleNotifier, InMemoryActionLog, InMemoryConversationLoader
from mcp_loop.tools import builtin_tools

SESSION_ID = "demo-session"

# Demo requests. The second repeats the first's echo so the cached result
# is reused within the session.
REQUESTS = [
    {
        "sessionId": SESSION_ID,
        "messages": [{"role": "user", "content": "Echo back: the build is green."}],
    },
    {
        "sessionId": SESSION_ID,
        "messages": [
            {"role": "user", "content": "Echo back: the build is green."},
            {"role": "assistant", "content": "the build is green."},
            {"role": "user", "content": "Say it again, then summarize what you did."},
        ],
        "context": {"lastMessage": "Echo back: the build is green."},
    },
]


def main() -> None:
    config = LoopConfig.from_env()
    client = make_client(config.api_key, config.base_url)

    model = OpenAICompatibleModel(client=client)
    action_log = InMemoryActionLog()
    loop = McpLoop(
        ToolRegistry(builtin_tools(model, config.planner_model)),
        model,
        embedder=OpenAIEmbedder(client=client, model=config.embedding_model),
        conversation_loader=InMemoryConversationLoader(action_log),
        action_log=action_log,
        notifier=ConsoleNotifier(),
        config=config,
    )

    for request in REQUESTS:
        response = loop.run(request)
        print(f"\n[RESULT]\n{json.dumps(response.to_dict(), indent=2, default=str)}\n")


if __name__ == "__main__":
    main()
