import json
from unittest.mock import MagicMock

from pydantic import BaseModel

from mcp_loop.config import LoopConfig
from mcp_loop.loop import McpLoop
from mcp_loop.models import ConversationContext, LoopRequest, ModelReply, Tool
from mcp_loop.registry import ToolRegistry
from mcp_loop.stores import InMemoryActionLog, InMemoryConversationLoader
from mcp_loop.tools import make_finalize_summary_tool


class RecommendationArgs(BaseModel):
    profile_id: str
    limit: int = 5


def make_registry(gaps_run=None):
    return ToolRegistry([
        Tool(
            id="getCapabilityGaps",
            description="Compare a profile against a role.",
            required_inputs=("profile_id", "role_id"),
            context_args=("profile_id", "role_id"),
            run=gaps_run or (lambda a: {"gaps": ["sql"], "downstream_data": {"gapCount": 1}}),
        ),
        Tool(
            id="getDevelopmentPlan",
            description="Plan learning for the gaps found.",
            required_inputs=("profile_id",),
            required_prerequisites=("getCapabilityGaps",),
            run=lambda a: {"plan": f"learn {a['getCapabilityGaps']['gaps'][0]}"},
        ),
        Tool(
            id="getSemanticSkillRecommendations",
            description="Recommend skills close to the profile.",
            required_inputs=("profile_id",),
            context_args=("profile_id",),
            args_schema=RecommendationArgs,
            run=lambda a: {"skills": ["dbt"]},
        ),
        make_finalize_summary_tool(),
    ])


def make_model(steps):
    model = MagicMock()
    model.invoke.return_value = ModelReply(success=True, output=json.dumps(steps))
    return model


THREE_STEPS = [
    {"tool": "getCapabilityGaps", "args": {}, "reason": "gaps"},
    {"tool": "getDevelopmentPlan", "args": {}, "reason": "plan"},
    {"tool": "getSemanticSkillRecommendations", "args": {}, "reason": "skills"},
]


def make_request(**overrides):
    request = {
        "mode": "career",
        "sessionId": "s1",
        "profileId": "p1",
        "roleId": "r1",
        "messages": [{"role": "user", "content": "How do I move into data engineering?"}],
    }
    request.update(overrides)
    return request


# ---------------------------------------------------------------------------
# End-to-End Scenarios
# ---------------------------------------------------------------------------

def test_three_step_plan_all_succeed():
    loop = McpLoop(make_registry(), make_model(THREE_STEPS), config=LoopConfig(quiet=True))

    response = loop.run(make_request())

    assert response.success is True
    results = response.data.intermediate_results
    assert [r.tool for r in results] == [s["tool"] for s in THREE_STEPS]
    assert all(r.success for r in results)
    context = response.data.context
    assert context["getDevelopmentPlan"] == {"plan": "learn sql"}
    assert context["getSemanticSkillRecommendations"] == {"skills": ["dbt"]}
    assert context["downstream_data"] == {"gapCount": 1}


def test_first_tool_failure_does_not_stop_later_steps():
    def boom(args):
        raise RuntimeError("Tool failed")

    config = LoopConfig(quiet=True, enforce_prerequisites=False)
    steps = [THREE_STEPS[0], THREE_STEPS[2]]
    loop = McpLoop(make_registry(gaps_run=boom), make_model(steps), config=config)

    response = loop.run(make_request())

    assert response.success is True
    first, second = response.data.intermediate_results
    assert first.success is False
    assert first.error == "Tool failed"
    assert second.success is True


def test_schema_rejection_reports_tool_and_issues():
    steps = [{"tool": "getSemanticSkillRecommendations", "args": {"limit": "plenty"}}]
    loop = McpLoop(make_registry(), make_model(steps), config=LoopConfig(quiet=True))

    response = loop.run(make_request())

    result = response.data.intermediate_results[0]
    assert result.success is False
    assert "getSemanticSkillRecommendations" in result.error
    assert '"limit"' in result.error


def test_missing_message_is_request_error():
    loop = McpLoop(make_registry(), make_model([]), config=LoopConfig(quiet=True))

    response = loop.run(make_request(messages=[]))

    assert response.success is False
    assert response.error.type == "MISSING_MESSAGE"
    assert response.data is None


def test_last_message_from_context():
    model = make_model([])
    loop = McpLoop(make_registry(), model, config=LoopConfig(quiet=True))

    response = loop.run(make_request(messages=[], context={"lastMessage": "from context"}))

    assert response.success is True
    assert response.data.context["latest_message"] == "from context"


def test_null_message_content_is_request_error():
    loop = McpLoop(make_registry(), make_model([]), config=LoopConfig(quiet=True))

    for messages in ([{"role": "user", "content": None}], [{"role": "user"}]):
        response = loop.run(make_request(messages=messages))
        assert response.success is False
        assert response.error.type == "MISSING_MESSAGE"


def test_null_message_content_falls_back_to_context():
    loop = McpLoop(make_registry(), make_model([]), config=LoopConfig(quiet=True))

    response = loop.run(
        make_request(messages=[{"role": "user", "content": None}], context={"lastMessage": "from context"})
    )

    assert response.success is True
    assert response.data.context["latest_message"] == "from context"


def test_malformed_request_is_typed_error():
    loop = McpLoop(make_registry(), make_model([]), config=LoopConfig(quiet=True))

    response = loop.run(make_request(messages="oops")).to_dict()
    assert response["success"] is False
    assert response["error"]["type"] == "INVALID_REQUEST"
    assert response["error"]["details"][0]["loc"] == ["messages"]

    response = loop.run(make_request(messages=[{"role": "robot", "content": "hi"}]))
    assert response.error.type == "INVALID_REQUEST"

    assert loop.run(["not", "a", "request"]).error.type == "INVALID_REQUEST"


def test_candidate_mode_requires_profile():
    model = make_model([])
    loop = McpLoop(make_registry(), model, config=LoopConfig(quiet=True))

    response = loop.run(make_request(mode="candidate", profileId=None))

    assert response.success is False
    assert response.error.type == "INVALID_REQUEST"
    assert response.error.message == "Profile ID is required for candidate mode"
    model.invoke.assert_not_called()


def test_hiring_mode_requires_role():
    loop = McpLoop(make_registry(), make_model([]), config=LoopConfig(quiet=True))

    response = loop.run(make_request(mode="hiring", roleId=None))
    assert response.error.type == "INVALID_REQUEST"
    assert response.error.message == "Role ID is required for hiring mode"

    response = loop.run(make_request(mode="hiring", roleId=None, context={"roleId": "r7"}))
    assert response.success is True


def test_non_object_downstream_data_is_request_error():
    loop = McpLoop(make_registry(), make_model([]), config=LoopConfig(quiet=True))

    response = loop.run(make_request(context={"downstream_data": "not a dict"}))

    assert response.success is False
    assert response.error.type == "INVALID_REQUEST"
    assert "downstream_data must be an object, got str" in response.error.message


def test_planning_failure_is_typed_response():
    model = MagicMock()
    model.invoke.return_value = ModelReply(success=True, output="no plan today")
    loop = McpLoop(make_registry(), model, config=LoopConfig(quiet=True))

    response = loop.run(make_request()).to_dict()

    assert response["success"] is False
    assert response["error"]["type"] == "PLAN_PARSE_ERROR"
    assert "data" not in response


def test_fallback_policy_plans_without_model():
    model = MagicMock()
    model.invoke.side_effect = ConnectionError("offline")
    config = LoopConfig(quiet=True, planner_fallback=True)
    loop = McpLoop(make_registry(), model, config=config)

    response = loop.run(make_request())

    assert response.success is True
    planned = [s.tool for s in response.data.plan]
    assert planned[:2] == ["getCapabilityGaps", "getDevelopmentPlan"]


# ---------------------------------------------------------------------------
# Context Loading Tests
# ---------------------------------------------------------------------------

def test_request_fields_seed_context():
    embedder = MagicMock()
    embedder.embed.return_value = [1.0, 0.0]
    loop = McpLoop(make_registry(), make_model([]), embedder=embedder, config=LoopConfig(quiet=True))

    request = LoopRequest(mode="career", session_id="s1", profile_id="p1", messages=[{"content": "hi"}])
    context = loop.run(request).data.context

    assert context["mode"] == "career"
    assert context["session_id"] == "s1"
    assert context["profile_id"] == "p1"
    assert context["latest_message"] == "hi"
    assert context["embedded_message"] == [1.0, 0.0]
    assert "role_id" not in context


def test_camel_case_context_keys_normalized():
    loop = McpLoop(make_registry(), make_model([]), config=LoopConfig(quiet=True))

    context = loop.run(
        {"messages": [{"content": "hi"}], "context": {"profileId": "p9", "currentFocus": "sql", "extra": 1}}
    ).data.context

    assert context["profile_id"] == "p9"
    assert context["current_focus"] == "sql"
    assert context["extra"] == 1


def test_history_loaded_only_with_session():
    loader = MagicMock()
    loader.load.return_value = ConversationContext(
        past_messages=[{"role": "user", "content": "earlier"}],
        agent_actions=[{"tool": "getCapabilityGaps"}],
        summary="Career chat.",
        context_embedding=[0.5],
    )
    loop = McpLoop(
        make_registry(), make_model([]), conversation_loader=loader, config=LoopConfig(quiet=True)
    )

    context = loop.run(make_request()).data.context
    assert context["recent_messages"] == [{"role": "user", "content": "earlier"}]
    assert context["summary"] == "Career chat."
    assert context["context_embedding"] == [0.5]

    loader.reset_mock()
    loop.run(make_request(sessionId=None))
    loader.load.assert_not_called()


def test_history_satisfies_prerequisite():
    loader = MagicMock()
    loader.load.return_value = ConversationContext(agent_actions=[{"tool": "getCapabilityGaps"}])
    loop = McpLoop(
        make_registry(),
        make_model([{"tool": "getDevelopmentPlan"}]),
        conversation_loader=loader,
        config=LoopConfig(quiet=True),
    )

    response = loop.run(make_request())

    assert response.success is True
    # The plan ran, but this run produced no gaps for the tool to read.
    assert response.data.intermediate_results[0].success is False


def test_failed_prerequisite_in_session_does_not_unlock_dependent():
    def boom(args):
        raise RuntimeError("gaps service down")

    model = MagicMock()
    model.invoke.side_effect = [
        ModelReply(success=True, output=json.dumps(THREE_STEPS[:1])),
        ModelReply(success=True, output=json.dumps([{"tool": "getDevelopmentPlan"}])),
    ]
    log = InMemoryActionLog()
    loop = McpLoop(
        make_registry(gaps_run=boom),
        model,
        conversation_loader=InMemoryConversationLoader(log),
        action_log=log,
        config=LoopConfig(quiet=True),
    )

    first = loop.run(make_request())
    second = loop.run(make_request())

    assert first.data.intermediate_results[0].success is False
    assert second.success is False
    assert second.error.type == "INVALID_PLAN"


def test_history_failure_degrades_gracefully():
    loader = MagicMock()
    loader.load.side_effect = TimeoutError("history store slow")
    embedder = MagicMock()
    embedder.embed.side_effect = RuntimeError("embedding down")
    loop = McpLoop(
        make_registry(),
        make_model(THREE_STEPS[:1]),
        embedder=embedder,
        conversation_loader=loader,
        config=LoopConfig(quiet=True),
    )

    response = loop.run(make_request())

    assert response.success is True
    assert "recent_messages" not in response.data.context
    assert "embedded_message" not in response.data.context


def test_discovery_request_rejects_identity_plan():
    loop = McpLoop(make_registry(), make_model(THREE_STEPS[:1]), config=LoopConfig(quiet=True))

    response = loop.run(make_request(profileId=None, roleId=None))

    assert response.success is False
    assert response.error.type == "INVALID_PLAN"


# ---------------------------------------------------------------------------
# Finalize & Session Cache Tests
# ---------------------------------------------------------------------------

def test_finalize_summary_when_planned():
    steps = THREE_STEPS[:1] + [{"tool": "finalize_summary"}]
    loop = McpLoop(make_registry(), make_model(steps), config=LoopConfig(quiet=True))

    response = loop.run(make_request())

    summary = response.data.summary_message
    assert "getCapabilityGaps" in summary
    assert response.to_dict()["data"]["summaryMessage"] == summary


def test_no_summary_when_not_planned():
    loop = McpLoop(make_registry(), make_model(THREE_STEPS[:1]), config=LoopConfig(quiet=True))
    response = loop.run(make_request()).to_dict()
    assert "summaryMessage" not in response["data"]
    assert "intermediateResults" in response["data"]


def test_second_request_in_session_reuses_results():
    calls = []

    def gaps(args):
        calls.append(args["profile_id"])
        return {"gaps": ["sql"]}

    log = InMemoryActionLog()
    loop = McpLoop(
        make_registry(gaps_run=gaps),
        make_model(THREE_STEPS[:1]),
        conversation_loader=InMemoryConversationLoader(log),
        action_log=log,
        config=LoopConfig(quiet=True),
    )

    loop.run(make_request())
    response = loop.run(make_request())

    assert calls == ["p1"]
    assert response.data.intermediate_results[0].reused is True
    assert response.data.context["agent_actions"][0]["tool"] == "getCapabilityGaps"
