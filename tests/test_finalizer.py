from unittest.mock import MagicMock

from mcp_loop.context import ContextStore
from mcp_loop.finalizer import finalize
from mcp_loop.interfaces import attempt
from mcp_loop.models import ActionResult, Outcome, PlannedAction, Tool
from mcp_loop.registry import ToolRegistry

PLAN = [PlannedAction(tool="gaps"), PlannedAction(tool="finalize_summary")]
RESULTS = [ActionResult(tool="gaps", output={"gaps": ["sql"]}, success=True)]


def make_registry(run):
    return ToolRegistry([Tool(id="finalize_summary", run=run)])


# ---------------------------------------------------------------------------
# Finalizer Tests
# ---------------------------------------------------------------------------

def test_finalize_passes_results_plan_and_context():
    run = MagicMock(return_value="All done.")
    context = ContextStore({"profile_id": "p1"})

    summary = finalize(make_registry(run), "finalize_summary", PLAN, RESULTS, context)

    assert summary == "All done."
    payload = run.call_args.args[0]
    assert payload["profile_id"] == "p1"
    assert payload["intermediate_results"][0]["tool"] == "gaps"
    assert [s["tool"] for s in payload["plan"]] == ["gaps", "finalize_summary"]


def test_finalize_serializes_non_text_output():
    summary = finalize(make_registry(lambda a: {"headline": "ok"}), "finalize_summary", PLAN, RESULTS, ContextStore())
    assert summary == '{"headline": "ok"}'


def test_finalize_skipped_when_not_planned():
    run = MagicMock()
    summary = finalize(make_registry(run), "finalize_summary", PLAN[:1], RESULTS, ContextStore())
    assert summary is None
    run.assert_not_called()


def test_finalize_skipped_when_not_registered():
    assert finalize(ToolRegistry(), "finalize_summary", PLAN, RESULTS, ContextStore()) is None


def test_finalize_failure_yields_no_summary():
    run = MagicMock(side_effect=RuntimeError("model down"))
    assert finalize(make_registry(run), "finalize_summary", PLAN, RESULTS, ContextStore()) is None


# ---------------------------------------------------------------------------
# Best-Effort Call Tests
# ---------------------------------------------------------------------------

def test_attempt_wraps_exceptions():
    outcome = attempt(MagicMock(side_effect=ValueError("bad")))
    assert outcome.ok is False
    assert outcome.error == "ValueError: bad"


def test_attempt_passes_outcomes_through():
    assert attempt(lambda: Outcome.failure("nope")).error == "nope"
    assert attempt(lambda x: x * 2, 2).ok is True
