import asyncio
import json

from walkthrough import pipeline
from walkthrough.config import MAX_GROUPING_ATTEMPTS
from walkthrough.errors import GroupingRequestError, NoObjectGeneratedError
from walkthrough.mcp_tools import ProgressRelay, _error_response, register_tools


class FakeMCP:
    """Collects the functions registered through ``@mcp.tool()``."""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def register(fn):
            self.tools[fn.__name__] = fn
            return fn

        return register


class FakeContext:
    def __init__(self, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.attempts = 0
        self.messages = []

    async def log(self, message, level=None, logger_name=None, extra=None):
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("client went away")
        self.messages.append((level, logger_name, message))


def _tools():
    mcp = FakeMCP()
    register_tools(mcp)
    return mcp.tools


def _model_plan(diff_index):
    return {
        "version": 1,
        "pr_overview": {"title": "Model overview", "summary": "One step."},
        "steps": [
            {
                "step_id": "step-1",
                "title": "Review everything",
                "description": "All files at once.",
                "objective": "Nothing regresses.",
                "priority": "high",
                "diff_refs": [
                    {"file_id": f.file_id, "hunk_ids": f.hunk_ids} for f in diff_index.files
                ],
            }
        ],
        "end_state": {"acceptance_checks": ["Tests pass."], "risk_calls": ["Broad change."]},
    }


def test_registers_all_tools():
    assert sorted(_tools()) == ["describe_plan_schema", "group_review", "index_diff", "plan_review"]


def test_index_diff_tool_returns_index_json(load_fixture):
    payload = json.loads(asyncio.run(_tools()["index_diff"](diff=load_fixture("multi-hunk.diff"))))

    assert payload["diff_index_version"] == 1
    assert [f["file_id"] for f in payload["files"]] == ["src/utils/math.ts"]
    assert [h["hunk_id"] for h in payload["files"][0]["hunks"]] == [
        "src/utils/math.ts#h0",
        "src/utils/math.ts#h1",
    ]


def test_index_diff_tool_reports_oversized_diff(monkeypatch):
    monkeypatch.setattr(pipeline, "MAX_DIFF_BYTES", 10)

    payload = json.loads(asyncio.run(_tools()["index_diff"](diff="diff --git a/x b/x\n")))

    assert payload["mode"] == "heuristic"
    assert payload["error_type"] == "DiffTooLargeError"
    assert payload["plan"] is None


def test_plan_review_tool_returns_heuristic_plan(load_fixture):
    payload = json.loads(
        asyncio.run(
            _tools()["plan_review"](
                diff=load_fixture("heuristic-mix.diff"), pr_title="Add button styles"
            )
        )
    )

    assert payload["mode"] == "heuristic"
    assert payload["file_count"] == 5
    assert len(payload["plan"]["steps"]) == 5
    assert payload["plan"]["steps"][0]["title"] == "Review documentation updates"
    assert payload["plan"]["pr_overview"]["title"] == "Heuristic walkthrough for: Add button styles"


def test_plan_review_tool_reports_bad_pr_url(load_fixture):
    payload = json.loads(
        asyncio.run(
            _tools()["plan_review"](
                diff=load_fixture("addition.diff"), pr_url="https://gitlab.com/a/b/pull/1"
            )
        )
    )

    assert payload["mode"] == "heuristic"
    assert payload["error_type"] == "InvalidPullRequestUrl"
    assert payload["plan"] is None


def test_group_review_tool_returns_model_plan_and_relays_progress(monkeypatch, load_fixture):
    raw = load_fixture("heuristic-mix.diff")
    diff_index = pipeline.index_diff(raw)
    calls = []

    def fake_generate(system_prompt, user_message, schema, *, tool, model_id, on_progress=None):
        calls.append(tool)
        on_progress(40, 0.5, "streaming 40 chars, 0s")
        return _model_plan(diff_index)

    monkeypatch.setattr(pipeline, "default_generate", fake_generate)
    ctx = FakeContext()

    payload = json.loads(asyncio.run(_tools()["group_review"](diff=raw, ctx=ctx)))

    assert payload["mode"] == "llm"
    assert payload["file_count"] == 5
    assert payload["plan"]["pr_overview"]["title"] == "Model overview"
    assert len(payload["plan"]["steps"][0]["diff_refs"]) == 5
    assert calls == [f"group_review[1/{MAX_GROUPING_ATTEMPTS}]"]
    assert ctx.messages == [("info", "walkthrough.llm", "[group_review] streaming 40 chars, 0s")]


def test_group_review_tool_reports_exhausted_retries(monkeypatch, load_fixture):
    calls = []

    def fake_generate(*args, **kwargs):
        calls.append(kwargs["tool"])
        raise NoObjectGeneratedError("No object generated")

    monkeypatch.setattr(pipeline, "default_generate", fake_generate)

    payload = json.loads(
        asyncio.run(_tools()["group_review"](diff=load_fixture("addition.diff"), ctx=FakeContext()))
    )

    assert payload["mode"] == "llm-error"
    assert payload["error_type"] == "NoObjectGeneratedError"
    assert payload["plan"] is None
    assert len(calls) == MAX_GROUPING_ATTEMPTS


def test_group_review_tool_reports_invalid_model_output(monkeypatch, load_fixture):
    monkeypatch.setattr(pipeline, "default_generate", lambda *args, **kwargs: {"version": 1})

    payload = json.loads(
        asyncio.run(_tools()["group_review"](diff=load_fixture("addition.diff"), ctx=FakeContext()))
    )

    assert payload["mode"] == "llm-error"
    assert payload["error_type"] == "ValidationError"
    assert payload["plan"] is None


def test_group_review_tool_rejects_empty_diff(monkeypatch, load_fixture):
    def fake_generate(*args, **kwargs):
        raise AssertionError("model must not be called")

    monkeypatch.setattr(pipeline, "default_generate", fake_generate)

    payload = json.loads(
        asyncio.run(_tools()["group_review"](diff=load_fixture("binary.diff"), ctx=FakeContext()))
    )

    assert payload["mode"] == "llm-error"
    assert payload["error"] == "Tool 'group_review' failed: No reviewable diff content."


def test_describe_plan_schema_tool():
    schema = json.loads(_tools()["describe_plan_schema"]())

    assert schema["type"] == "object"
    assert {"version", "pr_overview", "steps", "end_state"} <= set(schema["properties"])
    assert schema["properties"]["steps"]["maxItems"] == 6


def test_progress_relay_sends_prefixed_notifications():
    ctx = FakeContext()

    async def run():
        relay = ProgressRelay(ctx, asyncio.get_running_loop(), "group_review")
        await asyncio.to_thread(relay, 10, 0.1, "first")
        await asyncio.to_thread(relay, 20, 0.2, "second")
        return relay

    relay = asyncio.run(run())

    assert relay.sent == 2
    assert not relay.failed
    assert [m for _, _, m in ctx.messages] == ["[group_review] first", "[group_review] second"]


def test_progress_relay_stops_after_first_failure():
    ctx = FakeContext(fail=True)

    async def run():
        relay = ProgressRelay(ctx, asyncio.get_running_loop(), "group_review")
        await asyncio.to_thread(relay, 10, 0.1, "first")
        await asyncio.to_thread(relay, 20, 0.2, "second")
        return relay

    relay = asyncio.run(run())

    assert relay.failed
    assert relay.sent == 0
    assert ctx.attempts == 1


def test_progress_relay_gives_up_on_slow_client():
    ctx = FakeContext(delay=0.5)

    async def run():
        relay = ProgressRelay(ctx, asyncio.get_running_loop(), "group_review", timeout=0.05)
        await asyncio.to_thread(relay, 10, 0.1, "first")
        await asyncio.to_thread(relay, 20, 0.2, "second")
        return relay

    relay = asyncio.run(run())

    assert relay.failed
    assert relay.sent == 0
    assert ctx.attempts == 1


def test_error_response_is_structured_json():
    payload = json.loads(
        _error_response("group_review", GroupingRequestError("No reviewable diff content."), "llm-error")
    )

    assert payload == {
        "mode": "llm-error",
        "error": "Tool 'group_review' failed: No reviewable diff content.",
        "error_type": "GroupingRequestError",
        "plan": None,
    }
