import json

import pytest

from walkthrough import pipeline
from walkthrough.errors import (
    DiffTooLargeError,
    GroupingRequestError,
    InvalidPullRequestUrl,
    NoObjectGeneratedError,
)


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


def test_index_diff_rejects_oversized_input(monkeypatch):
    monkeypatch.setattr(pipeline, "MAX_DIFF_BYTES", 10)

    with pytest.raises(DiffTooLargeError, match="limit is 10 bytes"):
        pipeline.index_diff("diff --git a/x b/x\n")


def test_resolve_metadata_prefers_explicit_title():
    metadata = pipeline.resolve_metadata(
        pr_title=" Fix login ",
        pr_url="https://github.com/acme/web/pull/7",
    )

    assert metadata.pr_title == "Fix login"


def test_resolve_metadata_derives_title_from_url():
    metadata = pipeline.resolve_metadata(
        pr_title="  ",
        pr_description="Body",
        pr_url="github.com/acme/web/pull/7",
    )

    assert metadata.pr_title == "acme/web PR #7"
    assert metadata.pr_description == "Body"


def test_resolve_metadata_rejects_bad_url_without_title():
    with pytest.raises(InvalidPullRequestUrl):
        pipeline.resolve_metadata(pr_url="https://gitlab.com/acme/web/pull/7")


def test_plan_heuristic_reports_mode(load_fixture):
    result = pipeline.plan_heuristic(
        load_fixture("heuristic-mix.diff"),
        pr_url="https://github.com/acme/web/pull/7",
    )

    assert result.mode == "heuristic"
    assert len(result.plan.steps) == 5
    assert result.plan.pr_overview.title == "Heuristic walkthrough for: acme/web PR #7"

    payload = result.to_dict()
    assert payload["mode"] == "heuristic"
    assert payload["file_count"] == 5
    assert payload["plan"]["steps"][0]["priority"] == "low"
    json.dumps(payload)


def test_plan_heuristic_empty_diff_returns_empty_plan(load_fixture):
    result = pipeline.plan_heuristic(load_fixture("binary.diff"))

    assert result.plan.steps == ()
    assert result.plan.pr_overview.title == "No diff content detected"


def test_plan_with_model_rejects_empty_diff(load_fixture):
    def generate(*args, **kwargs):
        raise AssertionError("model must not be called")

    with pytest.raises(GroupingRequestError, match="No reviewable diff content."):
        pipeline.plan_with_model(load_fixture("binary.diff"), generate=generate)


def test_plan_with_model_uses_model_output(load_fixture):
    seen = {}

    def generate(system_prompt, user_message, schema, *, tool, model_id, on_progress=None):
        seen["message"] = user_message
        return _model_plan(seen["index"])

    raw = load_fixture("heuristic-mix.diff")
    seen["index"] = pipeline.index_diff(raw)

    result = pipeline.plan_with_model(raw, pr_title="Add button styles", generate=generate)

    assert result.mode == "llm"
    assert result.plan.pr_overview.title == "Model overview"
    assert "Pull request title: Add button styles" in seen["message"]
    assert "step-5: Review source code changes" in seen["message"]


def test_plan_with_model_propagates_exhausted_retries(load_fixture):
    calls = []

    def generate(*args, **kwargs):
        calls.append(kwargs["tool"])
        raise NoObjectGeneratedError("No object generated")

    with pytest.raises(NoObjectGeneratedError):
        pipeline.plan_with_model(
            load_fixture("addition.diff"), generate=generate, max_attempts=2
        )
    assert calls == ["group_review[1/2]", "group_review[2/2]"]
