from walkthrough.heuristics import build_heuristic_review_plan
from walkthrough.models import DiffFileEntry, DiffIndex, GroupingMetadata, ReviewPlan
from walkthrough.prompts import (
    build_grouping_message,
    summarize_baseline_plan,
    summarize_diff_index,
    summarize_hunks,
)


def _file(file_id, hunks=8, status="modified", language="py"):
    return DiffFileEntry(
        file_id=file_id,
        status=status,
        language=language,
        hunks=[
            {
                "hunk_id": f"{file_id}#h{i}",
                "old_start": 1 + i * 10,
                "new_start": 1 + i * 10,
                "header": f"@@ -{1 + i * 10},2 +{1 + i * 10},3 @@",
            }
            for i in range(hunks)
        ],
    )


def _large_index():
    return DiffIndex(files=[_file(f"src/mod{i:02d}.py") for i in range(30)])


def _baseline():
    return ReviewPlan.model_validate(
        {
            "pr_overview": {"title": "Baseline", "summary": "Two steps."},
            "steps": [
                {
                    "step_id": "step-1",
                    "title": "Review app changes",
                    "description": "Handlers.",
                    "objective": "Handlers behave.",
                    "priority": "high",
                    "diff_refs": [
                        {
                            "file_id": "src/mod00.py",
                            "hunk_ids": ["src/mod00.py#h0", "src/mod00.py#h1"],
                        },
                        {"file_id": "src/mod01.py", "hunk_ids": ["src/mod01.py#h0"]},
                    ],
                },
                {
                    "step_id": "step-2",
                    "title": "Review docs",
                    "description": "Docs.",
                    "objective": "Docs read well.",
                    "priority": "low",
                    "diff_refs": [{"file_id": "README.md", "hunk_ids": ["README.md#h0"]}],
                },
            ],
            "end_state": {"acceptance_checks": ["Run tests."], "risk_calls": ["None."]},
        }
    )


def test_summarize_diff_index_caps_files_and_hunks():
    summary = summarize_diff_index(_large_index())

    assert summary.startswith("- file_id: src/mod00.py [status: modified, lang: py]\n  hunks:\n")
    assert "- file_id: src/mod23.py" in summary
    assert "src/mod24.py" not in summary
    assert summary.endswith("- ... +6 more files omitted for brevity.")

    assert "    - src/mod00.py#h5: @@ -51,2 +51,3 @@" in summary
    assert "src/mod00.py#h6" not in summary
    assert summary.count("    - ... +2 more hunks omitted.") == 24


def test_summarize_diff_index_without_files():
    assert summarize_diff_index(DiffIndex()) == "(no diff files)"


def test_summarize_diff_index_omits_unknown_language():
    summary = summarize_diff_index(
        DiffIndex(files=[_file("Makefile", hunks=1, status="added", language=None)])
    )

    assert summary == (
        "- file_id: Makefile [status: added]\n"
        "  hunks:\n"
        "    - Makefile#h0: @@ -1,2 +1,3 @@"
    )


def test_summarize_hunks_within_cap_has_no_omission_note():
    hunks = _file("a.py", hunks=6).hunks

    summary = summarize_hunks(hunks)

    assert len(summary.splitlines()) == 6
    assert "omitted" not in summary
    assert summarize_hunks(()) == "    - (no parsed hunks)"


def test_summarize_baseline_plan_lists_step_refs():
    assert summarize_baseline_plan(_baseline()).splitlines() == [
        "- step-1: Review app changes → src/mod00.py [src/mod00.py#h0, src/mod00.py#h1]; "
        "src/mod01.py [src/mod01.py#h0]",
        "- step-2: Review docs → README.md [README.md#h0]",
    ]


def test_summarize_baseline_plan_without_steps():
    empty = build_heuristic_review_plan(DiffIndex())

    assert summarize_baseline_plan(empty) == (
        "Heuristic planner found no review steps (likely because the diff was empty)."
    )


def test_grouping_message_falls_back_when_title_missing():
    diff_index = _large_index()

    message = build_grouping_message(diff_index, GroupingMetadata(), _baseline())

    assert message.startswith("Pull request title: (not provided)\n\nDiff index summary:")
    assert "Pull request summary:" not in message
    assert "- ... +6 more files omitted for brevity." in message
    assert "    - ... +2 more hunks omitted." in message
    assert "- step-2: Review docs → README.md [README.md#h0]" in message
    assert (
        message.index("Diff index summary:")
        < message.index("Heuristic baseline (for context):")
        < message.index("Requirements:")
    )


def test_grouping_message_includes_title_and_description():
    diff_index = _large_index()
    baseline = build_heuristic_review_plan(diff_index)
    metadata = GroupingMetadata(pr_title="Split modules", pr_description="Moves helpers.")

    message = build_grouping_message(diff_index, metadata, baseline)

    assert message.startswith(
        "Pull request title: Split modules\n\nPull request summary:\nMoves helpers."
    )
    assert "- step-1: Review source code changes → src/mod00.py [src/mod00.py#h0, " in message
    assert "Use sequential step_ids: step-1, step-2, ..." in message
