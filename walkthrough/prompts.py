"""System prompt and user message builders for model-assisted grouping."""

from __future__ import annotations

from walkthrough.config import (
    MAX_FILES_IN_PROMPT,
    MAX_HUNKS_PER_FILE_IN_PROMPT,
    MAX_REVIEW_STEPS,
)
from walkthrough.models import DiffHunk, DiffIndex, GroupingMetadata, ReviewPlan


GROUPING_SYSTEM = (
    "You are a pull request walkthrough assistant that helps engineers review changes. "
    "Given a diff index and optional metadata, produce a JSON review plan that matches "
    "the provided schema. Prioritise clarity, keep instructions concise, and ground "
    "every reference in the supplied diff ids."
)

GROUPING_INSTRUCTIONS = "\n".join(
    [
        "Requirements:",
        f"- Produce between 2 and {MAX_REVIEW_STEPS} steps when there are files to review. "
        "Use sequential step_ids: step-1, step-2, ...",
        "- Keep step titles/objectives actionable; mention the intent of the referenced changes.",
        "- diff_refs must reference only the provided file_id and hunk_ids, "
        "and every diff_ref needs at least one hunk_id.",
        "- Populate notes_suggested with reviewer tips when appropriate; otherwise leave it empty.",
        "- Use badges to highlight categories like Docs, Tests, Config, Feature, Performance, etc. "
        "Leave empty array if none apply.",
        "- Set version to 1 and provide a concise pr_overview.summary (2-4 sentences).",
        "- end_state.acceptance_checks should contain 2-3 validations. "
        "end_state.risk_calls should mention the most important risks.",
    ]
)


def summarize_hunks(hunks: tuple[DiffHunk, ...]) -> str:
    if not hunks:
        return "    - (no parsed hunks)"

    shown = hunks[:MAX_HUNKS_PER_FILE_IN_PROMPT]
    lines = [f"    - {h.hunk_id}: {h.header}" for h in shown]
    if len(hunks) > len(shown):
        lines.append(f"    - ... +{len(hunks) - len(shown)} more hunks omitted.")
    return "\n".join(lines)


def summarize_diff_index(diff_index: DiffIndex) -> str:
    """Render the index as a bounded file/hunk listing."""
    if not diff_index.files:
        return "(no diff files)"

    shown = diff_index.files[:MAX_FILES_IN_PROMPT]
    parts = []
    for f in shown:
        language = f", lang: {f.language}" if f.language else ""
        parts.append(
            f"- file_id: {f.file_id} [status: {f.status}{language}]\n"
            f"  hunks:\n{summarize_hunks(f.hunks)}"
        )

    omitted = len(diff_index.files) - len(shown)
    if omitted:
        parts.append(f"- ... +{omitted} more files omitted for brevity.")
    return "\n".join(parts)


def summarize_baseline_plan(plan: ReviewPlan) -> str:
    """Render baseline steps as compact ``step → file [hunks]`` lines."""
    if not plan.steps:
        return "Heuristic planner found no review steps (likely because the diff was empty)."

    lines = []
    for step in plan.steps:
        refs = "; ".join(
            f"{ref.file_id} [{', '.join(ref.hunk_ids)}]" for ref in step.diff_refs
        )
        lines.append(f"- {step.step_id}: {step.title} → {refs}")
    return "\n".join(lines)


def build_grouping_message(
    diff_index: DiffIndex,
    metadata: GroupingMetadata,
    baseline_plan: ReviewPlan,
) -> str:
    """Build the user message for model-assisted grouping."""
    header = [f"Pull request title: {metadata.pr_title or '(not provided)'}"]
    if metadata.pr_description:
        header.append(f"Pull request summary:\n{metadata.pr_description}")

    return "\n\n".join(
        [
            "\n\n".join(header),
            "Diff index summary:",
            summarize_diff_index(diff_index),
            "Heuristic baseline (for context):",
            summarize_baseline_plan(baseline_plan),
            GROUPING_INSTRUCTIONS,
        ]
    )
