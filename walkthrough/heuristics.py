"""Heuristic grouping — deterministic review steps from a DiffIndex alone.

Files are classified into docs/tests/config/feature groups, merged by key,
capped at MAX_REVIEW_STEPS and sorted; each group then becomes one step
through a per-category describer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from walkthrough.config import (
    CONFIG_EXTENSIONS,
    CONFIG_FILENAMES,
    DOC_EXTENSIONS,
    MAX_PRIMARY_GROUPS,
    MAX_REVIEW_STEPS,
    ROOT_SEGMENT,
    TEST_KEYWORDS,
)
from walkthrough.errors import PlanInvariantError, WalkthroughError
from walkthrough.models import (
    DiffFileEntry,
    DiffIndex,
    DiffReference,
    FileStatus,
    Priority,
    ReviewPlan,
    check_plan_references,
)

logger = logging.getLogger(__name__)


class GroupCategory(str, Enum):
    DOCS = "docs"
    TESTS = "tests"
    CONFIG = "config"
    FEATURE = "feature"
    MISC = "misc"

    def __str__(self) -> str:
        return self.value


CATEGORY_RANK = {
    GroupCategory.DOCS: 0,
    GroupCategory.TESTS: 1,
    GroupCategory.CONFIG: 2,
    GroupCategory.FEATURE: 3,
    GroupCategory.MISC: 4,
}

STATUS_VERBS = {
    FileStatus.ADDED: "added",
    FileStatus.DELETED: "removed",
    FileStatus.MODIFIED: "updated",
    FileStatus.RENAMED: "renamed",
    FileStatus.COPIED: "copied",
}

AREA_LABELS = {
    GroupCategory.DOCS: "documentation",
    GroupCategory.TESTS: "tests",
    GroupCategory.CONFIG: "configuration",
    GroupCategory.FEATURE: "code",
    GroupCategory.MISC: "mixed updates",
}

# Ordered by the sentence order expected in end_state
ACCEPTANCE_CHECKS = (
    (GroupCategory.TESTS, "Run the test suite to confirm coverage remains green."),
    (GroupCategory.DOCS, "Proofread updated documentation for accuracy and formatting."),
    (GroupCategory.CONFIG, "Validate configuration changes by running the build."),
    (GroupCategory.FEATURE, "Smoke test the impacted flows in the application."),
)
FALLBACK_ACCEPTANCE_CHECK = "Confirm the diff renders as expected."

RISK_CALLS = (
    (GroupCategory.FEATURE, "Logic changes could introduce regressions in the touched modules."),
    (GroupCategory.CONFIG, "Configuration adjustments could impact build or deployment pipelines."),
    (GroupCategory.TESTS, "Test changes might conceal gaps in coverage if not verified carefully."),
    (GroupCategory.DOCS, "Documentation updates may drift from actual behavior if review misses nuances."),
)
FALLBACK_RISK_CALL = "Heuristic grouping may have missed contextual dependencies."

EMPTY_PLAN_TITLE = "No diff content detected"
EMPTY_PLAN_SUMMARY = "The supplied diff did not contain any reviewable hunks."
EMPTY_PLAN_CHECK = "Confirm the pull request exposes code or documentation changes."
EMPTY_PLAN_RISK = "Empty diffs may indicate fetch or permissions issues."


@dataclass
class GroupContext:
    """Files that will be reviewed together in one step."""

    key: str
    category: GroupCategory
    top_segment: Optional[str] = None
    files: list[DiffFileEntry] = field(default_factory=list)

    @property
    def hunk_count(self) -> int:
        return sum(len(f.hunks) for f in self.files)


@dataclass(frozen=True)
class StepDescriptor:
    title: str
    description: str
    objective: str
    priority: Priority
    notes: tuple[str, ...]
    badges: tuple[str, ...]


# ── Classification ───────────────────────────────────────────────────────────


def is_documentation_file(file: DiffFileEntry) -> bool:
    lower = file.file_id.lower()
    if (file.language or "").lower() in DOC_EXTENSIONS:
        return True
    return (
        "/docs/" in lower
        or lower.startswith("docs/")
        or "readme" in lower
        or "changelog" in lower
    )


def is_test_file(file: DiffFileEntry) -> bool:
    lower = file.file_id.lower()
    return any(keyword in lower for keyword in TEST_KEYWORDS)


def is_config_file(file: DiffFileEntry) -> bool:
    lower = file.file_id.lower()
    filename = file.file_id.rsplit("/", 1)[-1]
    if (file.language or "").lower() in CONFIG_EXTENSIONS:
        return True
    if filename in CONFIG_FILENAMES:
        return True
    return "/config/" in lower or lower.startswith("config/") or ".github/" in lower


def classify_file(file: DiffFileEntry) -> GroupContext:
    """Map one file to its group. First matching rule wins."""
    if is_documentation_file(file):
        return GroupContext(key="docs", category=GroupCategory.DOCS, files=[file])
    if is_test_file(file):
        return GroupContext(key="tests", category=GroupCategory.TESTS, files=[file])
    if is_config_file(file):
        return GroupContext(key="config", category=GroupCategory.CONFIG, files=[file])

    segments = file.file_id.split("/")
    top_segment = segments[0] if len(segments) > 1 else ROOT_SEGMENT
    return GroupContext(
        key=f"feature:{top_segment}",
        category=GroupCategory.FEATURE,
        top_segment=top_segment,
        files=[file],
    )


def merge_groups(contexts: Iterable[GroupContext]) -> list[GroupContext]:
    """Merge contexts sharing a key, keeping first-seen group and file order."""
    merged: dict[str, GroupContext] = {}
    for context in contexts:
        existing = merged.get(context.key)
        if existing is None:
            merged[context.key] = GroupContext(
                key=context.key,
                category=context.category,
                top_segment=context.top_segment,
                files=list(context.files),
            )
        else:
            existing.files.extend(context.files)
    return list(merged.values())


def _group_order_key(group: GroupContext) -> tuple[int, int, str]:
    return (CATEGORY_RANK[group.category], -len(group.files), group.key)


def limit_group_count(groups: list[GroupContext]) -> list[GroupContext]:
    """Collapse the lightest groups into one misc group above the step cap.

    Groups are ranked by hunk count; equal weights fall back to the final
    step ordering (category rank, then key) so the survivors never depend
    on input order.
    """
    if len(groups) <= MAX_REVIEW_STEPS:
        return groups

    ranked = sorted(
        groups,
        key=lambda g: (-g.hunk_count, CATEGORY_RANK[g.category], g.key),
    )
    primary = ranked[:MAX_PRIMARY_GROUPS]
    remaining = ranked[MAX_PRIMARY_GROUPS:]

    misc = GroupContext(
        key="misc",
        category=GroupCategory.MISC,
        files=[f for group in remaining for f in group.files],
    )
    logger.debug(
        "Capped %d groups: merged %s into misc", len(groups), [g.key for g in remaining]
    )
    return [*primary, misc]


def sort_groups(groups: list[GroupContext]) -> list[GroupContext]:
    return sorted(groups, key=_group_order_key)


# ── Step Synthesis ───────────────────────────────────────────────────────────


def summarize_files(files: list[DiffFileEntry]) -> str:
    file_ids = [f.file_id for f in files]
    if len(file_ids) == 1:
        return file_ids[0]
    if len(file_ids) == 2:
        return f"{file_ids[0]} and {file_ids[1]}"
    return f"{file_ids[0]}, {file_ids[1]} +{len(file_ids) - 2} more"


def summarize_statuses(files: list[DiffFileEntry]) -> str:
    verbs = list(dict.fromkeys(STATUS_VERBS[f.status] for f in files))
    if not verbs:
        return "updated"
    if len(verbs) == 1:
        return verbs[0]
    return ", ".join(verbs[:-1]) + f" and {verbs[-1]}"


def humanize_segment(segment: Optional[str]) -> str:
    if not segment or segment == ROOT_SEGMENT:
        return "root files"
    if segment == "src":
        return "source code"
    replaced = segment.replace("-", " ").replace("_", " ")
    return replaced[:1].upper() + replaced[1:]


def _describe_feature(group: GroupContext) -> StepDescriptor:
    label = humanize_segment(group.top_segment)
    return StepDescriptor(
        title=f"Review {label} changes",
        description=(
            f"Focus on {summarize_statuses(group.files)} files: "
            f"{summarize_files(group.files)}."
        ),
        objective=f"Exercise the affected {label} paths to ensure behavior stays correct.",
        priority=Priority.HIGH,
        notes=("Exercise the main flows these files touch for regressions.",),
        badges=("Code",),
    )


def _describe_docs(group: GroupContext) -> StepDescriptor:
    return StepDescriptor(
        title="Review documentation updates",
        description=(
            "Confirm documentation reflects the latest behavior in "
            f"{summarize_files(group.files)}."
        ),
        objective="Check for accuracy, clarity, and formatting issues in the updated docs.",
        priority=Priority.LOW,
        notes=("Look for outdated references or typos.",),
        badges=("Docs",),
    )


def _describe_tests(group: GroupContext) -> StepDescriptor:
    return StepDescriptor(
        title="Review test coverage adjustments",
        description=f"Review the updated test coverage across {summarize_files(group.files)}.",
        objective="Ensure tests cover the intended scenarios and still pass.",
        priority=Priority.MEDIUM,
        notes=("Verify that assertions align with the new behavior.",),
        badges=("Tests",),
    )


def _describe_config(group: GroupContext) -> StepDescriptor:
    return StepDescriptor(
        title="Review configuration updates",
        description=f"Inspect configuration tweaks within {summarize_files(group.files)}.",
        objective="Ensure configuration loads correctly locally and in CI.",
        priority=Priority.MEDIUM,
        notes=("Validate that defaults and environment-specific values remain correct.",),
        badges=("Config",),
    )


def _describe_misc(group: GroupContext) -> StepDescriptor:
    return StepDescriptor(
        title="Review consolidated updates",
        description=f"Sweep through the remaining updates: {summarize_files(group.files)}.",
        objective="Spot-check these smaller changes for unintended side effects.",
        priority=Priority.MEDIUM,
        notes=("Scan for inconsistencies that the heuristics bundled together.",),
        badges=("Mixed",),
    )


DESCRIBERS: dict[GroupCategory, Callable[[GroupContext], StepDescriptor]] = {
    GroupCategory.DOCS: _describe_docs,
    GroupCategory.TESTS: _describe_tests,
    GroupCategory.CONFIG: _describe_config,
    GroupCategory.FEATURE: _describe_feature,
    GroupCategory.MISC: _describe_misc,
}


def describe_group(group: GroupContext) -> StepDescriptor:
    return DESCRIBERS[group.category](group)


def to_diff_refs(files: list[DiffFileEntry]) -> list[DiffReference]:
    return [DiffReference(file_id=f.file_id, hunk_ids=f.hunk_ids) for f in files]


def build_steps(groups: list[GroupContext]) -> list[dict]:
    steps = []
    for index, group in enumerate(groups, start=1):
        descriptor = describe_group(group)
        steps.append(
            {
                "step_id": f"step-{index}",
                "title": descriptor.title,
                "description": descriptor.description,
                "objective": descriptor.objective,
                "priority": descriptor.priority,
                "diff_refs": to_diff_refs(group.files),
                "notes_suggested": list(descriptor.notes),
                "badges": list(descriptor.badges),
            }
        )
    return steps


# ── Overview & End State ─────────────────────────────────────────────────────


def _present_categories(groups: list[GroupContext]) -> set[GroupCategory]:
    return {g.category for g in groups}


def build_overview(
    groups: list[GroupContext],
    file_count: int,
    pr_title: Optional[str] = None,
) -> dict:
    labels = list(dict.fromkeys(AREA_LABELS[g.category] for g in groups))

    if pr_title and pr_title.strip():
        title = f"Heuristic walkthrough for: {pr_title.strip()}"
    else:
        title = f"Heuristic walkthrough across {file_count} file{'' if file_count == 1 else 's'}"

    focus = ", ".join(labels) if labels else "general diff inspection"
    step_word = "step" if len(groups) == 1 else "steps"
    summary = (
        f"This heuristic baseline groups the diff into {len(groups)} review "
        f"{step_word} covering {focus}."
    )
    return {"title": title, "summary": summary}


def _accumulate(
    present: set[GroupCategory],
    table: tuple[tuple[GroupCategory, str], ...],
    fallback: str,
) -> list[str]:
    # dict keys double as an insertion-ordered set
    sentences: dict[str, None] = {}
    for category, sentence in table:
        if category in present:
            sentences.setdefault(sentence, None)
    return list(sentences) or [fallback]


def aggregate_acceptance_checks(groups: list[GroupContext]) -> list[str]:
    return _accumulate(
        _present_categories(groups), ACCEPTANCE_CHECKS, FALLBACK_ACCEPTANCE_CHECK
    )


def aggregate_risk_calls(groups: list[GroupContext]) -> list[str]:
    return _accumulate(_present_categories(groups), RISK_CALLS, FALLBACK_RISK_CALL)


# ── Plan Builder ─────────────────────────────────────────────────────────────


def empty_review_plan() -> ReviewPlan:
    return ReviewPlan(
        pr_overview={"title": EMPTY_PLAN_TITLE, "summary": EMPTY_PLAN_SUMMARY},
        steps=[],
        end_state={
            "acceptance_checks": [EMPTY_PLAN_CHECK],
            "risk_calls": [EMPTY_PLAN_RISK],
        },
    )


def build_heuristic_review_plan(
    diff_index: DiffIndex,
    pr_title: Optional[str] = None,
    pr_description: Optional[str] = None,
) -> ReviewPlan:
    """
    Build a deterministic review plan from the diff index alone.

    Identical input always yields an identical plan. ``pr_description`` is
    accepted for parity with the model-assisted path and does not affect
    the heuristic output.

    Raises:
        PlanInvariantError: the engine produced a plan that fails validation
    """
    files = [f for f in diff_index.files if f.hunks]
    if not files:
        return empty_review_plan()

    groups = sort_groups(limit_group_count(merge_groups(classify_file(f) for f in files)))

    raw_plan = {
        "version": 1,
        "pr_overview": build_overview(groups, len(diff_index.files), pr_title),
        "steps": build_steps(groups),
        "end_state": {
            "acceptance_checks": aggregate_acceptance_checks(groups),
            "risk_calls": aggregate_risk_calls(groups),
        },
    }

    try:
        plan = ReviewPlan.model_validate(raw_plan)
        check_plan_references(plan, diff_index)
    except (ValidationError, WalkthroughError) as e:
        raise PlanInvariantError(f"heuristic engine produced an invalid plan: {e}") from e

    logger.debug("Heuristic plan: %s", [g.key for g in groups])
    return plan
