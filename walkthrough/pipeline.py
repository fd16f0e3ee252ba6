"""Orchestration — diff text in, review plan out, by either grouping strategy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from walkthrough.config import BEDROCK_MODEL_ID, MAX_DIFF_BYTES, MAX_GROUPING_ATTEMPTS
from walkthrough.diff_index import parse_unified_diff
from walkthrough.errors import DiffTooLargeError, GroupingRequestError
from walkthrough.heuristics import build_heuristic_review_plan
from walkthrough.llm import ProgressCallback
from walkthrough.llm_grouping import (
    GenerateObject,
    build_llm_review_plan,
    default_generate,
)
from walkthrough.models import DiffIndex, GroupingMetadata, ReviewPlan
from walkthrough.pr_url import parse_github_pr_url

logger = logging.getLogger(__name__)

MODE_HEURISTIC = "heuristic"
MODE_LLM = "llm"
MODE_LLM_ERROR = "llm-error"


@dataclass(frozen=True)
class PlanResult:
    """A finished plan plus the grouping mode that produced it."""

    plan: ReviewPlan
    mode: str
    diff_index: DiffIndex

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "file_count": len(self.diff_index.files),
            "plan": self.plan.model_dump(mode="json"),
        }


# ── Indexing ─────────────────────────────────────────────────────────────────


def index_diff(diff_text: str) -> DiffIndex:
    """Parse diff text after enforcing the size limit.

    Raises:
        DiffTooLargeError: the UTF-8 encoded diff exceeds MAX_DIFF_BYTES
    """
    size = len(diff_text.encode("utf-8"))
    if size > MAX_DIFF_BYTES:
        raise DiffTooLargeError(
            f"Diff is {size} bytes; the limit is {MAX_DIFF_BYTES} bytes."
        )

    diff_index = parse_unified_diff(diff_text)
    logger.info(
        "Indexed diff: %d bytes, %d files, %d hunks",
        size,
        len(diff_index.files),
        sum(len(f.hunks) for f in diff_index.files),
    )
    return diff_index


def resolve_metadata(
    pr_title: Optional[str] = None,
    pr_description: Optional[str] = None,
    pr_url: Optional[str] = None,
) -> GroupingMetadata:
    """Build grouping metadata, deriving a title from ``pr_url`` when missing.

    Raises:
        InvalidPullRequestUrl: ``pr_url`` was given but is not a GitHub PR URL
    """
    metadata = GroupingMetadata(pr_title=pr_title, pr_description=pr_description)
    if metadata.pr_title or not (pr_url and pr_url.strip()):
        return metadata

    parsed = parse_github_pr_url(pr_url)
    return metadata.model_copy(update={"pr_title": parsed.display_title})


# ── Planning ─────────────────────────────────────────────────────────────────


def plan_heuristic(
    diff_text: str,
    pr_title: Optional[str] = None,
    pr_description: Optional[str] = None,
    pr_url: Optional[str] = None,
) -> PlanResult:
    """Index a diff and group it with the deterministic heuristic engine."""
    metadata = resolve_metadata(pr_title, pr_description, pr_url)
    diff_index = index_diff(diff_text)
    plan = build_heuristic_review_plan(
        diff_index,
        pr_title=metadata.pr_title,
        pr_description=metadata.pr_description,
    )
    logger.info("Heuristic plan ready: %d steps", len(plan.steps))
    return PlanResult(plan=plan, mode=MODE_HEURISTIC, diff_index=diff_index)


def plan_with_model(
    diff_text: str,
    pr_title: Optional[str] = None,
    pr_description: Optional[str] = None,
    pr_url: Optional[str] = None,
    generate: Optional[GenerateObject] = None,
    model_id: str = BEDROCK_MODEL_ID,
    max_attempts: int = MAX_GROUPING_ATTEMPTS,
    on_progress: ProgressCallback | None = None,
) -> PlanResult:
    """
    Index a diff and group it with the model, using the heuristic plan as context.

    Model failures propagate; nothing is silently replaced by the heuristic
    plan.

    Raises:
        GroupingRequestError: the diff has no reviewable content
        SchemaMismatchError / pydantic.ValidationError: retries exhausted
        ModelInvocationError: Bedrock call failed
    """
    metadata = resolve_metadata(pr_title, pr_description, pr_url)
    diff_index = index_diff(diff_text)
    if not diff_index.files:
        raise GroupingRequestError("No reviewable diff content.")

    baseline = build_heuristic_review_plan(
        diff_index,
        pr_title=metadata.pr_title,
        pr_description=metadata.pr_description,
    )
    plan = build_llm_review_plan(
        diff_index,
        metadata=metadata,
        baseline_plan=baseline,
        generate=generate or default_generate,
        model_id=model_id,
        max_attempts=max_attempts,
        on_progress=on_progress,
    )
    logger.info("Model plan ready: %d steps", len(plan.steps))
    return PlanResult(plan=plan, mode=MODE_LLM, diff_index=diff_index)
