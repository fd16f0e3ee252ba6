"""Model-assisted grouping — Bedrock review plans validated against the schema."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from walkthrough import llm
from walkthrough.config import BEDROCK_MODEL_ID, MAX_GROUPING_ATTEMPTS
from walkthrough.errors import SchemaMismatchError
from walkthrough.heuristics import build_heuristic_review_plan
from walkthrough.llm import ProgressCallback
from walkthrough.models import (
    DiffIndex,
    GroupingMetadata,
    ReviewPlan,
    check_plan_references,
)
from walkthrough.prompts import GROUPING_SYSTEM, build_grouping_message

logger = logging.getLogger(__name__)


class GenerateObject(Protocol):
    """Structured generation capability, see ``llm.generate_object``."""

    def __call__(
        self,
        system_prompt: str,
        user_message: str,
        schema: dict[str, Any],
        *,
        tool: str,
        model_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]: ...


def is_schema_mismatch(error: BaseException) -> bool:
    """True for errors a fresh generation attempt might fix.

    Output that fails validation and a provider that produced no object at
    all are the same retriable class; everything else is fatal.
    """
    return isinstance(error, (ValidationError, SchemaMismatchError))


def default_generate(
    system_prompt: str,
    user_message: str,
    schema: dict[str, Any],
    *,
    tool: str,
    model_id: str,
    on_progress: ProgressCallback | None = None,
) -> dict[str, Any]:
    return llm.generate_object(
        system_prompt=system_prompt,
        user_message=user_message,
        schema=schema,
        tool=tool,
        model_id=model_id,
        on_progress=on_progress,
    )


def build_llm_review_plan(
    diff_index: DiffIndex,
    metadata: Optional[GroupingMetadata] = None,
    baseline_plan: Optional[ReviewPlan] = None,
    generate: GenerateObject = default_generate,
    model_id: str = BEDROCK_MODEL_ID,
    max_attempts: int = MAX_GROUPING_ATTEMPTS,
    on_progress: ProgressCallback | None = None,
) -> ReviewPlan:
    """
    Group a diff into review steps with the model, grounded on a baseline plan.

    The baseline plan is prompt context only. It is returned solely for an
    empty diff index, where the model is never called.

    Args:
        diff_index: Parsed diff
        metadata: Optional PR title/description
        baseline_plan: Heuristic plan; computed when omitted
        generate: Structured generation callable
        model_id: Model passed through to ``generate``
        max_attempts: Total attempts allowed for schema-mismatch failures
        on_progress: Optional streaming progress callback

    Raises:
        SchemaMismatchError / pydantic.ValidationError: every attempt produced
            unusable output (the last error is raised)
        Exception: any non-schema error from ``generate``, on first occurrence
    """
    metadata = metadata or GroupingMetadata()
    reference_plan = baseline_plan
    if reference_plan is None:
        reference_plan = build_heuristic_review_plan(
            diff_index,
            pr_title=metadata.pr_title,
            pr_description=metadata.pr_description,
        )

    if not diff_index.files:
        logger.info("Empty diff index; returning baseline plan without a model call")
        return reference_plan

    prompt = build_grouping_message(diff_index, metadata, reference_plan)
    schema = ReviewPlan.model_json_schema()
    attempts = max(1, max_attempts)

    logger.info(
        "Model grouping: files=%d model=%s attempts=%d prompt_chars=%d",
        len(diff_index.files),
        model_id,
        attempts,
        len(prompt),
    )

    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        tool_label = f"group_review[{attempt}/{attempts}]"
        try:
            raw = generate(
                GROUPING_SYSTEM,
                prompt,
                schema,
                tool=tool_label,
                model_id=model_id,
                on_progress=on_progress,
            )
            plan = ReviewPlan.model_validate(raw)
            check_plan_references(plan, diff_index)
        except Exception as e:
            if not is_schema_mismatch(e):
                logger.error("Model grouping failed on attempt %d: %s", attempt, e)
                raise
            last_error = e
            logger.warning(
                "Model output rejected on attempt %d/%d: %s", attempt, attempts, e
            )
            continue

        logger.info("Model grouping succeeded on attempt %d: %d steps", attempt, len(plan.steps))
        return plan

    assert last_error is not None
    raise last_error
