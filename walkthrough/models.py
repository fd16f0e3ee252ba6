"""Data models for diff indexes, grouping requests and review plans.

Every object that crosses a module boundary is a frozen pydantic model whose
sequence fields are tuples, so a parsed index or a finished plan is immutable
all the way down and can be shared without defensive copies.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from walkthrough.config import MAX_REVIEW_STEPS
from walkthrough.errors import SchemaMismatchError, UnknownReferenceError

NonEmptyStr = Annotated[str, Field(min_length=1)]


class FileStatus(str, Enum):
    """How a file changed in the diff."""

    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"
    RENAMED = "renamed"
    COPIED = "copied"

    def __str__(self) -> str:
        return self.value


class Priority(str, Enum):
    """Reviewer attention level for a step."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def __str__(self) -> str:
        return self.value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ── Diff Index ───────────────────────────────────────────────────────────────


class DiffHunk(_Frozen):
    """A single hunk, anchored by its old/new start lines."""

    hunk_id: NonEmptyStr
    old_start: int = Field(ge=0)
    new_start: int = Field(ge=0)
    header: NonEmptyStr


class DiffFileEntry(_Frozen):
    """One reviewable file with at least one hunk."""

    file_id: NonEmptyStr
    status: FileStatus
    language: Optional[NonEmptyStr] = None
    hunks: tuple[DiffHunk, ...] = Field(min_length=1)

    @property
    def hunk_ids(self) -> list[str]:
        return [h.hunk_id for h in self.hunks]


class DiffIndex(_Frozen):
    """Normalized, stable-identifier view of a unified diff."""

    diff_index_version: Literal[1] = 1
    files: tuple[DiffFileEntry, ...] = ()

    def hunk_ids_by_file(self) -> dict[str, set[str]]:
        return {f.file_id: set(f.hunk_ids) for f in self.files}

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)


# ── Grouping Request ─────────────────────────────────────────────────────────


class GroupingMetadata(_Frozen):
    """Optional pull request context. Blank values are dropped."""

    pr_title: Optional[str] = Field(default=None, alias="prTitle")
    pr_description: Optional[str] = Field(default=None, alias="prDescription")

    @field_validator("pr_title", "pr_description")
    @classmethod
    def _strip_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None


class GroupingRequest(_Frozen):
    """Payload accepted by the grouping entry points."""

    diff_index: DiffIndex = Field(alias="diffIndex")
    metadata: GroupingMetadata = Field(default_factory=GroupingMetadata)

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value):
        return {} if value is None else value


# ── Review Plan ──────────────────────────────────────────────────────────────


class DiffReference(_Frozen):
    """A file plus the hunks of it that a step covers."""

    file_id: NonEmptyStr = Field(description="file_id taken from the diff index")
    hunk_ids: tuple[NonEmptyStr, ...] = Field(
        min_length=1, description="hunk_ids of this file taken from the diff index"
    )


class ReviewStep(_Frozen):
    step_id: NonEmptyStr = Field(description="Sequential id: step-1, step-2, ...")
    title: NonEmptyStr
    description: NonEmptyStr
    objective: NonEmptyStr
    priority: Priority
    diff_refs: tuple[DiffReference, ...] = Field(min_length=1)
    notes_suggested: tuple[NonEmptyStr, ...] = ()
    badges: tuple[NonEmptyStr, ...] = ()


class PrOverview(_Frozen):
    title: NonEmptyStr
    summary: NonEmptyStr


class EndState(_Frozen):
    acceptance_checks: tuple[NonEmptyStr, ...] = Field(min_length=1)
    risk_calls: tuple[NonEmptyStr, ...] = Field(min_length=1)


class ReviewPlan(_Frozen):
    """Ordered walkthrough of a diff, produced by either grouping strategy."""

    version: Literal[1] = 1
    pr_overview: PrOverview
    steps: tuple[ReviewStep, ...] = Field(default=(), max_length=MAX_REVIEW_STEPS)
    end_state: EndState

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "ReviewPlan":
        ids = [s.step_id for s in self.steps]
        if len(ids) != len(set(ids)):
            raise ValueError(f"step_ids must be unique, got {ids}")
        return self

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)


def check_plan_references(plan: ReviewPlan, diff_index: DiffIndex) -> None:
    """Verify that a plan only points at files and hunks of ``diff_index``.

    Raises:
        UnknownReferenceError: a diff_ref names an unknown file or hunk
        SchemaMismatchError: the plan has no steps although the index has files
    """
    known = diff_index.hunk_ids_by_file()

    if diff_index.files and not plan.steps:
        raise SchemaMismatchError(
            f"plan has no steps for a diff with {len(diff_index.files)} files"
        )

    for step in plan.steps:
        for ref in step.diff_refs:
            hunks = known.get(ref.file_id)
            if hunks is None:
                raise UnknownReferenceError(
                    f"{step.step_id} references unknown file {ref.file_id!r}"
                )
            missing = [hid for hid in ref.hunk_ids if hid not in hunks]
            if missing:
                raise UnknownReferenceError(
                    f"{step.step_id} references unknown hunks {missing} "
                    f"in {ref.file_id!r}"
                )
