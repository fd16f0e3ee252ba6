"""Exception types raised by the walkthrough planner."""

from __future__ import annotations


class WalkthroughError(Exception):
    """Base class for all walkthrough errors."""


class PlanInvariantError(WalkthroughError):
    """The heuristic engine built a plan that violates the plan schema.

    This is a bug in the engine, never a data problem.
    """


class SchemaMismatchError(WalkthroughError):
    """Structured generation returned output that does not fit the plan schema."""


class NoObjectGeneratedError(SchemaMismatchError):
    """The model finished without producing a structured object."""


class UnknownReferenceError(SchemaMismatchError):
    """A generated plan references files or hunks missing from the diff index."""


class ModelInvocationError(WalkthroughError):
    """Bedrock, network or credential failure while calling the model."""


class GroupingRequestError(WalkthroughError):
    """A grouping request was rejected before any grouping ran."""


class DiffTooLargeError(GroupingRequestError):
    """The supplied diff exceeds the configured size limit."""


class InvalidPullRequestUrl(WalkthroughError):
    """A pull request URL could not be understood. The message is user-facing."""
