"""MCP tool definitions for the review walkthrough planner."""

from __future__ import annotations

import asyncio
import json
import logging
import traceback
from typing import Optional

from fastmcp import Context, FastMCP

from walkthrough.config import PROGRESS_NOTIFY_TIMEOUT
from walkthrough.models import ReviewPlan
from walkthrough.pipeline import (
    MODE_HEURISTIC,
    MODE_LLM_ERROR,
    index_diff as _index_diff,
    plan_heuristic as _plan_heuristic,
    plan_with_model as _plan_with_model,
)

logger = logging.getLogger(__name__)


def _error_response(tool_name: str, error: Exception, mode: str) -> str:
    """Build a structured JSON error response for MCP tool failures."""
    logger.error("Tool %s failed: %s\n%s", tool_name, error, traceback.format_exc())
    return json.dumps(
        {
            "mode": mode,
            "error": f"Tool '{tool_name}' failed: {error}",
            "error_type": type(error).__name__,
            "plan": None,
        },
        indent=2,
    )


class ProgressRelay:
    """Forward model streaming progress from a worker thread to the MCP client.

    Notifications go out as ``ctx.log`` messages, which need no progressToken
    from the client. The first notification that fails or times out silences
    the relay for the rest of the call.
    """

    def __init__(
        self,
        ctx: Context,
        loop: asyncio.AbstractEventLoop,
        tool_name: str,
        timeout: float = PROGRESS_NOTIFY_TIMEOUT,
    ) -> None:
        self._ctx = ctx
        self._loop = loop
        self._tool_name = tool_name
        self._timeout = timeout
        self.sent = 0
        self.failed = False

    def __call__(self, chars_so_far: int, elapsed: float, message: str) -> None:
        if self.failed:
            return
        try:
            future = asyncio.run_coroutine_threadsafe(
                self._ctx.log(
                    message=f"[{self._tool_name}] {message}",
                    level="info",
                    logger_name="walkthrough.llm",
                ),
                self._loop,
            )
            future.result(timeout=self._timeout)
        except Exception as e:
            self.failed = True
            logger.warning(
                "%s: progress notifications stopped after %d sent: %r",
                self._tool_name,
                self.sent,
                e,
            )
            return
        self.sent += 1


def register_tools(mcp: FastMCP) -> None:
    """Register all walkthrough tools on the given FastMCP server instance."""

    @mcp.tool()
    async def index_diff(diff: str) -> str:
        """Parse a unified diff into a stable-identifier diff index.

        Binary files and files without hunks are left out. Every file gets a
        file_id (its path) and every hunk a hunk_id of the form
        ``<file_id>#h<n>``; review plans reference these ids.

        Args:
            diff: The unified diff output (e.g., from `git diff` or a GitHub .diff URL)
        """
        try:
            diff_index = await asyncio.to_thread(_index_diff, diff)
            return diff_index.to_json()
        except Exception as e:
            return _error_response("index_diff", e, MODE_HEURISTIC)

    @mcp.tool()
    async def plan_review(
        diff: str,
        pr_title: Optional[str] = None,
        pr_description: Optional[str] = None,
        pr_url: Optional[str] = None,
    ) -> str:
        """Deterministic review walkthrough of a diff, without any model call.

        Groups files into at most six review steps (docs, tests, config and
        one step per top-level source directory) and returns the review plan.

        Args:
            diff: The unified diff output
            pr_title: Optional pull request title shown in the plan overview
            pr_description: Optional pull request description
            pr_url: Optional github.com PR URL, used for a title when none is given
        """
        try:
            result = await asyncio.to_thread(
                _plan_heuristic,
                diff_text=diff,
                pr_title=pr_title,
                pr_description=pr_description,
                pr_url=pr_url,
            )
            return json.dumps(result.to_dict(), indent=2)
        except Exception as e:
            return _error_response("plan_review", e, MODE_HEURISTIC)

    @mcp.tool()
    async def group_review(
        diff: str,
        ctx: Context,
        pr_title: Optional[str] = None,
        pr_description: Optional[str] = None,
        pr_url: Optional[str] = None,
    ) -> str:
        """Model-assisted review walkthrough of a diff.

        The heuristic plan is given to the model as context; the model's plan
        is validated against the plan schema and the diff index, with retries
        for malformed output. Failures are reported, never replaced by the
        heuristic plan; call plan_review for that.

        Args:
            diff: The unified diff output
            pr_title: Optional pull request title
            pr_description: Optional pull request description
            pr_url: Optional github.com PR URL, used for a title when none is given
        """
        try:
            relay = ProgressRelay(ctx, asyncio.get_running_loop(), "group_review")

            result = await asyncio.to_thread(
                _plan_with_model,
                diff_text=diff,
                pr_title=pr_title,
                pr_description=pr_description,
                pr_url=pr_url,
                on_progress=relay,
            )
            logger.debug("group_review: relayed %d progress notifications", relay.sent)
            return json.dumps(result.to_dict(), indent=2)
        except Exception as e:
            return _error_response("group_review", e, MODE_LLM_ERROR)

    @mcp.tool()
    def describe_plan_schema() -> str:
        """Get the JSON schema every review plan conforms to."""
        return json.dumps(ReviewPlan.model_json_schema(), indent=2)
