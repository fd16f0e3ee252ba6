"""Configuration for the review walkthrough planner."""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    """Read an integer override from the environment.

    Malformed or out-of-range values are logged and replaced by ``default``.
    """
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer, using %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Ignoring %s=%d: must be >= %d, using %d", name, value, minimum, default)
        return default
    return value


# ── Server Config ────────────────────────────────────────────────────────────
SERVER_NAME = "review-walkthrough-mcp"
SERVER_VERSION = "0.3.0"
SERVER_HOST = "127.0.0.1"
SERVER_PORT = 8089

# ── Bedrock Config ───────────────────────────────────────────────────────────
BEDROCK_PROFILE = "bedrock"
BEDROCK_REGION = "eu-west-1"
BEDROCK_MODEL_ID = os.environ.get(
    "WALKTHROUGH_MODEL_ID", "eu.anthropic.claude-sonnet-4-6"
)
BEDROCK_MAX_TOKENS = 8192
# Low temperature keeps grouping close to the supplied identifiers
BEDROCK_TEMPERATURE = 0.2

# ── Grouping Limits ──────────────────────────────────────────────────────────
MAX_REVIEW_STEPS = 6
# Groups kept as-is when capping; everything else collapses into one misc step
MAX_PRIMARY_GROUPS = MAX_REVIEW_STEPS - 1

MAX_GROUPING_ATTEMPTS = _env_int("WALKTHROUGH_MAX_ATTEMPTS", 3)

# Prompt size caps for the model-assisted grouping
MAX_FILES_IN_PROMPT = 24
MAX_HUNKS_PER_FILE_IN_PROMPT = 6

# Seconds a progress notification may block the streaming worker thread
PROGRESS_NOTIFY_TIMEOUT = 2.0

# ── Input Guard ──────────────────────────────────────────────────────────────
# 1 MiB of UTF-8 diff text
MAX_DIFF_BYTES = 1_048_576

# ── File Classification ──────────────────────────────────────────────────────
DOC_EXTENSIONS = frozenset({"md", "mdx", "rst", "adoc", "txt"})

TEST_KEYWORDS = ("__tests__", "spec", "test", "fixture")

CONFIG_EXTENSIONS = frozenset(
    {"json", "yml", "yaml", "toml", "ini", "conf", "config", "cfg"}
)

CONFIG_FILENAMES = frozenset(
    {
        "package.json",
        "pnpm-lock.yaml",
        "tsconfig.json",
        "eslint.config.mjs",
        ".eslintrc",
        ".eslintrc.json",
        ".eslintrc.js",
        "vite.config.ts",
        "vitest.config.mts",
        "next.config.ts",
        "setup.py",
        "setup.cfg",
        "pyproject.toml",
        "Dockerfile",
        "Makefile",
        ".gitignore",
        ".editorconfig",
    }
)

ROOT_SEGMENT = "(root)"
