"""Bedrock structured generation for model-assisted grouping.

The model is forced to call a single tool whose input schema is the target
JSON schema; the streamed tool input is the generated object.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import boto3
from botocore.config import Config as BotoConfig

from walkthrough.config import (
    BEDROCK_MAX_TOKENS,
    BEDROCK_MODEL_ID,
    BEDROCK_PROFILE,
    BEDROCK_REGION,
    BEDROCK_TEMPERATURE,
)
from walkthrough.errors import ModelInvocationError, NoObjectGeneratedError

logger = logging.getLogger(__name__)

# Type alias for progress callbacks: (chars_so_far, elapsed_seconds, message) -> None
ProgressCallback = Callable[[int, float, str], None]

# Module-level client, created once and reused across calls
_client = None

_STREAM_ERROR_KEYS = (
    "internalServerException",
    "modelStreamErrorException",
    "throttlingException",
    "validationException",
)


def _log_usage(
    tool: str,
    model_id: str,
    input_tokens: int,
    output_tokens: int,
    latency_ms: int,
) -> None:
    logger.info(
        "Bedrock usage [%s]: input=%d output=%d total=%d latency=%dms model=%s",
        tool,
        input_tokens,
        output_tokens,
        input_tokens + output_tokens,
        latency_ms,
        model_id,
    )


# ── Bedrock client ───────────────────────────────────────────────────────────


def _get_client():
    """Lazy-init the Bedrock Runtime client using the configured AWS profile."""
    global _client
    if _client is None:
        session = boto3.Session(
            profile_name=BEDROCK_PROFILE,
            region_name=BEDROCK_REGION,
        )
        # Retries for malformed output happen in the grouping loop, not here
        _client = session.client(
            "bedrock-runtime",
            config=BotoConfig(
                retries={"max_attempts": 2, "mode": "adaptive"},
                read_timeout=120,
                connect_timeout=10,
                max_pool_connections=4,
                tcp_keepalive=True,
            ),
        )
        logger.info(
            "Bedrock client initialized: profile=%s region=%s",
            BEDROCK_PROFILE,
            BEDROCK_REGION,
        )
    return _client


def generate_object(
    system_prompt: str,
    user_message: str,
    schema: dict[str, Any],
    schema_name: str = "review_plan",
    tool: str = "unknown",
    model_id: str = BEDROCK_MODEL_ID,
    max_tokens: int = BEDROCK_MAX_TOKENS,
    temperature: float = BEDROCK_TEMPERATURE,
    on_progress: ProgressCallback | None = None,
) -> dict[str, Any]:
    """
    Ask Bedrock for a JSON object matching ``schema`` and return it unvalidated.

    Args:
        system_prompt: The system prompt
        user_message: The grouping prompt
        schema: JSON schema the object must follow
        schema_name: Name of the forced tool carrying the object
        tool: Name of the calling tool (for usage logging)
        model_id: Bedrock model id
        max_tokens: Maximum tokens in the response
        temperature: Sampling temperature
        on_progress: Optional callback called during streaming with
                     (chars_so_far, elapsed_seconds, message)

    Raises:
        NoObjectGeneratedError: The stream finished without a parseable object
        ModelInvocationError: The Bedrock call itself failed
    """
    client = _get_client()

    body = {
        "anthropic_version": "bedrock-2023-05-31",
        "max_tokens": max_tokens,
        "temperature": temperature,
        "system": system_prompt,
        "messages": [
            {"role": "user", "content": user_message},
        ],
        "tools": [
            {
                "name": schema_name,
                "description": "Submit the result. The input must follow the schema exactly.",
                "input_schema": schema,
            }
        ],
        "tool_choice": {"type": "tool", "name": schema_name},
    }

    start = time.monotonic()
    logger.info("Bedrock stream starting [%s] model=%s", tool, model_id)

    json_chunks: list[str] = []
    saw_tool_use = False
    input_tokens = 0
    output_tokens = 0
    stop_reason = "unknown"

    try:
        response = client.invoke_model_with_response_stream(
            modelId=model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(body),
        )

        chunk_count = 0
        total_chars = 0

        for event in response["body"]:
            if "chunk" not in event:
                for key in _STREAM_ERROR_KEYS:
                    if key in event:
                        err_msg = event[key].get("message", str(event[key]))
                        logger.error(
                            "Bedrock stream error [%s]: %s: %s", tool, key, err_msg
                        )
                        raise ModelInvocationError(
                            f"Bedrock stream error ({key}): {err_msg}"
                        )
                logger.warning(
                    "Unknown non-chunk event in stream: %s", list(event.keys())
                )
                continue

            try:
                chunk = json.loads(event["chunk"]["bytes"])
            except (json.JSONDecodeError, KeyError) as parse_err:
                logger.warning("Malformed stream chunk, skipping: %s", parse_err)
                continue

            chunk_type = chunk.get("type", "")

            if chunk_type == "content_block_start":
                block = chunk.get("content_block", {})
                if block.get("type") == "tool_use" and block.get("name") == schema_name:
                    saw_tool_use = True

            elif chunk_type == "content_block_delta":
                delta = chunk.get("delta", {})
                if delta.get("type") == "input_json_delta":
                    partial = delta.get("partial_json", "")
                    json_chunks.append(partial)
                    total_chars += len(partial)
                    chunk_count += 1

                    if on_progress and chunk_count % 20 == 0:
                        elapsed = time.monotonic() - start
                        try:
                            on_progress(
                                total_chars,
                                elapsed,
                                f"streaming {total_chars} chars, {elapsed:.0f}s",
                            )
                        except Exception as cb_err:
                            logger.warning("on_progress callback raised: %s", cb_err)

            elif chunk_type == "message_delta":
                stop_reason = chunk.get("delta", {}).get("stop_reason", "unknown")
                output_tokens = chunk.get("usage", {}).get("output_tokens", 0)

            elif chunk_type == "message_start":
                input_tokens = (
                    chunk.get("message", {}).get("usage", {}).get("input_tokens", 0)
                )

    except ModelInvocationError:
        raise
    except Exception as e:
        latency_ms = int((time.monotonic() - start) * 1000)
        logger.error("Bedrock inference failed after %dms: %s", latency_ms, e)
        raise ModelInvocationError(f"Bedrock inference failed: {e}") from e

    latency_ms = int((time.monotonic() - start) * 1000)
    _log_usage(tool, model_id, input_tokens, output_tokens, latency_ms)

    raw_json = "".join(json_chunks)
    if not saw_tool_use or not raw_json.strip():
        raise NoObjectGeneratedError(
            f"No object generated: model stopped with {stop_reason!r} "
            "without calling the result tool"
        )

    if stop_reason == "max_tokens":
        logger.warning(
            "Response truncated (hit max_tokens=%d) for tool=%s", max_tokens, tool
        )

    try:
        obj = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise NoObjectGeneratedError(
            f"No object generated: tool input is not valid JSON ({e}); "
            f"stop_reason={stop_reason!r}"
        ) from e

    if not isinstance(obj, dict):
        raise NoObjectGeneratedError(
            f"No object generated: expected a JSON object, got {type(obj).__name__}"
        )

    return obj
