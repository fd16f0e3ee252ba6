"""Command-line entry point serving the review walkthrough tools over MCP.

``mcp`` is importable for the FastMCP CLI; ``main`` parses the transport
options and runs the server.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from fastmcp import FastMCP

from walkthrough.config import SERVER_HOST, SERVER_NAME, SERVER_PORT, SERVER_VERSION
from walkthrough.mcp_tools import register_tools

logger = logging.getLogger("walkthrough.server")

TRANSPORTS = ("streamable-http", "stdio")

# Third-party loggers that stay at WARNING whatever the verbosity
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3")


def configure_logging(verbosity: int = 1) -> None:
    """
    Configure the root logger from a verbosity count.

    verbosity <= 0 -> WARNING
    verbosity == 1 -> INFO (grouping attempts, token usage)
    verbosity >= 2 -> DEBUG
    """
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_server() -> FastMCP:
    mcp = FastMCP(name=SERVER_NAME, version=SERVER_VERSION)
    register_tools(mcp)
    return mcp


mcp = create_server()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="walkthrough-server",
        description="Serve diff indexing and review walkthrough planning as MCP tools.",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        default="streamable-http",
        help="MCP transport (default: streamable-http).",
    )
    parser.add_argument(
        "--host",
        default=SERVER_HOST,
        help=f"Bind address for streamable-http (default: {SERVER_HOST}).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=SERVER_PORT,
        help=f"Port for streamable-http (default: {SERVER_PORT}).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=1,
        help="Log debug output as well.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        dest="verbose",
        action="store_const",
        const=0,
        help="Only log warnings and errors.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    configure_logging(verbosity=args.verbose)

    if args.transport == "stdio":
        logger.info("Starting %s v%s on stdio", SERVER_NAME, SERVER_VERSION)
        mcp.run(transport="stdio")
        return 0

    logger.info(
        "Starting %s v%s on %s:%d", SERVER_NAME, SERVER_VERSION, args.host, args.port
    )
    try:
        mcp.run(transport="streamable-http", host=args.host, port=args.port)
    except OSError as e:
        logger.error("Server failed to start on %s:%d: %s", args.host, args.port, e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
