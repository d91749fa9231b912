"""
Entry point of the resource. The check, in and out executables are links to
the same console script, which dispatches on the name it was invoked as.

The Concourse resource protocol uses stdin, stdout and the command line
arguments; logs go to stderr.
"""

import asyncio
import json
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import BinaryIO, TextIO

from status_relay.exceptions import (
    ConfigurationError,
    ProtocolError,
    StatusRelayError,
    StepError,
)
from status_relay.log import LEVELS, logger, setup_logging
from status_relay.putter import Putter
from status_relay import resource
from status_relay.sets import Set

PROG = "status-relay"
COMMANDS = Set.of("check", "in", "out")
STEPS = {"check": "check", "in": "get", "out": "put"}


def build_info() -> str:
    try:
        return f"{PROG} version {version(PROG)}"
    except PackageNotFoundError:
        return f"{PROG} version unknown"


def peek_log_level(data: bytes) -> str:
    """
    Return source.log_level from the request, "info" if not set. Every request
    has a source, so the log level can be known before the full parse.
    """
    try:
        decoded = json.loads(data)
    except ValueError as e:
        raise ProtocolError(f"peeking into JSON for log_level: {e}") from None
    level = "info"
    if isinstance(decoded, dict) and isinstance(decoded.get("source"), dict):
        level = decoded["source"].get("log_level", level)
    if level not in LEVELS:
        raise ConfigurationError(
            f"invalid log level {level!r}. (valid: debug, info, warn, error)"
        )
    return level


def command_name(argv: list[str]) -> tuple[str, list[str]]:
    """Return the command and its arguments, from argv[0] or else from argv[1]."""
    name = os.path.basename(argv[0]) if argv else ""
    if name in COMMANDS:
        return name, argv[1:]
    if len(argv) > 1 and argv[1] in COMMANDS:
        return argv[1], argv[2:]
    raise ProtocolError(f"invoked as '{name}'; want: one of {COMMANDS}")


def run(
    stdin: BinaryIO,
    stdout: TextIO,
    stderr: TextIO,
    argv: list[str],
    putter: Putter | None = None,
) -> None:
    cmd, args = command_name(argv)

    data = stdin.read()
    try:
        level = peek_log_level(data)
    except StatusRelayError as e:
        raise StepError(STEPS[cmd], e) from e
    setup_logging(level, stream=stderr)
    logger.info(build_info())

    if cmd == "check":
        resource.check(data, stdout, args)
    elif cmd == "in":
        resource.get(data, stdout, args)
    else:
        asyncio.run(resource.put(data, stdout, args, putter or Putter()))


def main() -> None:
    try:
        run(sys.stdin.buffer, sys.stdout, sys.stderr, sys.argv)
    except StatusRelayError as e:
        print(f"{PROG}: error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
