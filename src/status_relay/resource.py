"""
The three steps of a Concourse resource.

See https://concourse-ci.org/implementing-resource-types.html
"""

from typing import TextIO

from pydantic import TypeAdapter

from status_relay.exceptions import (
    ProtocolError,
    SinkErrors,
    StatusRelayError,
    StepError,
)
from status_relay.log import logger
from status_relay.models import (
    DUMMY_VERSION,
    CheckRequest,
    GetRequest,
    Output,
    Version,
    parse_request,
)
from status_relay.putter import Putter

_versions = TypeAdapter(list[Version])


def check(data: bytes, out: TextIO, args: list[str]) -> None:
    """
    The check step. There is no meaningful version for this resource, so it
    always returns the same dummy version; the list must not be empty.
    """
    try:
        request: CheckRequest = parse_request(CheckRequest, data)
        request.source.validate_config()
    except StatusRelayError as e:
        raise StepError("check", e) from e
    logger.debug(
        "check: started: version=%s args=%s\n%s", request.version, args, request.source
    )

    versions = [DUMMY_VERSION]
    out.write(_versions.dump_json(versions).decode() + "\n")
    logger.debug("check: success: output=%s", versions)


def get(data: bytes, out: TextIO, args: list[str]) -> None:
    """The get step. A no-op that echoes the requested version."""
    try:
        request: GetRequest = parse_request(GetRequest, data)
        request.source.validate_config()
        if not request.version.ref:
            raise ProtocolError("empty 'version' field")
        # args[0] is the directory where a real resource would fetch the version.
        if not args:
            raise ProtocolError("arguments: missing output directory")
    except StatusRelayError as e:
        raise StepError("get", e) from e
    logger.debug("get: output-directory=%s version=%s", args[0], request.version)

    output = Output(version=request.version)
    out.write(output.model_dump_json() + "\n")
    logger.debug("get: success: output=%s", output)


async def put(data: bytes, out: TextIO, args: list[str], putter: Putter) -> None:
    """
    The put step. All the sinks are attempted, also when some of them fail;
    the step fails if at least one sink failed.
    """
    try:
        putter.load(data, args)
        putter.resolve_inputs()

        errors: list[Exception] = []
        for sink in putter.sinks():
            try:
                await sink.send()
            except StatusRelayError as e:
                logger.debug("put: sink %s failed: %s", sink.name, e)
                errors.append(e)
        if errors:
            raise SinkErrors(errors)

        putter.output(out)
    except StatusRelayError as e:
        raise StepError("put", e) from e
