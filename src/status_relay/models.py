"""
The JSON objects of the Concourse resource protocol, as seen by this resource.

See https://concourse-ci.org/implementing-resource-types.html
"""

import re
from enum import StrEnum
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from status_relay.exceptions import ConfigurationError, ProtocolError
from status_relay.sets import Set

DEFAULT_HOSTNAME = "github.com"

SINK_CODE_HOST = "code-host"
SINK_CHAT = "chat"
# Canonical order: sinks are always attempted in this order.
SUPPORTED_SINKS = (SINK_CODE_HOST, SINK_CHAT)

KEY_STATE = "state"

_hostname_re = re.compile(r"^[a-zA-Z0-9.-]+(?::\d+)?$")


def redact(value: str) -> str:
    """Return a redacted value; an empty value stays empty."""
    if value:
        return "***REDACTED***"
    return value


class BuildState(StrEnum):
    abort = "abort"
    error = "error"
    failure = "failure"
    pending = "pending"
    success = "success"


DEFAULT_NOTIFY_STATES = [BuildState.abort, BuildState.error, BuildState.failure]


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class App(StrictModel):
    """GitHub App authentication."""

    client_id: str = ""
    installation_id: int = 0
    private_key: str = Field(default="", repr=False)

    def is_zero(self) -> bool:
        return not (self.client_id or self.installation_id or self.private_key)

    def missing_keys(self) -> list[str]:
        missing = []
        if not self.client_id:
            missing.append("app.client_id")
        if not self.installation_id:
            missing.append("app.installation_id")
        if not self.private_key:
            missing.append("app.private_key")
        return missing


class Source(StrictModel):
    """The "source:" block of the resource in the pipeline."""

    owner: str = ""
    repo: str = ""
    access_token: str = Field(default="", repr=False)
    app: App = Field(default_factory=App)

    hostname: str = DEFAULT_HOSTNAME
    chat_webhook: str = Field(default="", repr=False)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    context_prefix: str = ""
    omit_target_url: bool = False
    chat_append_summary: bool = True
    chat_notify_on_states: list[BuildState] = Field(
        default_factory=lambda: list(DEFAULT_NOTIFY_STATES)
    )
    sinks: list[str] = Field(default_factory=list)

    @field_validator("hostname")
    @classmethod
    def _default_hostname(cls, value: str) -> str:
        return value or DEFAULT_HOSTNAME

    @field_validator("chat_notify_on_states")
    @classmethod
    def _default_notify_states(cls, value: list[BuildState]) -> list[BuildState]:
        return value or list(DEFAULT_NOTIFY_STATES)

    def __str__(self) -> str:
        lines = [
            f"owner:                  {self.owner}",
            f"repo:                   {self.repo}",
            f"hostname:               {self.hostname}",
            f"access_token:           {redact(self.access_token)}",
            f"chat_webhook:           {redact(self.chat_webhook)}",
            f"app.client_id:          {self.app.client_id}",
            f"app.installation_id:    {self.app.installation_id}",
            f"app.private_key:        {redact(self.app.private_key)}",
            f"log_level:              {self.log_level}",
            f"context_prefix:         {self.context_prefix}",
            f"omit_target_url:        {self.omit_target_url}",
            f"chat_append_summary:    {self.chat_append_summary}",
            f"chat_notify_on_states:  {Set(str(s) for s in self.chat_notify_on_states)}",
            f"sinks:                  {Set(self.sinks)}",
        ]
        return "\n".join(lines)

    def validate_config(
        self, sinks: list[str] | None = None, chat_webhook_override: str = ""
    ) -> None:
        """
        Check the configuration invariants for the given sink selection (by
        default, the one in this source block). An empty selection means all the
        supported sinks; in that case the chat sink is optional.
        """
        validate_sinks(Set(self.sinks))
        if sinks:
            validate_sinks(Set(sinks), origin="params")
        selection = Set(sinks or self.sinks)

        mandatory = []
        if selection.size() == 0 or SINK_CODE_HOST in selection:
            if not self.app.is_zero() and self.access_token:
                raise ConfigurationError(
                    "source: cannot specify both app and access_token"
                )
            if self.app.is_zero() and not self.access_token:
                raise ConfigurationError(
                    "source: one of access_token or app must be specified"
                )
            if not self.owner:
                mandatory.append("owner")
            if not self.repo:
                mandatory.append("repo")
            if not self.app.is_zero():
                mandatory.extend(self.app.missing_keys())

        if SINK_CHAT in selection and not (self.chat_webhook or chat_webhook_override):
            mandatory.append("chat_webhook")

        if mandatory:
            raise ConfigurationError(f"source: missing keys: {', '.join(mandatory)}")

        if not _hostname_re.match(self.hostname):
            raise ConfigurationError(
                f"source: invalid hostname: {self.hostname}. "
                "Don't configure the scheme or the path"
            )


def validate_sinks(sinks: Set[str], origin: str = "source") -> None:
    invalid = sinks.difference(Set(SUPPORTED_SINKS))
    if invalid.size() > 0:
        raise ConfigurationError(f"{origin}: invalid sink(s): {invalid}")


def effective_sinks(source: Source, params: "PutParams") -> Set[str]:
    if params.sinks:
        return Set(params.sinks)
    if source.sinks:
        return Set(source.sinks)
    return Set(SUPPORTED_SINKS)


class Version(StrictModel):
    """For this resource, the only key of a version is "ref"."""

    ref: str = ""

    def __str__(self) -> str:
        return f"ref: {self.ref}"


DUMMY_VERSION = Version(ref="dummy")


class Metadata(BaseModel):
    name: str
    value: str


class Output(BaseModel):
    """The JSON object emitted by the get and put steps."""

    version: Version
    metadata: list[Metadata] = Field(default_factory=list)


class PutParams(StrictModel):
    """The "params:" block of a put step."""

    state: BuildState
    context: str = ""
    chat_message: str = ""
    chat_message_file: str = ""
    chat_append_summary: bool = True
    chat_webhook: str = Field(default="", repr=False)
    sinks: list[str] = Field(default_factory=list)

    def __str__(self) -> str:
        lines = [
            f"state:                {self.state}",
            f"context:              {self.context}",
            f"chat_message:         {self.chat_message}",
            f"chat_message_file:    {self.chat_message_file}",
            f"chat_append_summary:  {self.chat_append_summary}",
            f"chat_webhook:         {redact(self.chat_webhook)}",
            f"sinks:                {Set(self.sinks)}",
        ]
        return "\n".join(lines)


class CheckRequest(StrictModel):
    source: Source = Field(default_factory=Source)
    # Concourse omits the version from the first check request.
    version: Version | None = None


class GetRequest(StrictModel):
    source: Source = Field(default_factory=Source)
    version: Version = Field(default_factory=Version)


class PutRequest(StrictModel):
    source: Source = Field(default_factory=Source)
    params: PutParams

    @model_validator(mode="before")
    @classmethod
    def _default_params_from_source(cls, data: Any) -> Any:
        # params.chat_append_summary, when absent, takes the value of
        # source.chat_append_summary.
        if not isinstance(data, dict):
            return data
        source = data.get("source")
        params = data.get("params")
        if isinstance(params, dict) and "chat_append_summary" not in params:
            default = True
            if isinstance(source, dict):
                default = source.get("chat_append_summary", True)
            data = {**data, "params": {**params, "chat_append_summary": default}}
        return data


def format_validation_error(err: ValidationError) -> str:
    """Render a pydantic error as a single line, in the resource vocabulary."""
    problems = []
    for item in err.errors():
        loc = ".".join(str(part) for part in item["loc"])
        if item["type"] == "extra_forbidden":
            problems.append(f'unknown field "{loc}"')
        elif item["type"] == "enum" and item["loc"][-1] == KEY_STATE:
            problems.append(f"invalid build state: {item['input']}")
        elif item["type"] == "enum":
            problems.append(f"{loc}: invalid build state: {item['input']}")
        elif item["type"] == "json_invalid":
            problems.append(f"invalid JSON: {item['msg']}")
        else:
            problems.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return "; ".join(problems)


def parse_request(model: type[StrictModel], data: bytes) -> Any:
    try:
        return model.model_validate_json(data)
    except ValidationError as e:
        raise ProtocolError(
            f"parsing request: {format_validation_error(e)}"
        ) from None
