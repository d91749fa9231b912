class StatusRelayError(Exception):
    """Base class for all errors surfaced by the resource."""

    pass


class ConfigurationError(StatusRelayError):
    """Raised when the source configuration or the put params are invalid."""

    pass


class ProtocolError(StatusRelayError):
    """Raised when the request does not follow the resource protocol."""

    pass


class InputDirError(StatusRelayError):
    """Raised when the put inputs do not have the expected shape."""

    pass


class GitURLError(StatusRelayError):
    """Raised when a git remote URL cannot be parsed."""

    pass


class GitRepoError(StatusRelayError):
    """Raised when a git working copy is unusable or does not match the configuration."""

    pass


class AppTokenError(StatusRelayError):
    """Raised when the GitHub App installation token cannot be generated."""

    pass


class StatusError(StatusRelayError):
    """Raised when a commit status could not be added."""

    def __init__(self, what: str, details: str, status_code: int | None = None):
        super().__init__(f"{what}\n{details}")
        self.what = what
        self.details = details
        self.status_code = status_code


class ChatError(StatusRelayError):
    """Raised when a message could not be posted to the chat webhook."""

    pass


class SinkErrors(StatusRelayError):
    """Aggregation of the errors of all the sinks that failed."""

    def __init__(self, errors: list[Exception]):
        super().__init__(multi_error_string(errors))
        self.errors = errors


def multi_error_string(errors: list[Exception]) -> str:
    if len(errors) == 1:
        return str(errors[0])
    return "multiple errors:" + "".join(f"\n\t{err}" for err in errors)


class StepError(StatusRelayError):
    """An error of one of the check, get or put steps, prefixed with the step name."""

    def __init__(self, step: str, err: Exception):
        super().__init__(f"{step}: {err}")
        self.step = step
        self.err = err


class SinkError(StatusRelayError):
    """An error of one of the sinks, prefixed with the sink name."""

    def __init__(self, sink: str, err: Exception):
        super().__init__(f"{sink}: {err}")
        self.sink = sink
        self.err = err
