import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, NamedTuple

import aiohttp

from status_relay.exceptions import StatusRelayError
from status_relay.retry import Action, BackoffFn, exponential_backoff

JitterFn = Callable[[], float]


class RateLimit(NamedTuple):
    remaining: int
    reset: datetime


class GitHubError(StatusRelayError):
    """A non-2xx reply of the GitHub API."""

    def __init__(
        self,
        status_code: int,
        reason: str,
        body: str,
        oauth_info: str = "",
        date: datetime | None = None,
        rate_limit: RateLimit | None = None,
    ):
        super().__init__(body)
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.oauth_info = oauth_info
        self.date = date
        self.rate_limit = rate_limit

    @classmethod
    async def from_response(cls, resp: aiohttp.ClientResponse) -> "GitHubError":
        body = (await resp.text(errors="replace")).strip()
        headers = resp.headers

        # The status API replies with an empty X-Accepted-Oauth-Scopes, so this
        # cannot be used to detect a missing scope; it is only reported.
        oauth_info = (
            f"X-Accepted-Oauth-Scopes: {headers.get('X-Accepted-Oauth-Scopes', '')}, "
            f"X-Oauth-Scopes: {headers.get('X-Oauth-Scopes', '')}"
        )

        date = parse_http_date(headers.get("Date", ""))
        rate_limit = None
        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")
        if remaining is not None and reset is not None:
            try:
                rate_limit = RateLimit(
                    remaining=int(remaining),
                    reset=datetime.fromtimestamp(int(reset), tz=timezone.utc),
                )
            except (ValueError, OverflowError, OSError):
                rate_limit = None

        return cls(
            status_code=resp.status,
            reason=resp.reason or "",
            body=body,
            oauth_info=oauth_info,
            date=date,
            rate_limit=rate_limit,
        )


def parse_http_date(value: str) -> datetime | None:
    """Parse an RFC 1123 Date header; return None if missing or invalid."""
    if not value:
        return None
    try:
        date = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return date


def is_transient(status_code: int) -> bool:
    return status_code >= 500


def is_rate_limited(err: GitHubError) -> bool:
    """
    See https://docs.github.com/en/rest/overview/resources-in-the-rest-api#exceeding-the-rate-limit
    """
    return (
        err.status_code == 403
        and err.rate_limit is not None
        and err.rate_limit.remaining == 0
        and err.date is not None
    )


def rate_limit_delay(err: GitHubError) -> float:
    """Seconds until the rate limit resets, according to the server clock only."""
    assert err.rate_limit is not None and err.date is not None
    return max(0.0, (err.rate_limit.reset - err.date).total_seconds())


def default_jitter() -> float:
    return random.uniform(1, 3)


def classifier(err: BaseException | None) -> Action:
    if err is None:
        return Action.SUCCESS
    if isinstance(err, GitHubError):
        if is_transient(err.status_code) or is_rate_limited(err):
            return Action.SOFT_FAIL
    return Action.HARD_FAIL


def make_backoff(jitter: JitterFn = default_jitter) -> BackoffFn:
    """
    Return a backoff that waits for the rate limit reset when rate limited and
    otherwise falls back to exponential backoff.
    """

    def backoff(
        first: bool, previous: float, limit: float, err: BaseException | None
    ) -> float:
        if isinstance(err, GitHubError) and is_rate_limited(err):
            return rate_limit_delay(err) + jitter()
        return exponential_backoff(first, previous, limit, err)

    return backoff
