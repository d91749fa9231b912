"""
Client of the GitHub commit status API.

See https://docs.github.com/en/rest/commits/statuses
"""

import http
import re
import time

import aiohttp

from status_relay.exceptions import StatusError
from status_relay.github.models import AddRequest
from status_relay.github.utils import (
    GitHubError,
    JitterFn,
    classifier,
    default_jitter,
    is_rate_limited,
    make_backoff,
)
from status_relay.log import logger
from status_relay.retry import Retry

GH_DEFAULT_HOSTNAME = "github.com"

_localhost_re = re.compile(r"^127\.0\.0\.1:[0-9]+$")


def api_root(hostname: str) -> str:
    """
    Return the root of the GitHub API for hostname: https://api.github.com for
    github.com, http://127.0.0.1:PORT for a local test server and
    https://HOSTNAME/api/v3 for a GitHub Enterprise instance.
    """
    hostname = hostname.lower()
    if hostname == GH_DEFAULT_HOSTNAME:
        return "https://api.github.com"
    if _localhost_re.match(hostname):
        return f"http://{hostname}"
    return f"https://{hostname}/api/v3"


class Target:
    def __init__(
        self,
        server: str,
        retry: Retry,
        timeout: float = 30,
        jitter: JitterFn = default_jitter,
    ):
        self.server = server.rstrip("/")
        self.retry = retry
        self.timeout = timeout
        self.jitter = jitter


class CommitStatus:
    """
    Set the commit status of a specific owner/repo. The token needs only the
    repo:status scope. context is shown by GitHub as the name of the check.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        target: Target,
        token: str,
        owner: str,
        repo: str,
        context: str,
    ):
        self.session = session
        self.target = target
        self._headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json",
        }
        self.owner = owner
        self.repo = repo
        self.context = context

    def statuses_url(self, sha: str) -> str:
        return f"{self.target.server}/repos/{self.owner}/{self.repo}/statuses/{sha}"

    async def add(
        self, sha: str, state: str, target_url: str, description: str
    ) -> None:
        """
        Set state on commit sha. Transient errors and rate limiting are retried
        according to the Retry of the target.
        """
        url = self.statuses_url(sha)
        payload = AddRequest(
            state=state,
            target_url=target_url,
            description=description,
            context=self.context,
        ).model_dump(mode="json")
        timeout = aiohttp.ClientTimeout(total=self.target.timeout)

        async def work() -> None:
            start = time.monotonic()
            async with self.session.post(
                url, json=payload, headers=self._headers, timeout=timeout
            ) as resp:
                logger.debug(
                    "http-request: method=POST url=%s status=%d duration=%.3fs "
                    "rate-limit=%s rate-limit-remaining=%s rate-limit-reset=%s",
                    url,
                    resp.status,
                    time.monotonic() - start,
                    resp.headers.get("X-RateLimit-Limit", ""),
                    resp.headers.get("X-RateLimit-Remaining", ""),
                    resp.headers.get("X-RateLimit-Reset", ""),
                )
                if 200 <= resp.status < 300:
                    return
                raise await GitHubError.from_response(resp)

        try:
            await self.target.retry.do(
                make_backoff(self.target.jitter), classifier, work
            )
        except (GitHubError, aiohttp.ClientError, TimeoutError) as e:
            raise self.explain_error(e, state, sha, url) from e

    def explain_error(
        self, err: Exception, state: str, sha: str, url: str
    ) -> StatusError:
        what = f'failed to add state "{state}" for commit {sha[:7]}'
        if not isinstance(err, GitHubError):
            return StatusError(
                what=f"{what}: {str(err) or type(err).__name__}",
                details=f"Action: POST {url}",
            )

        hint = "none"
        if err.status_code == 404:
            hint = (
                "one of the following happened:\n"
                f"    1. The repo {self.owner}/{self.repo} doesn't exist\n"
                "    2. The user who issued the token doesn't have write access to the repo\n"
                "    3. The token doesn't have scope repo:status"
            )
        elif err.status_code == 500:
            hint = "Github API is down"
        elif err.status_code == 401:
            hint = "Either wrong credentials or PAT expired (check your email for expiration notice)"
        elif is_rate_limited(err):
            hint = f"rate limited, sleep > budget ({self.target.retry.up_to:g}s)"

        try:
            phrase = http.HTTPStatus(err.status_code).phrase
        except ValueError:
            phrase = err.reason
        return StatusError(
            what=f"{what}: {err.status_code} {phrase}",
            details=(
                f"Body: {err.body}\n"
                f"Hint: {hint}\n"
                f"Action: POST {url}\n"
                f"OAuth: {err.oauth_info}"
            ),
            status_code=err.status_code,
        )
