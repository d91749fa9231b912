"""
The notification sinks of the put step.

Each sink has an async ``send()``; the put step treats them as opaque and
calls them one after the other.
"""

import contextlib
import functools
import os
from datetime import datetime
from typing import Protocol

import aiohttp

from status_relay.config import Config, Environment
from status_relay.exceptions import ChatError, SinkError, StatusRelayError
from status_relay.github import CommitStatus, Target, api_root
from status_relay.github.app import generate_installation_token
from status_relay.github.utils import JitterFn, default_jitter
from status_relay.googlechat import redact_url, text_message
from status_relay.log import logger
from status_relay.models import (
    SINK_CHAT,
    SINK_CODE_HOST,
    BuildState,
    PutRequest,
    Source,
)
from status_relay.retry import Retry, SleepFn
from status_relay.utils import build_url, gh_adapt_state, make_context

STATE_ICONS = {
    BuildState.abort: "🟤",
    BuildState.error: "🟠",
    BuildState.failure: "🔴",
    BuildState.pending: "🟡",
    BuildState.success: "🟢",
}


class Sink(Protocol):
    name: str

    async def send(self) -> None: ...


class FileSystemView(Protocol):
    def read_text(self, path: str) -> str: ...


class DirectoryView:
    """Read-only view of the files below root."""

    def __init__(self, root: str):
        self.root = os.path.realpath(root)

    def read_text(self, path: str) -> str:
        if os.path.isabs(path):
            raise ValueError(f"open {path}: absolute path not allowed")
        full = os.path.realpath(os.path.join(self.root, path))
        if os.path.commonpath([self.root, full]) != self.root:
            raise ValueError(f"open {path}: path escapes {self.root}")
        with open(full, encoding="utf-8") as f:
            return f.read()


def with_session(func):
    """
    Provide the wrapped method with an aiohttp session: the one passed as
    keyword, else the one of the sink, else a new one closed on return.
    """

    @functools.wraps(func)
    async def wrapper(
        self, *args, session: aiohttp.ClientSession | None = None, **kwargs
    ):
        async with contextlib.AsyncExitStack() as stack:
            if session is None:
                session = self.session
            if session is None:
                session = await stack.enter_async_context(aiohttp.ClientSession())
            return await func(self, *args, session=session, **kwargs)

    return wrapper


class GitHubCommitStatusSink:
    """Set the build state as GitHub commit status of git_ref."""

    name = SINK_CODE_HOST

    def __init__(
        self,
        request: PutRequest,
        env: Environment,
        git_ref: str,
        config: Config,
        session: aiohttp.ClientSession | None = None,
        sleep: SleepFn | None = None,
        jitter: JitterFn = default_jitter,
    ):
        self.request = request
        self.env = env
        self.git_ref = git_ref
        self.config = config
        self.session = session
        self.sleep = sleep
        self.jitter = jitter

    @with_session
    async def send(self, *, session: aiohttp.ClientSession) -> None:
        logger.debug("%s: send: started", self.name)
        source = self.request.source
        params = self.request.params

        state = gh_adapt_state(params.state)
        target_url = build_url(self.env)
        context = make_context(
            source.context_prefix, params.context, self.env.BUILD_JOB_NAME
        )
        server = self.config.GITHUB_API_URL or api_root(source.hostname)

        token = source.access_token
        if not token:
            try:
                token = await generate_installation_token(
                    session,
                    server,
                    source.app.client_id,
                    source.app.installation_id,
                    source.app.private_key,
                )
            except StatusRelayError as e:
                raise SinkError(self.name, e) from e

        retry = Retry(
            up_to=self.config.RETRY_UP_TO,
            first_delay=self.config.RETRY_FIRST_DELAY,
            backoff_limit=self.config.RETRY_BACKOFF_LIMIT,
            sleep=self.sleep,
        )
        target = Target(
            server, retry, timeout=self.config.GITHUB_TIMEOUT, jitter=self.jitter
        )
        commit_status = CommitStatus(
            session, target, token, source.owner, source.repo, context
        )
        description = f"Build {self.env.BUILD_NAME}"

        logger.debug(
            "posting to GitHub commit status API: state=%s owner=%s repo=%s "
            "git-ref=%s context=%s build-url=%s description=%s",
            state,
            source.owner,
            source.repo,
            self.git_ref,
            context,
            target_url,
            description,
        )
        if source.omit_target_url:
            target_url = ""
        try:
            await commit_status.add(self.git_ref, state, target_url, description)
        except StatusRelayError as e:
            raise SinkError(self.name, e) from e
        logger.info(
            "commit status posted successfully: state=%s git-ref=%s",
            state,
            self.git_ref[:9],
        )


class GoogleChatSink:
    """Post a message about the build to a Google Chat space."""

    name = SINK_CHAT

    def __init__(
        self,
        request: PutRequest,
        env: Environment,
        git_ref: str,
        config: Config,
        input_dir: FileSystemView,
        session: aiohttp.ClientSession | None = None,
    ):
        self.request = request
        self.env = env
        self.git_ref = git_ref
        self.config = config
        self.input_dir = input_dir
        self.session = session

    def webhook(self) -> str:
        if self.request.params.chat_webhook:
            logger.debug("params.chat_webhook is overriding source.chat_webhook")
            return self.request.params.chat_webhook
        return self.request.source.chat_webhook

    @with_session
    async def send(self, *, session: aiohttp.ClientSession) -> None:
        logger.debug("%s: send: started", self.name)
        webhook = self.webhook()
        if not webhook:
            logger.info("not sending to chat: reason=feature not enabled")
            return

        state = self.request.params.state
        if not should_send_to_chat(self.request):
            logger.debug(
                "not sending to chat: reason=state not in configured states state=%s",
                state,
            )
            return

        try:
            text = prepare_chat_message(self.input_dir, self.request, self.git_ref, self.env)
            thread_key = f"{self.env.BUILD_PIPELINE_NAME} {self.git_ref}"
            reply = await text_message(
                session, webhook, thread_key, text, timeout=self.config.CHAT_TIMEOUT
            )
        except ChatError as e:
            raise ChatError(f"{self.name}: {e}") from None

        logger.info(
            "state posted successfully to chat: state=%s space=%s sender=%s webhook=%s",
            state,
            reply.space.displayName,
            reply.sender.displayName,
            redact_url(webhook),
        )
        logger.debug("chat message:\n%s", text)


def should_send_to_chat(request: PutRequest) -> bool:
    """An explicit message is always sent; otherwise it depends on the state."""
    params = request.params
    if params.chat_message or params.chat_message_file:
        return True
    return params.state in request.source.chat_notify_on_states


def prepare_chat_message(
    input_dir: FileSystemView, request: PutRequest, git_ref: str, env: Environment
) -> str:
    params = request.params

    body = params.chat_message
    if params.chat_message_file:
        try:
            contents = input_dir.read_text(params.chat_message_file)
        except (OSError, ValueError) as e:
            raise ChatError(f"reading chat_message_file: {e}") from None
        body = f"{body}\n{contents}" if body else contents

    if not body or params.chat_append_summary:
        summary = build_summary_text(git_ref, params.state, request.source, env)
        body = f"{body}\n{summary}" if body else summary

    return body


def build_summary_text(
    git_ref: str,
    state: str,
    source: Source,
    env: Environment,
    now: datetime | None = None,
) -> str:
    """Return the build summary, using the markup of Google Chat for the links."""
    if now is None:
        now = datetime.now().astimezone()

    lines = [
        now.strftime("%Y-%m-%d %H:%M:%S %Z"),
        f"*pipeline* {env.BUILD_PIPELINE_NAME}",
        f"*job* <{build_url(env)}|{env.BUILD_JOB_NAME}/{env.BUILD_NAME}>",
        f"*state* {decorate_state(state)}",
    ]
    # No git_ref when configured as chat only.
    if git_ref:
        commit_url = (
            f"https://{source.hostname}/{source.owner}/{source.repo}/commit/{git_ref}"
        )
        lines.append(
            f"*commit* <{commit_url}|{git_ref[:10]}> "
            f"(repo: {source.owner}/{source.repo})"
        )
    return "\n".join(lines)


def decorate_state(state: str) -> str:
    icon = STATE_ICONS.get(state, "❓")
    return f"{icon} {state}"
