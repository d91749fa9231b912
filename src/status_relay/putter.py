import os
from typing import TextIO

import aiohttp

from status_relay import git
from status_relay.config import Config, Environment
from status_relay.exceptions import InputDirError, ProtocolError
from status_relay.github.utils import JitterFn, default_jitter
from status_relay.log import logger
from status_relay.models import (
    DUMMY_VERSION,
    KEY_STATE,
    SINK_CHAT,
    SINK_CODE_HOST,
    SUPPORTED_SINKS,
    Metadata,
    Output,
    PutRequest,
    effective_sinks,
    parse_request,
)
from status_relay.retry import SleepFn
from status_relay.sets import Set
from status_relay.sinks import DirectoryView, GitHubCommitStatusSink, GoogleChatSink, Sink


class Putter:
    """
    The put step: load and validate the request, find the commit in the input
    directory and build the sinks to notify.
    """

    def __init__(
        self,
        config: Config | None = None,
        env: Environment | None = None,
        session: aiohttp.ClientSession | None = None,
        sleep: SleepFn | None = None,
        jitter: JitterFn = default_jitter,
    ):
        self.config = config if config is not None else Config()
        self.env = env if env is not None else Environment()
        self.session = session
        self.sleep = sleep
        self.jitter = jitter

        self.request: PutRequest | None = None
        self.input_dir = ""
        self.effective_sinks: Set[str] = Set()
        self.git_ref = ""

    def load(self, data: bytes, args: list[str]) -> None:
        request: PutRequest = parse_request(PutRequest, data)
        source = request.source
        params = request.params
        source.validate_config(
            sinks=params.sinks, chat_webhook_override=params.chat_webhook
        )
        self.request = request
        logger.debug("parsed put request:\n=== source ===\n%s", source)
        logger.debug("=== params ===\n%s", params)
        self.env.print_config()
        self.config.print_config()

        # args[0] is the directory containing all the "put:inputs:".
        if not args:
            raise ProtocolError("arguments: missing input directory")
        self.input_dir = args[0]
        self.effective_sinks = effective_sinks(source, params)
        logger.debug(
            "input-directory=%s state=%s sinks=%s",
            self.input_dir,
            params.state,
            self.effective_sinks,
        )

    def resolve_inputs(self) -> None:
        """
        Find the git repository among the put inputs and read its commit.

        The input directory contains 0, 1 or 2 directories: the nameless git
        repository and, if chat_message_file is set, the directory named by the
        first component of its path. With zero directories left, only chat can
        be notified. More than 2 are refused, to avoid streaming all the volumes
        of the job.
        """
        assert self.request is not None
        source = self.request.source
        params = self.request.params

        collected = collect_input_dirs(self.input_dir)
        input_dirs = Set(collected)

        if params.chat_message_file:
            msg_dir = split_message_dir(params.chat_message_file)
            if not input_dirs.remove(msg_dir):
                raise InputDirError(
                    f"put:inputs: directory for chat_message_file not found: "
                    f"have: {Set(collected)}, chat_message_file: {params.chat_message_file}"
                )

        if input_dirs.size() == 0:
            if SINK_CODE_HOST in self.effective_sinks:
                raise InputDirError(
                    f"put:inputs: missing directory for code-host repo: "
                    f"have: {input_dirs}, code-host: {source.owner}/{source.repo}"
                )
            logger.debug("no git repository in inputs: sending only to chat")
            return
        if input_dirs.size() > 1:
            raise InputDirError(
                f"put:inputs: want only directory for code-host repo: "
                f"have: {input_dirs}, code-host: {source.owner}/{source.repo}"
            )

        repo_dir = os.path.join(self.input_dir, input_dirs.ordered_list()[0])
        git.check_git_repo_dir(repo_dir, source.hostname, source.owner, source.repo)
        self.git_ref = git.get_git_commit(repo_dir)
        logger.debug("git-ref=%s", self.git_ref)

    def sinks(self) -> list[Sink]:
        """Return the sinks to notify, always in the order code-host, chat."""
        assert self.request is not None
        supported = {
            SINK_CODE_HOST: lambda: GitHubCommitStatusSink(
                self.request,
                self.env,
                self.git_ref,
                self.config,
                session=self.session,
                sleep=self.sleep,
                jitter=self.jitter,
            ),
            SINK_CHAT: lambda: GoogleChatSink(
                self.request,
                self.env,
                self.git_ref,
                self.config,
                DirectoryView(self.input_dir),
                session=self.session,
            ),
        }
        return [supported[name]() for name in SUPPORTED_SINKS if name in self.effective_sinks]

    def output(self, out: TextIO) -> None:
        """Write the put response: the dummy version and the build state."""
        assert self.request is not None
        output = Output(
            version=DUMMY_VERSION,
            metadata=[Metadata(name=KEY_STATE, value=str(self.request.params.state))],
        )
        out.write(output.model_dump_json() + "\n")
        logger.debug("success: output=%s", output)


def collect_input_dirs(input_dir: str) -> list[str]:
    """Return the names of the directories directly below input_dir."""
    try:
        with os.scandir(input_dir) as entries:
            return sorted(e.name for e in entries if e.is_dir())
    except OSError as e:
        raise InputDirError(f"collecting directories in {input_dir}: {e}") from e


def split_message_dir(chat_message_file: str) -> str:
    msg_dir = os.path.dirname(chat_message_file).rstrip("/")
    if not msg_dir:
        raise InputDirError(
            f"chat_message_file: wrong format: have: {chat_message_file}, "
            "want: path of the form: <dir>/<file>"
        )
    return msg_dir
