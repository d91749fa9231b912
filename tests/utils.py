import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from aiohttp import web
from aiohttp.test_utils import TestServer

SHA = "deadbeefdeadbeefdeadbeefdeadbeefdeadbeef"


def make_git_repo(
    path: Path, url: str, sha: str = SHA, branch: str = "x", detached: bool = False
) -> Path:
    """Create the minimal .git directory of a working copy cloned from url."""
    dot_git = path / ".git"
    (dot_git / "refs" / "heads").mkdir(parents=True)
    (dot_git / "config").write_text(
        "[core]\n"
        "\trepositoryformatversion = 0\n"
        "\tbare = false\n"
        '[remote "origin"]\n'
        f"\turl = {url}\n"
        "\tfetch = +refs/heads/*:refs/remotes/origin/*\n"
        f'[branch "{branch}"]\n'
        "\tremote = origin\n"
        f"\tmerge = refs/heads/{branch}\n"
    )
    if detached:
        (dot_git / "HEAD").write_text(f"{sha}\n")
    else:
        (dot_git / "HEAD").write_text(f"ref: refs/heads/{branch}\n")
        (dot_git / "refs" / "heads" / branch).write_text(f"{sha}\n")
    return path


class MemoryView:
    """In-memory stand-in for sinks.DirectoryView."""

    def __init__(self, files: dict[str, str] | None = None):
        self.files = files or {}

    def read_text(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(f"open {path}: file does not exist") from None


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: dict[str, str]
    headers: dict[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class FakeServer:
    """
    Record every request and answer with the queued replies, then with the
    default reply.
    """

    default: Callable[[], web.Response]
    replies: list[web.Response] = field(default_factory=list)
    requests: list[RecordedRequest] = field(default_factory=list)
    url: str = ""

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=request.path,
                query=dict(request.query),
                headers=dict(request.headers),
                body=await request.read(),
            )
        )
        if self.replies:
            return self.replies.pop(0)
        return self.default()


def github_created() -> web.Response:
    return web.json_response({"state": "pending"}, status=201)


def chat_ok() -> web.Response:
    return web.json_response(
        {
            "name": "spaces/AAA/messages/BBB",
            "sender": {"displayName": "the-webhook", "type": "BOT"},
            "space": {"displayName": "the-space", "type": "ROOM"},
            "thread": {"name": "spaces/AAA/threads/CCC"},
        }
    )


@asynccontextmanager
async def serve(fake: FakeServer):
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fake.handle)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    fake.url = str(server.make_url("")).rstrip("/")
    try:
        yield fake
    finally:
        await server.close()
