import io
import json
from datetime import datetime, timezone

import pytest
from aiohttp import web

from status_relay.exceptions import (
    ConfigurationError,
    InputDirError,
    ProtocolError,
    SinkErrors,
    StepError,
)
from status_relay.putter import Putter
from status_relay.resource import put
from tests.utils import SHA, make_git_repo

JITTER = 0.5


def put_input(source: dict, params: dict) -> bytes:
    return json.dumps({"source": source, "params": params}).encode()


ACCESS_TOKEN_SOURCE = {"owner": "o", "repo": "r", "access_token": "t"}


@pytest.fixture
def putter(config, env, github_server, fake_sleep):
    config.GITHUB_API_URL = github_server.url
    return Putter(config=config, env=env, sleep=fake_sleep, jitter=lambda: JITTER)


@pytest.fixture
def input_dir(tmp_path):
    make_git_repo(tmp_path / "a-repo", "git@github.com:o/r.git")
    return tmp_path


def test_load_requires_input_directory(putter):
    with pytest.raises(ProtocolError, match="arguments: missing input directory"):
        putter.load(put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}), [])


def test_load_rejects_invalid_configuration(putter, input_dir):
    with pytest.raises(ConfigurationError, match="one of access_token or app"):
        putter.load(put_input({"owner": "o", "repo": "r"}, {"state": "success"}), [str(input_dir)])


def test_load_params_sinks_must_be_configured(putter, input_dir):
    with pytest.raises(ConfigurationError, match="missing keys: chat_webhook"):
        putter.load(
            put_input(ACCESS_TOKEN_SOURCE, {"state": "success", "sinks": ["chat"]}),
            [str(input_dir)],
        )


def test_load_params_sinks_must_be_supported(putter, input_dir):
    with pytest.raises(ConfigurationError, match=r"^params: invalid sink\(s\): \[github\]$"):
        putter.load(
            put_input(ACCESS_TOKEN_SOURCE, {"state": "success", "sinks": ["github"]}),
            [str(input_dir)],
        )


def test_resolve_inputs_finds_commit(putter, input_dir):
    putter.load(put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}), [str(input_dir)])
    putter.resolve_inputs()
    assert putter.git_ref == SHA


def test_resolve_inputs_with_message_dir(putter, input_dir):
    (input_dir / "msg").mkdir()
    (input_dir / "msg" / "m.txt").write_text("hello")
    putter.load(
        put_input(
            ACCESS_TOKEN_SOURCE, {"state": "success", "chat_message_file": "msg/m.txt"}
        ),
        [str(input_dir)],
    )
    putter.resolve_inputs()
    assert putter.git_ref == SHA


def test_resolve_inputs_message_file_wrong_format(putter, input_dir):
    putter.load(
        put_input(ACCESS_TOKEN_SOURCE, {"state": "success", "chat_message_file": "m.txt"}),
        [str(input_dir)],
    )
    with pytest.raises(
        InputDirError,
        match="chat_message_file: wrong format: have: m.txt, "
        "want: path of the form: <dir>/<file>",
    ):
        putter.resolve_inputs()


def test_resolve_inputs_message_dir_not_found(putter, input_dir):
    putter.load(
        put_input(
            ACCESS_TOKEN_SOURCE, {"state": "success", "chat_message_file": "msg/m.txt"}
        ),
        [str(input_dir)],
    )
    with pytest.raises(
        InputDirError,
        match=r"put:inputs: directory for chat_message_file not found: "
        r"have: \[a-repo\], chat_message_file: msg/m.txt",
    ):
        putter.resolve_inputs()


def test_resolve_inputs_missing_repo(putter, tmp_path):
    putter.load(put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}), [str(tmp_path)])
    with pytest.raises(
        InputDirError,
        match=r"put:inputs: missing directory for code-host repo: have: \[\], code-host: o/r",
    ):
        putter.resolve_inputs()


def test_resolve_inputs_too_many_dirs(putter, input_dir):
    (input_dir / "other").mkdir()
    putter.load(put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}), [str(input_dir)])
    with pytest.raises(
        InputDirError,
        match=r"put:inputs: want only directory for code-host repo: "
        r"have: \[a-repo other\], code-host: o/r",
    ):
        putter.resolve_inputs()


def test_resolve_inputs_chat_only_without_repo(putter, tmp_path):
    putter.load(
        put_input({"sinks": ["chat"], "chat_webhook": "https://chat.example.com/hook"}, {"state": "success"}),
        [str(tmp_path)],
    )
    putter.resolve_inputs()
    assert putter.git_ref == ""


def test_resolve_inputs_ignores_files(putter, input_dir):
    (input_dir / "a-file.txt").write_text("not a directory")
    putter.load(put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}), [str(input_dir)])
    putter.resolve_inputs()
    assert putter.git_ref == SHA


def test_sinks_are_in_canonical_order(putter, input_dir):
    source = {
        **ACCESS_TOKEN_SOURCE,
        "sinks": ["chat", "code-host"],
        "chat_webhook": "https://chat.example.com/hook",
    }
    putter.load(put_input(source, {"state": "success"}), [str(input_dir)])
    assert [sink.name for sink in putter.sinks()] == ["code-host", "chat"]


def test_sinks_params_override_source(putter, input_dir):
    source = {**ACCESS_TOKEN_SOURCE, "sinks": ["chat"], "chat_webhook": "https://h/x"}
    putter.load(put_input(source, {"state": "success", "sinks": ["code-host"]}), [str(input_dir)])
    assert [sink.name for sink in putter.sinks()] == ["code-host"]


def test_output(putter, input_dir):
    putter.load(put_input(ACCESS_TOKEN_SOURCE, {"state": "failure"}), [str(input_dir)])
    out = io.StringIO()
    putter.output(out)
    assert out.getvalue() == (
        '{"version":{"ref":"dummy"},"metadata":[{"name":"state","value":"failure"}]}\n'
    )


@pytest.mark.asyncio
async def test_put_pending_default_sinks_access_token(putter, input_dir, github_server):
    out = io.StringIO()

    await put(
        put_input(ACCESS_TOKEN_SOURCE, {"state": "pending"}), out, [str(input_dir)], putter
    )

    assert [r.path for r in github_server.requests] == [f"/repos/o/r/statuses/{SHA}"]
    body = github_server.requests[0].json()
    assert body["state"] == "pending"
    assert body["context"] == "paint"
    assert out.getvalue() == (
        '{"version":{"ref":"dummy"},"metadata":[{"name":"state","value":"pending"}]}\n'
    )


@pytest.mark.asyncio
async def test_put_abort_is_remapped(putter, input_dir, github_server):
    out = io.StringIO()

    await put(
        put_input(ACCESS_TOKEN_SOURCE, {"state": "abort"}), out, [str(input_dir)], putter
    )

    assert github_server.requests[0].json()["state"] == "error"
    assert '"value":"abort"' in out.getvalue()


@pytest.mark.asyncio
async def test_put_invalid_sink_name(putter, input_dir, github_server):
    source = {**ACCESS_TOKEN_SOURCE, "sinks": ["ghost", "chat"]}
    out = io.StringIO()

    with pytest.raises(StepError, match=r"^put: source: invalid sink\(s\): \[ghost\]$"):
        await put(put_input(source, {"state": "success"}), out, [str(input_dir)], putter)

    assert github_server.requests == []
    assert out.getvalue() == ""


@pytest.mark.asyncio
async def test_put_mismatched_remote(putter, tmp_path, github_server):
    make_git_repo(tmp_path / "a-repo", "https://github.com/other/repo.git")

    with pytest.raises(StepError) as excinfo:
        await put(
            put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}),
            io.StringIO(),
            [str(tmp_path)],
            putter,
        )

    message = str(excinfo.value)
    assert message.startswith("put: the received git repository is incompatible")
    assert "    owner: other\n     repo: repo" in message
    assert "    owner: o\n     repo: r" in message
    assert github_server.requests == []


@pytest.mark.asyncio
async def test_put_chat_only_state_not_in_notify_set(putter, tmp_path, chat_server):
    source = {"sinks": ["chat"], "chat_webhook": f"{chat_server.url}/hook"}
    out = io.StringIO()

    await put(put_input(source, {"state": "success"}), out, [str(tmp_path)], putter)

    assert chat_server.requests == []
    assert '"value":"success"' in out.getvalue()


@pytest.mark.asyncio
async def test_put_rate_limited_then_success(putter, input_dir, github_server, sleeps):
    reset = datetime(2001, 4, 30, 13, 0, 5, tzinfo=timezone.utc)
    github_server.replies = [
        web.json_response(
            {"message": "API rate limit exceeded"},
            status=403,
            headers={
                "Date": "Mon, 30 Apr 2001 13:00:00 GMT",
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(reset.timestamp())),
            },
        )
    ]
    out = io.StringIO()

    await put(
        put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}), out, [str(input_dir)], putter
    )

    assert len(github_server.requests) == 2
    assert sleeps == [5 + JITTER]
    assert out.getvalue() != ""


@pytest.mark.asyncio
async def test_put_chat_and_code_host(putter, input_dir, github_server, chat_server):
    source = {**ACCESS_TOKEN_SOURCE, "chat_webhook": f"{chat_server.url}/hook"}

    await put(
        put_input(source, {"state": "failure", "chat_message": "boom"}),
        io.StringIO(),
        [str(input_dir)],
        putter,
    )

    assert len(github_server.requests) == 1
    assert len(chat_server.requests) == 1
    text = chat_server.requests[0].json()["text"]
    assert text.startswith("boom\n")
    assert f"/o/r/commit/{SHA}|" in text


@pytest.mark.asyncio
async def test_put_chat_message_file(putter, tmp_path, chat_server):
    (tmp_path / "msg").mkdir()
    (tmp_path / "msg" / "m.txt").write_text("from file")
    source = {"sinks": ["chat"], "chat_webhook": f"{chat_server.url}/hook"}
    params = {
        "state": "success",
        "chat_message_file": "msg/m.txt",
        "chat_append_summary": False,
    }

    await put(put_input(source, params), io.StringIO(), [str(tmp_path)], putter)

    assert chat_server.requests[0].json() == {"text": "from file"}


@pytest.mark.asyncio
async def test_put_aggregates_sink_errors(putter, input_dir, github_server, chat_server):
    github_server.replies = [web.Response(status=404, text="Not Found")]
    chat_server.replies = [web.Response(status=500, text="chat is down")]
    source = {**ACCESS_TOKEN_SOURCE, "chat_webhook": f"{chat_server.url}/hook?token=s3cr3t"}
    out = io.StringIO()

    with pytest.raises(StepError) as excinfo:
        await put(put_input(source, {"state": "failure"}), out, [str(input_dir)], putter)

    err = excinfo.value
    assert isinstance(err.err, SinkErrors)
    assert len(err.err.errors) == 2
    message = str(err)
    assert message.startswith("put: multiple errors:\n\tcode-host: failed to add state")
    assert "\n\tchat: text_message: status: 500" in message
    assert "s3cr3t" not in message
    # Both sinks are attempted even if the first one fails.
    assert len(github_server.requests) == 1
    assert len(chat_server.requests) == 1
    assert out.getvalue() == ""


@pytest.mark.asyncio
async def test_put_single_sink_error(putter, input_dir, github_server):
    github_server.replies = [web.Response(status=401, text="Bad credentials")]

    with pytest.raises(StepError, match=r"^put: code-host: failed to add state \"success\""):
        await put(
            put_input(ACCESS_TOKEN_SOURCE, {"state": "success"}),
            io.StringIO(),
            [str(input_dir)],
            putter,
        )


@pytest.mark.asyncio
async def test_put_undecodable_error_body_still_sends_to_chat(
    putter, input_dir, github_server, chat_server
):
    github_server.replies = [
        web.Response(
            status=422, body=b"\xff\xfe", content_type="text/plain", charset="utf-8"
        )
    ]
    source = {**ACCESS_TOKEN_SOURCE, "chat_webhook": f"{chat_server.url}/hook"}

    with pytest.raises(StepError) as excinfo:
        await put(
            put_input(source, {"state": "failure"}),
            io.StringIO(),
            [str(input_dir)],
            putter,
        )

    assert isinstance(excinfo.value.err, SinkErrors)
    assert len(excinfo.value.err.errors) == 1
    assert str(excinfo.value).startswith("put: code-host: failed to add state")
    assert len(chat_server.requests) == 1
