"""
Client of the Google Chat incoming webhooks.

The webhook URL embeds its secret (the key and token query parameters), so it
must never appear unredacted in logs or errors.

See https://developers.google.com/chat/how-tos/webhooks
"""

import urllib.parse

import aiohttp
from pydantic import BaseModel, ConfigDict, ValidationError

from status_relay.exceptions import ChatError


class BasicMessage(BaseModel):
    text: str


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MessageSender(_Lenient):
    name: str = ""
    displayName: str = ""
    type: str = ""


class MessageThread(_Lenient):
    name: str = ""


class MessageSpace(_Lenient):
    name: str = ""
    type: str = ""
    displayName: str = ""


class MessageReply(_Lenient):
    """Abridged reply to a message creation."""

    name: str = ""
    text: str = ""
    sender: MessageSender = MessageSender()
    thread: MessageThread = MessageThread()
    space: MessageSpace = MessageSpace()
    createTime: str = ""


def redact_url(raw_url: str) -> str:
    """
    Best effort redaction: drop all query parameters and replace any user-info
    with REDACTED. A secret encoded in the path is not redacted.
    """
    try:
        parts = urllib.parse.urlsplit(raw_url)
    except ValueError as e:
        return f"<unparsable URL: {e}>"
    netloc = parts.netloc
    if "@" in netloc:
        netloc = "REDACTED@" + netloc.rpartition("@")[2]
    return urllib.parse.urlunsplit((parts.scheme, netloc, parts.path, "", ""))


def redact_error(err: BaseException, raw_url: str) -> str:
    """Return the text of err with every occurrence of raw_url redacted."""
    text = str(err) or type(err).__name__
    if raw_url:
        text = text.replace(raw_url, redact_url(raw_url))
        base = raw_url.split("?", 1)[0]
        if base != raw_url:
            text = text.replace(base, redact_url(raw_url))
    return text


async def text_message(
    session: aiohttp.ClientSession,
    webhook: str,
    thread_key: str,
    text: str,
    timeout: float = 10,
) -> MessageReply:
    """Send the one-off message text, in thread thread_key, to webhook."""
    params = {"threadKey": thread_key} if thread_key else None
    try:
        async with session.post(
            webhook,
            json=BasicMessage(text=text).model_dump(),
            params=params,
            headers={"Content-Type": "application/json; charset=UTF-8"},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            body = await resp.text(errors="replace")
            if not 200 <= resp.status < 300:
                raise ChatError(
                    f"text_message: status: {resp.status} {resp.reason}; "
                    f"URL: {redact_url(webhook)}; body: {body.strip()}"
                )
    except (aiohttp.ClientError, TimeoutError, ValueError) as e:
        raise ChatError(f"text_message: send: {redact_error(e, webhook)}") from None

    try:
        return MessageReply.model_validate_json(body)
    except ValidationError as e:
        raise ChatError(
            f"text_message: HTTP status OK but failed to parse response: "
            f"{e.error_count()} validation error(s)"
        ) from None
