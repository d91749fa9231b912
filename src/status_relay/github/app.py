"""
Authentication as a GitHub App installation.

See https://docs.github.com/en/apps/creating-github-apps/authenticating-with-a-github-app
"""

import aiohttp
import gidgethub
import jwt
from gidgethub import aiohttp as gh_aiohttp
from gidgethub.apps import get_jwt

from status_relay.exceptions import AppTokenError
from status_relay.github.models import InstallationToken
from status_relay.log import logger

REQUESTER = "status-relay"


def generate_jwt(client_id: str, private_key: str) -> str:
    """
    Return a JWT signed with RS256, issued 60 seconds in the past and valid
    for 10 minutes.
    """
    try:
        return get_jwt(app_id=client_id, private_key=private_key)
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise AppTokenError(
            f"generate app installation token: sign JWT: {e}"
        ) from None


async def generate_installation_token(
    session: aiohttp.ClientSession,
    server: str,
    client_id: str,
    installation_id: int,
    private_key: str,
) -> str:
    """Exchange the app JWT for an installation access token."""
    token = generate_jwt(client_id, private_key)
    gh = gh_aiohttp.GitHubAPI(session, REQUESTER)
    # Absolute URL: a GitHub Enterprise server has a path component (/api/v3).
    url = f"{server.rstrip('/')}/app/installations/{installation_id}/access_tokens"
    try:
        data = await gh.post(url, data=b"", jwt=token)
    except gidgethub.HTTPException as e:
        raise AppTokenError(
            f"generate app installation token: status code: {e.status_code} ({e})"
        ) from None
    except (aiohttp.ClientError, TimeoutError) as e:
        raise AppTokenError(f"generate app installation token: {e}") from None

    try:
        reply = InstallationToken.model_validate(data)
    except ValueError as e:
        raise AppTokenError(
            f"generate app installation token: decoding reply: {e}"
        ) from None
    logger.debug("generated installation token for installation %d", installation_id)
    return reply.token
