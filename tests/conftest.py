import logging

import aiohttp
import pytest
import pytest_asyncio

from status_relay.config import Config, Environment
from status_relay.log import logger
from tests.utils import FakeServer, chat_ok, github_created, serve


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def env():
    return Environment(
        BUILD_ID="123",
        BUILD_NAME="42",
        BUILD_JOB_NAME="paint",
        BUILD_PIPELINE_NAME="magritte",
        BUILD_PIPELINE_INSTANCE_VARS="",
        BUILD_TEAM_NAME="devs",
        BUILD_CREATED_BY="",
        ATC_EXTERNAL_URL="https://ci.example.com",
    )


@pytest.fixture
def config():
    return Config(
        RETRY_UP_TO=60,
        RETRY_FIRST_DELAY=1,
        RETRY_BACKOFF_LIMIT=10,
        GITHUB_TIMEOUT=5,
        CHAT_TIMEOUT=5,
    )


@pytest.fixture
def sleeps():
    """Collects the delays requested to the retry engine, without sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    return sleep


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest_asyncio.fixture
async def github_server():
    async with serve(FakeServer(default=github_created)) as fake:
        yield fake


@pytest_asyncio.fixture
async def chat_server():
    async with serve(FakeServer(default=chat_ok)) as fake:
        yield fake
