from pydantic_settings import BaseSettings, SettingsConfigDict

from status_relay.log import logger


class Environment(BaseSettings):
    """
    The build metadata made available by Concourse to the resource.
    Depending on the step and on the type of build, only some of them are set.
    """

    BUILD_ID: str = ""
    BUILD_NAME: str = ""
    BUILD_JOB_NAME: str = ""
    BUILD_PIPELINE_NAME: str = ""
    BUILD_PIPELINE_INSTANCE_VARS: str = ""
    BUILD_TEAM_NAME: str = ""
    BUILD_CREATED_BY: str = ""
    ATC_EXTERNAL_URL: str = ""

    model_config = SettingsConfigDict(case_sensitive=True)

    def __str__(self) -> str:
        return "\n".join(
            f"{name + ':':<30}{value}" for name, value in self.model_dump().items()
        )

    def print_config(self):
        logger.debug("=== Build environment ===")
        for line in str(self).splitlines():
            logger.debug(line)


class Config(BaseSettings):
    """Tuning knobs, read from STATUS_RELAY_* environment variables. Durations in seconds."""

    RETRY_UP_TO: float = 15 * 60
    RETRY_FIRST_DELAY: float = 2
    RETRY_BACKOFF_LIMIT: float = 60

    GITHUB_TIMEOUT: float = 30
    CHAT_TIMEOUT: float = 10

    # Overrides the API root derived from source.hostname.
    GITHUB_API_URL: str = ""

    model_config = SettingsConfigDict(env_prefix="STATUS_RELAY_")

    def print_config(self):
        logger.debug("=== Status relay configuration ===")
        for field_name, field_value in self.model_dump().items():
            logger.debug(f"{field_name}: {field_value}")
