from enum import StrEnum

from pydantic import BaseModel, Field


class CommitState(StrEnum):
    error = "error"
    failure = "failure"
    pending = "pending"
    success = "success"


class AddRequest(BaseModel):
    """Body of POST /repos/{owner}/{repo}/statuses/{sha}"""

    state: CommitState
    target_url: str
    description: str
    context: str


class InstallationToken(BaseModel):
    token: str = Field(repr=False)
    expires_at: str | None = None
