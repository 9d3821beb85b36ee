"""
Repository Handle Model
Coordinates and short-lived credentials for the repository a run targets.
Supplied per run and never persisted; the token is kept out of repr().
"""
from pydantic import BaseModel, ConfigDict, Field


class RepositoryHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    default_branch: str = ""
    token: str = Field(default="", repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def with_default_branch(self, branch: str) -> "RepositoryHandle":
        return self.model_copy(update={"default_branch": branch})
