from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    login: str


class Repository(BaseModel):
    name: str
    full_name: str
    owner: User


class PullRequestHead(BaseModel):
    ref: str
    sha: str
    repo: Repository


class PullRequestBase(BaseModel):
    ref: str
    sha: str
    repo: Repository


class PullRequest(BaseModel):
    number: int
    head: PullRequestHead
    base: PullRequestBase


class PullRequestPayload(BaseModel):
    action: str
    number: int
    pull_request: PullRequest
    repository: Repository


class PullRequestEvent(BaseModel):
    """The part of a pull request delivery that drives a pipeline run.

    Coordinates are taken from the head side, where the proposed change and
    its build config live.
    """

    model_config = ConfigDict(frozen=True)

    repo_owner: str
    repo_name: str
    repo_slug: str
    head_ref: str
    head_sha: str
    action: str
    number: int

    @classmethod
    def from_payload(cls, payload: PullRequestPayload) -> "PullRequestEvent":
        head = payload.pull_request.head
        repo = head.repo
        return cls(
            repo_owner=repo.owner.login,
            repo_name=repo.name,
            repo_slug=repo.full_name,
            head_ref=head.ref,
            head_sha=head.sha,
            action=payload.action,
            number=payload.number,
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.repo_slug, self.head_ref)
