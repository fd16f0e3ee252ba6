"""GitHub pull request URL parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from walkthrough.errors import InvalidPullRequestUrl

_SCHEME_RE = re.compile(r"^[a-z]+://", re.IGNORECASE)
_OWNER_RE = re.compile(r"^[A-Za-z0-9-]+$")
_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_NUMBER_RE = re.compile(r"^[0-9]+$")

_MAX_OWNER_LENGTH = 39
_MAX_REPO_LENGTH = 100


@dataclass(frozen=True)
class ParsedPullRequest:
    owner: str
    repo: str
    number: int
    html_url: str
    diff_url: str

    @property
    def display_title(self) -> str:
        """Fallback PR title when none is supplied."""
        return f"{self.owner}/{self.repo} PR #{self.number}"


def _check_owner(owner: str) -> None:
    if len(owner) > _MAX_OWNER_LENGTH:
        raise InvalidPullRequestUrl("Repository owner looks too long.")
    if not _OWNER_RE.match(owner):
        raise InvalidPullRequestUrl(
            "Repository owner can only include letters, numbers, and hyphens."
        )


def _check_repo(repo: str) -> None:
    if not repo:
        raise InvalidPullRequestUrl("Repository name is missing.")
    if len(repo) > _MAX_REPO_LENGTH:
        raise InvalidPullRequestUrl("Repository name looks too long.")
    if not _REPO_RE.match(repo):
        raise InvalidPullRequestUrl(
            "Repository name can only include letters, numbers, dots, "
            "underscores, and hyphens."
        )


def parse_github_pr_url(raw: str) -> ParsedPullRequest:
    """
    Parse a github.com pull request URL into its canonical parts.

    Accepts URLs without a scheme, the www. host, trailing sub-paths such as
    ``/files`` and a ``.git`` suffix on the repository name.

    Raises:
        InvalidPullRequestUrl: with a message suitable for showing to a user
    """
    text = (raw or "").strip()
    if not text:
        raise InvalidPullRequestUrl("Enter a GitHub pull request URL.")

    if not _SCHEME_RE.match(text):
        text = f"https://{text}"

    try:
        parts = urlsplit(text)
        host = (parts.hostname or "").lower()
    except ValueError as e:
        raise InvalidPullRequestUrl(
            "Enter a valid URL, e.g. https://github.com/org/repo/pull/123."
        ) from e

    if parts.scheme.lower() not in ("http", "https"):
        raise InvalidPullRequestUrl("Only http(s) URLs are supported.")
    if host not in ("github.com", "www.github.com"):
        raise InvalidPullRequestUrl(
            "Only public github.com pull requests are supported right now."
        )

    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 4:
        raise InvalidPullRequestUrl("URL must look like github.com/owner/repo/pull/123.")

    owner, repo, kind, number_text = segments[:4]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]

    _check_owner(owner)
    _check_repo(repo)
    if kind != "pull":
        raise InvalidPullRequestUrl(
            "URL must point to a pull request, e.g. github.com/owner/repo/pull/123."
        )
    if not _NUMBER_RE.match(number_text):
        raise InvalidPullRequestUrl("Pull request number must be numeric.")

    number = int(number_text)
    if number <= 0:
        raise InvalidPullRequestUrl("Pull request number must be greater than zero.")

    html_url = f"https://github.com/{owner}/{repo}/pull/{number}"
    return ParsedPullRequest(
        owner=owner,
        repo=repo,
        number=number,
        html_url=html_url,
        diff_url=f"{html_url}.diff",
    )
