"""Latest-tag lookup.

Resolves the most recently created tag of a repository, and the commit it
points to, through the GitHub GraphQL API.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Any, Protocol

import httpx

from crossbuild.errors import DownloadError, TagResolutionError
from crossbuild.types import TagInfo

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"

# Timeout for tag lookups (seconds)
LOOKUP_TIMEOUT = 30

LATEST_TAG_QUERY = """
query($repoOwner: String!, $repoName: String!) {
  repository(owner: $repoOwner, name: $repoName) {
    refs(refPrefix: "refs/tags/", last: 1, orderBy: {field: TAG_COMMIT_DATE, direction: ASC}) {
      edges {
        node {
          name
          target {
            commitResourcePath
          }
        }
      }
    }
  }
}
"""


class TagLookup(Protocol):
    """Anything that can name the latest tag of a repository."""

    def latest_tag(self, owner: str, name: str) -> TagInfo: ...


def parse_tag_response(payload: dict[str, Any], owner: str, name: str) -> TagInfo:
    """Extract the tag name and commit id from a GraphQL response.

    Both values are reduced to their last path segment, so a tag name of
    "refs/tags/v1.2" becomes "v1.2" and a commit path of
    "/owner/repo/commit/abc123" becomes "abc123".

    Args:
        payload: Decoded JSON response.
        owner: Repository owner (for error messages).
        name: Repository name (for error messages).

    Returns:
        TagInfo for the single matching tag.

    Raises:
        TagResolutionError: On GraphQL errors or if not exactly one tag matches.
    """
    slug = f"{owner}/{name}"

    if payload.get("errors"):
        messages = "; ".join(str(e.get("message", e)) for e in payload["errors"])
        raise TagResolutionError(f"Tag lookup for {slug} failed: {messages}")

    repository = (payload.get("data") or {}).get("repository")
    if repository is None:
        raise TagResolutionError(
            f"Repository {slug} not found", code="repository_not_found"
        )

    edges = (repository.get("refs") or {}).get("edges") or []
    if len(edges) != 1:
        raise TagResolutionError(
            f"Unable to request tags for {slug}: expected 1 tag, got {len(edges)}",
            code="tag_count",
        )

    # The ref name covers lightweight tags, whose target is a Commit.
    node = edges[0].get("node") or {}
    target = node.get("target") or {}
    tag_name = node.get("name") or target.get("name")
    commit_path = target.get("commitResourcePath")
    if not tag_name or not commit_path:
        raise TagResolutionError(
            f"Latest tag of {slug} does not point to a commit",
            code="tag_incomplete",
        )

    return TagInfo(
        name=posixpath.basename(tag_name.rstrip("/")),
        commit=posixpath.basename(commit_path.rstrip("/")),
    )


class GitHubTagLookup:
    """TagLookup backed by the GitHub GraphQL API."""

    def __init__(
        self,
        client: httpx.Client,
        token: str,
        api_url: str = GITHUB_GRAPHQL_URL,
        timeout: float = LOOKUP_TIMEOUT,
    ) -> None:
        self.client = client
        self.token = token
        self.api_url = api_url
        self.timeout = timeout

    def latest_tag(self, owner: str, name: str) -> TagInfo:
        """Return the most recently created tag of owner/name.

        Raises:
            TagResolutionError: If the tag cannot be determined.
            DownloadError: On transport failure.
        """
        logger.debug("Looking up latest tag of %s/%s", owner, name)

        try:
            response = self.client.post(
                self.api_url,
                json={
                    "query": LATEST_TAG_QUERY,
                    "variables": {"repoOwner": owner, "repoName": name},
                },
                headers={"Authorization": f"bearer {self.token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise TagResolutionError(
                f"HTTP error looking up tags of {owner}/{name}: "
                f"{e.response.status_code} {e.response.reason_phrase}",
                code="http_error",
            ) from e
        except httpx.TimeoutException as e:
            raise DownloadError(
                f"Timeout looking up tags of {owner}/{name}", code="timeout"
            ) from e
        except httpx.RequestError as e:
            raise DownloadError(
                f"Network error looking up tags of {owner}/{name}: {e}",
                code="network_error",
            ) from e
        except ValueError as e:
            raise TagResolutionError(
                f"Invalid JSON from tag lookup of {owner}/{name}: {e}",
                code="invalid_response",
            ) from e

        tag = parse_tag_response(payload, owner, name)
        logger.info("Latest tag of %s/%s is %s (%s)", owner, name, tag.name, tag.commit)
        return tag


__all__ = [
    "GITHUB_GRAPHQL_URL",
    "GitHubTagLookup",
    "LATEST_TAG_QUERY",
    "TagLookup",
    "parse_tag_response",
]
