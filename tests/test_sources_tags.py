"""Tests for sources/tags.py module.

These tests use mocked GraphQL responses.
"""

import json

import httpx
import pytest
import respx

from crossbuild.errors import DownloadError, TagResolutionError
from crossbuild.sources.tags import (
    GITHUB_GRAPHQL_URL,
    GitHubTagLookup,
    parse_tag_response,
)
from crossbuild.types import TagInfo


def tag_payload(name: str = "v1.3.1", commit: str = "abc123") -> dict:
    """Build a GraphQL response holding a single tag."""
    return {
        "data": {
            "repository": {
                "refs": {
                    "edges": [
                        {
                            "node": {
                                "name": name,
                                "target": {
                                    "commitResourcePath": f"/madler/zlib/commit/{commit}",
                                },
                            }
                        }
                    ]
                }
            }
        }
    }


class TestParseTagResponse:
    """Tests for parse_tag_response function."""

    def test_single_tag(self) -> None:
        """Tag name and commit id are reduced to their last path segment."""
        tag = parse_tag_response(tag_payload(), "madler", "zlib")
        assert tag == TagInfo(name="v1.3.1", commit="abc123")

    def test_prefixed_tag_name(self) -> None:
        """A ref path tag name keeps only the basename."""
        tag = parse_tag_response(tag_payload(name="refs/tags/v2"), "o", "r")
        assert tag.name == "v2"

    def test_graphql_errors(self) -> None:
        """GraphQL errors are reported as TagResolutionError."""
        with pytest.raises(TagResolutionError) as exc_info:
            parse_tag_response({"errors": [{"message": "Bad credentials"}]}, "o", "r")
        assert "Bad credentials" in str(exc_info.value)

    def test_repository_not_found(self) -> None:
        """A null repository is a distinct failure."""
        with pytest.raises(TagResolutionError) as exc_info:
            parse_tag_response({"data": {"repository": None}}, "o", "r")
        assert exc_info.value.code == "repository_not_found"

    def test_no_tags(self) -> None:
        """Zero matching tags is a failure."""
        payload = {"data": {"repository": {"refs": {"edges": []}}}}

        with pytest.raises(TagResolutionError) as exc_info:
            parse_tag_response(payload, "o", "r")
        assert exc_info.value.code == "tag_count"

    def test_lightweight_tag(self) -> None:
        """A tag whose target is a Commit is named by its ref."""
        payload = tag_payload(name="v1.2.13", commit="04f42ce")
        node = payload["data"]["repository"]["refs"]["edges"][0]["node"]
        node["target"]["__typename"] = "Commit"

        tag = parse_tag_response(payload, "madler", "zlib")

        assert tag == TagInfo(name="v1.2.13", commit="04f42ce")

    def test_name_from_tag_target(self) -> None:
        """Without a ref name the annotated tag name is used."""
        payload = tag_payload()
        node = payload["data"]["repository"]["refs"]["edges"][0]["node"]
        node["target"]["name"] = node.pop("name")

        assert parse_tag_response(payload, "o", "r").name == "v1.3.1"

    def test_missing_commit(self) -> None:
        """A ref without a commit path cannot be downloaded."""
        payload = tag_payload()
        node = payload["data"]["repository"]["refs"]["edges"][0]["node"]
        del node["target"]["commitResourcePath"]

        with pytest.raises(TagResolutionError) as exc_info:
            parse_tag_response(payload, "o", "r")
        assert exc_info.value.code == "tag_incomplete"


class TestGitHubTagLookup:
    """Tests for GitHubTagLookup with mocked HTTP."""

    @respx.mock
    def test_latest_tag(self) -> None:
        """Should post the query with the token and parse the response."""
        route = respx.post(GITHUB_GRAPHQL_URL).mock(
            return_value=httpx.Response(200, json=tag_payload())
        )

        with httpx.Client() as client:
            tag = GitHubTagLookup(client, "secret").latest_tag("madler", "zlib")

        assert tag == TagInfo(name="v1.3.1", commit="abc123")
        request = route.calls.last.request
        assert request.headers["Authorization"] == "bearer secret"
        body = json.loads(request.content)
        assert body["variables"] == {"repoOwner": "madler", "repoName": "zlib"}

    @respx.mock
    def test_http_error(self) -> None:
        """A non-success status is a tag resolution failure."""
        respx.post(GITHUB_GRAPHQL_URL).mock(return_value=httpx.Response(401))

        with httpx.Client() as client, pytest.raises(TagResolutionError) as exc_info:
            GitHubTagLookup(client, "bad").latest_tag("o", "r")
        assert exc_info.value.code == "http_error"

    @respx.mock
    def test_network_error(self) -> None:
        """A transport failure is a download error."""
        respx.post(GITHUB_GRAPHQL_URL).mock(side_effect=httpx.ConnectError("refused"))

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            GitHubTagLookup(client, "t").latest_tag("o", "r")
        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_invalid_json(self) -> None:
        """A non-JSON body is reported as an invalid response."""
        respx.post(GITHUB_GRAPHQL_URL).mock(
            return_value=httpx.Response(200, content=b"<html>")
        )

        with httpx.Client() as client, pytest.raises(TagResolutionError) as exc_info:
            GitHubTagLookup(client, "t").latest_tag("o", "r")
        assert exc_info.value.code == "invalid_response"
