"""GitHub API client for publishing content.

Covers the git data endpoints used to build one multi-file commit
(ref -> commit -> blobs -> tree -> commit -> ref) and the contents endpoints
used for single-file reads and writes. Every failed call raises
PublishStepError naming the step, so the publisher can report exactly where a
batch stopped.
"""

import base64
import logging
from typing import Any, Optional

import httpx

from capturedesk.core.exceptions import PublishStepError
from capturedesk.core.http_client import create_client

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_ACCEPT = "application/vnd.github.v3+json"


class GitHubClient:
    """Async client for one repository branch.

    Args:
        token: Personal access token with contents write permission.
        repo: ``owner/name``.
        branch: Branch every operation targets.
        client: Optional preconfigured httpx client (tests inject one backed
            by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        token: str,
        repo: str,
        branch: str = "main",
        *,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.repo = repo
        self.branch = branch
        self._client = client or create_client(
            base_url=GITHUB_API_BASE,
            token=token,
            headers={"Accept": GITHUB_ACCEPT},
        )
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self,
        step: str,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
        allow_404: bool = False,
    ) -> Optional[dict[str, Any]]:
        url = f"/repos/{self.repo}/{path}"
        try:
            response = await self._client.request(method, url, json=json, params=params)
        except httpx.HTTPError as e:
            raise PublishStepError(step, f"request error: {e}")

        if allow_404 and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise PublishStepError(
                step,
                f"HTTP {response.status_code}",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )
        try:
            return response.json()
        except ValueError:
            raise PublishStepError(step, "response is not JSON")

    # -- git data API -----------------------------------------------------

    async def get_ref(self) -> str:
        """Head commit sha of the branch."""
        data = await self._request("get_ref", "GET", f"git/ref/heads/{self.branch}")
        return data["object"]["sha"]

    async def get_commit(self, sha: str) -> str:
        """Tree sha of a commit."""
        data = await self._request("get_commit", "GET", f"git/commits/{sha}")
        return data["tree"]["sha"]

    async def create_blob(self, content: str, encoding: str = "utf-8") -> str:
        data = await self._request(
            "create_blob", "POST", "git/blobs",
            json={"content": content, "encoding": encoding},
        )
        return data["sha"]

    async def create_tree(self, base_tree: str, entries: list[dict[str, str]]) -> str:
        """Create a tree layering ``entries`` over ``base_tree``.

        Each entry is ``{"path", "sha"}``; mode and type default to a regular
        file blob.
        """
        tree = [
            {"path": e["path"], "mode": "100644", "type": "blob", "sha": e["sha"]}
            for e in entries
        ]
        data = await self._request(
            "create_tree", "POST", "git/trees",
            json={"base_tree": base_tree, "tree": tree},
        )
        return data["sha"]

    async def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        data = await self._request(
            "create_commit", "POST", "git/commits",
            json={"message": message, "tree": tree, "parents": parents},
        )
        return data["sha"]

    async def update_ref(self, sha: str) -> None:
        """Move the branch to ``sha``. This is the only call that changes the branch."""
        await self._request(
            "update_ref", "PATCH", f"git/refs/heads/{self.branch}",
            json={"sha": sha},
        )

    # -- contents API -----------------------------------------------------

    async def get_file(self, path: str) -> Optional[tuple[str, str]]:
        """Read a file on the branch.

        Returns:
            ``(text, sha)`` or None when the file does not exist.
        """
        data = await self._request(
            "get_file", "GET", f"contents/{path}",
            params={"ref": self.branch},
            allow_404=True,
        )
        if data is None:
            return None
        raw = base64.b64decode(data.get("content", ""))
        return raw.decode("utf-8"), data["sha"]

    async def put_file(
        self, path: str, content: str | bytes, message: str, sha: Optional[str] = None
    ) -> dict[str, Any]:
        """Create or update one file in its own commit.

        Args:
            content: Text (written as UTF-8) or raw bytes.
            sha: Current blob sha when updating; GitHub rejects the write if
                the file changed since.

        Returns:
            The API response (``content`` and ``commit`` objects).
        """
        raw = content.encode("utf-8") if isinstance(content, str) else content
        body = {
            "message": message,
            "content": base64.b64encode(raw).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha
        return await self._request("put_file", "PUT", f"contents/{path}", json=body)


def create_github_client(config) -> GitHubClient:
    """Build the client from configuration. Raises ConfigurationError if unset."""
    config.require_github()
    return GitHubClient(config.github_token, config.github_repo, config.github_branch)
