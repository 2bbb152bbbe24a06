"""Shared test fixtures for capturedesk.

Provides a throwaway configuration, a file-backed capture store under
``tmp_path``, a capture factory and a fake GitHub API served through
``httpx.MockTransport`` so publishing runs end to end without a network.
"""

import base64
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from capturedesk.capture.github import GitHubClient
from capturedesk.capture.models import Capture
from capturedesk.capture.store import CaptureStore
from capturedesk.core.config import Config, reset_config
from capturedesk.core.kv_store import JsonFileKeyValueStore

REPO = "owner/site"


@pytest.fixture(autouse=True)
def _reset_global_config():
    """Keep the cached global config from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Configuration with every credential set and state under tmp_path."""
    return Config(
        capture_api_key="ingest-key",
        admin_password="admin-pass",
        cron_secret="cron-secret",
        state_file=tmp_path / "captures.json",
        github_token="gh-token",
        github_repo=REPO,
        resend_api_key="re-key",
        resend_audience_id="aud-1",
        content_root=tmp_path / "content",
        site_url="https://example.com",
        newsletter_title="Field Notes",
    )


@pytest.fixture
def store(tmp_path: Path) -> CaptureStore:
    return CaptureStore(JsonFileKeyValueStore(tmp_path / "captures.json"))


@pytest.fixture
def make_capture() -> Callable[..., Capture]:
    """Factory for Capture objects with sensible defaults."""

    def _make(**overrides: Any) -> Capture:
        data: dict[str, Any] = {
            "id": "lq2x9k-abc123",
            "created_at": datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc),
            "source": "api",
            "type": "text",
            "text": "Learned that Promise.all rejects fast",
            "inferred_collection": "til",
            "status": "approved",
        }
        data.update(overrides)
        return Capture.model_validate(data)

    return _make


class FakeGitHub:
    """In-memory stand-in for the GitHub REST endpoints the publisher uses.

    Attributes:
        files: Repository files on the branch, path -> text.
        requests: ``(method, path)`` of every call received.
        blobs: Blob sha -> (content, encoding).
        trees: Tree payloads received, in order.
        commits: Commit payloads received, in order.
        ref_updates: Shas the branch was moved to.
        fail_step: Endpoint step name that answers HTTP 500.
    """

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.requests: list[tuple[str, str]] = []
        self.blobs: dict[str, tuple[str, str]] = {}
        self.trees: list[dict[str, Any]] = []
        self.commits: list[dict[str, Any]] = []
        self.ref_updates: list[str] = []
        self.puts: list[dict[str, Any]] = []
        self.fail_step: str | None = None

    def _step(self, method: str, path: str) -> str:
        if path.startswith("git/ref/"):
            return "get_ref"
        if path.startswith("git/refs/"):
            return "update_ref"
        if path.startswith("git/commits"):
            return "get_commit" if method == "GET" else "create_commit"
        if path.startswith("git/blobs"):
            return "create_blob"
        if path.startswith("git/trees"):
            return "create_tree"
        return "get_file" if method == "GET" else "put_file"

    def handler(self, request: httpx.Request) -> httpx.Response:
        prefix = f"/repos/{REPO}/"
        path = request.url.path[len(prefix):]
        method = request.method
        self.requests.append((method, path))

        if self.fail_step and self._step(method, path) == self.fail_step:
            return httpx.Response(500, json={"message": "boom"})

        body = json.loads(request.content) if request.content else {}

        if method == "GET" and path.startswith("git/ref/heads/"):
            return httpx.Response(200, json={"object": {"sha": "head-sha"}})
        if method == "GET" and path.startswith("git/commits/"):
            return httpx.Response(200, json={"tree": {"sha": "base-tree"}})
        if method == "POST" and path == "git/blobs":
            sha = f"blob-{len(self.blobs) + 1}"
            self.blobs[sha] = (body["content"], body["encoding"])
            return httpx.Response(201, json={"sha": sha})
        if method == "POST" and path == "git/trees":
            self.trees.append(body)
            return httpx.Response(201, json={"sha": "new-tree"})
        if method == "POST" and path == "git/commits":
            self.commits.append(body)
            return httpx.Response(201, json={"sha": "new-commit"})
        if method == "PATCH" and path.startswith("git/refs/heads/"):
            self.ref_updates.append(body["sha"])
            return httpx.Response(200, json={"object": {"sha": body["sha"]}})

        if path.startswith("contents/"):
            file_path = path[len("contents/"):]
            if method == "GET":
                if file_path not in self.files:
                    return httpx.Response(404, json={"message": "Not Found"})
                encoded = base64.b64encode(self.files[file_path].encode()).decode()
                return httpx.Response(
                    200, json={"content": encoded, "sha": f"sha-{file_path}"}
                )
            if method == "PUT":
                self.puts.append({"path": file_path, **body})
                raw = base64.b64decode(body["content"])
                try:
                    self.files[file_path] = raw.decode("utf-8")
                except UnicodeDecodeError:
                    self.files[file_path] = "<binary>"
                return httpx.Response(
                    201,
                    json={"content": {"path": file_path}, "commit": {"sha": "put-commit"}},
                )

        return httpx.Response(404, json={"message": "Not Found"})

    def client(self) -> GitHubClient:
        http = httpx.AsyncClient(
            base_url="https://api.github.com",
            transport=httpx.MockTransport(self.handler),
        )
        return GitHubClient("gh-token", REPO, "main", client=http)

    def blob_for(self, path: str) -> tuple[str, str]:
        """(content, encoding) of the blob the last tree placed at ``path``."""
        for entry in self.trees[-1]["tree"]:
            if entry["path"] == path:
                return self.blobs[entry["sha"]]
        raise KeyError(path)


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


PROJECT_DOCUMENT = """---
title: "Site Rebuild"
description: "Rewriting the personal site"
activity: []
draft: false
---

Project page body.
"""


@pytest.fixture
def project_document() -> str:
    return PROJECT_DOCUMENT
