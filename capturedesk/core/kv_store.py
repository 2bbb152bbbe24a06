"""Key-value store backends for the capture store.

The capture store only needs a small slice of Redis semantics: string values
addressed by key plus sorted sets scored by timestamp. Two backends implement
that slice:

* JsonFileKeyValueStore persists everything to one JSON file. It is what
  local development and the test-suite run against.
* UpstashKeyValueStore talks to an Upstash Redis database over its REST API.

Any failure to reach the backing service surfaces as UpstreamError; there is
no retry at this layer.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from capturedesk.core.exceptions import UpstreamError
from capturedesk.core.http_client import create_client

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async key-value + sorted-set operations used by the capture store."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored at key, or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value at key, overwriting any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""

    @abstractmethod
    async def zadd(self, key: str, score: float, member: str) -> None:
        """Add member to the sorted set at key (updating its score if present)."""

    @abstractmethod
    async def zrem(self, key: str, member: str) -> bool:
        """Remove member from the sorted set. Returns True if it was present."""

    @abstractmethod
    async def zrange_desc(self, key: str, start: int, stop: int) -> list[str]:
        """Members ranked by descending score, ``start`` to ``stop`` inclusive."""

    @abstractmethod
    async def zcard(self, key: str) -> int:
        """Number of members in the sorted set."""

    async def close(self) -> None:
        """Release any held resources."""


class JsonFileKeyValueStore(KeyValueStore):
    """Key-value store persisted to a single JSON file.

    Creates the file (and parent directories) on first use. Every write is
    flushed to disk before the call returns.

    Attributes:
        state_file: Path to the JSON state file.
    """

    def __init__(self, state_file: str | Path):
        self.state_file = Path(state_file)
        self._state: dict[str, Any] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self.load()

    def load(self) -> dict[str, Any]:
        """Load state from the JSON file, creating it if missing."""
        if not self.state_file.exists():
            self._state = {"values": {}, "sorted_sets": {}, "last_updated": None}
            self._loaded = True
            self.save()
            return self._state

        with open(self.state_file, encoding="utf-8") as f:
            self._state = json.load(f)

        # Ensure required keys exist
        self._state.setdefault("values", {})
        self._state.setdefault("sorted_sets", {})
        self._state.setdefault("last_updated", None)

        self._loaded = True
        return self._state

    def save(self) -> None:
        """Write current state to the JSON file."""
        self._state["last_updated"] = datetime.now().isoformat()
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2, ensure_ascii=False)

    async def get(self, key: str) -> str | None:
        self._ensure_loaded()
        return self._state["values"].get(key)

    async def set(self, key: str, value: str) -> None:
        self._ensure_loaded()
        self._state["values"][key] = value
        self.save()

    async def delete(self, key: str) -> bool:
        self._ensure_loaded()
        existed = self._state["values"].pop(key, None) is not None
        if existed:
            self.save()
        return existed

    async def zadd(self, key: str, score: float, member: str) -> None:
        self._ensure_loaded()
        self._state["sorted_sets"].setdefault(key, {})[member] = score
        self.save()

    async def zrem(self, key: str, member: str) -> bool:
        self._ensure_loaded()
        members = self._state["sorted_sets"].get(key, {})
        existed = members.pop(member, None) is not None
        if existed:
            self.save()
        return existed

    async def zrange_desc(self, key: str, start: int, stop: int) -> list[str]:
        self._ensure_loaded()
        members = self._state["sorted_sets"].get(key, {})
        # Equal scores fall back to reverse lexicographic order, as Redis does
        ranked = sorted(members.items(), key=lambda item: (item[1], item[0]), reverse=True)
        if stop < 0:
            stop = len(ranked) + stop
        return [member for member, _ in ranked[start : stop + 1]]

    async def zcard(self, key: str) -> int:
        self._ensure_loaded()
        return len(self._state["sorted_sets"].get(key, {}))


class UpstashKeyValueStore(KeyValueStore):
    """Key-value store backed by the Upstash Redis REST API.

    Each operation is one POST of a Redis command encoded as a JSON array;
    the response carries either ``result`` or ``error``.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = url.rstrip("/")
        self._client = client or create_client(token=token)
        self._owns_client = client is None
        if client is not None:
            self._client.headers["Authorization"] = f"Bearer {token}"

    async def _command(self, *args: Any) -> Any:
        try:
            response = await self._client.post(self._url, json=[str(a) for a in args])
        except httpx.HTTPError as e:
            raise UpstreamError(f"Store unreachable: {e}")

        if response.status_code >= 400:
            raise UpstreamError(f"Store error: HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError("Store returned a non-JSON response")

        if payload.get("error"):
            raise UpstreamError(f"Store error: {payload['error']}")
        return payload.get("result")

    async def get(self, key: str) -> str | None:
        return await self._command("GET", key)

    async def set(self, key: str, value: str) -> None:
        await self._command("SET", key, value)

    async def delete(self, key: str) -> bool:
        return bool(await self._command("DEL", key))

    async def zadd(self, key: str, score: float, member: str) -> None:
        await self._command("ZADD", key, score, member)

    async def zrem(self, key: str, member: str) -> bool:
        return bool(await self._command("ZREM", key, member))

    async def zrange_desc(self, key: str, start: int, stop: int) -> list[str]:
        result = await self._command("ZRANGE", key, start, stop, "REV")
        return list(result or [])

    async def zcard(self, key: str) -> int:
        return int(await self._command("ZCARD", key) or 0)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def create_kv_store(config) -> KeyValueStore:
    """Pick the store backend from configuration.

    Upstash is used when both its URL and token are configured; otherwise the
    local JSON file at ``config.state_file``.
    """
    if config.upstash_configured:
        logger.info("Using Upstash capture store")
        return UpstashKeyValueStore(config.upstash_url, config.upstash_token)
    logger.info("Using file capture store at %s", config.state_file)
    return JsonFileKeyValueStore(config.state_file)
