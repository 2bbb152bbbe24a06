"""Capture store.

Single source of truth for the capture lifecycle. Records live under
``capture:{id}``; each status keeps a sorted set ``captures:{status}`` of ids
scored by the time they entered that status, so listings come back newest
first.

Status moves always add to the new index before removing from the old one,
then rewrite the record. A concurrent reader may briefly see an id in two
indices but never in none.
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Optional

from capturedesk.capture.models import (
    Capture,
    CaptureStatus,
    CaptureUpdatePayload,
    PublishedInfo,
    RefinedCapture,
)
from capturedesk.core.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

APPROVED_BATCH_LIMIT = 100


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id(now_ms: Optional[int] = None) -> str:
    """Time-ordered id: base36 milliseconds, a hyphen, 6 random base36 chars."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"{_to_base36(timestamp)}-{suffix}"


def capture_key(capture_id: str) -> str:
    return f"capture:{capture_id}"


def status_key(status: CaptureStatus) -> str:
    return f"captures:{CaptureStatus(status).value}"


def _score() -> float:
    return float(int(time.time() * 1000))


class CaptureStore:
    """Capture records plus per-status ordered indices over a KeyValueStore.

    Every method may raise UpstreamError when the backing store is
    unreachable; nothing here retries.
    """

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    async def close(self) -> None:
        await self._kv.close()

    async def _save(self, capture: Capture) -> None:
        await self._kv.set(
            capture_key(capture.id),
            capture.model_dump_json(by_alias=True, exclude_none=True),
        )

    async def create(self, data: dict[str, Any]) -> Capture:
        """Persist a new pending capture.

        Args:
            data: Capture fields other than id, createdAt and status.

        Returns:
            The stored capture.
        """
        capture = Capture.model_validate(
            {
                **data,
                "id": generate_id(),
                "created_at": datetime.now(timezone.utc),
                "status": CaptureStatus.PENDING,
            }
        )
        await self._save(capture)
        await self._kv.zadd(status_key(CaptureStatus.PENDING), _score(), capture.id)
        logger.info(
            "Capture created",
            extra={"capture_id": capture.id, "collection": capture.inferred_collection.value},
        )
        return capture

    async def get(self, capture_id: str) -> Capture | None:
        raw = await self._kv.get(capture_key(capture_id))
        if raw is None:
            return None
        return Capture.model_validate_json(raw)

    async def list(
        self, status: CaptureStatus, limit: int = 50, offset: int = 0
    ) -> list[Capture]:
        """Captures in ``status``, newest first. Dangling index ids are skipped."""
        if limit <= 0:
            return []
        ids = await self._kv.zrange_desc(status_key(status), offset, offset + limit - 1)
        captures = await asyncio.gather(*(self.get(capture_id) for capture_id in ids))
        return [capture for capture in captures if capture is not None]

    async def count(self, status: CaptureStatus) -> int:
        return await self._kv.zcard(status_key(status))

    async def update_status(
        self, capture_id: str, new_status: CaptureStatus, **changes: Any
    ) -> Capture | None:
        """Move a capture to ``new_status``, applying any extra field changes.

        Returns None when the capture does not exist. Transition rules are
        enforced by the lifecycle layer, not here.
        """
        capture = await self.get(capture_id)
        if capture is None:
            return None

        new_status = CaptureStatus(new_status)
        old_status = capture.status
        updated = capture.model_copy(update={**changes, "status": new_status})

        await self._kv.zadd(status_key(new_status), _score(), capture_id)
        if old_status != new_status:
            await self._kv.zrem(status_key(old_status), capture_id)
        await self._save(updated)

        logger.info(
            "Capture status changed",
            extra={
                "capture_id": capture_id,
                "from_status": old_status.value,
                "to_status": new_status.value,
            },
        )
        return updated

    async def update(
        self, capture_id: str, updates: CaptureUpdatePayload
    ) -> Capture | None:
        """Apply editable metadata. Fields left unset keep their values."""
        capture = await self.get(capture_id)
        if capture is None:
            return None

        changes = updates.model_dump(exclude_none=True)
        updated = Capture.model_validate(
            {**capture.model_dump(), **changes}
        )
        await self._save(updated)
        return updated

    async def store_refinement(
        self, capture_id: str, refined: RefinedCapture
    ) -> Capture | None:
        """Attach (or replace) the AI suggestion on a capture."""
        capture = await self.get(capture_id)
        if capture is None:
            return None
        updated = capture.model_copy(update={"refined": refined})
        await self._save(updated)
        return updated

    async def delete(self, capture_id: str) -> bool:
        """Remove the record and its index membership. False if unknown."""
        capture = await self.get(capture_id)
        if capture is None:
            return False
        await self._kv.zrem(status_key(capture.status), capture_id)
        await self._kv.delete(capture_key(capture_id))
        return True

    async def get_approved(self) -> list[Capture]:
        """The publish queue: up to APPROVED_BATCH_LIMIT approved captures."""
        return await self.list(CaptureStatus.APPROVED, APPROVED_BATCH_LIMIT, 0)

    async def mark_as_published(self, infos: list[PublishedInfo]) -> list[str]:
        """Move each still-approved capture to published with its slug.

        Captures that left ``approved`` in the meantime are left alone.

        Returns:
            Ids actually marked.
        """
        marked = []
        for info in infos:
            capture = await self.get(info.id)
            if capture is None or capture.status != CaptureStatus.APPROVED:
                logger.warning(
                    "Skipping mark-as-published",
                    extra={
                        "capture_id": info.id,
                        "status": capture.status.value if capture else None,
                    },
                )
                continue
            await self.update_status(
                info.id,
                CaptureStatus.PUBLISHED,
                published_slug=info.slug,
                published_collection=info.collection,
            )
            marked.append(info.id)
        return marked
