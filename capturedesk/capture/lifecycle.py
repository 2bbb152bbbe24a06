"""Capture lifecycle operations.

Enforces the status graph on top of the store::

    pending -> approved -> published
    pending -> rejected -> pending

``published`` is terminal. Every operation checks the current status first
and raises before touching any state, so a rejected request leaves the capture
exactly as it was.
"""

from typing import Optional

from capturedesk.capture.models import (
    BatchPublishResult,
    Capture,
    CaptureStatus,
    CaptureUpdatePayload,
    InferredCollection,
    InferredNoteType,
    PublishedInfo,
)
from capturedesk.capture.publish import BatchPublisher
from capturedesk.capture.refine import RefinementGateway
from capturedesk.capture.store import CaptureStore
from capturedesk.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    RefinementError,
    ValidationError,
)
from capturedesk.core.logger import get_capture_logger

EDITABLE_COLLECTIONS = (InferredCollection.TIL.value, InferredCollection.NOTES.value)


async def get_capture(store: CaptureStore, capture_id: str) -> Capture:
    capture = await store.get(capture_id)
    if capture is None:
        raise NotFoundError("Capture not found")
    return capture


def _require_status(capture: Capture, expected: CaptureStatus, action: str) -> None:
    if capture.status != expected:
        raise InvalidTransitionError(
            f"Cannot {action} capture with status: {capture.status.value}"
        )


async def approve(
    store: CaptureStore, capture_id: str, use_refined: bool = True
) -> Capture:
    """pending -> approved, recording the publish preference."""
    capture = await get_capture(store, capture_id)
    _require_status(capture, CaptureStatus.PENDING, "approve")
    updated = await store.update_status(
        capture_id, CaptureStatus.APPROVED, publish_use_refined=use_refined
    )
    get_capture_logger(__name__, capture_id).info(
        "Capture approved", extra={"use_refined": use_refined}
    )
    return updated


async def reject(store: CaptureStore, capture_id: str) -> Capture:
    """pending -> rejected."""
    capture = await get_capture(store, capture_id)
    _require_status(capture, CaptureStatus.PENDING, "reject")
    updated = await store.update_status(capture_id, CaptureStatus.REJECTED)
    get_capture_logger(__name__, capture_id).info("Capture rejected")
    return updated


async def restore(store: CaptureStore, capture_id: str) -> Capture:
    """rejected -> pending."""
    capture = await get_capture(store, capture_id)
    _require_status(capture, CaptureStatus.REJECTED, "restore")
    updated = await store.update_status(capture_id, CaptureStatus.PENDING)
    get_capture_logger(__name__, capture_id).info("Capture restored")
    return updated


def validate_update(updates: CaptureUpdatePayload) -> CaptureUpdatePayload:
    """Reject collections other than til/notes and unknown note types."""
    if (
        updates.inferred_collection is not None
        and updates.inferred_collection not in EDITABLE_COLLECTIONS
    ):
        raise ValidationError("Invalid collection")
    if updates.inferred_note_type is not None:
        try:
            InferredNoteType(updates.inferred_note_type)
        except ValueError:
            raise ValidationError("Invalid note type")
    return updates


async def update(
    store: CaptureStore, capture_id: str, updates: CaptureUpdatePayload
) -> Capture:
    """Edit capture metadata. Published captures are frozen."""
    validate_update(updates)
    capture = await get_capture(store, capture_id)
    if capture.status == CaptureStatus.PUBLISHED:
        raise InvalidTransitionError("Cannot edit a published capture")
    updated = await store.update(capture_id, updates)
    get_capture_logger(__name__, capture_id).info(
        "Capture updated",
        extra={"fields": sorted(updates.model_dump(exclude_none=True))},
    )
    return updated


async def refine(
    store: CaptureStore, gateway: RefinementGateway, capture_id: str
) -> Capture:
    """Run (or re-run) AI refinement and store the suggestion.

    Raises:
        RefinementError: When no suggestion could be produced.
    """
    capture = await get_capture(store, capture_id)
    refined = await gateway.refine(capture)
    if refined is None:
        raise RefinementError("AI refinement failed")
    return await store.store_refinement(capture_id, refined)


async def publish_all(
    store: CaptureStore, publisher: BatchPublisher
) -> Optional[BatchPublishResult]:
    """Publish the whole approved queue in one commit and mark it published.

    Returns:
        The batch result, or None when nothing was approved.
    """
    approved = await store.get_approved()
    if not approved:
        return None
    result = await publisher.batch_publish(approved)
    if result.per_item_info:
        await store.mark_as_published(result.per_item_info)
    return result


async def publish_one(
    store: CaptureStore, publisher: BatchPublisher, capture_id: str
) -> tuple[PublishedInfo, str]:
    """Publish a single approved capture in its own commit and mark it."""
    capture = await get_capture(store, capture_id)
    _require_status(capture, CaptureStatus.APPROVED, "publish")
    info, sha = await publisher.publish_capture(capture)
    await store.mark_as_published([info])
    return info, sha
