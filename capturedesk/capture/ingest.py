"""Ingest: validate a client payload and infer how the capture should publish."""

import logging
from urllib.parse import urlparse

from capturedesk.capture.models import (
    Capture,
    CaptureIngestPayload,
    CaptureSource,
    CaptureType,
    InferredCollection,
    InferredNoteType,
)
from capturedesk.capture.store import CaptureStore
from capturedesk.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

TIL_MAX_LENGTH = 500
THOUGHT_MAX_LENGTH = 300


def _text_length(payload: CaptureIngestPayload) -> int:
    return len(payload.text or "") + len(payload.comment or "")


def is_valid_url(value: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_ingest(payload: CaptureIngestPayload) -> CaptureSource:
    """Check source, content presence and URL shape.

    Returns:
        The parsed source.

    Raises:
        ValidationError: On the first rule the payload breaks.
    """
    try:
        source = CaptureSource(payload.source)
    except ValueError:
        raise ValidationError("Invalid or missing source")

    if not (payload.url or payload.text or payload.image_base64):
        raise ValidationError("Must provide url, text, or image")

    if payload.url and not is_valid_url(payload.url):
        raise ValidationError("Invalid URL format")

    return source


def detect_content_type(payload: CaptureIngestPayload) -> CaptureType:
    has_url = bool(payload.url)
    has_text = bool(payload.text)
    has_image = bool(payload.image_base64)

    if has_image and (has_url or has_text):
        return CaptureType.MIXED
    if has_image:
        return CaptureType.IMAGE
    if has_url and has_text:
        return CaptureType.MIXED
    if has_url:
        return CaptureType.URL
    return CaptureType.TEXT


def infer_collection(payload: CaptureIngestPayload) -> InferredCollection:
    """project => project-update; short text without a URL => til; else notes."""
    if payload.project:
        return InferredCollection.PROJECT_UPDATE
    length = _text_length(payload)
    if 0 < length < TIL_MAX_LENGTH and not payload.url:
        return InferredCollection.TIL
    return InferredCollection.NOTES


def infer_note_type(payload: CaptureIngestPayload) -> InferredNoteType:
    """Ingest-time note type. Only this heuristic can pick ``snippet``."""
    if payload.url:
        return InferredNoteType.LINK
    if _text_length(payload) < THOUGHT_MAX_LENGTH:
        return InferredNoteType.THOUGHT
    if "```" in (payload.text or ""):
        return InferredNoteType.SNIPPET
    return InferredNoteType.THOUGHT


def build_capture_data(payload: CaptureIngestPayload) -> dict:
    """Validated payload -> field dict for CaptureStore.create."""
    source = validate_ingest(payload)
    collection = infer_collection(payload)
    return {
        "source": source,
        "type": detect_content_type(payload),
        "url": payload.url or None,
        "text": payload.text or None,
        "comment": payload.comment or None,
        "images": [{"url": "", "data": payload.image_base64}] if payload.image_base64 else None,
        "tags": payload.tags,
        "project": payload.project or None,
        "inferred_collection": collection,
        "inferred_note_type": (
            infer_note_type(payload) if collection == InferredCollection.NOTES else None
        ),
    }


async def ingest(store: CaptureStore, payload: CaptureIngestPayload) -> Capture:
    """Validate, infer and persist a new pending capture."""
    capture = await store.create(build_capture_data(payload))
    logger.info(
        "Capture ingested",
        extra={
            "capture_id": capture.id,
            "source": capture.source.value,
            "type": capture.type.value,
        },
    )
    return capture
