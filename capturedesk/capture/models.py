"""Data models for the capture pipeline.

Capture is the unit the store persists; everything the HTTP layer, the
transformer and the publisher exchange is defined here. Models serialize with
camelCase aliases (``createdAt``, ``inferredCollection``...) so stored records
and API payloads keep the shape capture clients already speak.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from capturedesk.core.exceptions import ValidationError


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CaptureSource(str, Enum):
    """Client a capture was submitted from."""

    RAYCAST = "raycast"
    SHORTCUT = "shortcut"
    SLACK = "slack"
    API = "api"


class CaptureType(str, Enum):
    URL = "url"
    TEXT = "text"
    IMAGE = "image"
    MIXED = "mixed"


class CaptureStatus(str, Enum):
    """Lifecycle states.

    pending -> approved -> published, pending <-> rejected.
    published is terminal.
    """

    PENDING = "pending"
    APPROVED = "approved"
    PUBLISHED = "published"
    REJECTED = "rejected"


class InferredCollection(str, Enum):
    TIL = "til"
    NOTES = "notes"
    PROJECT_UPDATE = "project-update"


class InferredNoteType(str, Enum):
    LINK = "link"
    THOUGHT = "thought"
    ESSAY = "essay"
    SNIPPET = "snippet"


class ProjectActivityType(str, Enum):
    UPDATE = "update"
    LEARNING = "learning"
    DISCOVERY = "discovery"
    MILESTONE = "milestone"
    EXPERIMENT = "experiment"
    FIX = "fix"


class CaptureImage(CamelModel):
    url: str = ""
    data: str | None = None  # base64 payload until the image is committed


class RefinedCapture(CamelModel):
    """AI suggestion attached to a capture. Replaced wholesale on re-refine."""

    title: str
    body: str
    takeaway: str | None = None
    description: str | None = None
    suggested_tags: list[str] = Field(default_factory=list)
    suggested_type: InferredCollection
    suggested_note_type: InferredNoteType | None = None
    refined_at: datetime


class Capture(CamelModel):
    id: str
    created_at: datetime
    source: CaptureSource
    type: CaptureType

    url: str | None = None
    text: str | None = None
    comment: str | None = None
    images: list[CaptureImage] | None = None
    tags: list[str] | None = None

    project: str | None = None

    status: CaptureStatus = CaptureStatus.PENDING

    inferred_collection: InferredCollection
    inferred_note_type: InferredNoteType | None = None

    refined: RefinedCapture | None = None

    publish_use_refined: bool | None = None

    published_slug: str | None = None
    published_collection: InferredCollection | None = None

    @property
    def image_data(self) -> str | None:
        """Inline base64 payload of the first image, if any."""
        for image in self.images or []:
            if image.data:
                return image.data
        return None


class ActivityLink(CamelModel):
    label: str
    url: str


class ProjectActivityEntry(CamelModel):
    """One event in a project's activity log (newest first in the document)."""

    date: str
    title: str
    summary: str
    tags: list[str] = Field(default_factory=list)
    type: ProjectActivityType = ProjectActivityType.UPDATE
    highlights: list[str] | None = None
    image: str | None = None
    image_alt: str | None = None
    image_caption: str | None = None
    action_label: str | None = None
    action_url: str | None = None
    code: str | None = None
    code_language: str | None = None
    links: list[ActivityLink] | None = None


class CaptureIngestPayload(CamelModel):
    """Body accepted by the ingest endpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    url: str | None = None
    text: str | None = None
    comment: str | None = None
    image_base64: str | None = None
    source: str | None = None
    tags: list[str] | None = None
    project: str | None = None


class CaptureUpdatePayload(CamelModel):
    """Editable capture metadata. Unset fields keep their stored values."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    text: str | None = None
    comment: str | None = None
    tags: list[str] | None = None
    inferred_collection: str | None = None
    inferred_note_type: str | None = None
    publish_use_refined: bool | None = None


class TilFrontmatter(CamelModel):
    title: str
    date: str
    tags: list[str] = Field(default_factory=list)
    draft: bool = False


class NoteFrontmatter(CamelModel):
    # Field order is the emission order in the document header
    title: str
    date: str
    tags: list[str] = Field(default_factory=list)
    type: InferredNoteType
    link: str | None = None
    link_title: str | None = None
    takeaway: str | None = None
    featured: bool = False
    draft: bool = False


class TransformResult(CamelModel):
    """A capture rendered as a standalone note or TIL document."""

    collection: Literal["til", "notes"]
    filename: str
    frontmatter: TilFrontmatter | NoteFrontmatter
    body: str
    full_content: str


class ProjectActivityTransformResult(CamelModel):
    """A capture rendered as an activity entry for an existing project."""

    collection: Literal["project-update"]
    project_slug: str
    activity: ProjectActivityEntry
    image_data: str | None = None


AnyTransformResult = Annotated[
    Union[TransformResult, ProjectActivityTransformResult],
    Field(discriminator="collection"),
]


class PublishedInfo(CamelModel):
    id: str
    slug: str
    collection: InferredCollection
    path: str


class SkippedCapture(CamelModel):
    id: str
    reason: str


class BatchPublishResult(CamelModel):
    commit_id: str | None = None
    files_changed: int
    published_ids: list[str]
    per_item_info: list[PublishedInfo]
    skipped: list[SkippedCapture] = Field(default_factory=list)


def validate_payload(model: type[CamelModel], data: Any) -> Any:
    """Validate request data against ``model``.

    Raises:
        ValidationError: With a readable message for the first problem found.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid field {location}: {first.get('msg')}")
