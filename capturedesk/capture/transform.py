"""Transform captures into committable documents.

``transform`` is a pure function of (capture, use_refined): the only date it
reads is the capture's own ``created_at``, so repeated calls give identical
output. Which variant comes back is decided by the target collection:

* ``til`` / ``notes``: a standalone markdown document (TransformResult)
* ``project-update``: an activity entry for an existing project document
  (ProjectActivityTransformResult); the project itself is looked up at
  publish time
"""

from datetime import timezone
from urllib.parse import urlparse

from capturedesk.capture.models import (
    ActivityLink,
    AnyTransformResult,
    Capture,
    InferredCollection,
    InferredNoteType,
    NoteFrontmatter,
    ProjectActivityEntry,
    ProjectActivityTransformResult,
    TilFrontmatter,
    TransformResult,
)
from capturedesk.capture.refine import generate_fallback_title
from capturedesk.core.frontmatter import render_document
from capturedesk.core.text import slugify

SLUG_MAX_LENGTH = 50
LINK_TEXT_MAX_LENGTH = 200
THOUGHT_MAX_LENGTH = 300


def format_date(capture: Capture) -> str:
    """Capture creation day (UTC) as YYYY-MM-DD. Naive timestamps count as UTC."""
    created = capture.created_at
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc)
    return created.date().isoformat()


def _refined(capture: Capture, use_refined: bool):
    return capture.refined if use_refined else None


def resolve_collection(capture: Capture, use_refined: bool) -> InferredCollection:
    """Refined suggestion when applied, else the ingest-time inference.

    A project update with no project to attach to publishes as a note.
    """
    refined = _refined(capture, use_refined)
    collection = refined.suggested_type if refined else capture.inferred_collection
    if collection == InferredCollection.PROJECT_UPDATE and not capture.project:
        return InferredCollection.NOTES
    return collection


def resolve_title(capture: Capture, use_refined: bool) -> str:
    refined = _refined(capture, use_refined)
    if refined and refined.title:
        return refined.title
    return generate_fallback_title(capture)


def resolve_body(capture: Capture, use_refined: bool) -> str:
    """Refined body, else comment then text (when distinct) split by a blank line."""
    refined = _refined(capture, use_refined)
    if refined and refined.body:
        return refined.body

    parts = []
    if capture.comment:
        parts.append(capture.comment)
    if capture.text and capture.text != capture.comment:
        parts.append(capture.text)
    return "\n\n".join(parts)


def resolve_tags(capture: Capture, use_refined: bool) -> list[str]:
    refined = _refined(capture, use_refined)
    if refined and refined.suggested_tags:
        return list(refined.suggested_tags)
    return list(capture.tags or [])


def resolve_note_type(capture: Capture, use_refined: bool) -> InferredNoteType:
    """Transform-time note type.

    Unlike the ingest heuristic this one never picks ``snippet``; that only
    arrives through a refinement suggestion or the stored inference.
    """
    refined = _refined(capture, use_refined)
    if refined and refined.suggested_note_type:
        return refined.suggested_note_type
    if capture.inferred_note_type:
        return capture.inferred_note_type

    if capture.url and len(capture.text or "") < LINK_TEXT_MAX_LENGTH:
        return InferredNoteType.LINK
    if len(capture.text or "") + len(capture.comment or "") < THOUGHT_MAX_LENGTH:
        return InferredNoteType.THOUGHT
    return InferredNoteType.ESSAY


def _document_filename(date: str, title: str) -> str:
    return f"{date}-{slugify(title, max_length=SLUG_MAX_LENGTH)}.md"


def to_til(capture: Capture, use_refined: bool) -> TransformResult:
    date = format_date(capture)
    title = resolve_title(capture, use_refined)
    body = resolve_body(capture, use_refined)
    frontmatter = TilFrontmatter(
        title=title, date=date, tags=resolve_tags(capture, use_refined), draft=False
    )
    return TransformResult(
        collection="til",
        filename=_document_filename(date, title),
        frontmatter=frontmatter,
        body=body,
        full_content=render_document(frontmatter.to_json_dict(), body),
    )


def to_note(capture: Capture, use_refined: bool) -> TransformResult:
    date = format_date(capture)
    title = resolve_title(capture, use_refined)
    body = resolve_body(capture, use_refined)
    note_type = resolve_note_type(capture, use_refined)
    refined = _refined(capture, use_refined)
    has_link = note_type == InferredNoteType.LINK and bool(capture.url)

    frontmatter = NoteFrontmatter(
        title=title,
        date=date,
        tags=resolve_tags(capture, use_refined),
        type=note_type,
        link=capture.url if has_link else None,
        link_title=title if has_link else None,
        takeaway=refined.takeaway if refined and refined.takeaway else None,
        featured=False,
        draft=False,
    )
    return TransformResult(
        collection="notes",
        filename=_document_filename(date, title),
        frontmatter=frontmatter,
        body=body,
        full_content=render_document(frontmatter.to_json_dict(), body),
    )


def to_project_activity(
    capture: Capture, use_refined: bool
) -> ProjectActivityTransformResult:
    refined = _refined(capture, use_refined)
    if refined:
        summary = refined.takeaway or refined.body
    else:
        summary = " ".join(
            part for part in (capture.comment, capture.text) if part
        ) or generate_fallback_title(capture)

    links = None
    if capture.url:
        hostname = urlparse(capture.url).hostname or capture.url
        links = [ActivityLink(label=hostname, url=capture.url)]

    activity = ProjectActivityEntry(
        date=format_date(capture),
        title=resolve_title(capture, use_refined),
        summary=summary.strip(),
        tags=resolve_tags(capture, use_refined),
        links=links,
    )
    return ProjectActivityTransformResult(
        collection="project-update",
        project_slug=capture.project,
        activity=activity,
        image_data=capture.image_data,
    )


def transform(capture: Capture, use_refined: bool = True) -> AnyTransformResult:
    """Render a capture for publishing.

    Args:
        capture: The capture to render.
        use_refined: Apply the stored AI suggestion when one exists.
    """
    collection = resolve_collection(capture, use_refined)
    if collection == InferredCollection.PROJECT_UPDATE:
        return to_project_activity(capture, use_refined)
    if collection == InferredCollection.TIL:
        return to_til(capture, use_refined)
    return to_note(capture, use_refined)


def content_path(result: TransformResult, content_dir: str = "src/content") -> str:
    """Repository path of a standalone document."""
    return f"{content_dir}/{result.collection}/{result.filename}"


def project_path(project_slug: str, content_dir: str = "src/content") -> str:
    """Repository path of a project document."""
    return f"{content_dir}/projects/{project_slug}.md"


def document_slug(result: TransformResult) -> str:
    return result.filename.removesuffix(".md")
