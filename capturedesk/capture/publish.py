"""Publishing approved captures to the content repository.

The batch publisher turns every approved capture into file changes and lands
them all in ONE commit, so the site rebuilds once per batch no matter how
many items it carries:

1. regular captures (note / TIL) become standalone documents, plus an image
   file when the capture carries inline image data
2. project updates are grouped by project; each project document is fetched
   once and every entry of the group is spliced into its ``activity:`` list
3. a document whose path is already taken, earlier in the batch or on the
   branch with different content, gets the capture id suffix appended to
   its filename
4. ref -> commit -> blobs -> tree -> commit -> ref

Updating the branch ref is the single commit point. A failure before it
leaves the repository untouched and the captures ``approved``; a failure
after it (before the caller marks captures published) is what
``reconcile_published`` repairs.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Collection, Optional

from capturedesk.capture.github import GitHubClient
from capturedesk.capture.models import (
    BatchPublishResult,
    Capture,
    InferredCollection,
    ProjectActivityTransformResult,
    PublishedInfo,
    SkippedCapture,
    TransformResult,
)
from capturedesk.capture.store import CaptureStore
from capturedesk.capture.transform import (
    content_path,
    document_slug,
    format_date,
    project_path,
    transform,
)
from capturedesk.core.exceptions import NotFoundError, ValidationError
from capturedesk.core.frontmatter import (
    merge_activity,
    parse_activity_list,
    render_document,
    serialize_activity_entry,
    split_frontmatter,
)
from capturedesk.core.logger import get_capture_logger

logger = logging.getLogger(__name__)

COMMIT_TITLE_LIMIT = 3

_COLLECTION_LABELS = {
    "til": "TIL",
    "notes": "note",
    "project-update": "project update",
}


@dataclass
class FileChange:
    """One file to write in the commit. Binary files carry base64 content."""

    path: str
    content: str
    encoding: str = "utf-8"


@dataclass
class PreparedBatch:
    files: list[FileChange] = field(default_factory=list)
    published: list[PublishedInfo] = field(default_factory=list)
    titles: list[str] = field(default_factory=list)
    skipped: list[SkippedCapture] = field(default_factory=list)


def use_refined_for(capture: Capture) -> bool:
    """The capture's sticky publish preference; refined content by default."""
    return capture.publish_use_refined is not False


def build_commit_message(titles: list[str]) -> str:
    """``content: add "<title>"`` for one item, a bulleted summary for more."""
    if len(titles) == 1:
        return f'content: add "{titles[0]}"'
    lines = [f"- {title}" for title in titles[:COMMIT_TITLE_LIMIT]]
    if len(titles) > COMMIT_TITLE_LIMIT:
        lines.append(f"- ... and {len(titles) - COMMIT_TITLE_LIMIT} more")
    return f"content: add {len(titles)} items\n\n" + "\n".join(lines)


def _single_message(collection: str, title: str) -> str:
    return f'content: add {_COLLECTION_LABELS[collection]} "{title}"'


def with_id_suffix(result: TransformResult, capture: Capture) -> TransformResult:
    """``{slug}-{id suffix}.md``; the suffix is the random part of the id."""
    suffix = capture.id.rsplit("-", 1)[-1]
    return result.model_copy(update={"filename": f"{document_slug(result)}-{suffix}.md"})


def _strip_data_url(data: str) -> str:
    """Drop a ``data:image/...;base64,`` prefix if present."""
    if data.startswith("data:") and "," in data:
        return data.split(",", 1)[1]
    return data


class BatchPublisher:
    """Publishes captures through the GitHub API.

    Args:
        github: Client bound to the target repository and branch.
        content_dir: Repository directory holding the collections.
        image_dir: Repository directory for capture images. When it lives
            under ``public/`` the site serves it from the matching root path.
    """

    def __init__(
        self,
        github: GitHubClient,
        *,
        content_dir: str = "src/content",
        image_dir: str = "public/images/captures",
    ):
        self._github = github
        self.content_dir = content_dir
        self.image_dir = image_dir

    async def close(self) -> None:
        await self._github.close()

    def image_path(self, capture: Capture) -> str:
        return f"{self.image_dir}/{format_date(capture)}-{capture.id[:8]}.png"

    def image_url(self, repo_path: str) -> str:
        """Site URL for an image committed at ``repo_path``."""
        if repo_path.startswith("public/"):
            return "/" + repo_path[len("public/"):]
        return "/" + repo_path

    # -- preparation ------------------------------------------------------

    async def claim_path(
        self, capture: Capture, result: TransformResult, taken: Collection[str] = ()
    ) -> tuple[TransformResult, str, Optional[str]]:
        """Pick the repository path for a standalone document.

        The natural path is kept when it is free or already holds exactly this
        document. Otherwise the filename gets the capture id suffix, so two
        captures never write to the same file.

        Returns:
            ``(result, path, sha)`` where ``sha`` is that of the file already
            at ``path``, if any.
        """
        path = content_path(result, self.content_dir)
        if path not in taken:
            existing = await self._github.get_file(path)
            if existing is None:
                return result, path, None
            if existing[0] == result.full_content:
                return result, path, existing[1]

        get_capture_logger(__name__, capture.id).warning(
            "Output path taken, using capture suffix", extra={"path": path}
        )
        result = with_id_suffix(result, capture)
        path = content_path(result, self.content_dir)
        existing = await self._github.get_file(path)
        return result, path, existing[1] if existing else None

    def _with_image(
        self, capture: Capture, result: TransformResult
    ) -> tuple[TransformResult, Optional[FileChange]]:
        data = capture.image_data
        if not data:
            return result, None
        path = self.image_path(capture)
        title = result.frontmatter.title
        body = f"![{title}]({self.image_url(path)})\n\n{result.body}".rstrip("\n")
        updated = result.model_copy(
            update={
                "body": body,
                "full_content": render_document(result.frontmatter.to_json_dict(), body),
            }
        )
        return updated, FileChange(path, _strip_data_url(data), encoding="base64")

    def _activity_dict(
        self, capture: Capture, result: ProjectActivityTransformResult
    ) -> tuple[dict[str, Any], Optional[FileChange]]:
        activity = result.activity
        image = None
        if result.image_data:
            path = self.image_path(capture)
            activity = activity.model_copy(
                update={"image": self.image_url(path), "image_alt": activity.title}
            )
            image = FileChange(path, _strip_data_url(result.image_data), encoding="base64")
        return activity.to_json_dict(), image

    async def prepare(self, captures: list[Capture]) -> PreparedBatch:
        """Transform captures into deduplicated file changes.

        Project updates whose project document does not exist are reported
        in ``skipped`` and contribute nothing.
        """
        batch = PreparedBatch()
        changes: dict[str, FileChange] = {}
        projects: dict[str, list[tuple[Capture, ProjectActivityTransformResult]]] = {}

        for capture in captures:
            result = transform(capture, use_refined_for(capture))
            if isinstance(result, ProjectActivityTransformResult):
                projects.setdefault(result.project_slug, []).append((capture, result))
                continue

            result, image = self._with_image(capture, result)
            result, path, _ = await self.claim_path(capture, result, changes)
            changes[path] = FileChange(path, result.full_content)
            if image:
                changes[image.path] = image
            batch.published.append(
                PublishedInfo(
                    id=capture.id,
                    slug=document_slug(result),
                    collection=InferredCollection(result.collection),
                    path=path,
                )
            )
            batch.titles.append(result.frontmatter.title)

        for slug, group in projects.items():
            path = project_path(slug, self.content_dir)
            existing = await self._github.get_file(path)
            if existing is None:
                for capture, _ in group:
                    get_capture_logger(__name__, capture.id).warning(
                        "Project not found, leaving capture approved",
                        extra={"project": slug},
                    )
                    batch.skipped.append(
                        SkippedCapture(id=capture.id, reason=f"Project not found: {slug}")
                    )
                continue

            # Stable sort, oldest first: each splice lands right after the
            # activity key, so the newest entry ends up on top.
            ordered = sorted(group, key=lambda item: item[1].activity.date)
            entries = []
            for capture, result in ordered:
                entry, image = self._activity_dict(capture, result)
                entries.append(entry)
                if image:
                    changes[image.path] = image

            document = merge_activity(existing[0], entries)
            changes[path] = FileChange(path, document)

            for capture, result in group:
                batch.published.append(
                    PublishedInfo(
                        id=capture.id,
                        slug=slug,
                        collection=InferredCollection.PROJECT_UPDATE,
                        path=path,
                    )
                )
                batch.titles.append(result.activity.title)

        batch.files = list(changes.values())
        return batch

    # -- commit -----------------------------------------------------------

    async def commit_files(self, files: list[FileChange], message: str) -> str:
        """Land ``files`` on the branch as one commit.

        Blobs are created concurrently and collected in file order. Each step
        raises PublishStepError on failure; only the final ref update changes
        the branch.

        Returns:
            The new commit sha.
        """
        head = await self._github.get_ref()
        logger.info("Publish step: read branch head", extra={"sha": head})

        base_tree = await self._github.get_commit(head)
        logger.info("Publish step: read base tree", extra={"tree": base_tree})

        blob_shas = await asyncio.gather(
            *(self._github.create_blob(f.content, f.encoding) for f in files)
        )
        logger.info("Publish step: created blobs", extra={"count": len(blob_shas)})

        tree = await self._github.create_tree(
            base_tree,
            [{"path": f.path, "sha": sha} for f, sha in zip(files, blob_shas)],
        )
        logger.info("Publish step: created tree", extra={"tree": tree})

        commit = await self._github.create_commit(message, tree, [head])
        logger.info("Publish step: created commit", extra={"sha": commit})

        await self._github.update_ref(commit)
        logger.info("Publish step: advanced branch", extra={"sha": commit})
        return commit

    async def batch_publish(self, captures: list[Capture]) -> BatchPublishResult:
        """Publish every capture given in a single commit.

        The caller marks ``per_item_info`` published once this returns.

        Raises:
            ValidationError: If ``captures`` is empty.
            PublishStepError: If any commit step fails (nothing is published).
        """
        if not captures:
            raise ValidationError("No captures to publish")

        batch = await self.prepare(captures)
        if not batch.files:
            logger.warning(
                "Nothing to commit", extra={"skipped": len(batch.skipped)}
            )
            return BatchPublishResult(
                commit_id=None,
                files_changed=0,
                published_ids=[],
                per_item_info=[],
                skipped=batch.skipped,
            )

        commit = await self.commit_files(batch.files, build_commit_message(batch.titles))
        logger.info(
            "Batch published",
            extra={
                "commit": commit,
                "files": len(batch.files),
                "captures": len(batch.published),
            },
        )
        return BatchPublishResult(
            commit_id=commit,
            files_changed=len(batch.files),
            published_ids=[info.id for info in batch.published],
            per_item_info=batch.published,
            skipped=batch.skipped,
        )

    # -- single capture ---------------------------------------------------

    async def publish_capture(
        self, capture: Capture, use_refined: Optional[bool] = None
    ) -> tuple[PublishedInfo, str]:
        """Publish one capture through the contents API.

        Images are written first in their own commit.

        Returns:
            ``(info, commit_sha)`` of the document write.

        Raises:
            NotFoundError: If a project update targets a missing project.
        """
        if use_refined is None:
            use_refined = use_refined_for(capture)
        result = transform(capture, use_refined)

        if isinstance(result, ProjectActivityTransformResult):
            path = project_path(result.project_slug, self.content_dir)
            existing = await self._github.get_file(path)
            if existing is None:
                raise NotFoundError(f"Project not found: {result.project_slug}")
            entry, image = self._activity_dict(capture, result)
            content = merge_activity(existing[0], [entry])
            sha = existing[1]
            title = result.activity.title
            slug = result.project_slug
        else:
            result, image = self._with_image(capture, result)
            result, path, sha = await self.claim_path(capture, result)
            content = result.full_content
            title = result.frontmatter.title
            slug = document_slug(result)

        message = _single_message(result.collection, title)
        if image:
            await self._github.put_file(
                image.path, base64.b64decode(image.content), f"{message} (image)"
            )
        response = await self._github.put_file(path, content, message, sha=sha)

        info = PublishedInfo(
            id=capture.id,
            slug=slug,
            collection=InferredCollection(result.collection),
            path=path,
        )
        return info, response["commit"]["sha"]

    def preview(self, capture: Capture, use_refined: Optional[bool] = None) -> dict[str, str]:
        return preview_publish(capture, use_refined, content_dir=self.content_dir)

    # -- reconciliation ---------------------------------------------------

    async def _already_published(
        self, capture: Capture, documents: dict[str, Optional[str]]
    ) -> Optional[PublishedInfo]:
        result = transform(capture, use_refined_for(capture))

        if isinstance(result, ProjectActivityTransformResult):
            path = project_path(result.project_slug, self.content_dir)
            if path not in documents:
                existing = await self._github.get_file(path)
                documents[path] = existing[0] if existing else None
            document = documents[path]
            if document is None:
                return None
            frontmatter = split_frontmatter(document).frontmatter
            for entry in parse_activity_list(frontmatter):
                if (
                    entry.get("date") == result.activity.date
                    and entry.get("title") == result.activity.title
                ):
                    return PublishedInfo(
                        id=capture.id,
                        slug=result.project_slug,
                        collection=InferredCollection.PROJECT_UPDATE,
                        path=path,
                    )
            return None

        # Only an identical document counts; another capture may own the path.
        result, _ = self._with_image(capture, result)
        for candidate in (result, with_id_suffix(result, capture)):
            path = content_path(candidate, self.content_dir)
            existing = await self._github.get_file(path)
            if existing is not None and existing[0] == candidate.full_content:
                return PublishedInfo(
                    id=capture.id,
                    slug=document_slug(candidate),
                    collection=InferredCollection(candidate.collection),
                    path=path,
                )
        return None

    async def reconcile_published(self, store: CaptureStore) -> list[PublishedInfo]:
        """Mark approved captures whose output already exists on the branch.

        Repairs a batch whose ref update succeeded but whose captures were
        never marked published. Read-only towards the repository.

        Returns:
            The captures that were marked.
        """
        documents: dict[str, Optional[str]] = {}
        found = []
        for capture in await store.get_approved():
            info = await self._already_published(capture, documents)
            if info is not None:
                get_capture_logger(__name__, capture.id).info(
                    "Output already on branch", extra={"path": info.path}
                )
                found.append(info)

        marked = set(await store.mark_as_published(found))
        return [info for info in found if info.id in marked]


def preview_publish(
    capture: Capture,
    use_refined: Optional[bool] = None,
    *,
    content_dir: str = "src/content",
) -> dict[str, str]:
    """What publishing would write, without touching the repository.

    For project updates ``content`` is the activity entry block that would be
    spliced into the project document.
    """
    if use_refined is None:
        use_refined = use_refined_for(capture)
    result = transform(capture, use_refined)

    if isinstance(result, ProjectActivityTransformResult):
        entry = result.activity.to_json_dict()
        return {
            "path": project_path(result.project_slug, content_dir),
            "content": "activity:\n" + "\n".join(serialize_activity_entry(entry)) + "\n",
            "message": _single_message(result.collection, result.activity.title),
        }

    return {
        "path": content_path(result, content_dir),
        "content": result.full_content,
        "message": _single_message(result.collection, result.frontmatter.title),
    }
