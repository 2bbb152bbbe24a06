"""Content indexer: turn published markdown documents into digest items.

Walks ``{content_root}/{notes,til,projects}`` recursively for ``.md`` files,
drops drafts and undated documents, and yields one ``DigestItem`` per dated
document (or per dated activity entry, for projects) inside a window.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from capturedesk.core.frontmatter import (
    Document,
    parse_activity_list,
    parse_bool,
    parse_field,
    split_frontmatter,
)
from capturedesk.core.text import slugify, summary_sentence
from capturedesk.newsletter.window import NewsletterWindow

logger = logging.getLogger(__name__)


@dataclass
class DigestItem:
    kind: str  # note | til | project
    date: datetime
    title: str
    summary: str
    url: str
    image: str = ""
    image_caption: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """ISO date or datetime as an aware UTC datetime; None if unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def project_event_anchor(project_slug: str, event_date: datetime, title: str) -> str:
    """Fragment id of one activity entry on its project page."""
    token = event_date.strftime("%Y%m%d")
    return (
        f"event-{slugify(project_slug, default='item')}-{token}-"
        f"{slugify(title, default='item')}"
    )


class ContentIndexer:
    """Reads collections under a local content root.

    Args:
        content_root: Directory holding ``notes/``, ``til/`` and ``projects/``.
    """

    def __init__(self, content_root: Path):
        self.content_root = Path(content_root)

    def _documents(self, collection: str) -> Iterator[tuple[str, Document]]:
        """(slug, document) for every non-draft markdown file in a collection."""
        base = self.content_root / collection
        if not base.is_dir():
            return
        for path in sorted(base.rglob("*.md")):
            if not path.is_file():
                continue
            slug = path.relative_to(base).with_suffix("").as_posix()
            document = split_frontmatter(path.read_text(encoding="utf-8"))
            if parse_bool(parse_field(document.frontmatter, "draft")):
                continue
            yield slug, document

    def _dated(self, collection: str, slug: str, raw: Optional[str]) -> Optional[datetime]:
        moment = parse_date(raw)
        if moment is None:
            logger.debug(
                "Skipping undated document",
                extra={"collection": collection, "slug": slug, "date": raw},
            )
        return moment

    def collect_notes(self, window: NewsletterWindow) -> list[DigestItem]:
        """Notes in the window; summary is the takeaway or the first sentence."""
        items = []
        for slug, document in self._documents("notes"):
            moment = self._dated("notes", slug, parse_field(document.frontmatter, "date"))
            if moment is None or not window.contains(moment):
                continue
            takeaway = parse_field(document.frontmatter, "takeaway")
            items.append(
                DigestItem(
                    kind="note",
                    date=moment,
                    title=parse_field(document.frontmatter, "title") or slug,
                    summary=takeaway or summary_sentence(document.body),
                    url=f"/notes/{slug}/",
                )
            )
        return items

    def collect_tils(self, window: NewsletterWindow) -> list[DigestItem]:
        items = []
        for slug, document in self._documents("til"):
            moment = self._dated("til", slug, parse_field(document.frontmatter, "date"))
            if moment is None or not window.contains(moment):
                continue
            items.append(
                DigestItem(
                    kind="til",
                    date=moment,
                    title=parse_field(document.frontmatter, "title") or slug,
                    summary=summary_sentence(document.body),
                    url=f"/til/{slug}/",
                )
            )
        return items

    def collect_projects(self, window: NewsletterWindow) -> list[DigestItem]:
        """One item per dated activity entry; the project itself if it has none.

        Entries without a date or title are ignored.
        """
        items = []
        for slug, document in self._documents("projects"):
            frontmatter = document.frontmatter
            description = parse_field(frontmatter, "description") or "Project update"
            events = parse_activity_list(frontmatter)

            if events:
                for event in events:
                    if not event.get("title"):
                        continue
                    moment = self._dated("projects", slug, event.get("date"))
                    if moment is None or not window.contains(moment):
                        continue
                    anchor = project_event_anchor(slug, moment, event["title"])
                    items.append(
                        DigestItem(
                            kind="project",
                            date=moment,
                            title=event["title"],
                            summary=event.get("summary") or description,
                            url=f"/projects/{slug}/#{anchor}",
                            image=event.get("image") or "",
                            image_caption=event.get("imageCaption") or "",
                        )
                    )
                continue

            moment = self._dated("projects", slug, parse_field(frontmatter, "date"))
            if moment is None or not window.contains(moment):
                continue
            items.append(
                DigestItem(
                    kind="project",
                    date=moment,
                    title=parse_field(frontmatter, "title") or slug,
                    summary=description,
                    url=f"/projects/{slug}/",
                )
            )
        return items
