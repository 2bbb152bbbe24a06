"""Newsletter aggregation and rendering.

Builds a digest bundle for one window: items from projects, notes and TIL are
deduplicated by (url, title), sorted newest first and rendered to HTML and
plain text through jinja2 templates. Two variants come out of the same
window: ``all`` and ``projects`` (project items only).
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from capturedesk.newsletter.indexer import ContentIndexer, DigestItem
from capturedesk.newsletter.window import NewsletterWindow, compute_window

TEMPLATES_DIR = Path(__file__).parent / "templates"

VARIANTS = ("all", "projects")
SUBTITLES = {"all": "All updates", "projects": "Projects-only updates"}


def format_human_date(moment: datetime) -> str:
    """``Mar 9, 2024``"""
    return f"{moment.strftime('%b')} {moment.day}, {moment.year}"


def format_item_date(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def _create_jinja_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(enabled_extensions=("html.j2",)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["human_date"] = format_human_date
    env.filters["item_date"] = format_item_date
    return env


_env: Optional[Environment] = None


def get_jinja_env() -> Environment:
    global _env
    if _env is None:
        _env = _create_jinja_env()
    return _env


@dataclass
class Variant:
    name: str
    items: list[DigestItem]
    html: str
    text: str

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.name,
            "count": self.count,
            "items": [item.to_dict() for item in self.items],
            "html": self.html,
            "text": self.text,
        }


@dataclass
class NewsletterBundle:
    type: str
    subject: str
    window: NewsletterWindow
    generated_at: datetime
    variants: dict[str, Variant] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready summary of the bundle."""
        return {
            "type": self.type,
            "generatedAt": self.generated_at.isoformat(),
            "subject": self.subject,
            "window": {
                "startInclusive": self.window.start_inclusive.isoformat(),
                "endExclusive": self.window.end_exclusive.isoformat(),
                "dateLabel": self.window.date_label,
            },
            "variants": {name: v.to_dict() for name, v in self.variants.items()},
        }


def dedupe_items(items: list[DigestItem]) -> list[DigestItem]:
    """Drop items whose (url, title) was already seen; first one wins."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for item in items:
        key = (item.url, item.title)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def sort_items(items: list[DigestItem]) -> list[DigestItem]:
    return sorted(items, key=lambda item: item.date, reverse=True)


def build_subject(window: NewsletterWindow, newsletter_title: str) -> str:
    cadence = "Daily" if window.type == "daily" else "Weekly"
    return f"[{cadence}] {newsletter_title} - {format_human_date(window.anchor_date)}"


def absolutize(item: DigestItem, site_url: str) -> DigestItem:
    """Prefix site-relative URLs with ``site_url``."""
    if not site_url:
        return item
    url = f"{site_url}{item.url}" if item.url.startswith("/") else item.url
    image = f"{site_url}{item.image}" if item.image.startswith("/") else item.image
    return replace(item, url=url, image=image)


def render_variant(
    name: str, subject: str, window: NewsletterWindow, items: list[DigestItem]
) -> Variant:
    context = {
        "subject": subject,
        "subtitle": SUBTITLES[name],
        "window": window,
        "items": items,
    }
    env = get_jinja_env()
    return Variant(
        name=name,
        items=items,
        html=env.get_template("digest.html.j2").render(**context),
        text=env.get_template("digest.txt.j2").render(**context),
    )


def build_variant(
    name: str,
    subject: str,
    window: NewsletterWindow,
    items: list[DigestItem],
    site_url: str = "",
) -> Variant:
    ordered = sort_items(dedupe_items(items))
    return render_variant(
        name, subject, window, [absolutize(item, site_url) for item in ordered]
    )


def generate_bundle(
    indexer: ContentIndexer,
    window_type: str,
    date_input: Optional[str] = None,
    *,
    site_url: str = "",
    newsletter_title: str = "Notes",
    now: Optional[datetime] = None,
) -> NewsletterBundle:
    """Collect, aggregate and render both digest variants for one window.

    Raises:
        ValidationError: On an unknown window type or bad anchor date.
    """
    window = compute_window(window_type, date_input, now=now)
    site_url = site_url.rstrip("/")

    projects = indexer.collect_projects(window)
    notes = indexer.collect_notes(window)
    tils = indexer.collect_tils(window)

    subject = build_subject(window, newsletter_title)
    bundle = NewsletterBundle(
        type=window.type,
        subject=subject,
        window=window,
        generated_at=now or datetime.now(timezone.utc),
    )
    bundle.variants["all"] = build_variant(
        "all", subject, window, projects + notes + tils, site_url
    )
    bundle.variants["projects"] = build_variant(
        "projects", subject, window, projects, site_url
    )
    return bundle


def write_preview(bundle: NewsletterBundle, output_dir: Path) -> list[Path]:
    """Write every variant as HTML and text plus a JSON summary.

    Files are named ``{type}-{dateLabel}.{variant}.{html|txt}`` and
    ``{type}-{dateLabel}.summary.json``.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = f"{bundle.type}-{bundle.window.date_label}"

    written = []
    for name in VARIANTS:
        variant = bundle.variants[name]
        for suffix, content in (("html", variant.html), ("txt", variant.text)):
            path = output_dir / f"{stem}.{name}.{suffix}"
            path.write_text(content, encoding="utf-8")
            written.append(path)

    summary = bundle.to_dict()
    for variant in summary["variants"].values():
        variant.pop("html")
        variant.pop("text")
    summary_path = output_dir / f"{stem}.summary.json"
    summary_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    written.append(summary_path)
    return written
