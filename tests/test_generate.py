"""Tests for newsletter aggregation and rendering."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from capturedesk.newsletter.generate import (
    absolutize,
    build_subject,
    dedupe_items,
    format_human_date,
    generate_bundle,
    sort_items,
    write_preview,
)
from capturedesk.newsletter.indexer import ContentIndexer, DigestItem
from capturedesk.newsletter.window import compute_window

UTC = timezone.utc
NOW = datetime(2024, 3, 10, 18, 0, tzinfo=UTC)


def _item(title, day=10, hour=12, url=None, kind="note", **kwargs) -> DigestItem:
    return DigestItem(
        kind=kind,
        date=datetime(2024, 3, day, hour, tzinfo=UTC),
        title=title,
        summary=f"About {title}",
        url=url or f"/notes/{title.lower()}/",
        **kwargs,
    )


def _write(root: Path, relative: str, text: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def indexer(tmp_path: Path) -> ContentIndexer:
    root = tmp_path / "content"
    _write(root, "notes/a.md", '---\ntitle: "Note <A>"\ndate: "2024-03-10T09:00:00Z"\n---\n\nNote body.\n')
    _write(root, "til/b.md", '---\ntitle: "Til B"\ndate: "2024-03-10T15:00:00Z"\n---\n\nTil body.\n')
    _write(
        root,
        "projects/site.md",
        '---\ntitle: "Site"\ndescription: "Site work"\nactivity:\n'
        '  - date: "2024-03-10T12:00:00Z"\n    title: "Shipped"\n    summary: "Done."\n'
        '    image: "/images/captures/x.png"\n'
        "---\n\nBody\n",
    )
    return ContentIndexer(root)


class TestAggregation:
    """Test dedupe and sort."""

    def test_dedupe_keeps_first(self):
        first = _item("Same", url="/x/")
        second = _item("Same", url="/x/", day=9)
        other = _item("Other", url="/x/")
        assert dedupe_items([first, second, other]) == [first, other]

    def test_sort_newest_first(self):
        items = [_item("A", hour=1), _item("B", hour=5), _item("C", day=9)]
        assert [i.title for i in sort_items(items)] == ["B", "A", "C"]

    def test_absolutize(self):
        item = _item("A", url="/notes/a/", image="/img.png")
        result = absolutize(item, "https://example.com")
        assert result.url == "https://example.com/notes/a/"
        assert result.image == "https://example.com/img.png"
        assert item.url == "/notes/a/"

    def test_absolutize_leaves_absolute_urls(self):
        item = _item("A", url="https://other.com/a")
        assert absolutize(item, "https://example.com").url == "https://other.com/a"
        assert absolutize(item, "") is item


class TestSubject:
    def test_human_date(self):
        assert format_human_date(datetime(2024, 3, 9, tzinfo=UTC)) == "Mar 9, 2024"

    def test_subject(self):
        assert build_subject(compute_window("daily", "2024-03-10"), "Field Notes") == (
            "[Daily] Field Notes - Mar 10, 2024"
        )
        assert build_subject(compute_window("weekly", "2024-03-10"), "Field Notes").startswith(
            "[Weekly]"
        )


class TestGenerateBundle:
    """Test the full bundle."""

    def test_variants(self, indexer):
        bundle = generate_bundle(
            indexer, "daily", "2024-03-10", site_url="https://example.com/", newsletter_title="Field Notes", now=NOW
        )

        assert bundle.type == "daily"
        assert bundle.subject == "[Daily] Field Notes - Mar 10, 2024"
        assert bundle.generated_at == NOW
        all_items = bundle.variants["all"].items
        assert [i.title for i in all_items] == ["Til B", "Shipped", "Note <A>"]
        assert all(i.url.startswith("https://example.com/") for i in all_items)
        assert [i.title for i in bundle.variants["projects"].items] == ["Shipped"]
        assert bundle.variants["projects"].count == 1

    def test_html_is_escaped_and_text_is_plain(self, indexer):
        bundle = generate_bundle(indexer, "daily", "2024-03-10", now=NOW)
        html = bundle.variants["all"].html
        text = bundle.variants["all"].text

        assert "Note &lt;A&gt;" in html
        assert "Window: Mar 10, 2024 to Mar 10, 2024 (UTC)" in html
        assert '<img src="/images/captures/x.png"' in html
        assert "All updates" in html
        assert "- Note <A> (2024-03-10)" in text
        assert "  /notes/a/" in text
        assert "Projects-only updates" in bundle.variants["projects"].text

    def test_empty_window(self, indexer):
        bundle = generate_bundle(indexer, "daily", "2024-01-01", now=NOW)
        assert bundle.variants["all"].count == 0
        assert "No new updates in this window." in bundle.variants["all"].html
        assert "No new updates in this window." in bundle.variants["all"].text

    def test_weekly_picks_up_older_items(self, indexer):
        bundle = generate_bundle(indexer, "weekly", "2024-03-15", now=NOW)
        assert bundle.variants["all"].count == 3

    def test_to_dict(self, indexer):
        data = generate_bundle(indexer, "daily", "2024-03-10", now=NOW).to_dict()
        assert data["window"] == {
            "startInclusive": "2024-03-10T00:00:00+00:00",
            "endExclusive": "2024-03-11T00:00:00+00:00",
            "dateLabel": "2024-03-10..2024-03-10",
        }
        assert data["variants"]["all"]["count"] == 3
        assert data["variants"]["all"]["items"][0]["date"] == "2024-03-10T15:00:00+00:00"


class TestWritePreview:
    def test_writes_all_files(self, indexer, tmp_path):
        bundle = generate_bundle(indexer, "daily", "2024-03-10", now=NOW)
        out = tmp_path / "preview"
        written = write_preview(bundle, out)

        names = sorted(p.name for p in written)
        assert names == [
            "daily-2024-03-10..2024-03-10.all.html",
            "daily-2024-03-10..2024-03-10.all.txt",
            "daily-2024-03-10..2024-03-10.projects.html",
            "daily-2024-03-10..2024-03-10.projects.txt",
            "daily-2024-03-10..2024-03-10.summary.json",
        ]
        summary = json.loads((out / "daily-2024-03-10..2024-03-10.summary.json").read_text())
        assert "html" not in summary["variants"]["all"]
        assert summary["subject"] == bundle.subject
