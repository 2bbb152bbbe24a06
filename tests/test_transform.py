"""Tests for the capture transformer."""

from datetime import datetime, timedelta, timezone

import pytest

from capturedesk.capture.models import (
    InferredCollection,
    InferredNoteType,
    ProjectActivityTransformResult,
    RefinedCapture,
    TransformResult,
)
from capturedesk.capture.transform import (
    content_path,
    document_slug,
    format_date,
    project_path,
    resolve_body,
    resolve_collection,
    resolve_note_type,
    transform,
)


def _refined(**overrides) -> RefinedCapture:
    data = {
        "title": "Refined title",
        "body": "Refined body.",
        "takeaway": "The key point.",
        "suggested_tags": ["refined"],
        "suggested_type": "notes",
        "suggested_note_type": "thought",
        "refined_at": datetime(2024, 3, 10, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return RefinedCapture.model_validate(data)


class TestTil:
    """Test TIL documents."""

    def test_til_document(self, make_capture):
        result = transform(make_capture(tags=["js"]))

        assert isinstance(result, TransformResult)
        assert result.collection == "til"
        assert content_path(result) == (
            "src/content/til/2024-03-10-learned-that-promise-all-rejects-fast.md"
        )
        assert result.full_content == (
            "---\n"
            'title: "Learned that Promise.all rejects fast"\n'
            'date: "2024-03-10"\n'
            "tags:\n"
            '  - "js"\n'
            "draft: false\n"
            "---\n"
            "\n"
            "Learned that Promise.all rejects fast\n"
        )

    def test_transform_is_deterministic(self, make_capture):
        capture = make_capture(refined=_refined(suggested_type="til"))
        assert transform(capture) == transform(capture)
        assert transform(capture, False) == transform(capture, False)

    def test_document_slug(self, make_capture):
        assert document_slug(transform(make_capture())) == (
            "2024-03-10-learned-that-promise-all-rejects-fast"
        )

    def test_slug_is_capped(self, make_capture):
        result = transform(make_capture(text="word " * 40))
        slug = result.filename.removesuffix(".md")[len("2024-03-10-"):]
        assert len(slug) <= 50


class TestNote:
    """Test note documents."""

    def test_link_note(self, make_capture):
        capture = make_capture(
            text=None,
            url="https://a.com/post",
            comment="Worth reading. Really.",
            inferred_collection="notes",
            type="url",
        )
        result = transform(capture)

        assert result.collection == "notes"
        assert result.frontmatter.type == InferredNoteType.LINK
        assert result.frontmatter.link == "https://a.com/post"
        assert result.frontmatter.link_title == "Worth reading."
        lines = result.full_content.split("\n")
        assert lines[1:9] == [
            'title: "Worth reading."',
            'date: "2024-03-10"',
            "tags: []",
            'type: "link"',
            'link: "https://a.com/post"',
            'linkTitle: "Worth reading."',
            "featured: false",
            "draft: false",
        ]
        assert result.body == "Worth reading. Really."

    def test_thought_note_has_no_link(self, make_capture):
        capture = make_capture(
            text="A short opinion", inferred_collection="notes", inferred_note_type="thought"
        )
        result = transform(capture)
        assert result.frontmatter.link is None
        assert "link:" not in result.full_content

    def test_refined_note(self, make_capture):
        capture = make_capture(inferred_collection="til", refined=_refined())
        result = transform(capture)

        assert result.collection == "notes"
        assert result.frontmatter.title == "Refined title"
        assert result.frontmatter.takeaway == "The key point."
        assert result.frontmatter.tags == ["refined"]
        assert result.body == "Refined body."

    def test_use_refined_false_ignores_suggestion(self, make_capture):
        capture = make_capture(refined=_refined())
        result = transform(capture, use_refined=False)

        assert result.collection == "til"
        assert result.frontmatter.title == "Learned that Promise.all rejects fast"


class TestResolvers:
    """Test the individual resolution rules."""

    def test_body_joins_comment_and_text(self, make_capture):
        capture = make_capture(comment="Comment.", text="Text.")
        assert resolve_body(capture, False) == "Comment.\n\nText."

    def test_body_skips_duplicate_text(self, make_capture):
        capture = make_capture(comment="Same", text="Same")
        assert resolve_body(capture, False) == "Same"

    def test_project_update_without_project_is_note(self, make_capture):
        capture = make_capture(inferred_collection="project-update", project=None)
        assert resolve_collection(capture, True) == InferredCollection.NOTES

    @pytest.mark.parametrize(
        "kwargs,expected",
        [
            ({"url": "https://a.com", "text": "short"}, InferredNoteType.LINK),
            ({"url": "https://a.com", "text": "x" * 350}, InferredNoteType.ESSAY),
            ({"text": "x" * 299}, InferredNoteType.THOUGHT),
            ({"text": "x" * 300}, InferredNoteType.ESSAY),
        ],
    )
    def test_transform_time_note_type(self, make_capture, kwargs, expected):
        capture = make_capture(inferred_collection="notes", **kwargs)
        assert resolve_note_type(capture, False) == expected

    def test_stored_note_type_wins(self, make_capture):
        capture = make_capture(inferred_collection="notes", inferred_note_type="snippet")
        assert resolve_note_type(capture, False) == InferredNoteType.SNIPPET

    def test_format_date_uses_utc(self, make_capture):
        late = datetime(2024, 3, 10, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert format_date(make_capture(created_at=late)) == "2024-03-11"


class TestProjectActivity:
    """Test project update entries."""

    def test_activity_entry(self, make_capture):
        capture = make_capture(
            inferred_collection="project-update",
            project="site-rebuild",
            comment="Shipped search",
            text="Search is live",
            url="https://www.example.com/x",
            tags=["search"],
        )
        result = transform(capture)

        assert isinstance(result, ProjectActivityTransformResult)
        assert result.project_slug == "site-rebuild"
        assert project_path(result.project_slug) == "src/content/projects/site-rebuild.md"
        activity = result.activity
        assert activity.date == "2024-03-10"
        assert activity.title == "Shipped search"
        assert activity.summary == "Shipped search Search is live"
        assert activity.tags == ["search"]
        assert activity.type.value == "update"
        assert activity.links[0].label == "www.example.com"
        assert activity.links[0].url == "https://www.example.com/x"

    def test_refined_summary_prefers_takeaway(self, make_capture):
        capture = make_capture(
            inferred_collection="project-update",
            project="site-rebuild",
            refined=_refined(suggested_type="project-update"),
        )
        result = transform(capture)
        assert result.activity.summary == "The key point."
        assert result.activity.title == "Refined title"

    def test_image_data_is_carried(self, make_capture):
        capture = make_capture(
            inferred_collection="project-update",
            project="site-rebuild",
            images=[{"url": "", "data": "aGk="}],
        )
        assert transform(capture).image_data == "aGk="
