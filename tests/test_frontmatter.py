"""Tests for note headers, note naming and annotation blocks."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
import yaml

from readeck_sync.adapters.readeck.models import Annotation, BookmarkMetadata
from readeck_sync.adapters.readeck.sync.frontmatter import (
    AVAILABLE_FRONTMATTER_FIELDS,
    build_annotations_block,
    build_frontmatter,
    format_timestamp,
    quote_string,
    replace_frontmatter,
    sanitize_file_name,
)

EXPECTED_HEADER = (
    "---\n"
    'title: "Say \\"hi\\""\n'
    'url: "https://e.com"\n'
    'site: "e.com"\n'
    'created: "2024-01-02T03:04:05.000Z"\n'
    'published: "2023-05-06"\n'
    "authors:\n"
    '- "A"\n'
    "labels:\n"
    '- "x"\n'
    '- "y"\n'
    "---\n"
)


def _metadata(**overrides: object) -> BookmarkMetadata:
    data: dict[str, object] = {
        "title": 'Say "hi"',
        "url": "https://e.com",
        "site": "e.com",
        "created": "2024-01-02T03:04:05Z",
        "published": "2023-05-06T00:00:00Z",
        "authors": ["A"],
        "labels": ["x", "y"],
    }
    data.update(overrides)
    return BookmarkMetadata.model_validate(data)


def _parse(header: str) -> dict:
    body = header[len("---\n") : -len("---\n")]
    return yaml.safe_load(body) or {}


class TestBuildFrontmatter:
    def test_default_fields(self) -> None:
        assert build_frontmatter(_metadata()) == EXPECTED_HEADER

    def test_output_is_deterministic(self) -> None:
        assert build_frontmatter(_metadata()) == build_frontmatter(_metadata())

    def test_header_is_valid_yaml(self) -> None:
        parsed = _parse(build_frontmatter(_metadata()))

        assert parsed == {
            "title": 'Say "hi"',
            "url": "https://e.com",
            "site": "e.com",
            "created": "2024-01-02T03:04:05.000Z",
            "published": "2023-05-06",
            "authors": ["A"],
            "labels": ["x", "y"],
        }

    def test_empty_metadata_yields_empty_block(self) -> None:
        assert build_frontmatter(BookmarkMetadata()) == "---\n---\n"

    def test_empty_values_are_omitted(self) -> None:
        header = build_frontmatter(_metadata(site="", authors=[], labels=["", "kept"]))

        assert "site:" not in header
        assert "authors:" not in header
        assert 'labels:\n- "kept"\n' in header

    def test_field_order_follows_configuration(self) -> None:
        header = build_frontmatter(_metadata(), ("labels", "title"))

        assert header == '---\nlabels:\n- "x"\n- "y"\ntitle: "Say \\"hi\\""\n---\n'

    def test_unknown_and_repeated_fields_are_skipped(self) -> None:
        header = build_frontmatter(_metadata(), ("title", "bogus", "title"))

        assert header == '---\ntitle: "Say \\"hi\\""\n---\n'

    def test_numbers_and_booleans(self) -> None:
        metadata = _metadata(word_count=1200, reading_time=6, is_marked=True)

        header = build_frontmatter(
            metadata, ("word_count", "reading_time", "read_progress", "is_marked", "is_archived")
        )

        assert header == (
            "---\nword_count: 1200\nreading_time: 6\nis_marked: true\nis_archived: false\n---\n"
        )
        assert _parse(header) == {
            "word_count": 1200,
            "reading_time": 6,
            "is_marked": True,
            "is_archived": False,
        }

    def test_cover_points_into_images_folder(self) -> None:
        metadata = _metadata(
            resources={"image": {"src": "https://r.example/img/abc.jpg?w=800", "width": 800}}
        )

        header = build_frontmatter(metadata, ("cover",), "Readeck/b1")

        assert header == '---\ncover: "Readeck/b1/imgs/abc.jpg"\n---\n'

    def test_cover_absent_without_image(self) -> None:
        assert build_frontmatter(_metadata(), ("cover",), "Readeck/b1") == "---\n---\n"

    def test_every_field_is_renderable(self) -> None:
        header = build_frontmatter(_metadata(), AVAILABLE_FRONTMATTER_FIELDS, "Readeck/b1")

        assert header.startswith("---\n")
        assert header.endswith("---\n")
        assert isinstance(_parse(header), dict)


class TestQuoting:
    def test_escapes(self) -> None:
        value = 'a\\b"c\nd\re\tf\x01g\u2028h'

        quoted = quote_string(value)

        assert quoted == '"a\\\\b\\"c\\nd\\re\\tf\\u0001g\\u2028h"'
        assert yaml.safe_load(quoted) == value

    def test_unicode_passes_through(self) -> None:
        assert quote_string("Ünïcode ✓ 日本") == '"Ünïcode ✓ 日本"'

    def test_timestamp_is_normalized_to_utc(self) -> None:
        from datetime import timedelta, timezone

        value = datetime(2024, 1, 2, 5, 4, 5, 123456, tzinfo=timezone(timedelta(hours=2)))

        assert format_timestamp(value) == "2024-01-02T03:04:05.123Z"

    def test_timestamp_of_utc_value(self) -> None:
        assert format_timestamp(datetime(2024, 1, 2, tzinfo=UTC)) == "2024-01-02T00:00:00.000Z"


class TestReplaceFrontmatter:
    HEADER = '---\ntitle: "new"\n---\n'

    def test_replaces_existing_block(self) -> None:
        text = "---\ntitle: old\ntags: [a]\n---\n# Body\n"

        assert replace_frontmatter(text, self.HEADER) == self.HEADER + "# Body\n"

    def test_replaces_empty_block(self) -> None:
        assert replace_frontmatter("---\n---\nbody", self.HEADER) == self.HEADER + "body"

    def test_prepends_when_missing(self) -> None:
        assert replace_frontmatter("# Body\n", self.HEADER) == self.HEADER + "# Body\n"

    def test_unterminated_block_is_body(self) -> None:
        text = "---\nnot closed\n"

        assert replace_frontmatter(text, self.HEADER) == self.HEADER + text

    def test_horizontal_rule_later_in_body_is_untouched(self) -> None:
        text = "# Body\n\n---\n\nmore\n"

        assert replace_frontmatter(text, self.HEADER) == self.HEADER + text


class TestSanitizeFileName:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("Plain title", "Plain title"),
            ('a<b>:c"d/e\\f|g?h*i', "abcdefghi"),
            ("tab\there\nnewline", "tabherenewline"),
            ("...", ""),
            ("  spaced out.  ", "spaced out"),
            ("Why? Because.", "Why Because"),
            ("", ""),
        ],
    )
    def test_sanitize(self, name: str, expected: str) -> None:
        assert sanitize_file_name(name) == expected

    def test_long_names_are_truncated(self) -> None:
        assert sanitize_file_name("x" * 300) == "x" * 255
        assert sanitize_file_name("x" * 300, 20) == "x" * 20

    def test_truncation_does_not_leave_trailing_space(self) -> None:
        assert sanitize_file_name("a" * 9 + " " + "b" * 5, 10) == "a" * 9


class TestAnnotationsBlock:
    def test_quotes_link_back_to_readeck(self) -> None:
        annotations = [Annotation(id="n1", text="one"), Annotation(id="n2", text="two")]

        block = build_annotations_block("https://r.example/", "b1", annotations)

        assert block == (
            "# Annotations\n"
            "> one - [#](https://r.example/bookmarks/b1#annotation-n1)\n"
            "\n"
            "> two - [#](https://r.example/bookmarks/b1#annotation-n2)"
        )
