"""Tests for metadata text building and normalization."""

from pvl.embeddings.text import (
    build_text,
    clean_text,
    prepare_text,
    process_tags,
    tokenize,
    truncate_at_word_boundary,
)


def test_build_text_priority_order():
    text = build_text(
        "Async Python",
        channel_name="Code Club",
        tags=["Python", "shorts", "a", "python", "asyncio"],
        description="Slides at https://example.com/slides about <b>event loops</b> and tasks",
    )
    lines = text.split("\n")
    assert lines[0] == "Async Python"
    assert lines[1] == "by Code Club"
    assert lines[2] == "python asyncio"
    assert "https" not in text
    assert "<b>" not in text
    assert "event loops" in lines[3]


def test_build_text_respects_max_length():
    text = build_text("Title", description="word " * 500)
    assert len(text) <= 1000
    assert text.startswith("Title\n")


def test_build_text_skips_ocr_without_room():
    text = build_text("x" * 990, ocr_text="thumbnail words")
    assert "thumbnail" not in text

    roomy = build_text("Short title", ocr_text="thumbnail words")
    assert roomy.endswith("thumbnail words")


def test_build_text_title_only():
    assert build_text("  Just   a title ") == "Just a title"


def test_process_tags_filters_and_caps():
    tags = [f"tag{i}" for i in range(15)] + ["viral", "x"]
    processed = process_tags(tags)
    assert len(processed) == 10
    assert "viral" not in processed
    assert "x" not in processed


def test_clean_text_limits_emoji():
    assert clean_text("🔥🔥🔥🔥🔥 hot") == "🔥🔥🔥 hot"


def test_prepare_text_normalizes():
    assert prepare_text("Visit HTTPS://Example.com  NOW <i>please</i>") == "visit now please"


def test_prepare_text_truncates_at_word_boundary():
    assert prepare_text("aaa bbb ccc", max_chars=9) == "aaa bbb"
    assert truncate_at_word_boundary("abcdefgh", 4) == "abcd"


def test_prepare_text_empty_after_cleaning():
    assert prepare_text("   https://example.com   ") == ""


def test_tokenize_drops_stopwords():
    assert tokenize("The Best Python Tutorial video") == ["best", "python", "tutorial"]
    assert tokenize("   ") == []
