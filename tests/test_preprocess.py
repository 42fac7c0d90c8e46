"""Tests for HTML analysis, conversion, truncation and content preparation."""

import re

import pytest

from ai_gateway.config import PromptLimits
from ai_gateway.preprocess import (
    ELLIPSIS_MARKER,
    analyze_email_length,
    analyze_html_content,
    convert_html_to_text,
    estimate_token_count,
    get_conversion_reason,
    prepare_email_content,
    process_email_content,
    truncate_email_content,
)

NEWSLETTER = (
    "<div style='x'><table><tr><td>a</td></tr></table></div>" * 5
)

SAMPLE_HTML = (
    "<html><body><h1>Quarterly &amp; Annual</h1>"
    "<p>Hello <b>team</b>,</p>"
    "<ul><li>First</li><li>Second</li></ul>"
    "<table><tr><td>Q1</td><td>10</td></tr></table>"
    "<p>See <a href='https://example.com/r'>the report</a>.<br>Thanks</p>"
    "</body></html>"
)


def test_estimate_token_count() -> None:
    assert estimate_token_count("") == 0
    assert estimate_token_count("abcd") == 1
    assert estimate_token_count("abcde") == 2


def test_analyze_email_length_thresholds() -> None:
    analysis = analyze_email_length("x" * 15001, 17000)
    assert analysis.exceeds_warning_threshold is True
    assert analysis.requires_truncation is True
    assert analysis.estimated_tokens == 3751
    assert analysis.recommended_max_length == 3000

    small = analyze_email_length("short", 100)
    assert small.exceeds_warning_threshold is False
    assert small.requires_truncation is False


def test_analyze_simple_html() -> None:
    analysis = analyze_html_content("<p>Hi</p>")
    assert analysis.contains_html is True
    assert analysis.html_tag_count == 2


def test_analyze_dense_html_recommends_conversion() -> None:
    analysis = analyze_html_content(NEWSLETTER)
    assert analysis.contains_html is True
    assert analysis.recommend_conversion is True
    assert analysis.html_density > 15


def test_analyze_plain_text() -> None:
    analysis = analyze_html_content("Just a plain message.")
    assert analysis.contains_html is False
    assert analysis.recommend_conversion is False
    assert analysis.estimated_savings == 0


def test_convert_html_structure() -> None:
    text = convert_html_to_text(SAMPLE_HTML)

    assert "Quarterly & Annual" in text
    assert "Hello **team**," in text
    assert "• First" in text
    assert "• Second" in text
    assert "Q1 | 10 |" in text
    assert "the report (https://example.com/r)" in text
    assert "\nThanks" in text
    assert "\n\n\n" not in text


def test_convert_plain_text_unchanged() -> None:
    plain = "No  markup   here\n\n\n\nat all"
    assert convert_html_to_text(plain) == plain


def test_convert_does_not_confuse_similar_tags() -> None:
    """<pre> and <body> are not <p> and <b>."""
    text = convert_html_to_text("<body><pre>code</pre></body>")
    assert text == "code"
    assert "**" not in text


@pytest.mark.parametrize(
    "html",
    [
        SAMPLE_HTML,
        NEWSLETTER,
        "<p>a &lt;script&gt;alert(1)&lt;/script&gt; b</p>",
        "<div>  spaced\t\tout  </div><div>   next</div>",
    ],
)
def test_convert_is_idempotent_and_tag_free(html: str) -> None:
    once = convert_html_to_text(html)
    assert convert_html_to_text(once) == once
    assert re.search(r"<[^>]+>", once) is None
    assert analyze_html_content(once).contains_html is False


def test_conversion_reason() -> None:
    analysis = analyze_html_content(NEWSLETTER)
    assert get_conversion_reason(analysis).startswith("High HTML density (")


def test_process_email_content_converts_dense_html() -> None:
    result = process_email_content(NEWSLETTER)
    assert result.was_converted is True
    assert result.original_length == len(NEWSLETTER)
    assert result.processed_length == len(result.content)
    assert result.processed_length < result.original_length
    assert result.conversion_reason


def test_process_email_content_leaves_text_alone() -> None:
    result = process_email_content("Plain text body")
    assert result.was_converted is False
    assert result.content == "Plain text body"


def test_truncate_noop_when_within_budget() -> None:
    result = truncate_email_content("hello", 5)
    assert result.was_truncated is False
    assert result.content == "hello"


def test_truncate_degenerate_budget() -> None:
    """Budgets too small for head + tail + marker fall back to head-only."""
    result = truncate_email_content("A" * 50000, 100)

    assert result.was_truncated is True
    assert result.preserved_end == 0
    assert result.preserved_start == 100 - len(ELLIPSIS_MARKER)
    assert result.content.endswith(ELLIPSIS_MARKER)
    assert len(result.content) <= 100
    assert result.characters_removed == 50000 - result.preserved_start


def test_truncate_budget_smaller_than_marker() -> None:
    result = truncate_email_content("B" * 500, 10)
    assert result.content == "B" * 10
    assert result.was_truncated is True


def test_truncate_preserves_head_and_tail() -> None:
    content = "H" * 5000 + "M" * 20000 + "T" * 5000
    result = truncate_email_content(content, 10000)

    assert result.was_truncated is True
    assert result.preserved_start == 2000
    assert result.preserved_end == 1000
    assert result.content == "H" * 2000 + ELLIPSIS_MARKER + "T" * 1000
    assert len(result.content) <= 10000


def test_truncate_prefers_paragraph_break() -> None:
    """A paragraph break inside the last 20% of the head window wins over a
    later sentence break."""
    head = "x" * 1700 + "\n\n" + "y" * 200 + ". " + "z" * 5000
    content = head + "w" * 20000
    result = truncate_email_content(content, 10000)

    assert result.content.startswith("x" * 1700 + "\n\n" + ELLIPSIS_MARKER)
    assert result.preserved_start == 1702


def test_truncate_tail_starts_at_break() -> None:
    content = "a" * 30000 + "end of thread. " + "b" * 985
    result = truncate_email_content(content, 10000)
    assert result.content.endswith(". " + "b" * 985)
    assert result.preserved_end == 987


@pytest.mark.parametrize("max_length", [0, 1, 51, 52, 60, 100, 151, 500, 4000, 20000])
def test_truncate_never_exceeds_budget(max_length: int) -> None:
    content = ("Line of text. " * 50 + "\n\n") * 100
    result = truncate_email_content(content, max_length)
    assert len(result.content) <= max_length


def test_prepare_small_text_untouched() -> None:
    prepared = prepare_email_content("Short plain email")
    assert prepared.content == "Short plain email"
    assert prepared.notices == []
    assert prepared.truncation.was_truncated is False


def test_prepare_truncates_oversized_content() -> None:
    limits = PromptLimits(
        max_total_prompt_length=4000,
        max_email_content_length=3000,
        warning_email_length=2000,
        additional_prompt_estimate=500,
    )
    prepared = prepare_email_content("word " * 2000, limits)

    assert prepared.truncation.was_truncated is True
    assert len(prepared.content) <= 2500
    assert prepared.truncation_notice.startswith(
        "**NOTE: Email content was automatically shortened for processing**"
    )
    assert "(10000 → " in prepared.truncation_notice
    assert prepared.truncation_notice in prepared.notices


def test_prepare_converts_html_with_notice() -> None:
    prepared = prepare_email_content(NEWSLETTER)
    assert prepared.conversion.was_converted is True
    assert prepared.html_conversion_notice.startswith(
        "**NOTE: HTML email converted to text for better processing**"
    )
    assert "% more efficient" in prepared.html_conversion_notice
