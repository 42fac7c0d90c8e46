"""Content preprocessing for outbound email text.

Pure, stateless functions that decide whether HTML markup is worth
converting to plain text, perform that conversion, and shorten content to a
character budget while keeping the beginning and end of the message intact.

All diagnostics are returned to the caller; nothing is remembered between
calls.
"""

import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ai_gateway.config import PromptLimits

ELLIPSIS_MARKER = "\n\n[... EMAIL CONTENT TRUNCATED FOR PROCESSING ...]\n\n"

PRESERVE_BEGINNING = 2000
PRESERVE_ENDING = 1000

# Priority order, not position order: the first pattern that yields a usable
# break point wins.
SMART_BREAK_PATTERNS: Tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ")

_ANY_TAG = re.compile(r"<[^>]+>")
_HTML_TAG = re.compile(r"</?[a-zA-Z][^>]*>")

_SIGNIFICANT_HTML_PATTERNS = (
    re.compile(
        r"<(div|span|p|table|tr|td|th|ul|ol|li|h[1-6]|strong|b|em|i|a)\b[^>]*>",
        re.IGNORECASE,
    ),
    re.compile(r"style\s*=\s*[\"|'][^\"']*[\"|']", re.IGNORECASE),
    re.compile(r"class\s*=\s*[\"|'][^\"']*[\"|']", re.IGNORECASE),
    re.compile(r"<img[^>]*>", re.IGNORECASE),
    re.compile(r"<font[^>]*>", re.IGNORECASE),
)

_BLOCK_ELEMENTS = (
    "div", "p", "h1", "h2", "h3", "h4", "h5", "h6",
    "section", "article", "header", "footer", "main",
)

# (pattern, replacement) pairs applied in order after block elements.
_CONVERSION_STEPS = (
    # line breaks
    (re.compile(r"<br\b[^>]*>", re.IGNORECASE), "\n"),
    (re.compile(r"<hr\b[^>]*>", re.IGNORECASE), "\n---\n"),
    # lists
    (re.compile(r"</li>", re.IGNORECASE), "\n"),
    (re.compile(r"<li\b[^>]*>", re.IGNORECASE), "• "),
    (re.compile(r"</(ul|ol)>", re.IGNORECASE), "\n"),
    (re.compile(r"<(ul|ol)\b[^>]*>", re.IGNORECASE), ""),
    # tables
    (re.compile(r"</tr>", re.IGNORECASE), "\n"),
    (re.compile(r"</t[dh]>", re.IGNORECASE), " | "),
    (re.compile(r"</?(table|tbody|thead|tfoot|tr|td|th)\b[^>]*>", re.IGNORECASE), ""),
    # emphasis
    (re.compile(r"<(strong|b)\b[^>]*>(.*?)</(strong|b)>", re.IGNORECASE), r"**\2**"),
    (re.compile(r"<(em|i)\b[^>]*>(.*?)</(em|i)>", re.IGNORECASE), r"*\2*"),
    # anchors
    (
        re.compile(
            r"<a\b[^>]*href\s*=\s*[\"']([^\"']*)[\"'][^>]*>(.*?)</a>", re.IGNORECASE
        ),
        r"\2 (\1)",
    ),
)

_HTML_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    ("&nbsp;", " "),
    ("&copy;", "©"),
    ("&reg;", "®"),
    ("&trade;", "™"),
    ("&mdash;", "—"),
    ("&ndash;", "–"),
    ("&hellip;", "…"),
)
_ENTITY_PATTERNS = tuple(
    (re.compile(re.escape(entity), re.IGNORECASE), char) for entity, char in _HTML_ENTITIES
)

_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_EXCESS_SPACES = re.compile(r"[ \t]{2,}")
_LINE_EDGE_SPACES = re.compile(r"^[ \t]+|[ \t]+$", re.MULTILINE)


@dataclass
class HtmlAnalysis:
    """How much of a piece of content is HTML markup."""

    contains_html: bool = False
    html_tag_count: int = 0
    html_density: float = 0.0
    significant_html_count: int = 0
    recommend_conversion: bool = False
    estimated_savings: int = 0
    savings_percentage: float = 0.0
    original_length: int = 0
    estimated_text_length: int = 0


@dataclass
class ConversionResult:
    """Outcome of optional HTML-to-text conversion."""

    content: str
    was_converted: bool
    original_length: int
    processed_length: int
    tokens_saved: int = 0
    conversion_reason: Optional[str] = None
    analysis: Optional[HtmlAnalysis] = None


@dataclass
class TruncationResult:
    """Outcome of budget-driven truncation."""

    content: str
    was_truncated: bool
    original_length: int
    truncated_length: int
    preserved_start: int = 0
    preserved_end: int = 0
    characters_removed: int = 0


@dataclass
class LengthAnalysis:
    """Size of an email relative to the prompt budgets."""

    email_length: int
    additional_prompt_length: int
    total_estimated_length: int
    estimated_tokens: int
    exceeds_warning_threshold: bool
    requires_truncation: bool
    recommended_max_length: int


@dataclass
class PreparedContent:
    """Email content ready for substitution into a prompt, with diagnostics."""

    content: str
    conversion: ConversionResult
    length: LengthAnalysis
    truncation: TruncationResult
    html_conversion_notice: str = ""
    truncation_notice: str = ""
    notices: List[str] = field(default_factory=list)


def estimate_token_count(text: Optional[str]) -> int:
    """Approximate token count: one token per four characters."""
    return math.ceil(len(text or "") / 4)


def analyze_email_length(
    content: Optional[str],
    additional_prompt_length: int = 0,
    limits: Optional[PromptLimits] = None,
) -> LengthAnalysis:
    """Compare an email's length with the warning and truncation thresholds."""
    limits = limits or PromptLimits()
    email_length = len(content or "")
    total = email_length + additional_prompt_length

    return LengthAnalysis(
        email_length=email_length,
        additional_prompt_length=additional_prompt_length,
        total_estimated_length=total,
        estimated_tokens=estimate_token_count(content),
        exceeds_warning_threshold=email_length > limits.warning_email_length,
        requires_truncation=total > limits.max_total_prompt_length,
        recommended_max_length=limits.max_email_content_length - additional_prompt_length,
    )


def _head_break(content: str, preserve_start: int) -> str:
    head = content[:preserve_start]
    for pattern in SMART_BREAK_PATTERNS:
        index = head.rfind(pattern)
        if index > preserve_start * 0.8:
            return content[: index + len(pattern)]
    return head


def _tail_break(content: str, preserve_end: int) -> str:
    tail_start = len(content) - preserve_end
    tail = content[tail_start:]
    for pattern in SMART_BREAK_PATTERNS:
        index = tail.find(pattern)
        if 0 <= index < preserve_end * 0.2:
            return content[tail_start + index :]
    return tail


def truncate_email_content(content: Optional[str], max_length: int) -> TruncationResult:
    """Shorten content to ``max_length`` characters, keeping head and tail.

    Up to 2000 leading and 1000 trailing characters (60% / 30% of the budget
    for small budgets) are preserved, joined by a fixed marker. Each side is
    nudged to the nearest paragraph, line or sentence boundary when one lies
    close enough to the cut. When the preservation budgets alone exceed
    ``max_length`` the content is simply cut from the front.

    Args:
        content: The email content to shorten.
        max_length: The character budget (>= 0).

    Returns:
        A TruncationResult; ``content`` is never longer than ``max_length``.
    """
    content = content or ""
    original_length = len(content)
    max_length = max(0, max_length)

    if original_length <= max_length:
        return TruncationResult(
            content=content,
            was_truncated=False,
            original_length=original_length,
            truncated_length=original_length,
        )

    preserve_start = min(PRESERVE_BEGINNING, math.floor(max_length * 0.6))
    preserve_end = min(PRESERVE_ENDING, math.floor(max_length * 0.3))
    marker_length = len(ELLIPSIS_MARKER)
    available = max_length - preserve_start - preserve_end - marker_length

    if available < 0:
        if max_length < marker_length:
            # No room for the marker at all.
            shortened = content[:max_length]
            head_length = max_length
        else:
            head_length = max_length - marker_length
            shortened = content[:head_length] + ELLIPSIS_MARKER
        return TruncationResult(
            content=shortened,
            was_truncated=True,
            original_length=original_length,
            truncated_length=len(shortened),
            preserved_start=head_length,
            preserved_end=0,
            characters_removed=original_length - head_length,
        )

    head = _head_break(content, preserve_start)
    tail = _tail_break(content, preserve_end)
    shortened = head + ELLIPSIS_MARKER + tail

    return TruncationResult(
        content=shortened,
        was_truncated=True,
        original_length=original_length,
        truncated_length=len(shortened),
        preserved_start=len(head),
        preserved_end=len(tail),
        characters_removed=original_length - len(shortened) + marker_length,
    )


def convert_html_to_text(html: Optional[str]) -> str:
    """Convert HTML email content to readable text, preserving structure.

    Block elements become paragraph breaks, lists become bullets, tables
    become ``|``-separated rows, emphasis becomes Markdown-style asterisks
    and links become ``text (href)``. Text without any tag-like token is
    returned unchanged, which also makes the conversion idempotent.
    """
    if not html:
        return html or ""

    if not _ANY_TAG.search(html):
        return html

    text = html

    for element in _BLOCK_ELEMENTS:
        text = re.sub(r"</{}\b[^>]*>".format(element), "\n\n", text, flags=re.IGNORECASE)
        text = re.sub(r"<{}\b[^>]*>".format(element), "", text, flags=re.IGNORECASE)

    for pattern, replacement in _CONVERSION_STEPS:
        text = pattern.sub(replacement, text)

    text = _ANY_TAG.sub("", text)

    for pattern, char in _ENTITY_PATTERNS:
        text = pattern.sub(char, text)

    # Decoded &lt;...&gt; pairs must not reintroduce tags.
    text = _ANY_TAG.sub("", text)

    text = _EXCESS_NEWLINES.sub("\n\n", text)
    text = _EXCESS_SPACES.sub(" ", text)
    text = _LINE_EDGE_SPACES.sub("", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def analyze_html_content(content: Optional[str]) -> HtmlAnalysis:
    """Measure the HTML density of content and recommend conversion.

    Conversion is recommended when tags make up more than 15% of the
    characters, when more than 10 formatting constructs are present, or when
    conversion would save more than 20% and more than 500 characters.
    """
    if not content:
        return HtmlAnalysis()

    tags = _HTML_TAG.findall(content)
    total_length = len(content)
    tag_length = sum(len(tag) for tag in tags)
    density = (tag_length / total_length) * 100

    significant = sum(
        len(pattern.findall(content)) for pattern in _SIGNIFICANT_HTML_PATTERNS
    )

    text_length = len(convert_html_to_text(content))
    savings = max(0, total_length - text_length)
    savings_percentage = (savings / total_length) * 100

    recommend = (
        density > 15
        or significant > 10
        or (savings_percentage > 20 and savings > 500)
    )

    return HtmlAnalysis(
        contains_html=len(tags) > 0,
        html_tag_count=len(tags),
        html_density=round(density, 1),
        significant_html_count=significant,
        recommend_conversion=recommend,
        estimated_savings=savings,
        savings_percentage=round(savings_percentage, 1),
        original_length=total_length,
        estimated_text_length=text_length,
    )


def get_conversion_reason(analysis: HtmlAnalysis) -> str:
    """Human-readable explanation of why content was converted."""
    if analysis.html_density > 15:
        return "High HTML density ({}%)".format(analysis.html_density)
    if analysis.significant_html_count > 10:
        return "Many formatting elements ({} found)".format(
            analysis.significant_html_count
        )
    if analysis.savings_percentage > 20:
        return "Significant space savings ({}% reduction)".format(
            analysis.savings_percentage
        )
    return "Beneficial for AI processing"


def process_email_content(content: Optional[str]) -> ConversionResult:
    """Convert HTML content to text when the analysis says it pays off."""
    if not content:
        return ConversionResult(
            content=content or "",
            was_converted=False,
            original_length=0,
            processed_length=0,
        )

    analysis = analyze_html_content(content)
    if not analysis.recommend_conversion:
        return ConversionResult(
            content=content,
            was_converted=False,
            original_length=len(content),
            processed_length=len(content),
            analysis=analysis,
        )

    converted = convert_html_to_text(content)
    return ConversionResult(
        content=converted,
        was_converted=True,
        original_length=len(content),
        processed_length=len(converted),
        tokens_saved=analysis.estimated_savings,
        conversion_reason=get_conversion_reason(analysis),
        analysis=analysis,
    )


def prepare_email_content(
    content: Optional[str], limits: Optional[PromptLimits] = None
) -> PreparedContent:
    """Run the full preprocessing pipeline on email content.

    HTML is converted first so that truncation works on the cheaper text
    form. Content is truncated when the estimated prompt exceeds the total
    budget or the content alone exceeds the email budget.

    Args:
        content: Raw email body (HTML or text).
        limits: Budgets to enforce; defaults to PromptLimits().

    Returns:
        PreparedContent with the processed text and UI notices.
    """
    limits = limits or PromptLimits()
    conversion = process_email_content(content)
    processed = conversion.content

    length = analyze_email_length(
        processed, limits.additional_prompt_estimate, limits
    )

    too_large = len(processed) > limits.max_email_content_length
    if length.requires_truncation or too_large:
        budget = limits.max_email_content_length - limits.additional_prompt_estimate
        truncation = truncate_email_content(processed, budget)
    else:
        truncation = TruncationResult(
            content=processed,
            was_truncated=False,
            original_length=len(processed),
            truncated_length=len(processed),
        )

    prepared = PreparedContent(
        content=truncation.content,
        conversion=conversion,
        length=length,
        truncation=truncation,
    )

    if conversion.was_converted and conversion.original_length:
        saved_kb = round(conversion.tokens_saved / 1024)
        percent = round(conversion.tokens_saved / conversion.original_length * 100, 1)
        prepared.html_conversion_notice = (
            "**NOTE: HTML email converted to text for better processing** "
            "({}% more efficient, {}KB saved)".format(percent, saved_kb)
        )
        prepared.notices.append(prepared.html_conversion_notice)

    if truncation.was_truncated:
        prepared.truncation_notice = (
            "**NOTE: Email content was automatically shortened for processing** "
            "({} → {} characters)".format(
                truncation.original_length, truncation.truncated_length
            )
        )
        prepared.notices.append(prepared.truncation_notice)

    return prepared
