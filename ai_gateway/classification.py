"""Classification-marking detection and per-provider blocking.

Providers may list classification keywords (e.g. ``SECRET``) in their
``blockedClassifications``. Content carrying a matching marking is never
sent to that provider.
"""

import re
from dataclasses import dataclass
from typing import Optional

from ai_gateway.config import ProviderConfig

# "Classification: CONFIDENTIAL" style label lines
_LABEL_LINE = re.compile(
    r"^[ \t>*\[(-]*(?:security\s+)?classifi(?:cation|ed)\s*[:\-]\s*(?P<marking>[^\n\])]+)",
    re.IGNORECASE | re.MULTILINE,
)

# Banner lines made only of upper-case marking words
_BANNER_LINE = re.compile(
    r"^[ \t*\[(-]*(?P<marking>(?:TOP\s+)?SECRET|CONFIDENTIAL|RESTRICTED|"
    r"OFFICIAL[- ]SENSITIVE|INTERNAL\s+ONLY|CLASSIFIED|PROTECTED(?:\s+[A-C])?)"
    r"(?:\s*//\s*[A-Z][A-Z /-]*)?[ \t*\])-]*$",
    re.MULTILINE,
)


@dataclass
class BlockingCheck:
    """Whether a provider may receive a piece of content."""

    blocked: bool
    reason: Optional[str] = None
    keyword: Optional[str] = None
    marking: Optional[str] = None


def detect_classification(text: Optional[str]) -> Optional[str]:
    """Return the classification marking found in ``text``, if any."""
    if not text:
        return None

    match = _LABEL_LINE.search(text)
    if match:
        marking = match.group("marking").strip()
        if marking:
            return marking

    match = _BANNER_LINE.search(text)
    if match:
        return match.group(0).strip(" \t*[]()-")

    return None


def check_classification_blocking(
    text: Optional[str], provider: ProviderConfig
) -> BlockingCheck:
    """Check the content's classification against the provider's block list.

    Args:
        text: The email content (or prompt) about to be sent.
        provider: The resolved provider configuration.

    Returns:
        A BlockingCheck; ``blocked`` is True when the detected marking
        contains one of the provider's blocked keywords (case-insensitive).
    """
    if not provider.blocked_classifications:
        return BlockingCheck(blocked=False)

    marking = detect_classification(text)
    if not marking:
        return BlockingCheck(blocked=False)

    marking_lower = marking.lower()
    for keyword in provider.blocked_classifications:
        if keyword and keyword.lower() in marking_lower:
            return BlockingCheck(
                blocked=True,
                reason=(
                    "Email contains '{}' classification which matches blocked "
                    "keyword '{}' for provider '{}'".format(
                        marking, keyword.upper(), provider.display_name
                    )
                ),
                keyword=keyword,
                marking=marking,
            )

    return BlockingCheck(blocked=False, marking=marking)
