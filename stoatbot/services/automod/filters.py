"""
StoatBot - Automod Content Filters
==================================

Stateless checks on message text. Each returns None when the message is
clean, or a short detail string describing the hit.
"""

import re
from typing import Iterable, List, Optional

from stoatbot.core import constants
from stoatbot.core.database.models import AutomodThresholds


# =============================================================================
# Patterns
# =============================================================================

URL_PATTERN = re.compile(r"https?://[^\s]+", re.IGNORECASE)

INVITE_PATTERN = re.compile(
    r"(discord\.gg/|discord(?:app)?\.com/invite/|revolt\.chat/invite|stoat\.gg/invite)",
    re.IGNORECASE,
)

UPPERCASE_PATTERN = re.compile(r"[A-Z]")
WHITESPACE_PATTERN = re.compile(r"\s")


# =============================================================================
# Filters
# =============================================================================

def check_mentions(content: str, thresholds: AutomodThresholds) -> Optional[str]:
    count = content.count("@")
    if count > thresholds.max_mentions:
        return f"Excessive mentions: {count}"
    return None


def check_caps(content: str, thresholds: AutomodThresholds) -> Optional[str]:
    """Uppercase ratio over max_caps percent, for messages long enough to judge."""
    total = len(WHITESPACE_PATTERN.sub("", content))
    if total <= constants.CAPS_MIN_LENGTH:
        return None

    caps = len(UPPERCASE_PATTERN.findall(content))
    ratio = caps / total
    if ratio > thresholds.max_caps / 100:
        return f"Excessive capital letters: {ratio:.0%}"
    return None


def find_links(content: str) -> List[str]:
    return URL_PATTERN.findall(content)


def check_links(content: str, allowed: Iterable[str]) -> Optional[str]:
    """Any URL that contains none of the allow-listed fragments."""
    allowed = [fragment.lower() for fragment in allowed]
    for link in find_links(content):
        lowered = link.lower()
        if not any(fragment in lowered for fragment in allowed):
            return f"Unauthorized link: {link[:100]}"
    return None


def check_invites(content: str) -> Optional[str]:
    match = INVITE_PATTERN.search(content)
    if match:
        return f"Server invite link: {match.group(1)}"
    return None


__all__ = [
    "URL_PATTERN",
    "INVITE_PATTERN",
    "check_mentions",
    "check_caps",
    "find_links",
    "check_links",
    "check_invites",
]
