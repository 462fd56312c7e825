"""
Brand mention analysis for external responses.

Only locates whole-word, case-insensitive matches; the content of the
response is otherwise treated as opaque text.
"""

import re
from typing import List, Sequence

from libs.tracking.models import CITATION_FALLBACK, Mention

MAX_CONTEXTS = 3

# Terminal punctuation followed by whitespace, so URLs stay in one piece
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n+")
_URL = re.compile(r"https?://[^\s<>()\"']+")


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(text) if s and s.strip()]


def extract_urls(text: str) -> List[str]:
    # Trailing sentence punctuation is not part of the link
    return [url.rstrip(".,;:!?") for url in _URL.findall(text)]


def find_mentions(text: str, brands: Sequence[str]) -> List[Mention]:
    """
    Locate every tracked brand in ``text``.

    Args:
        text: Response text from the external service
        brands: Tracked brands (brands and competitors)

    Returns:
        One Mention per brand found, ordered by first occurrence
    """
    mentions: List[Mention] = []
    lower_text = text.lower()
    sentences = split_sentences(text)

    for brand in brands:
        name = brand.strip()
        if not name:
            continue
        pattern = re.compile(rf"(?<!\w){re.escape(name)}(?!\w)", re.IGNORECASE)
        matches = pattern.findall(text)
        if not matches:
            continue

        brand_lower = name.lower()
        contexts = [s for s in sentences if brand_lower in s.lower()]
        citations: List[str] = []
        for context in contexts:
            citations.extend(extract_urls(context))

        mentions.append(
            Mention(
                brand=brand,
                count=len(matches),
                contexts=contexts[:MAX_CONTEXTS],
                citations=citations or list(CITATION_FALLBACK),
                position=max(lower_text.find(brand_lower), 0),
            )
        )

    return sorted(mentions, key=lambda m: m.position)
