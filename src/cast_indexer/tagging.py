"""Tag extraction from normalized casts.

Three kinds of tag rows come out of here:
- explicit: hashtags written in the cast text
- implicit: plain-text mentions of tags already known from other casts
- suggested: words proposed by an optional tag suggester (``gpt`` rows)

All functions are pure and work on flattened cast records.
"""
import re
from typing import Iterable, Sequence

URL_PATTERN = re.compile(r"https?://\S+")

# A hashtag starts the text or follows whitespace, begins with a letter and
# runs over word characters, apostrophes and hyphens.
EXPLICIT_TAG_PATTERN = re.compile(r"(?:^|\s)#([a-zA-Z][\w’'_-]+)")

# Narrower than EXPLICIT_TAG_PATTERN: apostrophes and hyphens end the match,
# so the tail of a tag like "#you're-great" stays visible to mention matching.
HASHTAG_STRIP_PATTERN = re.compile(r"#[a-zA-Z]\w+")

SUGGESTED_TAG_PATTERN = re.compile(r"[a-zA-Z][\w’'_-]+")

TAGS_TO_IGNORE = frozenset({"what", "things", "did", "post", "new"})


def strip_urls(text: str) -> str:
    """Remove http(s) URLs so tag-like fragments inside them are never read."""
    return URL_PATTERN.sub("", text or "")


def _tag_row(cast: dict, tag: str, implicit: bool = False, gpt: bool = False) -> dict:
    return {
        "cast_hash": cast["hash"],
        "tag": tag,
        "implicit": implicit,
        "gpt": gpt,
        "published_at": cast["published_at"],
    }


def extract_explicit_tags(casts: Iterable[dict]) -> list[dict]:
    """Hashtags found in each cast, first casing wins within a cast."""
    tags = []

    for cast in casts:
        text = strip_urls(cast["text"])
        processed = set(TAGS_TO_IGNORE)

        for match in EXPLICIT_TAG_PATTERN.finditer(text):
            cleaned = match.group(1).replace("#", "").strip()
            if len(cleaned) < 2:
                continue

            key = cleaned.lower()
            if key in processed:
                continue

            tags.append(_tag_row(cast, cleaned))
            processed.add(key)

    return tags


def build_mention_pattern(vocabulary: Iterable[str]):
    """Case-insensitive word-bounded alternation over ``vocabulary``, or None if empty."""
    unique: dict[str, str] = {}
    for tag in vocabulary:
        if tag and tag.strip():
            unique.setdefault(tag.strip().lower(), tag.strip())

    if not unique:
        return None

    alternation = "|".join(re.escape(tag) for tag in sorted(unique.values()))
    return re.compile(rf"\b({alternation})\b", re.IGNORECASE)


def extract_implicit_tags(casts: Iterable[dict], vocabulary: Sequence[str]) -> list[dict]:
    """Plain-text mentions of known tags, keeping the casing used in the cast."""
    pattern = build_mention_pattern(vocabulary)
    if pattern is None:
        return []

    tags = []
    for cast in casts:
        text = HASHTAG_STRIP_PATTERN.sub("", strip_urls(cast["text"]))
        processed: set[str] = set()

        for match in pattern.finditer(text):
            surface = match.group(1)
            key = surface.lower()
            if key in processed:
                continue

            tags.append(_tag_row(cast, surface, implicit=True))
            processed.add(key)

    return tags


def build_suggested_tags(cast: dict, suggestions: Iterable[str]) -> list[dict]:
    """Turn suggester output into ``gpt`` tag rows for one cast.

    Only single tokens shaped like a hashtag body are kept; stoplisted words
    and case-insensitive repeats are dropped.
    """
    processed = set(TAGS_TO_IGNORE)
    tags = []

    for suggestion in suggestions:
        cleaned = (suggestion or "").strip().lstrip("#")
        if not SUGGESTED_TAG_PATTERN.fullmatch(cleaned):
            continue

        key = cleaned.lower()
        if key in processed:
            continue

        tags.append(_tag_row(cast, cleaned, gpt=True))
        processed.add(key)

    return tags
