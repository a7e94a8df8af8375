"""Cast filtering and normalization into storage records."""
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional


logger = logging.getLogger(__name__)

RECAST_PREFIX = "recast:farcaster://"

MENTION_FIELDS = ("fid", "username", "displayName", "pfp")

LEGACY_FIELDS = {
    "hashV1": "hash_v1",
    "threadHashV1": "thread_hash_v1",
    "parentHashV1": "parent_hash_v1",
}


def _trim_mention(mention: dict) -> dict:
    return {key: mention.get(key) for key in MENTION_FIELDS}


def _missing_field(cast: dict) -> Optional[str]:
    """Name of the first field a ``casts`` row cannot be stored without."""
    if not cast.get("hash"):
        return "hash"
    if not cast.get("threadHash"):
        return "threadHash"
    if (cast.get("author") or {}).get("fid") is None:
        return "author.fid"
    try:
        if parse_timestamp(cast.get("timestamp")) is None:
            return "timestamp"
    except (ValueError, OverflowError, OSError):
        return "timestamp"
    return None


def clean_casts(casts: Iterable[dict], already_processed: Optional[set] = None) -> list[dict]:
    """Drop processed casts, recasts, repeated hashes and unstorable casts; trim mention payloads.

    Neither the input casts nor ``already_processed`` are modified.
    """
    already_processed = already_processed or set()
    seen: set[str] = set()
    cleaned = []

    for cast in casts:
        cast_hash = cast.get("hash")
        if cast_hash in already_processed or cast_hash in seen:
            continue

        if (cast.get("text") or "").startswith(RECAST_PREFIX):
            continue

        missing = _missing_field(cast)
        if missing:
            logger.warning(f"Skipping cast {cast_hash}: missing or invalid {missing}")
            continue

        # TODO: drop casts deleted upstream once the feed exposes a deletion marker
        if cast.get("mentions"):
            cast = {**cast, "mentions": [_trim_mention(m) for m in cast["mentions"]]}

        seen.add(cast_hash)
        cleaned.append(cast)

    return cleaned


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an epoch-milliseconds or ISO 8601 timestamp into aware UTC."""
    if value is None or value == "":
        return None

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)

    s = str(value).strip()
    if s.isdigit():
        return datetime.fromtimestamp(int(s) / 1000, tz=timezone.utc)

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _count(raw: dict, key: str) -> int:
    return (raw.get(key) or {}).get("count") or 0


def normalize_cast(raw: dict) -> dict:
    """Map an upstream cast payload onto a flat ``casts`` row."""
    author = raw.get("author") or {}
    pfp = author.get("pfp") or {}
    parent_author = raw.get("parentAuthor") or {}
    mentions = raw.get("mentions")

    flattened = {
        "hash": raw.get("hash"),
        "thread_hash": raw.get("threadHash"),
        "parent_hash": raw.get("parentHash") or None,
        "author_fid": author.get("fid"),
        "author_username": author.get("username") or None,
        "author_display_name": author.get("displayName"),
        "author_pfp_url": pfp.get("url") or None,
        "author_pfp_verified": pfp.get("verified") or False,
        "text": raw.get("text") or "",
        "published_at": parse_timestamp(raw.get("timestamp")),
        "mentions": [dict(m) for m in mentions] if mentions else None,
        "replies_count": _count(raw, "replies"),
        "reactions_count": _count(raw, "reactions"),
        "recasts_count": _count(raw, "recasts"),
        "watches_count": _count(raw, "watches"),
        "parent_author_fid": parent_author.get("fid") or None,
        "parent_author_username": parent_author.get("username") or None,
        "deleted": False,
    }

    for source, column in LEGACY_FIELDS.items():
        if source in raw:
            flattened[column] = raw[source]

    return flattened
