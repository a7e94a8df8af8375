"""Cast indexer - fetches casts, stores them and tags them."""
import logging
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings as default_settings
from .feed_client import FeedClient
from .normalizer import clean_casts, normalize_cast
from .store import CastStore
from .suggester import TagSuggester
from .tagging import (
    build_suggested_tags, extract_explicit_tags, extract_implicit_tags, strip_urls
)
from .writer import upsert_in_chunks


logger = logging.getLogger(__name__)

CASTS_TABLE = "casts"
CASTS_CONFLICT = "hash"
TAGS_TABLE = "cast_tags"
TAGS_CONFLICT = "cast_hash,tag"


def _drop_taken(mentions: list[dict], taken: list[dict]) -> list[dict]:
    """Drop mentions repeating a tag the same cast already has, any case."""
    taken_keys = {(t["cast_hash"], t["tag"].lower()) for t in taken}
    return [m for m in mentions if (m["cast_hash"], m["tag"].lower()) not in taken_keys]


class CastIndexer:
    """
    Indexing pipeline that:
    1. Fetches recent casts from the feed
    2. Drops already processed casts and recasts
    3. Normalizes and upserts casts
    4. Extracts and upserts explicit (and optionally suggested) tags
    5. Matches known tags as plain-text mentions and upserts those

    The caller owns the set of already processed hashes; each run returns the
    hashes it wrote so the caller can carry them into the next run.
    """

    def __init__(
        self,
        store: CastStore,
        feed_client: FeedClient = None,
        suggester: Optional[TagSuggester] = None,
        settings: Settings = None
    ):
        self.store = store
        self.feed = feed_client
        self.suggester = suggester
        self.settings = settings or default_settings
        self._owns_feed = feed_client is None
        self.persisted_hashes: list[str] = []

    async def __aenter__(self):
        if not self.feed:
            self.feed = FeedClient(
                base_url=self.settings.feed_base_url,
                api_token=self.settings.feed_api_token,
                feed_path=self.settings.feed_path,
                page_size=self.settings.feed_page_size,
                spam_markers=self.settings.spam_username_markers,
                timeout=self.settings.feed_timeout_seconds,
                retry_attempts=self.settings.request_retry_attempts
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.feed and self._owns_feed:
            await self.feed.close()
            self.feed = None

    def _write_tags(self, tags: list[dict]) -> None:
        upsert_in_chunks(
            self.store, TAGS_TABLE, tags,
            chunk_size=self.settings.tag_chunk_size,
            on_conflict=TAGS_CONFLICT
        )

    async def _suggested_tags(self, casts: list[dict], explicit_tags: list[dict]) -> list[dict]:
        """Ask the suggester about casts that carry no hashtag of their own."""
        tagged = {t["cast_hash"] for t in explicit_tags}
        candidates = [c for c in casts if c["hash"] not in tagged]
        candidates = candidates[:self.settings.max_suggestion_casts]

        suggested = []
        for cast in candidates:
            words = await self.suggester.suggest_tags(strip_urls(cast["text"]).strip())
            suggested.extend(build_suggested_tags(cast, words))

        logger.info(f"Suggester proposed {len(suggested)} tags for {len(candidates)} casts")
        return suggested

    def _load_vocabulary(self) -> Optional[list[str]]:
        try:
            return self.store.read_tag_vocabulary(page_size=self.settings.vocabulary_page_size)
        except SQLAlchemyError as e:
            self.store.db.rollback()
            logger.warning(f"No tags found, skipping tag mentions this run: {e}")
            return None

    async def index_casts(
        self,
        already_processed: frozenset = frozenset(),
        limit: Optional[int] = None
    ) -> list[str]:
        """
        Run one indexing cycle.

        Returns the hashes of every cast written this run. If a later stage
        fails the error propagates unchanged and the hashes written so far
        remain on ``persisted_hashes``.
        """
        self.persisted_hashes = []
        started = time.monotonic()
        logger.info("Indexing casts...")

        raw_casts = await self.feed.fetch_casts(limit)
        cleaned = clean_casts(raw_casts, already_processed)
        casts = [normalize_cast(c) for c in cleaned]
        logger.info(f"{len(casts)} new casts out of {len(raw_casts)} fetched")

        upsert_in_chunks(
            self.store, CASTS_TABLE, casts,
            chunk_size=self.settings.cast_chunk_size,
            on_conflict=CASTS_CONFLICT
        )
        self.persisted_hashes = [c["hash"] for c in casts]

        tags = extract_explicit_tags(casts)
        if self.suggester:
            tags.extend(await self._suggested_tags(casts, tags))
        self._write_tags(tags)
        logger.info(f"Stored {len(tags)} tags")

        vocabulary = self._load_vocabulary()
        if vocabulary is not None:
            mentions = _drop_taken(extract_implicit_tags(casts, vocabulary), tags)
            self._write_tags(mentions)
            logger.info(f"Stored {len(mentions)} tag mentions against {len(vocabulary)} known tags")

        duration = time.monotonic() - started
        if duration > self.settings.slow_run_threshold_seconds:
            logger.warning(f"Updated {len(casts)} casts in {duration:.1f} seconds")

        logger.info("Finished indexing casts")
        return list(self.persisted_hashes)
