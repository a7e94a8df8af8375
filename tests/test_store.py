"""Test the SQL store contract."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from cast_indexer.database import Base
from cast_indexer.models import Cast, CastTag
from cast_indexer.store import CastStore, StoreError


NOW = datetime(2023, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    """Create in-memory database session for testing."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return CastStore(db_session)


def cast_row(hash: str, text: str = "gm", **extra) -> dict:
    row = {
        "hash": hash,
        "thread_hash": hash,
        "parent_hash": None,
        "author_fid": 1,
        "author_username": "alice",
        "author_display_name": "Alice",
        "author_pfp_url": None,
        "author_pfp_verified": False,
        "text": text,
        "published_at": NOW,
        "mentions": None,
        "replies_count": 0,
        "reactions_count": 0,
        "recasts_count": 0,
        "watches_count": 0,
        "parent_author_fid": None,
        "parent_author_username": None,
        "deleted": False,
    }
    row.update(extra)
    return row


def tag_row(cast_hash: str, tag: str, implicit: bool = False, gpt: bool = False, published_at=NOW) -> dict:
    return {
        "cast_hash": cast_hash,
        "tag": tag,
        "implicit": implicit,
        "gpt": gpt,
        "published_at": published_at,
    }


class TestUpsert:
    """Test idempotent upserts."""

    def test_inserts_new_rows(self, store, db_session):
        store.upsert("casts", [cast_row("0x1"), cast_row("0x2")], on_conflict="hash")

        assert db_session.query(Cast).count() == 2

    def test_resubmitting_is_idempotent(self, store, db_session):
        rows = [cast_row("0x1"), cast_row("0x2")]

        store.upsert("casts", rows, on_conflict="hash")
        store.upsert("casts", rows, on_conflict="hash")

        assert db_session.query(Cast).count() == 2

    def test_conflict_overwrites_row(self, store, db_session):
        store.upsert("casts", [cast_row("0x1", text="before")], on_conflict="hash")
        store.upsert("casts", [cast_row("0x1", text="after", reactions_count=9)], on_conflict="hash")

        cast = db_session.get(Cast, "0x1")
        db_session.refresh(cast)
        assert cast.text == "after"
        assert cast.reactions_count == 9

    def test_missing_legacy_ids_do_not_clear_stored_ids(self, store, db_session):
        store.upsert("casts", [cast_row("0x1", hash_v1="0xold")], on_conflict="hash")
        store.upsert("casts", [cast_row("0x1", text="edited")], on_conflict="hash")

        cast = db_session.get(Cast, "0x1")
        db_session.refresh(cast)
        assert cast.hash_v1 == "0xold"
        assert cast.text == "edited"

    def test_mixed_key_sets_in_one_call(self, store, db_session):
        store.upsert(
            "casts",
            [cast_row("0x1", hash_v1="0xold1"), cast_row("0x2"), cast_row("0x3", hash_v1="0xold3")],
            on_conflict="hash"
        )

        legacy = dict(db_session.execute(select(Cast.hash, Cast.hash_v1)).all())
        assert legacy == {"0x1": "0xold1", "0x2": None, "0x3": "0xold3"}

    def test_tag_upsert_on_composite_key(self, store, db_session):
        store.upsert("casts", [cast_row("0x1")], on_conflict="hash")
        store.upsert("cast_tags", [tag_row("0x1", "Arsenal")], on_conflict="cast_hash,tag")
        store.upsert("cast_tags", [tag_row("0x1", "Arsenal", gpt=True)], on_conflict="cast_hash,tag")

        tags = db_session.query(CastTag).all()
        assert len(tags) == 1
        db_session.refresh(tags[0])
        assert tags[0].gpt is True

    def test_accepts_column_sequence(self, store, db_session):
        store.upsert("cast_tags", [tag_row("0x1", "F1")], on_conflict=["cast_hash", "tag"])
        store.upsert("cast_tags", [tag_row("0x1", "F1")], on_conflict=("cast_hash", "tag"))

        assert db_session.query(CastTag).count() == 1

    def test_empty_records_is_noop(self, store, db_session):
        store.upsert("casts", [], on_conflict="hash")

        assert db_session.query(Cast).count() == 0

    def test_unknown_table(self, store):
        with pytest.raises(StoreError, match="Unknown table"):
            store.upsert("profiles", [{"id": 1}], on_conflict="id")

    def test_failure_rolls_back_and_reraises(self, store, db_session):
        bad = cast_row("0x2")
        bad["text"] = None  # violates NOT NULL

        with pytest.raises(IntegrityError):
            store.upsert("casts", [cast_row("0x1"), bad], on_conflict="hash")

        assert db_session.query(Cast).count() == 0


class TestTagVocabulary:
    """Test distinct tag reads."""

    def test_reads_distinct_explicit_tags(self, store):
        store.upsert("cast_tags", [
            tag_row("0x1", "Arsenal"),
            tag_row("0x2", "Arsenal"),
            tag_row("0x2", "F1"),
            tag_row("0x3", "arsenal", implicit=True),
            tag_row("0x4", "Hiking", gpt=True),
        ], on_conflict="cast_hash,tag")

        assert store.read_tag_vocabulary() == ["Arsenal", "F1", "Hiking"]

    def test_pages_until_short_page(self, store, db_session):
        store.upsert(
            "cast_tags",
            [tag_row(f"0x{i}", f"tag{i:02d}") for i in range(7)],
            on_conflict="cast_hash,tag"
        )

        with patch.object(db_session, "execute", wraps=db_session.execute) as execute:
            tags = store.read_tag_vocabulary(page_size=3)

        assert tags == [f"tag{i:02d}" for i in range(7)]
        assert execute.call_count == 3

    def test_empty_store(self, store):
        assert store.read_tag_vocabulary() == []

    def test_read_failure_propagates(self, store, db_session):
        with patch.object(db_session, "execute", side_effect=OperationalError("SELECT", {}, Exception("down"))):
            with pytest.raises(OperationalError):
                store.read_tag_vocabulary()


class TestStats:
    """Test counting and windowed tag queries."""

    def test_counts(self, store):
        store.upsert("casts", [cast_row("0x1"), cast_row("0x2")], on_conflict="hash")
        store.upsert("cast_tags", [
            tag_row("0x1", "Arsenal"),
            tag_row("0x1", "football", implicit=True),
            tag_row("0x2", "Hiking", gpt=True),
            tag_row("0x2", "F1"),
        ], on_conflict="cast_hash,tag")

        assert store.count_casts() == 2
        assert store.count_tags() == {"explicit": 2, "implicit": 1, "suggested": 1}

    def test_top_tags_in_window(self, store):
        old = NOW - timedelta(days=3)
        store.upsert("cast_tags", [
            tag_row("0x1", "Arsenal"),
            tag_row("0x2", "arsenal", implicit=True),
            tag_row("0x3", "F1"),
            tag_row("0x4", "F1", published_at=old),
            tag_row("0x5", "F1", published_at=old),
        ], on_conflict="cast_hash,tag")

        top = store.top_tags(NOW - timedelta(hours=24), limit=10)

        assert top == [("arsenal", 2), ("f1", 1)]
