"""Store access: idempotent upserts and tag reads over the cast tables."""
import logging
from datetime import datetime
from typing import Iterable, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Cast, CastTag


logger = logging.getLogger(__name__)

TABLES = {
    Cast.__tablename__: Cast,
    CastTag.__tablename__: CastTag,
}

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class StoreError(Exception):
    """Store misuse (unknown table, unsupported backend)."""
    pass


def _split_columns(on_conflict: Union[str, Sequence[str]]) -> list[str]:
    if isinstance(on_conflict, str):
        return [c.strip() for c in on_conflict.split(",") if c.strip()]
    return list(on_conflict)


def _group_by_columns(records: Iterable[dict]) -> list[tuple[tuple[str, ...], list[dict]]]:
    """Group rows by key set, keeping first-seen group order.

    A multi-row INSERT needs the same columns on every row, and rows that omit
    a column must not overwrite the stored value with NULL.
    """
    groups: dict[tuple[str, ...], list[dict]] = {}
    for record in records:
        groups.setdefault(tuple(record.keys()), []).append(record)
    return list(groups.items())


class CastStore:
    """Upsert and read contract over the ``casts`` and ``cast_tags`` tables."""

    def __init__(self, db: Session):
        self.db = db

    def _model_for(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}") from None

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        insert = _DIALECT_INSERTS.get(dialect)
        if insert is None:
            raise StoreError(f"Upsert not supported for dialect {dialect}")
        return insert(model)

    def upsert(
        self,
        table: str,
        records: Sequence[dict],
        on_conflict: Union[str, Sequence[str]]
    ) -> None:
        """Insert ``records`` into ``table``, overwriting rows that collide on ``on_conflict``.

        Re-submitting an identical record is a no-op overwrite. On failure the
        transaction is rolled back and the database error is re-raised.
        """
        if not records:
            return

        model = self._model_for(table)
        conflict_columns = _split_columns(on_conflict)

        try:
            for columns, rows in _group_by_columns(records):
                stmt = self._insert(model).values(rows)
                update_columns = [c for c in columns if c not in conflict_columns]
                if update_columns:
                    stmt = stmt.on_conflict_do_update(
                        index_elements=conflict_columns,
                        set_={c: stmt.excluded[c] for c in update_columns}
                    )
                else:
                    stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
                self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def read_tag_vocabulary(self, page_size: int = 1000) -> list[str]:
        """Distinct explicit tags, read in windows of ``page_size`` rows."""
        tags: list[str] = []
        offset = 0

        while True:
            page = self.db.execute(
                select(CastTag.tag)
                .where(CastTag.implicit.is_(False))
                .distinct()
                .order_by(CastTag.tag)
                .limit(page_size)
                .offset(offset)
            ).scalars().all()
            tags.extend(page)

            if len(page) < page_size:
                break
            offset += page_size

        logger.debug(f"Read {len(tags)} vocabulary tags")
        return tags

    def count_casts(self) -> int:
        return self.db.scalar(select(func.count()).select_from(Cast)) or 0

    def count_tags(self) -> dict[str, int]:
        """Tag row counts split into explicit, implicit and suggested."""
        rows = self.db.execute(
            select(CastTag.implicit, CastTag.gpt, func.count())
            .group_by(CastTag.implicit, CastTag.gpt)
        ).all()

        counts = {"explicit": 0, "implicit": 0, "suggested": 0}
        for implicit, gpt, count in rows:
            if gpt:
                counts["suggested"] += count
            elif implicit:
                counts["implicit"] += count
            else:
                counts["explicit"] += count
        return counts

    def top_tags(self, since: datetime, limit: int = 20) -> list[tuple[str, int]]:
        """Most used tags (case-insensitive) on casts published at or after ``since``."""
        tag_key = func.lower(CastTag.tag)
        rows = self.db.execute(
            select(tag_key, func.count(CastTag.id).label("uses"))
            .where(CastTag.published_at >= since)
            .group_by(tag_key)
            .order_by(func.count(CastTag.id).desc(), tag_key)
            .limit(limit)
        ).all()
        return [(tag, uses) for tag, uses in rows]
