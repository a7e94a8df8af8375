"""Chunked upsert writer shared by cast and tag persistence."""
import logging
from typing import Sequence, TypeVar, Union

T = TypeVar("T")

logger = logging.getLogger(__name__)


def break_into_chunks(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive lists of at most ``chunk_size``."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]


def upsert_in_chunks(
    store,
    table: str,
    records: Sequence[dict],
    chunk_size: int,
    on_conflict: Union[str, Sequence[str]]
) -> int:
    """Write ``records`` through ``store.upsert`` one chunk at a time.

    Fails fast: the first rejected chunk propagates its error and the
    remaining chunks are not attempted. Chunks already written stay written.

    Returns the number of chunks written.
    """
    chunks = break_into_chunks(records, chunk_size)
    for index, chunk in enumerate(chunks, start=1):
        store.upsert(table, chunk, on_conflict=on_conflict)
        logger.debug(f"Upserted chunk {index}/{len(chunks)} ({len(chunk)} rows) into {table}")
    return len(chunks)
