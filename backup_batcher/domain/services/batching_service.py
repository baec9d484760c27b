"""Batch partitioning.

Batches are re-derived from (ordering, start index) on every run instead of
being resumed from stored iterator state, so a restarted day-run reproduces
exactly the partition the interrupted run committed.
"""
from itertools import islice
from typing import Iterable, Iterator

from backup_batcher.domain.entities.file_record import Batch, FileRecord

DEFAULT_BATCH_SIZE = 25


def batch_count(total_files: int, batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    """
    Number of batches needed for a number of files.
    
    Args:
        total_files: Number of enumerated files
        batch_size: Files per batch
        
    Returns:
        ceil(total_files / batch_size)
    """
    _check_batch_size(batch_size)
    return -(-total_files // batch_size)


def make_batches(
    records: Iterable[FileRecord],
    batch_size: int = DEFAULT_BATCH_SIZE,
    start_index: int = 0,
) -> Iterator[Batch]:
    """
    Partition ordered file records into fixed-size batches.
    
    Every batch holds exactly `batch_size` records except the last, which
    holds the remainder. Batches before `start_index` are not emitted but
    their records are still consumed, so indices and contents match a run
    started from zero.
    
    Args:
        records: File records in enumeration order
        batch_size: Files per batch
        start_index: First batch index to emit
        
    Returns:
        Iterator of Batch
    """
    _check_batch_size(batch_size)
    if start_index < 0:
        raise ValueError(f"start_index must be >= 0, got {start_index}")

    it = iter(records)
    offset = start_index * batch_size
    next(islice(it, offset, offset), None)

    index = start_index
    while True:
        chunk = tuple(islice(it, batch_size))
        if not chunk:
            return
        yield Batch(index=index, files=chunk)
        index += 1


def _check_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
