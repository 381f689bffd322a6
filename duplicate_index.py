"""
Duplicate Index

In-memory index of original files seen during a scan. Files are bucketed
by size modulo a fixed prime and kept in ascending-size order within each
bucket. Checksums are computed lazily: a file is only hashed once another
file of exactly the same size turns up.
"""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import blake3

# Configuration
BUCKET_COUNT = 1049
READ_BUFFER_SIZE = 1024 * 1024  # 1 MB

logger = logging.getLogger(__name__)


class ScanError(Exception):
    """Fatal error raised while scanning. Carries the offending path."""

    def __init__(self, path: Path | str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = Path(path)


class HashingError(ScanError):
    """A file's contents could not be read for checksumming."""


@dataclass(slots=True, eq=False)
class FileRecord:
    """A non-empty regular file considered for deduplication."""
    path: Path
    size: int
    device: int = 0
    inode: int = 0
    nlinks: int = 1
    # Computed at most once, see ensure_digest()
    digest: bytes | None = field(default=None, repr=False)

    def ensure_digest(self, hasher: Callable[[Path], bytes]) -> bytes:
        """Return the cached digest, computing it first if needed."""
        if self.digest is None:
            self.digest = hasher(self.path)
        return self.digest


# File Operations


def compute_checksum(filepath: Path) -> bytes:
    """Compute the BLAKE3 digest of a file. Raises HashingError on error."""
    try:
        hasher = blake3.blake3()
        with open(filepath, 'rb', buffering=0) as f:
            while chunk := f.read(READ_BUFFER_SIZE):
                hasher.update(chunk)
        return hasher.digest()
    except OSError as e:
        raise HashingError(filepath, f"cannot read file for checksum ({e.strerror or e})") from e


# Index


class DuplicateIndex:
    """
    Size-bucketed collection of original files.

    Each bucket holds the originals whose size maps to it, sorted by
    ascending size. Records are never removed; duplicates are never added.
    """

    def __init__(self, bucket_count: int = BUCKET_COUNT,
                 hasher: Callable[[Path], bytes] = compute_checksum):
        if bucket_count <= 0:
            raise ValueError(f"bucket_count must be positive, got {bucket_count}")
        self.bucket_count = bucket_count
        self.digests_computed = 0
        self._hasher = hasher
        self._buckets: dict[int, list[FileRecord]] = {}
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def bucket_for(self, size: int) -> int:
        """Return the bucket id a file of this size belongs to."""
        return size % self.bucket_count

    def bucket(self, bucket_id: int) -> tuple[FileRecord, ...]:
        """Return a snapshot of one bucket, smallest size first."""
        return tuple(self._buckets.get(bucket_id, ()))

    def originals(self) -> Iterator[FileRecord]:
        """Iterate over every recorded original, bucket by bucket."""
        for bucket_id in sorted(self._buckets):
            yield from self._buckets[bucket_id]

    def _digest(self, record: FileRecord) -> bytes:
        if record.digest is None:
            self.digests_computed += 1
        return record.ensure_digest(self._hasher)

    def lookup_or_insert(self, candidate: FileRecord) -> FileRecord | None:
        """
        Find an original identical to candidate, or record candidate.

        Returns the matching original if candidate is a duplicate (candidate
        is not stored). Otherwise inserts candidate in size order and
        returns None.
        """
        if candidate.size <= 0:
            raise ValueError(f"cannot index zero-length file {candidate.path}")

        bucket_id = self.bucket_for(candidate.size)
        logger.debug("Search for file: %s (size: %d, bucket: %d)",
                     candidate.path, candidate.size, bucket_id)
        chain = self._buckets.setdefault(bucket_id, [])

        # Empty bucket or everything in it is larger: no hashing needed
        if not chain or chain[0].size > candidate.size:
            chain.insert(0, candidate)
            self._count += 1
            return None

        for position, entry in enumerate(chain):
            if entry.size > candidate.size:
                break
            if entry.size != candidate.size:
                continue
            logger.debug("Matches (size) for %s", entry.path)
            if self._digest(candidate) == self._digest(entry):
                logger.debug("Matches (hash) for %s", entry.path)
                return entry
            logger.debug("Checksum differs from %s", entry.path)
        else:
            position = len(chain)

        chain.insert(position, candidate)
        self._count += 1
        return None
