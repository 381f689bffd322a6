#!/usr/bin/env python3
"""
Duplicate File Finder

Walks a directory tree and reports every file whose content is identical
to a file seen earlier in the walk. Nothing is modified.

Files are compared by size first; BLAKE3 checksums are only computed when
two files share a size. Symlinks and empty files are ignored. Device files,
sockets and FIFOs abort the scan, as does any unreadable directory or file.
"""

import argparse
import logging
import os
import stat
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from duplicate_index import DuplicateIndex, FileRecord, ScanError

# Configuration
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


class DirectoryAccessError(ScanError):
    """A directory could not be listed."""


class StatError(ScanError):
    """A directory entry could not be examined."""


class UnsupportedFileTypeError(ScanError):
    """Device file, socket, FIFO or other entry the scanner refuses to handle."""


@dataclass(slots=True)
class Duplicate:
    """A file found to match an original seen earlier."""
    duplicate: FileRecord
    original: FileRecord


@dataclass(slots=True)
class ScanStats:
    """Running totals for one scan."""
    files_scanned: int = 0
    originals: int = 0
    duplicates: int = 0
    wasted_bytes: int = 0
    empty_skipped: int = 0
    symlinks_skipped: int = 0
    directories: int = 0


# File Operations


def describe_mode(mode: int) -> str:
    """Name the file type encoded in a stat mode."""
    if stat.S_ISCHR(mode):
        return "character device"
    if stat.S_ISBLK(mode):
        return "block device"
    if stat.S_ISSOCK(mode):
        return "socket"
    if stat.S_ISFIFO(mode):
        return "FIFO"
    return f"file type {stat.S_IFMT(mode):#o}"


def open_directory(folder: Path, stats: ScanStats | None = None) -> tuple[Path, Iterator[str]]:
    """List a directory's entries in sorted name order."""
    logger.info("Directory: %s", folder)
    if stats is not None:
        stats.directories += 1
    try:
        names = sorted(os.listdir(folder))
    except OSError as e:
        raise DirectoryAccessError(folder, f"cannot read directory ({e.strerror or e})") from e
    return folder, iter(names)


def scan_directory(folder: Path, stats: ScanStats | None = None) -> Iterator[FileRecord]:
    """
    Walk a folder depth-first, yielding non-empty regular files.

    Entries are visited in sorted name order and subdirectories are entered
    as they are met. Directories still being listed are kept on an explicit
    stack, so tree depth is not bound by the interpreter's recursion limit.
    Symlinks are never followed. Raises a ScanError subclass on the first
    entry or directory that cannot be handled.
    """
    pending = [open_directory(folder, stats)]
    while pending:
        parent, names = pending[-1]
        name = next(names, None)
        if name is None:
            pending.pop()
            continue

        full_path = parent / name
        try:
            st = os.lstat(full_path)
        except OSError as e:
            raise StatError(full_path, f"cannot stat ({e.strerror or e})") from e

        if stat.S_ISREG(st.st_mode):
            if st.st_size == 0:
                if stats is not None:
                    stats.empty_skipped += 1
                continue
            logger.debug("Regular file: %s, size: %d", full_path, st.st_size)
            yield FileRecord(full_path, st.st_size, device=st.st_dev,
                             inode=st.st_ino, nlinks=st.st_nlink)
        elif stat.S_ISDIR(st.st_mode):
            pending.append(open_directory(full_path, stats))
        elif stat.S_ISLNK(st.st_mode):
            logger.info("Ignoring a symlink (%s)", full_path)
            if stats is not None:
                stats.symlinks_skipped += 1
        else:
            raise UnsupportedFileTypeError(full_path, f"can't handle {describe_mode(st.st_mode)}")


# Duplicate Detection Logic


def scan_tree(root: Path, index: DuplicateIndex, dry_run: bool = False,
              stats: ScanStats | None = None) -> Iterator[Duplicate]:
    """
    Feed every regular file under root to the index.

    Yields a Duplicate for each file matching an earlier original. The
    dry_run flag is accepted for a future link-replacement mode; no mode
    modifies the filesystem today.
    """
    if dry_run:
        logger.info("Dry run: no files will be modified")
    if not root.is_dir():
        raise DirectoryAccessError(root, "not a directory")

    for record in scan_directory(root, stats):
        original = index.lookup_or_insert(record)
        if stats is not None:
            stats.files_scanned += 1
        if original is None:
            if stats is not None:
                stats.originals += 1
            continue
        if stats is not None:
            stats.duplicates += 1
            stats.wasted_bytes += record.size
        yield Duplicate(record, original)


def find_duplicates(folder: Path, dry_run: bool = False) -> ScanStats:
    """Scan folder, print each duplicate and a summary. Returns the totals."""
    index = DuplicateIndex()
    stats = ScanStats()

    for dup in scan_tree(folder, index, dry_run=dry_run, stats=stats):
        print(f">>> DUP file: {dup.duplicate.path}. Original: {dup.original.path}.")

    logger.debug("%d checksums computed", index.digests_computed)

    print("\nSummary:")
    print(f"  Directories:         {stats.directories}")
    print(f"  Total files scanned: {stats.files_scanned}")
    print(f"  Original files:      {stats.originals}")
    print(f"  Duplicate files:     {stats.duplicates}")
    print(f"  Wasted space:        {format_size(stats.wasted_bytes)}")
    return stats


def format_size(size: int) -> str:
    """Format byte size as human-readable string."""
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != 'B' else f"{size} {unit}"
        size /= 1024
    return f"{size:.1f} PB"


# CLI Entry Point


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr, at DEBUG level when verbose."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description='Report files that duplicate the content of an earlier file'
    )
    parser.add_argument('folder', type=Path, help='Folder to scan for duplicates')
    parser.add_argument(
        '-n', '--dry-run',
        action='store_true',
        help='Do not modify anything (currently no mode modifies files)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Narrate directories, size matches and checksum matches'
    )

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if not args.folder.is_dir():
        print(f"Error: {args.folder} is not a directory", file=sys.stderr)
        return 1

    try:
        find_duplicates(args.folder, dry_run=args.dry_run)
    except ScanError as e:
        sys.stdout.flush()
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
