"""
Compression handlers for backup archives.

Supports multiple formats:
- tar.zst: Zstandard compressed tar (default)
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)

Zstandard compresses and decompresses database snapshots much faster than
gzip at a similar or better ratio.
"""

import os
import tarfile
import logging
from pathlib import Path
from typing import List

import zstandard


logger = logging.getLogger(__name__)

ZSTD_LEVEL = 3

# format -> file extension
EXTENSIONS = {
    'tar.zst': 'tar.zst',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'none': 'tar'
}

# format -> tarfile mode
_TAR_MODES = {
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz',
    'none': 'w'
}


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def extension_for_format(compression_format: str) -> str:
    """
    Return the file suffix (with leading dot) for a compression format.

    Raises:
        ValueError: If compression_format is invalid
    """
    if compression_format not in EXTENSIONS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(EXTENSIONS.keys())}"
        )
    return f".{EXTENSIONS[compression_format]}"


def create_archive(
    source_paths: List[str],
    output_path: str,
    compression_format: str = 'tar.zst'
) -> str:
    """
    Create a compressed archive from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('tar.zst', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    archive_path = f"{output_path}{extension_for_format(compression_format)}"

    try:
        if compression_format == 'tar.zst':
            _create_tar_zst(source_paths, archive_path)
        else:
            _create_tar(source_paths, archive_path, compression_format)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError as cleanup_error:
                logger.warning(f"Failed to remove partial archive {archive_path}: {cleanup_error}")
        raise CompressionError(f"Failed to create archive: {e}")


def _add_sources(tar: tarfile.TarFile, source_paths: List[str]):
    for source_path in source_paths:
        source = Path(source_path)

        if not source.exists():
            raise CompressionError(f"Path does not exist: {source_path}")

        # Keep only the basename so the archive has no deep directory structure
        tar.add(source, arcname=source.name, recursive=True)


def _create_tar(source_paths: List[str], archive_path: str, compression_format: str):
    """
    Create a TAR archive with optional stdlib compression.

    Args:
        source_paths: List of paths to include
        archive_path: Output archive path
        compression_format: Compression format ('tar.gz', 'tar.bz2', 'tar.xz', 'none')
    """
    with tarfile.open(archive_path, _TAR_MODES[compression_format]) as tar:
        _add_sources(tar, source_paths)


def _create_tar_zst(source_paths: List[str], archive_path: str):
    """
    Create a Zstandard compressed TAR archive.

    The tar stream is written straight through the compressor.
    """
    compressor = zstandard.ZstdCompressor(level=ZSTD_LEVEL)

    with open(archive_path, 'wb') as raw:
        with compressor.stream_writer(raw, closefd=False) as writer:
            with tarfile.open(fileobj=writer, mode='w|') as tar:
                _add_sources(tar, source_paths)


def strip_archive_extension(filename: str) -> str:
    """
    Strip archive extension from filename.

    Handles multi-part extensions like .tar.zst, .tar.gz, .tar.bz2, .tar.xz

    Args:
        filename: Archive filename with extension

    Returns:
        Filename without extension
    """
    for extension in sorted(EXTENSIONS.values(), key=len, reverse=True):
        suffix = f".{extension}"
        if filename.endswith(suffix):
            return filename[:-len(suffix)]

    # Fallback to standard splitext
    return os.path.splitext(filename)[0]


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")
