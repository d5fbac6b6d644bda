"""Zip archive helpers for moving directory trees."""

import fnmatch
import io
import os
import shutil
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

DEFAULT_EXCLUSIONS = [
    '*.log',
    '*.tmp',
    '*/.git/*',
    '*/.svn/*',
    '*/node_modules/*',
    '*/.DS_Store',
    '*/Thumbs.db',
]


def should_exclude(relative_path: str, patterns: Optional[Iterable[str]] = None) -> bool:
    """Check a path, relative to the archived root, against exclusion patterns."""
    candidate = '/' + relative_path.replace(os.sep, '/')
    for pattern in list(patterns or []) + DEFAULT_EXCLUSIONS:
        if fnmatch.fnmatch(candidate, pattern):
            return True
    return False


def pack_directory(
    source_dir: Path, exclude_patterns: Optional[Iterable[str]] = None
) -> bytes:
    """Archive a directory tree; entries are relative to ``source_dir``.

    Raises:
        FileNotFoundError: If the directory does not exist
    """
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise FileNotFoundError(f'Directory not found: {source_dir}')

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(source_dir.rglob('*')):
            relative = path.relative_to(source_dir).as_posix()
            if should_exclude(relative, exclude_patterns):
                continue
            if path.is_dir():
                zf.writestr(relative + '/', b'')
            else:
                zf.write(path, relative)
    return buffer.getvalue()


def pack_files(files: Dict[str, Path]) -> bytes:
    """Archive individual files keyed by their archive path."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
        for archive_path, path in files.items():
            zf.write(path, archive_path.lstrip('/'))
    return buffer.getvalue()


def unpack_archive(data: bytes, destination: Path, clean: bool = False) -> List[str]:
    """Extract an archive produced by :func:`pack_directory` or :func:`pack_files`.

    Args:
        data: Zip archive bytes
        destination: Directory to extract into
        clean: Remove the destination first so it mirrors the archive exactly

    Returns:
        Names of extracted files

    Raises:
        ValueError: If an entry would escape the destination
        zipfile.BadZipFile: If the data is not a zip archive
    """
    destination = Path(destination)
    root = destination.resolve()

    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        for name in zf.namelist():
            target = (root / name).resolve()
            if target != root and root not in target.parents:
                raise ValueError(f'Archive entry escapes destination: {name}')

        if clean and destination.exists():
            shutil.rmtree(destination)
        destination.mkdir(parents=True, exist_ok=True)

        zf.extractall(destination)
        return [name for name in zf.namelist() if not name.endswith('/')]


def format_bytes(size: float, precision: int = 2) -> str:
    """Human readable byte size."""
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    i = 0
    while size > 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f'{round(size, precision)} {units[i]}'
