"""File system utilities for MagToEpub."""

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any

from magtoepub.config.constants import DEFAULT_TITLE

_FILENAME_REPLACEMENTS = {
    "/": "_",
    "\\": "_",
    ":": "_",
    "*": "_",
    "?": "_",
    '"': "_",
    "<": "_",
    ">": "_",
    "|": "_",
    "\0": "",
}


def safe_filename(name: str, max_length: int = 200) -> str:
    """Turn a book title into a file stem usable on common file systems.

    Args:
        name: Title or other free text
        max_length: Maximum stem length

    Returns:
        Safe stem; ``DEFAULT_TITLE`` if nothing usable remains
    """
    result = name
    for old, new in _FILENAME_REPLACEMENTS.items():
        result = result.replace(old, new)

    result = result.strip(". ")[:max_length].rstrip(". ")
    return result or DEFAULT_TITLE


@contextmanager
def atomic_write(
    file_path: Path,
    mode: str = "w",
    encoding: str | None = "utf-8",
) -> Iterator[IO[Any]]:
    """Context manager for atomic file writes.

    Writes to a temp file in the target directory, then renames it over the
    target. On error the temp file is removed and the target is untouched.

    Args:
        file_path: Target file path
        mode: File mode ('w' or 'wb')
        encoding: File encoding (ignored for binary mode)

    Yields:
        File handle
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_name = tempfile.mkstemp(
        dir=file_path.parent,
        prefix=f".{file_path.name}.",
    )
    temp_path = Path(temp_name)

    try:
        os.close(temp_fd)

        if "b" in mode:
            with open(temp_path, mode) as f:
                yield f
        else:
            with open(temp_path, mode, encoding=encoding) as f:
                yield f

        temp_path.replace(file_path)

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise
