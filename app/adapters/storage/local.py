"""Local disk storage for uploads.

Stored names are ``<sanitized stem>-<epoch ms>-<random><ext>``, so client
file names never pick the path on disk and never collide.
"""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredFile:
    filename: str
    original_name: str
    content_type: str
    size: int


class LocalFileStorage:
    """Writes uploads under one root directory."""

    def __init__(self, root: str | Path, *, clock: Callable[[], float] = time.time) -> None:
        self.root = Path(root)
        self._clock = clock

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def unique_name(self, original_name: str) -> str:
        # Drop any directory part, whichever separator the client used.
        name = PurePosixPath(original_name.replace("\\", "/")).name
        suffix = _UNSAFE_CHARS.sub("", PurePosixPath(name).suffix).lower()
        stem = _UNSAFE_CHARS.sub("_", PurePosixPath(name).stem).strip("._") or "file"
        return f"{stem}-{int(self._clock() * 1000)}-{secrets.randbelow(10**9)}{suffix}"

    def save(self, *, original_name: str, content_type: str, content: bytes) -> StoredFile:
        """Write ``content`` to a fresh file and describe it."""
        self.ensure_root()
        filename = self.unique_name(original_name)
        (self.root / filename).write_bytes(content)
        return StoredFile(
            filename=filename,
            original_name=original_name,
            content_type=content_type,
            size=len(content),
        )
