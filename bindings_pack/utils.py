"""Shared helpers used by the packaging pipelines."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Optional, Union


def compute_sha256(payload: Union[bytes, str]) -> str:
    """Return the SHA-256 hex digest of in-memory content."""

    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def write_text(path: Path, content: str, *, newline: Optional[str] = None) -> None:
    """Write text to file ensuring parent directories exist."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8", newline=newline)


def write_bytes(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def resolve_path(value: Union[str, Path], root: Path) -> Path:
    """Resolve ``value`` against ``root`` unless it is already absolute."""

    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = root / candidate
    return candidate.resolve()


def relative_specifier(target: Path, start: Path) -> str:
    """Return a ``./``-prefixed POSIX import specifier from ``start`` to ``target``."""

    relative = Path(os.path.relpath(target, start)).as_posix()
    if not relative.startswith("../"):
        relative = f"./{relative}"
    return relative
