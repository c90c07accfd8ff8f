"""Filesystem helpers shared by the sync tests."""

from __future__ import annotations

import os
from pathlib import Path


def write(root: Path, rel: str, content: str | bytes = "x") -> Path:
    """Create (or overwrite) ``root/rel`` with *content*."""
    path = root.joinpath(*rel.split("/"))
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


def set_mtime(path: Path, mtime_ns: int) -> None:
    os.utime(path, ns=(mtime_ns, mtime_ns))
