"""Ignore predicate evaluated by the detector before fingerprinting.

Three rule sets are combined:

1. **Literal paths** -- a path is ignored when it equals a literal or lies
   beneath it (component-wise prefix: ``"build"`` ignores ``"build/x"``
   but not ``"builder"``).
2. **Regex patterns** -- ``re.search`` against the POSIX relative path.
3. **Globs** -- ``fnmatch`` against the relative path and its final name.
"""

from __future__ import annotations

import fnmatch
import re
from typing import Iterable, Protocol

from pydantic import BaseModel, field_validator


class IgnorePredicate(Protocol):
    """Anything that can decide whether a relative path is excluded."""

    def is_ignored(self, path: str) -> bool:
        """Return ``True`` if *path* must be skipped."""
        ...  # pragma: no cover


class IgnoreRules(BaseModel):
    """Composable ignore rules.

    Attributes:
        paths: Literal relative paths (POSIX separators).
        patterns: Regular expressions searched in the relative path.
        globs: Shell-style globs matched against path or basename.
    """

    paths: frozenset[str] = frozenset()
    patterns: tuple[re.Pattern, ...] = ()
    globs: tuple[str, ...] = ()

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @field_validator("paths", mode="before")
    @classmethod
    def _normalise_paths(cls, value: Iterable[str]) -> frozenset[str]:
        return frozenset(
            p.replace("\\", "/").strip("/") for p in value if p.strip("/")
        )

    @field_validator("patterns", mode="before")
    @classmethod
    def _compile_patterns(cls, value: Iterable) -> tuple[re.Pattern, ...]:
        return tuple(
            p if isinstance(p, re.Pattern) else re.compile(p)
            for p in value
        )

    @classmethod
    def nothing(cls) -> IgnoreRules:
        """Rules that ignore nothing."""
        return cls()

    def is_ignored(self, path: str) -> bool:
        """Return ``True`` if *path* matches any rule."""
        if not path:
            return False

        for literal in self.paths:
            if path == literal or path.startswith(literal + "/"):
                return True

        for pattern in self.patterns:
            if pattern.search(path):
                return True

        if self.globs:
            name = path.rsplit("/", 1)[-1]
            for glob in self.globs:
                if fnmatch.fnmatchcase(path, glob) or fnmatch.fnmatchcase(
                    name, glob
                ):
                    return True

        return False
