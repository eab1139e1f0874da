from __future__ import annotations

import enum
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .errors import AccessDenied, InvalidRoot

LOG = logging.getLogger(__name__)


class PathKind(enum.Enum):
    FILE = "file"
    DIRECTORY = "directory"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ResolvedPath:
    path: Path
    relative: str
    kind: PathKind

    @property
    def is_root(self) -> bool:
        return self.relative == ""


def _segments(path: Path) -> Tuple[str, ...]:
    return tuple(os.path.normcase(part) for part in path.parts)


def is_within(root: Path, candidate: Path) -> bool:
    """True if canonical ``candidate`` equals ``root`` or is a descendant, compared segment by segment."""
    root_parts = _segments(root)
    cand_parts = _segments(candidate)
    return cand_parts[: len(root_parts)] == root_parts


class PathResolver:
    """Maps request paths onto the served root and refuses anything that escapes it."""

    def __init__(self, root_dir: str | Path, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or LOG
        try:
            root = Path(root_dir).resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            raise InvalidRoot(root_dir, "does not exist") from exc
        if not root.is_dir():
            raise InvalidRoot(root_dir)
        self.root = root

    def resolve(self, raw_path: str) -> ResolvedPath:
        """
        Resolve a percent-decoded request path.

        Leading separators are stripped so ``/etc/passwd`` is looked up under
        the root. ``..`` segments, absolute overrides and symlinks are resolved
        first; anything whose canonical form leaves the root raises
        AccessDenied.
        """
        if "\x00" in raw_path:
            self.logger.warning("Rejected path with NUL byte: %r", raw_path)
            raise AccessDenied("Access denied")
        stripped = raw_path.lstrip("/\\")
        try:
            candidate = (self.root / stripped).resolve()
        except (OSError, RuntimeError, ValueError) as exc:
            self.logger.warning("Rejected unresolvable path %r: %s", raw_path, exc)
            raise AccessDenied("Access denied") from exc
        if not is_within(self.root, candidate):
            self.logger.warning("Directory traversal attempt: %r -> %s", raw_path, candidate)
            raise AccessDenied("Access denied")
        relative = candidate.relative_to(self.root).as_posix() if candidate != self.root else ""
        if relative == ".":
            relative = ""
        return ResolvedPath(candidate, relative, self._classify(candidate, raw_path))

    def _classify(self, candidate: Path, raw_path: str) -> PathKind:
        try:
            st = candidate.stat()
        except PermissionError as exc:
            self.logger.warning("Permission denied for %r", raw_path)
            raise AccessDenied("Access denied") from exc
        except OSError:
            # missing, name too long, broken link
            return PathKind.NOT_FOUND
        if stat.S_ISDIR(st.st_mode):
            return PathKind.DIRECTORY
        if stat.S_ISREG(st.st_mode):
            return PathKind.FILE
        return PathKind.NOT_FOUND
