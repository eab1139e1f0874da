from __future__ import annotations

import html
import json
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import quote

from .paths import is_within

LOG = logging.getLogger(__name__)

MIME_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".txt": "text/plain",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".xml": "application/xml",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".rar": "application/zip",
    ".7z": "application/zip",
    ".mp4": "video/mp4",
    ".mp3": "audio/mpeg",
}
DEFAULT_MIME = "application/octet-stream"

_ICON_GROUPS = {
    "\U0001f5bc\ufe0f": (".jpg", ".jpeg", ".png", ".gif", ".svg", ".bmp", ".webp"),
    "\U0001f3ac": (".mp4", ".avi", ".mov", ".mkv"),
    "\U0001f3b5": (".mp3", ".wav", ".flac", ".aac"),
    "\U0001f4c4": (".pdf",),
    "\U0001f4e6": (".zip", ".rar", ".7z", ".tar", ".gz"),
    "\U0001f4dd": (".doc", ".docx"),
    "\U0001f4ca": (".xls", ".xlsx", ".csv"),
    "\U0001f4fd\ufe0f": (".ppt", ".pptx"),
    "\U0001f4c3": (".txt",),
    "\U0001f4bb": (".html", ".css", ".js", ".java", ".py"),
}
ICONS = {ext: icon for icon, exts in _ICON_GROUPS.items() for ext in exts}
DEFAULT_ICON = "\U0001f4c4"
FOLDER_ICON = "\U0001f4c1"
PARENT_ICON = "\u2b06\ufe0f"
HOME_ICON = "\U0001f3e0"
EMPTY_ICON = "\U0001f4ed"
LOCK_ICON = "\U0001f512"


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    is_dir: bool
    size: int
    modified: int  # epoch milliseconds

    @property
    def kind(self) -> str:
        return "directory" if self.is_dir else "file"


def _extension(name: str) -> str:
    return os.path.splitext(name)[1].lower()


def mime_type_for(name: str) -> str:
    ext = _extension(name)
    if ext in MIME_TYPES:
        return MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DEFAULT_MIME


def icon_for(name: str) -> str:
    return ICONS.get(_extension(name), DEFAULT_ICON)


def format_size(size: int) -> str:
    """Binary units with one decimal place; plain bytes below 1024."""
    if size < 1024:
        return f"{size} B"
    if size < 1024**2:
        return f"{size / 1024:.1f} KB"
    if size < 1024**3:
        return f"{size / 1024**2:.1f} MB"
    return f"{size / 1024**3:.1f} GB"


def sort_entries(entries: Iterable[DirectoryEntry]) -> List[DirectoryEntry]:
    """Directories first, then files; case-insensitive by name inside each group."""
    return sorted(entries, key=lambda e: (not e.is_dir, e.name.casefold(), e.name))


def scan_directory(directory: str | Path, root: Optional[Path] = None) -> List[DirectoryEntry]:
    """
    Stat the children of ``directory`` now. Entries that vanish mid-scan are skipped.

    With ``root`` given, symlinks whose target lies outside it are left out.
    """
    entries = []
    with os.scandir(directory) as it:
        for item in it:
            try:
                if root is not None and item.is_symlink() and not is_within(root, Path(item.path).resolve()):
                    LOG.debug("Hiding symlink %s pointing outside the served root", item.name)
                    continue
                st = item.stat()
                is_dir = item.is_dir()
            except (OSError, RuntimeError):
                continue
            entries.append(
                DirectoryEntry(
                    name=item.name,
                    is_dir=is_dir,
                    size=0 if is_dir else st.st_size,
                    modified=int(st.st_mtime * 1000),
                )
            )
    return sort_entries(entries)


def _href(relative: str) -> str:
    return html.escape("/" + quote(relative), quote=True)


def _join(relative: str, name: str) -> str:
    return f"{relative}/{name}" if relative else name


def breadcrumbs(relative: str) -> List[tuple[str, str]]:
    """(label, cumulative path) for each non-empty segment of ``relative``."""
    crumbs = []
    current = ""
    for part in relative.replace("\\", "/").split("/"):
        if not part:
            continue
        current = _join(current, part)
        crumbs.append((part, current))
    return crumbs


def parent_of(relative: str) -> str:
    relative = relative.strip("/")
    return relative.rsplit("/", 1)[0] if "/" in relative else ""


_CSS = """
* { margin: 0; padding: 0; box-sizing: border-box; }
body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
    min-height: 100vh; padding: 20px;
}
.container {
    max-width: 900px; margin: 0 auto; background: white;
    border-radius: 16px; box-shadow: 0 20px 60px rgba(0,0,0,0.15); overflow: hidden;
}
.header {
    background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
    color: white; padding: 40px 30px; text-align: center; position: relative;
}
.header h1 { font-size: 32px; margin-bottom: 8px; font-weight: 600; }
.subtitle { opacity: 0.95; font-size: 15px; }
.security-badge {
    position: absolute; top: 15px; right: 20px; background: rgba(255,255,255,0.2);
    padding: 6px 12px; border-radius: 20px; font-size: 12px; font-weight: 600;
}
.breadcrumb { padding: 16px 25px; background: #f8f9fa; border-bottom: 1px solid #e9ecef; font-size: 14px; }
.breadcrumb a { color: #667eea; text-decoration: none; font-weight: 500; }
.file-list { list-style: none; }
.file-item { border-bottom: 1px solid #e9ecef; }
.file-item:hover { background: #f8f9fa; }
.file-item a { display: flex; align-items: center; padding: 18px 25px; text-decoration: none; color: #2d3748; }
.icon { font-size: 28px; margin-right: 16px; min-width: 32px; }
.name { flex: 1; font-weight: 500; font-size: 15px; word-break: break-all; }
.size { color: #718096; font-size: 13px; margin-left: 12px; min-width: 70px; text-align: right; }
.empty { text-align: center; padding: 80px 20px; color: #a0aec0; font-size: 18px; }
@media (max-width: 600px) {
    .container { border-radius: 0; }
    .header h1 { font-size: 24px; }
    .size { display: none; }
    .security-badge { position: static; display: block; margin-top: 10px; }
}
"""


def render_html(entries: List[DirectoryEntry], relative: str, title: str, secure: bool = False) -> str:
    """HTML listing page. Every name and path segment is entity-escaped."""
    relative = relative.strip("/")
    esc = html.escape
    badge = f"{LOCK_ICON} HTTPS" if secure else "HTTP"
    out = [
        "<!DOCTYPE html><html lang=\"en\"><head>",
        "<meta charset=\"UTF-8\">",
        "<meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\">",
        f"<title>{esc(title)} - File Share</title>",
        f"<style>{_CSS}</style></head><body>",
        "<div class=\"container\"><div class=\"header\">",
        f"<h1>{FOLDER_ICON} {esc(title)}</h1>",
        "<p class=\"subtitle\">Shared Folder</p>",
        f"<span class=\"security-badge\">{badge}</span>",
        "</div>",
    ]
    if relative:
        out.append(f"<div class=\"breadcrumb\"><a href=\"/\">{HOME_ICON} Home</a>")
        for label, path in breadcrumbs(relative):
            out.append(f" / <a href=\"{_href(path)}\">{esc(label)}</a>")
        out.append("</div>")

    if not entries:
        out.append(f"<div class=\"empty\">{EMPTY_ICON} This folder is empty</div>")
    has_list = bool(entries or relative)
    if has_list:
        out.append("<ul class=\"file-list\">")
    if relative:
        out.append(
            f"<li class=\"file-item\"><a href=\"{_href(parent_of(relative))}\">"
            f"<span class=\"icon\">{PARENT_ICON}</span><span class=\"name\">..</span></a></li>"
        )
    for entry in sort_entries(entries):
        path = _join(relative, entry.name)
        if entry.is_dir:
            out.append(
                f"<li class=\"file-item\"><a href=\"{_href(path)}\">"
                f"<span class=\"icon\">{FOLDER_ICON}</span>"
                f"<span class=\"name\">{esc(entry.name)}</span></a></li>"
            )
        else:
            out.append(
                f"<li class=\"file-item\"><a href=\"{_href(path)}\" download>"
                f"<span class=\"icon\">{icon_for(entry.name)}</span>"
                f"<span class=\"name\">{esc(entry.name)}</span>"
                f"<span class=\"size\">{format_size(entry.size)}</span></a></li>"
            )
    if has_list:
        out.append("</ul>")
    out.append("</div></body></html>")
    return "".join(out)


def render_json(entries: List[DirectoryEntry], relative: str, name: Optional[str] = None) -> str:
    """JSON listing: ``{path, name, empty, files: [{name, type, size, modified}]}``."""
    relative = relative.strip("/")
    doc = {
        "path": relative,
        "name": name if name is not None else (relative.rsplit("/", 1)[-1] if relative else ""),
        "empty": not entries,
        "files": [
            {"name": e.name, "type": e.kind, "size": e.size, "modified": e.modified}
            for e in sort_entries(entries)
        ],
    }
    return json.dumps(doc, ensure_ascii=False)
