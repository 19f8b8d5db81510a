"""Workspace scanner and change detection.

Walks a workspace honouring ignore rules, detects each file's language from
its extension and fingerprints its content. The same fingerprint function
identifies code chunks, so a file whose hash is unchanged since the last
pass can be skipped outright.
"""

from __future__ import annotations

import fnmatch
import hashlib
from dataclasses import dataclass
from pathlib import Path

from quarry.logging import get_logger

log = get_logger(__name__)

EXTENSION_MAP: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".hpp": "cpp",
    ".swift": "swift",
    ".php": "php",
    ".lua": "lua",
    ".sql": "sql",
    ".sh": "shell",
    ".bash": "shell",
    ".zsh": "shell",
    ".md": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".xml": "xml",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".svelte": "svelte",
    ".vue": "vue",
    ".r": "r",
    ".dart": "dart",
    ".ex": "elixir",
    ".exs": "elixir",
    ".zig": "zig",
}

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    ".svelte-kit",
    "__pycache__",
    ".venv",
    "venv",
    ".env",
    "*.lock",
    "*.log",
    ".DS_Store",
    "coverage",
    ".turbo",
)

IGNORE_FILES: tuple[str, ...] = (".gitignore", ".quarryignore")

MAX_FILE_SIZE = 1024 * 1024  # 1 MB


@dataclass
class ScannedFile:
    """An indexable file found by ``scan_workspace``.

    Attributes:
        path: Absolute path on disk.
        relative_path: POSIX path relative to the workspace root; this is the
            ``file_path`` stored on code chunks.
        language: Language detected from the extension.
        size: Size in bytes.
        hash: ``hash_file`` of the decoded content.
    """

    path: Path
    relative_path: str
    language: str
    size: int
    hash: str


def hash_file(content: str) -> str:
    """Stable content fingerprint: first 16 hex chars of SHA-256."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def detect_language(path: str | Path) -> str:
    """Language for *path*'s extension, or ``"unknown"``."""
    return EXTENSION_MAP.get(Path(path).suffix.lower(), "unknown")


def load_ignore_patterns(root: Path, user_patterns: list[str] | None = None) -> list[str]:
    """Defaults + *user_patterns* + the lines of ``.gitignore`` and ``.quarryignore``.

    Blank lines and ``#`` comments are dropped; negations (``!pattern``) are
    not supported and skipped. Order is preserved, duplicates removed.
    """
    patterns = [*DEFAULT_IGNORE_PATTERNS, *(user_patterns or [])]
    for name in IGNORE_FILES:
        ignore_file = root / name
        if not ignore_file.is_file():
            continue
        for line in ignore_file.read_text(encoding="utf-8", errors="replace").splitlines():
            line = line.strip()
            if not line or line.startswith(("#", "!")):
                continue
            patterns.append(line.strip("/"))
    return list(dict.fromkeys(p for p in patterns if p))


def is_ignored(relative_path: str, patterns: list[str]) -> bool:
    """True if any path segment, or the whole relative path, matches a pattern."""
    segments = relative_path.split("/")
    for pattern in patterns:
        if "/" in pattern:
            if fnmatch.fnmatch(relative_path, pattern) or relative_path.startswith(pattern + "/"):
                return True
        elif any(fnmatch.fnmatch(seg, pattern) for seg in segments):
            return True
    return False


def scan_workspace(
    root: Path | str,
    ignore_patterns: list[str] | None = None,
    max_file_size: int = MAX_FILE_SIZE,
) -> list[ScannedFile]:
    """Return every indexable file under *root*, sorted by relative path.

    Files are skipped when ignored, empty, larger than *max_file_size*, of
    unknown language, or not valid UTF-8.

    Args:
        root: Workspace directory.
        ignore_patterns: Full pattern list; defaults to ``load_ignore_patterns(root)``.
        max_file_size: Size cap in bytes.

    Raises:
        NotADirectoryError: If *root* is not a directory.
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Workspace is not a directory: {root}")
    patterns = ignore_patterns if ignore_patterns is not None else load_ignore_patterns(root)

    files: list[ScannedFile] = []
    _walk(root, root, patterns, max_file_size, files)
    files.sort(key=lambda f: f.relative_path)
    log.debug("workspace_scanned", root=str(root), files=len(files))
    return files


def _walk(
    root: Path,
    directory: Path,
    patterns: list[str],
    max_file_size: int,
    out: list[ScannedFile],
) -> None:
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        log.debug("directory_unreadable", path=str(directory))
        return
    for entry in entries:
        rel = entry.relative_to(root).as_posix()
        if entry.is_symlink() or is_ignored(rel, patterns):
            continue
        if entry.is_dir():
            _walk(root, entry, patterns, max_file_size, out)
            continue
        if not entry.is_file():
            continue
        language = detect_language(entry)
        if language == "unknown":
            continue
        size = entry.stat().st_size
        if size == 0 or size > max_file_size:
            continue
        try:
            content = entry.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            log.debug("file_unreadable", path=rel)
            continue
        out.append(
            ScannedFile(
                path=entry,
                relative_path=rel,
                language=language,
                size=size,
                hash=hash_file(content),
            )
        )
