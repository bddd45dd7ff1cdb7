"""Filesystem helpers for locating and vetting repair targets."""

import fnmatch
import re
from pathlib import Path

SKIP_DIRS = {"node_modules", "dist", "build", "__pycache__", "venv"}
MAX_SEARCH_DEPTH = 4


def find_files_containing(
    root: Path,
    pattern: re.Pattern[str],
    extensions: tuple[str, ...],
    max_depth: int = MAX_SEARCH_DEPTH,
) -> list[Path]:
    """
    Find source files under root whose contents match pattern.

    Hidden directories, dependency and build directories are skipped.
    Results are sorted for deterministic pattern behaviour.
    """
    matches: list[Path] = []

    def walk(directory: Path, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            return
        for entry in entries:
            if entry.is_dir():
                if entry.name.startswith(".") or entry.name in SKIP_DIRS:
                    continue
                walk(entry, depth + 1)
            elif entry.is_file() and entry.name.endswith(extensions):
                try:
                    content = entry.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    continue
                if pattern.search(content):
                    matches.append(entry)

    walk(root, 0)
    return matches


def resolve_file(file_path: str, project_root: Path) -> Path | None:
    """
    Map a path reported by an agent to a file on this host.

    Tries the path as given, relative to the project root, then with a
    container /app/ prefix stripped.
    """
    candidates = [Path(file_path), project_root / file_path.lstrip("/")]
    if file_path.startswith("/app/"):
        candidates.append(project_root / file_path[len("/app/"):])
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _glob_match(rel_path: str, pattern: str) -> bool:
    if fnmatch.fnmatchcase(rel_path, pattern):
        return True
    # '**/' also matches zero directories
    return pattern.startswith("**/") and fnmatch.fnmatchcase(rel_path, pattern[3:])


def needs_approval(
    file_path: str,
    project_root: Path,
    deny_globs: list[str],
    allow_globs: list[str],
) -> bool:
    """
    Decide whether a patch to file_path must wait for an operator.

    A deny glob always wins over an allow glob; a path matching neither
    requires approval.
    """
    path = Path(file_path)
    try:
        rel = path.resolve().relative_to(project_root.resolve()).as_posix()
    except ValueError:
        rel = path.as_posix().lstrip("/")

    if any(_glob_match(rel, glob) for glob in deny_globs):
        return True
    if any(_glob_match(rel, glob) for glob in allow_globs):
        return False
    return True
