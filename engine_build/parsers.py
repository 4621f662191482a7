"""
Parsers for ninja and compiler output.

Pure functions over single lines of text:
- parse_ninja_progress: recognize "[6232/6269] LINK ./foo" progress lines
- strip_ansi: remove terminal color codes
- fix_gcc_paths: make diagnostic paths relative to the current directory
"""

import os
import re
from typing import NamedTuple, Optional

GCC_DIAGNOSTIC_RE = re.compile(r"^(.+)(:\d+:\d+:\s+(?:error|note|warning):\s+.*)$")
ANSI_RE = re.compile(r"\x1b\[[\d;]*m")


class NinjaProgress(NamedTuple):
    """A recognized ninja progress line."""

    completed: int
    total: int
    what: str

    @property
    def done(self) -> bool:
        return self.completed == self.total


def _parse_count(text: str) -> Optional[int]:
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def parse_ninja_progress(line: str) -> Optional[NinjaProgress]:
    """
    Parse a ninja progress line such as '[6232/6269] LINK ./accessibility_unittests'.

    Any line whose first space-separated token looks like "[n/m]" is taken
    as progress, whatever printed it.

    Args:
        line: One line of ninja stdout, without the trailing newline

    Returns:
        NinjaProgress, or None if the line is ordinary output
    """
    marker = line.split(" ")[0]
    if len(marker) < 3 or marker[0] != "[" or marker[-1] != "]":
        return None

    parts = marker[1:-1].split("/")
    if len(parts) != 2:
        return None

    completed = _parse_count(parts[0])
    total = _parse_count(parts[1])
    if completed is None or total is None:
        return None
    if total == 0 or completed > total:
        return None

    return NinjaProgress(
        completed=completed,
        total=total,
        what=line.replace(marker, "", 1).strip(),
    )


def strip_ansi(text: str) -> str:
    """Remove ANSI color escape sequences."""
    return ANSI_RE.sub("", text)


def make_relative(path: str, dir_path: str, cwd: Optional[str] = None) -> str:
    """
    Re-express path, relative to dir_path, as a "./" path relative to cwd.

    Args:
        path: Path relative to dir_path (or absolute)
        dir_path: Directory path is relative to
        cwd: Directory to be relative to (default: os.getcwd())

    Returns:
        "./"-prefixed relative path
    """
    absolute = os.path.normpath(os.path.join(dir_path, path))
    return "./" + os.path.relpath(absolute, cwd or os.getcwd())


def fix_gcc_paths(line: str, out_dir: str, cwd: Optional[str] = None) -> str:
    """
    Rewrite the path of a compiler diagnostic to be relative to cwd.

    ninja runs compilers from the build output directory, so diagnostics
    carry paths relative to it. Color codes are ignored when matching but
    kept in the returned line.

    Args:
        line: One line of build output, possibly colored
        out_dir: Build output directory the diagnostic paths are relative to
        cwd: Directory to be relative to (default: os.getcwd())

    Returns:
        The line with its path rewritten, or the line unchanged if it is
        not a diagnostic
    """
    match = GCC_DIAGNOSTIC_RE.match(strip_ansi(line))
    if match is None:
        return line
    path = match.group(1)
    return line.replace(path, make_relative(path, str(out_dir), cwd), 1)
