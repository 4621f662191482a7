"""Post-GN cleanup of compile_commands.json."""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# Everything between `"command": "` and the compiler driver is noise
# (goma/reclient wrappers) that confuses clangd.
COMPILER_PREFIX_RE = re.compile(r'("command"\s*:\s*").*(\s\S*clang\+\+)')


def fix_compile_commands(commands_file: Path) -> int:
    """
    Strip launcher prefixes from the compiler commands in commands_file.

    A missing file is not an error. The file is only rewritten if at least
    one command changed.

    Args:
        commands_file: Path to compile_commands.json

    Returns:
        Number of commands rewritten
    """
    commands_file = Path(commands_file)
    if not commands_file.exists():
        return 0

    contents = commands_file.read_text()
    contents, matches = COMPILER_PREFIX_RE.subn(
        lambda match: match.group(1) + match.group(2).strip(),
        contents,
    )
    if matches > 0:
        commands_file.write_text(contents)
        logger.debug(f"Rewrote {matches} commands in {commands_file}")
    return matches
