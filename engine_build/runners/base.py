"""
Shared pieces of the runners.

Every runner is single-shot: construct it for one build, generator task
or test, then await run(event_handler) exactly once.
"""

from typing import List, Protocol

from engine_build.events import RunnerEventHandler
from engine_build.host import HostPlatform

# Scripts in this language run with the interpreter that runs us.
SELF_LANGUAGE = "dart"


class Runner(Protocol):
    """Anything that runs part of a build config and reports events."""

    async def run(self, event_handler: RunnerEventHandler) -> bool:
        ...


def resolve_interpreter(language: str, platform: HostPlatform) -> str:
    """
    Interpreter for a task or test script.

    Args:
        language: Language declared in the build config
        platform: Host platform

    Returns:
        "python3" for any python* language, the host's own executable for
        "dart", otherwise the language verbatim ("" runs the script directly)
    """
    # Force python to be python3.
    if language.startswith("python"):
        return "python3"
    if language == SELF_LANGUAGE:
        return platform.executable
    return language


def script_command(interpreter: str, script: str, *arg_lists: List[str]) -> List[str]:
    """Command line for a script, with the interpreter prefix if there is one."""
    command = [interpreter] if interpreter else []
    command.append(script)
    for args in arg_lists:
        command.extend(args)
    return command
