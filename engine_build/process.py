"""
Subprocess execution for the runners.

A thin asyncio layer over asyncio.create_subprocess_exec. Runners never
spawn processes themselves; they go through a ProcessRunner so tests can
substitute a fake one.
"""

import asyncio
import codecs
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from engine_build.events import ProcessResult

logger = logging.getLogger(__name__)

# Buffer limit of the child stdout/stderr stream readers.
STREAM_LIMIT = 16 * 1024 * 1024

# Substituted for every subprocess in dry-run mode.
DRY_RUN_RESULT = ProcessResult(exit_code=0, stdout=b"", stderr=b"", pid=0)


def _merged_environment(environment: Optional[Mapping[str, str]]) -> Optional[dict]:
    if not environment:
        return None
    return {**os.environ, **environment}


async def _drain(stream: asyncio.StreamReader, chunks: List[bytes], echo=None) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            if echo is not None:
                echo.write(decoder.decode(b"", final=True))
                echo.flush()
            return
        chunks.append(chunk)
        if echo is not None:
            echo.write(decoder.decode(chunk))
            echo.flush()


class ProcessRunner:
    """
    Runs commands as child processes.

    Environments passed to run_process() and start() extend the
    environment of the current process rather than replacing it.
    """

    def can_run(self, executable: str) -> bool:
        """
        Check whether a command can be launched.

        Args:
            executable: Absolute/relative path or a bare name looked up on PATH

        Returns:
            True if the file exists and is executable, or is found on PATH
        """
        path = Path(executable)
        if path.is_file() and os.access(path, os.X_OK):
            return True
        return shutil.which(str(executable)) is not None

    async def run_process(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        environment: Optional[Mapping[str, str]] = None,
        print_output: bool = False,
    ) -> ProcessResult:
        """
        Run a command to completion and capture its output.

        A non-zero exit code is returned in the result, not raised.

        Args:
            command: Program and arguments
            cwd: Working directory (default: current directory)
            environment: Extra environment variables
            print_output: Also copy output to our own stdout/stderr as it arrives

        Returns:
            ProcessResult with exit code and captured stdout/stderr

        Raises:
            OSError: If the program cannot be launched at all
        """
        logger.debug(f"Running: {' '.join(str(arg) for arg in command)}")
        process = await self.start(command, cwd=cwd, environment=environment)

        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        await asyncio.gather(
            _drain(process.stdout, stdout_chunks, sys.stdout if print_output else None),
            _drain(process.stderr, stderr_chunks, sys.stderr if print_output else None),
        )
        exit_code = await process.wait()

        return ProcessResult(
            exit_code=exit_code,
            stdout=b"".join(stdout_chunks),
            stderr=b"".join(stderr_chunks),
            pid=process.pid,
        )

    async def start(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        environment: Optional[Mapping[str, str]] = None,
    ) -> asyncio.subprocess.Process:
        """
        Start a command with piped stdout and stderr.

        The caller must drain both pipes and wait for the process.
        """
        return await asyncio.create_subprocess_exec(
            *[str(arg) for arg in command],
            cwd=str(cwd) if cwd is not None else None,
            env=_merged_environment(environment),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
