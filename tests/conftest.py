import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import pytest

from engine_build.config import Build
from engine_build.events import ProcessResult
from engine_build.host import HostPlatform
from engine_build.process import ProcessRunner


@dataclass
class Call:
    """One command a FakeProcessRunner was asked to run."""

    kind: str
    command: List[str]
    cwd: Optional[Path] = None
    environment: Optional[dict] = None
    print_output: bool = False


class FakeProcess:
    """Stands in for asyncio.subprocess.Process with canned output."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", exit_code: int = 0, pid: int = 4242):
        self.stdout = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self.pid = pid
        self.returncode = None
        self._exit_code = exit_code

    async def wait(self) -> int:
        self.returncode = self._exit_code
        return self._exit_code

    def kill(self) -> None:
        self._exit_code = -9


class FakeProcessRunner(ProcessRunner):
    """
    Records commands instead of running them.

    results maps the file name of any command argument ("gn", "ninja",
    "bootstrap", "gen.py", ...) to a ProcessResult, or to a list of results
    handed out in order. An exception in place of a result is raised as if
    the program could not be launched. Unmatched commands succeed with no
    output.
    """

    def __init__(self, results: Optional[dict] = None, missing=(), start_error: Optional[Exception] = None):
        self.results = dict(results or {})
        self.missing = set(missing)
        self.start_error = start_error
        self.calls: List[Call] = []

    def can_run(self, executable: str) -> bool:
        return Path(executable).name not in self.missing

    def _result(self, command) -> ProcessResult:
        for arg in command:
            name = Path(str(arg)).name
            if name in self.results:
                result = self.results[name]
                if isinstance(result, list):
                    result = result.pop(0)
                if isinstance(result, Exception):
                    raise result
                return result
        return ProcessResult(exit_code=0, stdout=b"", stderr=b"", pid=1)

    async def run_process(self, command, cwd=None, environment=None, print_output=False) -> ProcessResult:
        self.calls.append(Call("run", [str(a) for a in command], cwd, environment, print_output))
        return self._result(command)

    async def start(self, command, cwd=None, environment=None) -> Any:
        self.calls.append(Call("start", [str(a) for a in command], cwd, environment))
        if self.start_error is not None:
            raise self.start_error
        result = self._result(command)
        return FakeProcess(result.stdout, result.stderr, result.exit_code)

    def commands(self) -> List[str]:
        """File names of the programs that were run, in order."""
        return [Path(call.command[0]).name for call in self.calls]


class EventRecorder(list):
    """Event handler that keeps every event."""

    def __call__(self, event) -> None:
        self.append(event)

    def names(self) -> List[str]:
        return [event.name for event in self]

    def kinds(self) -> List[tuple]:
        return [(type(event).__name__, event.name) for event in self]


@pytest.fixture
def linux_platform():
    return HostPlatform(
        operating_system="linux",
        executable="/opt/dart-sdk/bin/dart",
        number_of_processors=16,
        environment={},
        stdout_supports_ansi=False,
    )


@pytest.fixture
def engine_src(tmp_path):
    src = tmp_path.resolve() / "src"
    src.mkdir()
    return src


@pytest.fixture
def build_data():
    return {
        "name": "ci/host_debug",
        "drone_dimensions": ["device_type=none", "os=Linux"],
        "gn": ["--runtime-mode", "debug", "--prebuilt-dart-sdk"],
        "ninja": {
            "config": "host_debug",
            "targets": ["flutter/shell/platform/embedder", "flutter:unittests"],
        },
        "generators": {
            "tasks": [
                {
                    "name": "generate_docs",
                    "language": "python3",
                    "scripts": ["flutter/tools/gen_docs.py", "flutter/tools/pack_docs.py"],
                    "parameters": ["--out", "out/docs"],
                },
            ],
        },
        "tests": [
            {
                "name": "host_debug_tests",
                "language": "python3",
                "script": "flutter/testing/run_tests.py",
                "parameters": ["--variant", "host_debug", "--type", "engine"],
            },
            {
                "name": "dart_tool_tests",
                "language": "dart",
                "script": "flutter/tools/test.dart",
                "parameters": [],
            },
        ],
    }


@pytest.fixture
def build(build_data):
    return Build(build_data)


@pytest.fixture
def rbe_build(build_data):
    build_data["gn"] = build_data["gn"] + ["--rbe"]
    return Build(build_data)


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def fake_runner():
    """FakeProcessRunner factory: fake_runner(results, missing=..., start_error=...)."""
    return FakeProcessRunner
