"""
Runner events.

Every runner reports what it is doing through a single callback that
receives one of four event types:

    RunnerStart     a command is about to run
    RunnerProgress  a running command reported progress (ninja "[n/m]" lines)
    RunnerResult    a command finished, carrying its exit code and output
    RunnerError     a precondition failed; no command was run

The set is closed: consumers handle exactly these four types.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence, Union


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a finished subprocess."""

    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""
    pid: int = 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


def now() -> datetime:
    """Timezone-aware timestamp for a new event."""
    return datetime.now(timezone.utc)


def format_timestamp(time: datetime) -> str:
    """
    Format an event timestamp.

    Millisecond precision, with a trailing "Z" for UTC instants:
    2024-05-01T09:03:07.045Z

    Args:
        time: Timestamp to format

    Returns:
        Formatted timestamp
    """
    stamp = time.strftime("%Y-%m-%dT%H:%M:%S") + f".{time.microsecond // 1000:03d}"
    if time.utcoffset() is not None and time.utcoffset().total_seconds() == 0:
        stamp += "Z"
    return stamp


def _freeze_command(command: Sequence[str]) -> tuple:
    return tuple(str(arg) for arg in command)


@dataclass(frozen=True)
class RunnerStart:
    """A command is starting."""

    name: str
    command: Sequence[str]
    timestamp: datetime
    environment: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        object.__setattr__(self, "command", _freeze_command(self.command))

    def __str__(self) -> str:
        return f"[{format_timestamp(self.timestamp)}][{self.name}]: STARTING"


@dataclass(frozen=True)
class RunnerProgress:
    """
    Progress of a started command.

    Attributes:
        what: What the command is working on (a build edge, a test name)
        completed: Number of steps completed
        total: Total number of steps, always > 0
        done: True when this is the final progress event
    """

    name: str
    command: Sequence[str]
    timestamp: datetime
    what: str
    completed: int
    total: int
    done: bool
    environment: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        object.__setattr__(self, "command", _freeze_command(self.command))
        if self.total <= 0:
            raise ValueError(f"total must be positive, got {self.total}")
        if self.completed < 0 or self.completed > self.total:
            raise ValueError(
                f"completed must be in [0, {self.total}], got {self.completed}"
            )

    @property
    def percent(self) -> float:
        return (self.completed * 100) / self.total

    def __str__(self) -> str:
        return (
            f"[{format_timestamp(self.timestamp)}][{self.name}]: "
            f"{self.percent:.1f}% ({self.completed}/{self.total}) {self.what}"
        )


@dataclass(frozen=True)
class RunnerResult:
    """A command finished."""

    name: str
    command: Sequence[str]
    timestamp: datetime
    result: ProcessResult
    ok_message: str = "OK"
    environment: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        object.__setattr__(self, "command", _freeze_command(self.command))

    @property
    def ok(self) -> bool:
        return self.result.exit_code == 0

    def __str__(self) -> str:
        stamp = format_timestamp(self.timestamp)
        if self.ok:
            return f"[{stamp}][{self.name}]: {self.ok_message}"
        # Full output, this is what people read when a build breaks.
        lines = [
            f"[{stamp}][{self.name}]: FAILED",
            f"COMMAND:\n{' '.join(self.command)}",
            f"STDOUT:\n{self.result.stdout_text}",
            f"STDERR:\n{self.result.stderr_text}",
        ]
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class RunnerError:
    """A precondition failed before any command ran."""

    name: str
    command: Sequence[str]
    timestamp: datetime
    error: str
    environment: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        object.__setattr__(self, "command", _freeze_command(self.command))

    def __str__(self) -> str:
        return f"[{format_timestamp(self.timestamp)}][{self.name}]: ERROR: {self.error}"


RunnerEvent = Union[RunnerStart, RunnerProgress, RunnerResult, RunnerError]

RunnerEventHandler = Callable[[RunnerEvent], None]


def event_kind(event: RunnerEvent) -> str:
    """
    Short lowercase tag for an event, used in structured logs.

    Raises:
        TypeError: If event is not one of the four runner event types
    """
    if isinstance(event, RunnerStart):
        return "start"
    if isinstance(event, RunnerProgress):
        return "progress"
    if isinstance(event, RunnerResult):
        return "result"
    if isinstance(event, RunnerError):
        return "error"
    raise TypeError(f"Not a runner event: {event!r}")
