"""
Pipeline driver for engine_build.

Runs one build of a build config through a BuildRunner, logs every event
and summarizes the run in a PipelineResult. This is the layer the CLI
talks to; the runners themselves only know about event handlers.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from engine_build.config import BuildConfig, RunnerSettings
from engine_build.errors import ConfigError
from engine_build.events import (
    RunnerError,
    RunnerEvent,
    RunnerEventHandler,
    RunnerResult,
    RunnerStart,
)
from engine_build.host import Abi, HostPlatform
from engine_build.process import ProcessRunner
from engine_build.rbe import SHUTDOWN_STEP
from engine_build.runners.build import BuildRunner, PipelineState
from engine_build.utils import log_event

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Result of running one build."""

    build_name: str
    success: bool
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    state: PipelineState = PipelineState.NOT_STARTED
    steps: List[Dict[str, Any]] = field(default_factory=list)
    failed_step: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "build_name": self.build_name,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "state": self.state.value,
            "steps": self.steps,
            "failed_step": self.failed_step,
            "error_message": self.error_message,
        }


class _StepRecorder:
    """Collects a per-step summary from the event stream."""

    def __init__(self):
        self.steps: List[Dict[str, Any]] = []
        self.failed_step: Optional[str] = None
        self.error_message: Optional[str] = None
        self._started: Dict[str, float] = {}

    def __call__(self, event: RunnerEvent) -> None:
        if isinstance(event, RunnerStart):
            self._started[event.name] = time.monotonic()
        elif isinstance(event, RunnerResult):
            started = self._started.pop(event.name, time.monotonic())
            self.steps.append({
                "name": event.name,
                "ok": event.ok,
                "exit_code": event.result.exit_code,
                "duration_seconds": time.monotonic() - started,
            })
            # A failed reproxy shutdown does not fail the build.
            if not event.ok and self.failed_step is None and not event.name.endswith(SHUTDOWN_STEP):
                self.failed_step = event.name
        elif isinstance(event, RunnerError):
            if self.failed_step is None:
                self.failed_step = event.name
                self.error_message = event.error


class Pipeline:
    """
    Runs builds from a build config.

    Coordinates runner construction, event logging and result reporting.
    """

    def __init__(
        self,
        build_config: BuildConfig,
        settings: Optional[RunnerSettings] = None,
        engine_src_dir: Optional[Path] = None,
        platform: Optional[HostPlatform] = None,
        process_runner: Optional[ProcessRunner] = None,
        abi: Optional[Abi] = None,
    ):
        """
        Initialize pipeline.

        Args:
            build_config: Loaded build config
            settings: User settings (default: RunnerSettings())
            engine_src_dir: Engine src/ directory (default: from settings)
            platform: Host platform (default: HostPlatform.local())
            process_runner: Subprocess runner (default: ProcessRunner())
            abi: Host ABI (default: detected)

        Raises:
            ConfigError: If no engine src directory is known
        """
        self.build_config = build_config
        self.settings = settings or RunnerSettings()
        self.engine_src_dir = engine_src_dir or self.settings.get_engine_src_dir()
        if self.engine_src_dir is None:
            raise ConfigError(
                "Engine src directory not set; pass --src or set engine_src_dir in settings"
            )
        self.engine_src_dir = Path(self.engine_src_dir)
        self.platform = platform or HostPlatform.local()
        self.process_runner = process_runner or ProcessRunner()
        self.abi = abi

    def create_runner(self, build_name: str, **options) -> BuildRunner:
        """
        Create the BuildRunner for a named build.

        Args:
            build_name: Name of a build in the build config
            **options: BuildRunner keyword options (dry_run, run_gn, ...)

        Raises:
            ConfigError: If the build does not exist or is invalid
        """
        build = self.build_config.get_build(build_name)
        if build is None:
            raise ConfigError(
                f"Unknown build: {build_name} (in {self.build_config.config_path})"
            )
        build.validate()

        options.setdefault("rbe_config", self.settings.get_rbe_config())
        options.setdefault("concurrency", self.settings.concurrency)
        return BuildRunner(
            engine_src_dir=self.engine_src_dir,
            build=build,
            platform=self.platform,
            process_runner=self.process_runner,
            abi=self.abi,
            **options,
        )

    def run(
        self,
        build_name: str,
        event_handler: Optional[RunnerEventHandler] = None,
        **options,
    ) -> PipelineResult:
        """
        Run one build.

        Args:
            build_name: Name of a build in the build config
            event_handler: Also receives every event (e.g. console output)
            **options: BuildRunner keyword options

        Returns:
            PipelineResult with execution details

        Raises:
            ConfigError: If the build does not exist or is invalid
        """
        runner = self.create_runner(build_name, **options)
        recorder = _StepRecorder()

        def handle(event: RunnerEvent) -> None:
            log_event(logger, event)
            recorder(event)
            if event_handler is not None:
                event_handler(event)

        logger.info(
            f"Starting build: {build_name}",
            extra={
                "event": "build_started",
                "stage": build_name,
                "metadata": {"dry_run": runner.dry_run, "rbe": runner.is_rbe},
            },
        )

        started_at = datetime.now(timezone.utc)
        start_time = time.time()
        success = asyncio.run(runner.run(handle))
        duration = time.time() - start_time

        result = PipelineResult(
            build_name=build_name,
            success=success,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            duration_seconds=duration,
            state=runner.state,
            steps=recorder.steps,
            failed_step=recorder.failed_step,
            error_message=recorder.error_message,
        )

        if success:
            logger.info(
                f"Build {build_name} completed successfully",
                extra={"event": "build_completed", "stage": build_name,
                       "metadata": {"duration_seconds": duration}},
            )
        else:
            logger.warning(
                f"Build {build_name} failed at {result.failed_step}",
                extra={"event": "build_failed", "stage": build_name,
                       "metadata": {"failed_step": result.failed_step}},
            )
        return result
