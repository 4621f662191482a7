"""
Runner for a whole build.

Runs gn, then ninja (inside an RBE session when the build uses RBE), then
the generator tasks, then the tests. The first failing stage ends the run.
"""

import asyncio
import logging
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import List, Optional

from engine_build.compile_commands import fix_compile_commands
from engine_build.config import Build
from engine_build.events import (
    ProcessResult,
    RunnerError,
    RunnerEventHandler,
    RunnerProgress,
    RunnerResult,
    RunnerStart,
    now,
)
from engine_build.gn_args import merge_gn_args
from engine_build.host import (
    Abi,
    HostPlatform,
    buildtools_path,
    compute_rbe_concurrency,
    host_cpu,
)
from engine_build.parsers import fix_gcc_paths, parse_ninja_progress
from engine_build.process import DRY_RUN_RESULT, ProcessRunner
from engine_build.rbe import SHUTDOWN_STEP, RbeConfig, RbeSession
from engine_build.runners.task import BuildTaskRunner
from engine_build.runners.tests import BuildTestRunner

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Where a BuildRunner is in its run."""

    NOT_STARTED = "not_started"
    CONFIG_GEN = "config_gen"
    BUILD_EXEC = "build_exec"
    GENERATORS = "generators"
    TESTS = "tests"
    DONE = "done"
    FAILED = "failed"


class BuildRunner:
    """
    Runs the gn and ninja commands of a build, then its generator tasks,
    and finally its tests.

    Each stage can be switched off with the run_* flags; a skipped stage
    emits nothing and counts as a success.
    """

    def __init__(
        self,
        engine_src_dir: Path,
        build: Build,
        platform: Optional[HostPlatform] = None,
        process_runner: Optional[ProcessRunner] = None,
        abi: Optional[Abi] = None,
        rbe_config: Optional[RbeConfig] = None,
        concurrency: int = 0,
        extra_gn_args: Optional[List[str]] = None,
        extra_ninja_args: Optional[List[str]] = None,
        extra_test_args: Optional[List[str]] = None,
        run_gn: bool = True,
        run_ninja: bool = True,
        run_generators: bool = True,
        run_tests: bool = True,
        dry_run: bool = False,
    ):
        """
        Initialize build runner.

        Args:
            engine_src_dir: The src/ directory of the engine checkout
            build: Build to run
            platform: Host platform (default: HostPlatform.local())
            process_runner: Spawns subprocesses (default: ProcessRunner())
            abi: Host ABI (default: Abi.current(), resolved lazily)
            rbe_config: RBE options
            concurrency: ninja -j value; 0 lets ninja pick, or with RBE
                derives one from the processor count
            extra_gn_args: Flags overriding the build's gn args
            extra_ninja_args: Appended to the ninja command before the targets
            extra_test_args: Appended to every test command
            run_gn: Run the gn stage
            run_ninja: Run the ninja stage
            run_generators: Run the generator tasks
            run_tests: Run the tests
            dry_run: Emit all events but spawn no subprocesses
        """
        self.engine_src_dir = Path(engine_src_dir)
        self.build = build
        self.platform = platform or HostPlatform.local()
        self.process_runner = process_runner or ProcessRunner()
        self._abi = abi
        self.rbe_config = rbe_config or RbeConfig()
        self.concurrency = concurrency
        self.extra_gn_args = list(extra_gn_args or [])
        self.extra_ninja_args = list(extra_ninja_args or [])
        self.extra_test_args = list(extra_test_args or [])
        self.run_gn = run_gn
        self.run_ninja = run_ninja
        self.run_generators = run_generators
        self.run_tests = run_tests
        self.dry_run = dry_run
        self.state = PipelineState.NOT_STARTED

    async def run(self, event_handler: RunnerEventHandler) -> bool:
        """
        Run the enabled stages in order.

        Args:
            event_handler: Receives every event, in order

        Returns:
            True if every stage that ran succeeded
        """
        if not self.build.can_run_on(self.platform):
            dimensions = ",".join(self.build.drone_dimensions)
            event_handler(RunnerError(
                self.build.name,
                [],
                now(),
                f'Build with drone_dimensions "{{{dimensions}}}" '
                f"cannot run on platform {self.platform.operating_system}",
            ))
            return self._fail()

        if self.run_gn:
            self.state = PipelineState.CONFIG_GEN
            if not await self._run_gn(event_handler):
                return self._fail()
            self._post_gn()

        if self.run_ninja:
            self.state = PipelineState.BUILD_EXEC
            if not await self._run_ninja(event_handler):
                return self._fail()

        if self.run_generators:
            self.state = PipelineState.GENERATORS
            if not await self._run_generators(event_handler):
                return self._fail()

        if self.run_tests:
            self.state = PipelineState.TESTS
            if not await self._run_tests(event_handler):
                return self._fail()

        self.state = PipelineState.DONE
        return True

    def _fail(self) -> bool:
        logger.error(
            f"Build {self.build.name} failed during {self.state.value}",
            extra={"stage": self.build.name, "event": "build_failed"},
        )
        self.state = PipelineState.FAILED
        return False

    @cached_property
    def merged_gn_args(self) -> List[str]:
        """Build gn args with the extra gn args applied on top."""
        return merge_gn_args(self.build.gn, self.extra_gn_args)

    @cached_property
    def is_rbe(self) -> bool:
        return "--rbe" in self.merged_gn_args

    @cached_property
    def abi(self) -> Abi:
        return self._abi if self._abi is not None else Abi.current()

    @cached_property
    def host_cpu(self) -> str:
        return host_cpu(self.abi)

    @cached_property
    def buildtools_path(self) -> Path:
        return buildtools_path(
            self.engine_src_dir, self.platform.operating_system, self.host_cpu
        )

    @cached_property
    def computed_rbe_concurrency(self) -> int:
        return compute_rbe_concurrency(self.platform.number_of_processors, self.host_cpu)

    @property
    def out_dir(self) -> Path:
        return self.engine_src_dir / "out" / self.build.ninja.config

    @property
    def gn_path(self) -> Path:
        return self.engine_src_dir / "flutter" / "tools" / "gn"

    @property
    def ninja_path(self) -> Path:
        return self.engine_src_dir / "flutter" / "third_party" / "ninja" / "ninja"

    async def _run_gn(self, event_handler: RunnerEventHandler) -> bool:
        name = f"{self.build.name}: GN"
        command = [str(self.gn_path), *self.merged_gn_args]
        event_handler(RunnerStart(name, command, now()))

        if self.dry_run:
            process_result = DRY_RUN_RESULT
        else:
            process_result = await self.process_runner.run_process(
                command,
                cwd=self.engine_src_dir,
            )

        result = RunnerResult(name, command, now(), process_result)
        event_handler(result)
        return result.ok

    def _post_gn(self) -> None:
        if self.dry_run:
            return
        fix_compile_commands(self.out_dir / "compile_commands.json")

    def ninja_command(self) -> List[str]:
        command = [str(self.ninja_path), "-C", str(self.out_dir)]
        if self.is_rbe:
            jobs = self.concurrency if self.concurrency != 0 else self.computed_rbe_concurrency
            command.extend(["-j", str(jobs)])
        elif self.concurrency != 0:
            command.extend(["-j", str(self.concurrency)])
        command.extend(self.extra_ninja_args)
        command.extend(self.build.ninja.targets)
        return command

    def _rbe_session(self) -> RbeSession:
        return RbeSession(
            name=self.build.name,
            engine_src_dir=self.engine_src_dir,
            buildtools_path=self.buildtools_path,
            platform=self.platform,
            process_runner=self.process_runner,
            rbe_config=self.rbe_config,
            dry_run=self.dry_run,
        )

    async def _run_ninja(self, event_handler: RunnerEventHandler) -> bool:
        session = self._rbe_session() if self.is_rbe else None
        if session is not None and not await session.bootstrap(event_handler):
            return False

        try:
            return await self._run_ninja_process(event_handler)
        finally:
            if session is not None:
                await self._shutdown_rbe(session, event_handler)

    async def _shutdown_rbe(self, session: RbeSession, event_handler: RunnerEventHandler) -> None:
        # Shutdown never decides the outcome of the ninja step.
        try:
            await session.bootstrap(event_handler, shutdown=True)
        except OSError as e:
            logger.error(
                f"RBE shutdown could not run: {e}",
                extra={"stage": f"{self.build.name}: {SHUTDOWN_STEP}", "event": "rbe_shutdown_failed"},
            )

    def _should_emit_ansi(self) -> bool:
        force = self.platform.environment.get("CLICOLOR_FORCE")
        return (self.platform.stdout_supports_ansi and force != "0") or force == "1"

    async def _run_ninja_process(self, event_handler: RunnerEventHandler) -> bool:
        name = f"{self.build.name}: ninja"
        command = self.ninja_command()
        environment = self.rbe_config.environment
        event_handler(RunnerStart(name, command, now(), environment))

        if self.dry_run:
            process_result = DRY_RUN_RESULT
        else:
            if self._should_emit_ansi():
                environment = {**environment, "CLICOLOR_FORCE": "1"}
            process_result = await self._stream_ninja(name, command, environment, event_handler)

        event_handler(RunnerResult(name, command, now(), process_result))
        return process_result.exit_code == 0

    async def _stream_ninja(
        self,
        name: str,
        command: List[str],
        environment: dict,
        event_handler: RunnerEventHandler,
    ) -> ProcessResult:
        process = await self.process_runner.start(
            command,
            cwd=self.engine_src_dir,
            environment=environment,
        )
        out_dir = str(self.out_dir)
        stdout_lines: List[str] = []
        stderr_chunks: List[bytes] = []

        def handle_line(raw: bytes) -> None:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            progress = parse_ninja_progress(line)
            if progress is not None:
                event_handler(RunnerProgress(
                    name,
                    command,
                    now(),
                    progress.what,
                    progress.completed,
                    progress.total,
                    progress.done,
                ))
                return
            stdout_lines.append(fix_gcc_paths(line, out_dir) + "\n")

        async def read_stdout() -> None:
            # readline() fails on lines longer than the stream limit.
            pending = bytearray()
            while True:
                chunk = await process.stdout.read(65536)
                if not chunk:
                    break
                pending.extend(chunk)
                if b"\n" not in chunk:
                    continue
                *lines, rest = pending.split(b"\n")
                pending = bytearray(rest)
                for raw in lines:
                    handle_line(bytes(raw))
            if pending:
                handle_line(bytes(pending))

        async def read_stderr() -> None:
            while True:
                chunk = await process.stderr.read(65536)
                if not chunk:
                    return
                stderr_chunks.append(chunk)

        try:
            await asyncio.gather(read_stdout(), read_stderr())
        except BaseException:
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise
        exit_code = await process.wait()

        return ProcessResult(
            exit_code=exit_code,
            stdout="".join(stdout_lines).encode("utf-8"),
            stderr=b"".join(stderr_chunks),
            pid=process.pid,
        )

    async def _run_generators(self, event_handler: RunnerEventHandler) -> bool:
        for task in self.build.generators:
            runner = BuildTaskRunner(
                engine_src_dir=self.engine_src_dir,
                task=task,
                platform=self.platform,
                process_runner=self.process_runner,
                dry_run=self.dry_run,
            )
            if not await runner.run(event_handler):
                return False
        return True

    async def _run_tests(self, event_handler: RunnerEventHandler) -> bool:
        for test in self.build.tests:
            runner = BuildTestRunner(
                engine_src_dir=self.engine_src_dir,
                test=test,
                platform=self.platform,
                process_runner=self.process_runner,
                extra_test_args=self.extra_test_args,
                dry_run=self.dry_run,
            )
            if not await runner.run(event_handler):
                return False
        return True
