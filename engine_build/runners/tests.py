"""Runner for a test of a build."""

import logging
from pathlib import Path
from typing import List, Optional

from engine_build.config import BuildTest
from engine_build.events import RunnerEventHandler, RunnerResult, RunnerStart, now
from engine_build.host import HostPlatform
from engine_build.process import DRY_RUN_RESULT, ProcessRunner
from engine_build.runners.base import resolve_interpreter, script_command

logger = logging.getLogger(__name__)


class BuildTestRunner:
    """
    Runs one test script.

    Test output goes straight to our own stdout/stderr while the test runs,
    so long test suites show their progress live.
    """

    def __init__(
        self,
        engine_src_dir: Path,
        test: BuildTest,
        platform: Optional[HostPlatform] = None,
        process_runner: Optional[ProcessRunner] = None,
        extra_test_args: Optional[List[str]] = None,
        dry_run: bool = False,
    ):
        self.engine_src_dir = Path(engine_src_dir)
        self.test = test
        self.platform = platform or HostPlatform.local()
        self.process_runner = process_runner or ProcessRunner()
        self.extra_test_args = list(extra_test_args or [])
        self.dry_run = dry_run

    async def run(self, event_handler: RunnerEventHandler) -> bool:
        interpreter = resolve_interpreter(self.test.language, self.platform)
        command = script_command(
            interpreter,
            self.test.script,
            self.test.parameters,
            self.extra_test_args,
        )
        event_handler(RunnerStart(self.test.name, command, now()))

        if self.dry_run:
            process_result = DRY_RUN_RESULT
        else:
            process_result = await self.process_runner.run_process(
                command,
                cwd=self.engine_src_dir,
                print_output=True,
            )

        result = RunnerResult(self.test.name, command, now(), process_result)
        event_handler(result)
        if not result.ok:
            logger.error(
                f"Test {self.test.name} failed with exit code {process_result.exit_code}",
                extra={"stage": self.test.name, "event": "test_failed"},
            )
        return result.ok
