"""Runner for a generator task of a build."""

import logging
from pathlib import Path
from typing import Optional

from engine_build.config import BuildTask
from engine_build.events import RunnerEventHandler, RunnerResult, RunnerStart, now
from engine_build.host import HostPlatform
from engine_build.process import DRY_RUN_RESULT, ProcessRunner
from engine_build.runners.base import resolve_interpreter, script_command

logger = logging.getLogger(__name__)


class BuildTaskRunner:
    """
    Runs the scripts of one generator task in order.

    Stops at the first script that fails; the remaining scripts are skipped.
    """

    def __init__(
        self,
        engine_src_dir: Path,
        task: BuildTask,
        platform: Optional[HostPlatform] = None,
        process_runner: Optional[ProcessRunner] = None,
        dry_run: bool = False,
    ):
        self.engine_src_dir = Path(engine_src_dir)
        self.task = task
        self.platform = platform or HostPlatform.local()
        self.process_runner = process_runner or ProcessRunner()
        self.dry_run = dry_run

    async def run(self, event_handler: RunnerEventHandler) -> bool:
        interpreter = resolve_interpreter(self.task.language, self.platform)
        for script in self.task.scripts:
            command = script_command(interpreter, script, self.task.parameters)
            event_handler(RunnerStart(self.task.name, command, now()))

            if self.dry_run:
                process_result = DRY_RUN_RESULT
            else:
                process_result = await self.process_runner.run_process(
                    command,
                    cwd=self.engine_src_dir,
                )

            result = RunnerResult(self.task.name, command, now(), process_result)
            event_handler(result)
            if not result.ok:
                logger.error(
                    f"Generator task {self.task.name} failed on {script}",
                    extra={"stage": self.task.name, "event": "task_failed"},
                )
                return False
        return True
