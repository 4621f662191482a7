"""
Remote build execution (RBE) support.

RbeConfig describes how reclient should split work between the local
machine and the remote workers and turns that into RBE_* environment
variables. RbeSession starts and stops the reproxy daemon around a ninja
build using the reclient bootstrap tool.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from engine_build.events import (
    ProcessResult,
    RunnerError,
    RunnerEventHandler,
    RunnerResult,
    RunnerStart,
    now,
)
from engine_build.host import HostPlatform, binary_suffix, reclient_config_name
from engine_build.process import DRY_RUN_RESULT, ProcessRunner

logger = logging.getLogger(__name__)

# Simulated reproxystatus output in dry-run mode.
_DRY_RUN_STATUS = ProcessResult(exit_code=0, stdout=b"OK\nOK\n", stderr=b"", pid=0)

# Event name suffix of the step that stops reproxy.
SHUTDOWN_STEP = "RBE shutdown"


class RbeExecStrategy(str, Enum):
    """How reclient runs actions that miss the remote cache."""

    # Everything runs locally.
    LOCAL = "local"
    # Run remotely and locally (capacity allowing), take whichever finishes first.
    RACING = "racing"
    # Everything runs remotely.
    REMOTE = "remote"
    # Run remotely, fall back to local when the remote latency is too high.
    REMOTE_LOCAL_FALLBACK = "remote_local_fallback"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RbeConfig:
    """
    Options that affect how RBE works.

    Attributes:
        remote_disabled: Disable all remote queries/actions, not even the
            remote cache is consulted
        exec_strategy: RBE execution strategy
        racing_bias: With the racing strategy, bias towards remote (1.0) or
            local (0.0)
        local_resource_fraction: With the racing strategy, share of the
            local machine that may be used
    """

    remote_disabled: bool = False
    exec_strategy: RbeExecStrategy = RbeExecStrategy.RACING
    racing_bias: float = 0.95
    local_resource_fraction: float = 0.2

    def __post_init__(self):
        object.__setattr__(self, "exec_strategy", RbeExecStrategy(self.exec_strategy))
        if not 0.0 <= self.racing_bias <= 1.0:
            raise ValueError(f"racing_bias must be in [0, 1], got {self.racing_bias}")

    @property
    def environment(self) -> Dict[str, str]:
        """
        Environment variables for RBE related subprocesses.

        Defaults mirror depot_tools' reclient_helper.py.
        """
        env: Dict[str, str] = {}
        if self.remote_disabled:
            env["RBE_remote_disabled"] = "1"
        else:
            env["RBE_exec_strategy"] = str(self.exec_strategy)
            if self.exec_strategy == RbeExecStrategy.RACING:
                env["RBE_racing_bias"] = str(self.racing_bias)
                env["RBE_local_resource_fraction"] = str(self.local_resource_fraction)

        # A lower CAS concurrency does not hurt on fast connections and
        # helps on congested ones.
        env["RBE_cas_concurrency"] = "100"
        # Mac needs a larger deps cache; elsewhere it is harmless.
        env["RBE_enable_deps_cache"] = "1"
        env["RBE_deps_cache_max_mb"] = "1024"
        return env


class RbeSession:
    """
    Starts and stops the reproxy daemon for one build.

    Callers pair bootstrap() with bootstrap(shutdown=True) in a finally
    block around the ninja invocation.
    """

    def __init__(
        self,
        name: str,
        engine_src_dir: Path,
        buildtools_path: Path,
        platform: HostPlatform,
        process_runner: ProcessRunner,
        rbe_config: Optional[RbeConfig] = None,
        dry_run: bool = False,
    ):
        """
        Initialize session.

        Args:
            name: Build name, used as the prefix of event names
            engine_src_dir: The src/ directory of the engine checkout
            buildtools_path: Host buildtools directory holding reclient/
            platform: Host platform
            process_runner: Runner used to spawn bootstrap and reproxystatus
            rbe_config: RBE options (default: RbeConfig())
            dry_run: Do not spawn anything
        """
        self.name = name
        self.engine_src_dir = Path(engine_src_dir)
        self.platform = platform
        self.process_runner = process_runner
        self.rbe_config = rbe_config or RbeConfig()
        self.dry_run = dry_run

        exe = binary_suffix(platform.operating_system)
        reclient_path = Path(buildtools_path) / "reclient"
        self.bootstrap_path = reclient_path / f"bootstrap{exe}"
        self.reproxy_path = reclient_path / f"reproxy{exe}"
        self.reproxystatus_path = reclient_path / f"reproxystatus{exe}"
        self.config_path = (
            self.engine_src_dir
            / "flutter"
            / "build"
            / "rbe"
            / reclient_config_name(platform.operating_system)
        )

    def command(self, shutdown: bool = False) -> List[str]:
        """Bootstrap command line for startup or shutdown."""
        command = [
            str(self.bootstrap_path),
            f"--re_proxy={self.reproxy_path}",
            "--use_application_default_credentials",
        ]
        if shutdown:
            command.append("--shutdown")
        else:
            command.append(f"--cfg={self.config_path}")
        return command

    async def reproxy_status(self) -> Optional[str]:
        """
        Query the running reproxy for statistics.

        Returns:
            The second line of reproxystatus output, which holds the RBE
            statistics, or None if the query failed
        """
        if self.dry_run:
            result = _DRY_RUN_STATUS
        else:
            try:
                result = await self.process_runner.run_process(
                    [str(self.reproxystatus_path), "-color", "off"],
                )
            except OSError as e:
                logger.warning(
                    f"Could not query reproxy status: {e}",
                    extra={"stage": f"{self.name}: {SHUTDOWN_STEP}", "event": "rbe_status_unavailable"},
                )
                return None
        if result.exit_code != 0:
            return None
        lines = result.stdout_text.split("\n")
        if len(lines) < 2:
            return None
        return lines[1]

    async def bootstrap(self, event_handler: RunnerEventHandler, shutdown: bool = False) -> bool:
        """
        Start (or stop) the reproxy daemon.

        Args:
            event_handler: Receives Start/Result events, or an Error event
                if the bootstrap binary is missing
            shutdown: Stop the daemon instead of starting it

        Returns:
            True if bootstrap exited 0
        """
        step = f"{self.name}: {SHUTDOWN_STEP if shutdown else 'RBE startup'}"
        if not self.process_runner.can_run(str(self.bootstrap_path)):
            logger.error(
                f"RBE bootstrap binary not found: {self.bootstrap_path}",
                extra={"stage": step, "event": "rbe_bootstrap_missing"},
            )
            event_handler(RunnerError(
                self.name,
                [],
                now(),
                f'"{self.bootstrap_path}" not found.',
            ))
            return False

        command = self.command(shutdown=shutdown)
        environment = self.rbe_config.environment
        event_handler(RunnerStart(step, command, now(), environment))

        if self.dry_run:
            result = DRY_RUN_RESULT
        else:
            result = await self.process_runner.run_process(command, environment=environment)

        ok_message = result.stdout_text.strip() or "OK"
        if shutdown:
            ok_message = await self.reproxy_status() or ok_message

        event_handler(RunnerResult(
            step,
            command,
            now(),
            result,
            ok_message=ok_message,
            environment=environment,
        ))
        if result.exit_code != 0:
            logger.warning(
                f"{step} exited with code {result.exit_code}",
                extra={"stage": step, "event": "rbe_bootstrap_failed"},
            )
        return result.exit_code == 0
