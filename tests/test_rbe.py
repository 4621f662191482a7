"""Tests for RBE configuration and the reproxy session."""

import asyncio
from pathlib import Path

import pytest

from engine_build.events import ProcessResult, RunnerError, RunnerResult, RunnerStart
from engine_build.host import HostPlatform
from engine_build.rbe import RbeConfig, RbeExecStrategy, RbeSession

COMMON = {
    "RBE_cas_concurrency": "100",
    "RBE_enable_deps_cache": "1",
    "RBE_deps_cache_max_mb": "1024",
}


class TestRbeConfigEnvironment:
    """Tests for RbeConfig.environment."""

    def test_defaults_are_racing(self):
        assert RbeConfig().environment == {
            "RBE_exec_strategy": "racing",
            "RBE_racing_bias": "0.95",
            "RBE_local_resource_fraction": "0.2",
            **COMMON,
        }

    @pytest.mark.parametrize("strategy", [
        RbeExecStrategy.LOCAL,
        RbeExecStrategy.REMOTE,
        RbeExecStrategy.REMOTE_LOCAL_FALLBACK,
    ])
    def test_non_racing_has_no_racing_keys(self, strategy):
        env = RbeConfig(exec_strategy=strategy).environment
        assert env == {"RBE_exec_strategy": strategy.value, **COMMON}

    def test_remote_disabled_ignores_strategy(self):
        env = RbeConfig(remote_disabled=True, exec_strategy=RbeExecStrategy.REMOTE).environment
        assert env == {"RBE_remote_disabled": "1", **COMMON}
        assert "RBE_exec_strategy" not in env

    def test_custom_racing_values(self):
        env = RbeConfig(racing_bias=0.5, local_resource_fraction=0.75).environment
        assert env["RBE_racing_bias"] == "0.5"
        assert env["RBE_local_resource_fraction"] == "0.75"

    def test_strategy_from_string(self):
        config = RbeConfig(exec_strategy="remote_local_fallback")
        assert config.exec_strategy is RbeExecStrategy.REMOTE_LOCAL_FALLBACK
        assert str(config.exec_strategy) == "remote_local_fallback"

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            RbeConfig(exec_strategy="sometimes")

    def test_bias_out_of_range(self):
        with pytest.raises(ValueError, match="racing_bias"):
            RbeConfig(racing_bias=1.5)


def make_session(runner, operating_system="linux", dry_run=False, src=Path("/src")):
    platform = HostPlatform(operating_system, "/usr/bin/dart", 8)
    return RbeSession(
        name="ci/host_debug",
        engine_src_dir=src,
        buildtools_path=src / "flutter" / "buildtools" / "linux-x64",
        platform=platform,
        process_runner=runner,
        dry_run=dry_run,
    )


class TestRbeSessionCommand:
    """Tests for the bootstrap command line."""

    def test_startup(self, fake_runner):
        session = make_session(fake_runner())
        assert session.command() == [
            "/src/flutter/buildtools/linux-x64/reclient/bootstrap",
            "--re_proxy=/src/flutter/buildtools/linux-x64/reclient/reproxy",
            "--use_application_default_credentials",
            "--cfg=/src/flutter/build/rbe/reclient-linux.cfg",
        ]

    def test_shutdown(self, fake_runner):
        command = make_session(fake_runner()).command(shutdown=True)
        assert command[-1] == "--shutdown"
        assert not any(arg.startswith("--cfg=") for arg in command)

    def test_windows_paths(self, fake_runner):
        session = make_session(fake_runner(), operating_system="windows")
        assert session.bootstrap_path.name == "bootstrap.exe"
        assert session.reproxy_path.name == "reproxy.exe"
        assert session.reproxystatus_path.name == "reproxystatus.exe"
        assert session.config_path.name == "reclient-win.cfg"


class TestRbeSessionBootstrap:
    """Tests for RbeSession.bootstrap."""

    def test_missing_bootstrap_emits_error(self, fake_runner, events):
        runner = fake_runner(missing={"bootstrap"})
        session = make_session(runner)

        ok = asyncio.run(session.bootstrap(events))

        assert ok is False
        assert len(events) == 1
        assert isinstance(events[0], RunnerError)
        assert events[0].name == "ci/host_debug"
        assert events[0].error == f'"{session.bootstrap_path}" not found.'
        assert runner.calls == []

    def test_startup_events(self, fake_runner, events):
        runner = fake_runner({"bootstrap": ProcessResult(0, b"Proxy started successfully.\n")})

        ok = asyncio.run(make_session(runner).bootstrap(events))

        assert ok is True
        assert events.kinds() == [
            ("RunnerStart", "ci/host_debug: RBE startup"),
            ("RunnerResult", "ci/host_debug: RBE startup"),
        ]
        assert events[0].environment == RbeConfig().environment
        assert events[1].ok_message == "Proxy started successfully."
        assert runner.calls[0].environment == RbeConfig().environment

    def test_empty_output_falls_back_to_ok(self, fake_runner, events):
        asyncio.run(make_session(fake_runner()).bootstrap(events))
        assert events[1].ok_message == "OK"

    def test_startup_failure(self, fake_runner, events):
        runner = fake_runner({"bootstrap": ProcessResult(1, b"", b"auth failed")})

        ok = asyncio.run(make_session(runner).bootstrap(events))

        assert ok is False
        assert isinstance(events[-1], RunnerResult)
        assert not events[-1].ok

    def test_shutdown_reports_reproxy_status(self, fake_runner, events):
        runner = fake_runner({
            "reproxystatus": ProcessResult(0, b"Reproxy(unix:///tmp/reproxy.sock) is OK\nActions completed: 42 (42 cache hits)\n"),
        })

        ok = asyncio.run(make_session(runner).bootstrap(events, shutdown=True))

        assert ok is True
        assert events[-1].name == "ci/host_debug: RBE shutdown"
        assert events[-1].ok_message == "Actions completed: 42 (42 cache hits)"
        assert runner.commands() == ["bootstrap", "reproxystatus"]

    def test_shutdown_status_failure_keeps_bootstrap_output(self, fake_runner, events):
        runner = fake_runner({
            "bootstrap": ProcessResult(0, b"Proxy shut down.\n"),
            "reproxystatus": ProcessResult(1, b""),
        })

        asyncio.run(make_session(runner).bootstrap(events, shutdown=True))

        assert events[-1].ok_message == "Proxy shut down."

    def test_shutdown_without_reproxystatus_keeps_bootstrap_output(self, fake_runner, events):
        runner = fake_runner({
            "bootstrap": ProcessResult(0, b"Proxy shut down.\n"),
            "reproxystatus": FileNotFoundError(2, "No such file or directory", "reproxystatus"),
        })

        ok = asyncio.run(make_session(runner).bootstrap(events, shutdown=True))

        assert ok is True
        assert [type(e) for e in events] == [RunnerStart, RunnerResult]
        assert events[-1].ok_message == "Proxy shut down."

    def test_status_launch_failure_returns_none(self, fake_runner):
        runner = fake_runner({"reproxystatus": PermissionError(13, "Permission denied")})
        assert asyncio.run(make_session(runner).reproxy_status()) is None

    def test_status_with_one_line_is_ignored(self, fake_runner):
        runner = fake_runner({"reproxystatus": ProcessResult(0, b"one line")})
        assert asyncio.run(make_session(runner).reproxy_status()) is None

    def test_dry_run_spawns_nothing(self, fake_runner, events):
        runner = fake_runner()
        session = make_session(runner, dry_run=True)

        assert asyncio.run(session.bootstrap(events)) is True
        assert asyncio.run(session.bootstrap(events, shutdown=True)) is True

        assert runner.calls == []
        assert [type(e) for e in events] == [RunnerStart, RunnerResult, RunnerStart, RunnerResult]
        assert events[-1].ok_message == "OK"
