"""
CLI interface for engine_build.

Provides commands to inspect a build config and run its builds.
"""

from pathlib import Path

import click

from engine_build import __version__
from engine_build.errors import EngineBuildError
from engine_build.rbe import RbeExecStrategy


@click.group()
@click.version_option(version=__version__, prog_name="engine-build")
@click.pass_context
def main(ctx):
    """
    engine-build - Run engine build configs.

    Runs gn, ninja, generators and tests for a build, optionally with RBE.
    """
    from engine_build.config import load_settings

    ctx.ensure_object(dict)
    try:
        ctx.obj["settings"] = load_settings()
    except EngineBuildError as e:
        ctx.obj["settings_error"] = str(e)


def _get_settings(ctx):
    if "settings" not in ctx.obj:
        click.echo(f"✗ Settings not loaded: {ctx.obj.get('settings_error', 'Unknown error')}", err=True)
        raise SystemExit(1)
    return ctx.obj["settings"]


def _load_build_config(config_path: Path):
    from engine_build.config import load_config

    try:
        return load_config(config_path)
    except EngineBuildError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


@main.command("run")
@click.argument("config", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("build")
@click.option("--src", "engine_src_dir", type=click.Path(file_okay=False, path_type=Path),
              help="Engine src/ directory (default: engine_src_dir from settings)")
@click.option("--dry-run", is_flag=True, help="Show what would run without spawning anything")
@click.option("--gn/--no-gn", "run_gn", default=True, help="Run the gn step")
@click.option("--ninja/--no-ninja", "run_ninja", default=True, help="Run the ninja step")
@click.option("--generators/--no-generators", "run_generators", default=True, help="Run generator tasks")
@click.option("--tests/--no-tests", "run_tests", default=True, help="Run tests")
@click.option("--rbe/--no-rbe", default=None, help="Force RBE on or off (default: build config)")
@click.option("--exec-strategy", type=click.Choice([s.value for s in RbeExecStrategy]),
              help="RBE execution strategy (default: settings, then racing)")
@click.option("-j", "--concurrency", type=click.IntRange(min=0), default=None,
              help="ninja -j value (0: automatic)")
@click.option("--gn-arg", "gn_args", multiple=True, help="Extra gn flag, e.g. --gn-arg=--no-lto")
@click.option("--ninja-arg", "ninja_args", multiple=True, help="Extra ninja argument")
@click.option("--test-arg", "test_args", multiple=True, help="Extra argument for every test")
@click.option("--verbose", is_flag=True, help="Enable debug logging and show every progress line")
@click.pass_context
def run(ctx, config, build, engine_src_dir, dry_run, run_gn, run_ninja, run_generators,
        run_tests, rbe, exec_strategy, concurrency, gn_args, ninja_args, test_args, verbose):
    """
    Run a build from a build config.

    CONFIG is the build config file, BUILD the name of a build in it.

    Examples:

        engine-build run ci/builders/linux_host_engine.json ci/host_debug --src ~/engine/src

        engine-build run linux.yaml host_debug --no-tests --rbe -j 200

        engine-build run linux.yaml host_debug --dry-run
    """
    from dataclasses import replace

    from engine_build.pipeline import Pipeline
    from engine_build.utils import format_duration, print_banner, print_error, print_event, print_success, setup_logging

    settings = _get_settings(ctx)
    build_config = _load_build_config(config)

    log_level = "DEBUG" if verbose else settings.get_log_level()
    setup_logging(
        settings.get_log_file_path(),
        log_level,
        settings.get_log_format(),
        settings.should_log_to_console(),
    )

    extra_gn_args = list(gn_args)
    if rbe is True:
        extra_gn_args.append("--rbe")
    elif rbe is False:
        extra_gn_args.append("--no-rbe")

    try:
        pipeline = Pipeline(build_config, settings=settings, engine_src_dir=engine_src_dir)
        rbe_config = settings.get_rbe_config()
        if exec_strategy:
            rbe_config = replace(rbe_config, exec_strategy=RbeExecStrategy(exec_strategy))

        if dry_run:
            print_banner(f"DRY RUN: {build}")
        else:
            print_banner(build)

        result = pipeline.run(
            build,
            event_handler=lambda event: print_event(event, verbose=verbose),
            rbe_config=rbe_config,
            concurrency=concurrency if concurrency is not None else settings.concurrency,
            extra_gn_args=extra_gn_args,
            extra_ninja_args=list(ninja_args),
            extra_test_args=list(test_args),
            run_gn=run_gn,
            run_ninja=run_ninja,
            run_generators=run_generators,
            run_tests=run_tests,
            dry_run=dry_run,
        )
    except EngineBuildError as e:
        print_error(str(e))
        raise SystemExit(1)
    except OSError as e:
        print_error(f"Could not launch command: {e}")
        if verbose:
            import traceback
            traceback.print_exc()
        raise SystemExit(1)

    if result.success:
        print_success(f"{build} completed in {format_duration(result.duration_seconds)}")
    else:
        print_error(f"{build} failed at {result.failed_step}")
        raise SystemExit(1)


@main.command("list")
@click.argument("config", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def list_builds(config):
    """List the builds in a build config."""
    from engine_build.host import HostPlatform

    build_config = _load_build_config(config)
    platform = HostPlatform.local()

    if not build_config.builds:
        click.echo("No builds found.")
        return

    for build in build_config.builds:
        marker = "✓" if build.can_run_on(platform) else "✗"
        click.echo(f"  {marker} {build.name}")


@main.command("show")
@click.argument("config", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("build")
@click.option("--src", "engine_src_dir", type=click.Path(file_okay=False, path_type=Path),
              default=Path("."), show_default=True, help="Engine src/ directory")
@click.pass_context
def show_build(ctx, config, build, engine_src_dir):
    """Show the commands a build would run (a dry run)."""
    import asyncio

    from engine_build.events import RunnerError, RunnerStart
    from engine_build.runners.build import BuildRunner

    build_config = _load_build_config(config)
    target = build_config.get_build(build)
    if target is None:
        click.echo(f"✗ Unknown build: {build}", err=True)
        click.echo("\nAvailable builds:", err=True)
        for b in build_config.builds:
            click.echo(f"  {b.name}", err=True)
        raise SystemExit(1)

    settings = _get_settings(ctx)

    def show(event):
        if isinstance(event, RunnerStart):
            click.echo(f"{event.name}:")
            click.echo(f"  {' '.join(event.command)}")
        elif isinstance(event, RunnerError):
            click.echo(f"✗ {event.error}", err=True)

    try:
        runner = BuildRunner(
            engine_src_dir=engine_src_dir,
            build=target,
            rbe_config=settings.get_rbe_config(),
            concurrency=settings.concurrency,
            dry_run=True,
        )
        ok = asyncio.run(runner.run(show))
    except EngineBuildError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if not ok:
        raise SystemExit(1)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing settings")
def init(force: bool):
    """Initialize engine-build settings."""
    import yaml

    from engine_build.config import get_engine_build_home

    home = get_engine_build_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Settings already exist at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "engine_src_dir": None,
        "concurrency": 0,
        "logging": {
            "level": "INFO",
            "format": "structured",
            "console": False,
            "output": str(home / "logs" / "engine-build-{date}.log"),
        },
        "rbe": {
            "remote_disabled": False,
            "exec_strategy": "racing",
            "racing_bias": 0.95,
            "local_resource_fraction": 0.2,
        },
        "env_file": str(home / ".env"),
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# CLICOLOR_FORCE=1\n# GOOGLE_APPLICATION_CREDENTIALS=...\n")

    click.echo(f"Initialized engine-build settings at {cfg_path}")


if __name__ == "__main__":
    main()
