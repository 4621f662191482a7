"""
Configuration management for engine_build.

Two kinds of configuration:
- BuildConfig: a build config file (YAML or JSON) declaring builds, each
  with its gn args, ninja targets, generator tasks and tests
- RunnerSettings: per-user settings for logging and RBE defaults, loaded
  from $ENGINE_BUILD_HOME/config.yaml
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from engine_build.errors import ConfigError
from engine_build.host import LINUX, MACOS, WINDOWS, HostPlatform
from engine_build.rbe import RbeConfig, RbeExecStrategy


def _string_list(owner: str, key: str, value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{owner}: '{key}' must be a list of strings")
    return list(value)


class NinjaConfig:
    """The ninja part of a build: output directory name and targets."""

    def __init__(self, owner: str, data: Dict[str, Any]):
        self.config = data.get("config", "")
        self.targets = _string_list(owner, "ninja.targets", data.get("targets"))

    def __repr__(self) -> str:
        return f"NinjaConfig(config={self.config}, targets={len(self.targets)})"


class BuildTask:
    """A generator task: scripts run in order after ninja."""

    def __init__(self, data: Dict[str, Any]):
        self.name = data.get("name", "")
        self.language = data.get("language", "")
        self.scripts = _string_list(self.name, "scripts", data.get("scripts"))
        self.parameters = _string_list(self.name, "parameters", data.get("parameters"))

    def validate(self) -> None:
        if not self.name:
            raise ConfigError("Generator task: missing 'name'")
        if not self.scripts:
            raise ConfigError(f"Generator task {self.name}: no scripts")

    def __repr__(self) -> str:
        return f"BuildTask(name={self.name}, language={self.language})"


class BuildTest:
    """A test script run after the generators."""

    def __init__(self, data: Dict[str, Any]):
        self.name = data.get("name", "")
        self.language = data.get("language", "")
        self.script = data.get("script", "")
        self.parameters = _string_list(self.name, "parameters", data.get("parameters"))
        self.contexts = _string_list(self.name, "contexts", data.get("contexts"))

    def validate(self) -> None:
        if not self.name:
            raise ConfigError("Test: missing 'name'")
        if not self.script:
            raise ConfigError(f"Test {self.name}: missing 'script'")

    def __repr__(self) -> str:
        return f"BuildTest(name={self.name}, language={self.language})"


class Build:
    """Configuration for a single build."""

    def __init__(self, data: Dict[str, Any]):
        self.name = data.get("name", "")
        self.description = data.get("description", "")
        self.drone_dimensions = _string_list(
            self.name, "drone_dimensions", data.get("drone_dimensions")
        )
        self.gn = _string_list(self.name, "gn", data.get("gn"))
        self.ninja = NinjaConfig(self.name, data.get("ninja") or {})

        generators = data.get("generators") or {}
        self.generators = [BuildTask(task) for task in generators.get("tasks", [])]
        self.tests = [BuildTest(test) for test in data.get("tests") or []]

    def can_run_on(self, platform: HostPlatform) -> bool:
        """
        Whether the build's "os=" drone dimension matches the host.

        Builds that do not name an OS can run anywhere.
        """
        os_dimensions = [d for d in self.drone_dimensions if d.startswith("os=")]
        if not os_dimensions:
            return True
        prefix = {
            LINUX: "os=Linux",
            MACOS: "os=Mac",
            WINDOWS: "os=Windows",
        }.get(platform.operating_system)
        if prefix is None:
            return False
        return any(d.startswith(prefix) for d in os_dimensions)

    def validate(self) -> None:
        """Validate build configuration."""
        if not self.name:
            raise ConfigError("Build: missing 'name'")
        if not self.ninja.config:
            raise ConfigError(f"Build {self.name}: missing 'ninja.config'")
        for task in self.generators:
            task.validate()
        for test in self.tests:
            test.validate()

    def __repr__(self) -> str:
        return f"Build(name={self.name}, generators={len(self.generators)}, tests={len(self.tests)})"


class BuildConfig:
    """A build config file."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self.raw_config = self._load_yaml()
        self.builds = [Build(data) for data in self.raw_config.get("builds") or []]

    def _load_yaml(self) -> Dict[str, Any]:
        """Load and parse the file. JSON build configs parse as YAML too."""
        if not self.config_path.exists():
            raise ConfigError(f"Build config file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax in {self.config_path}: {e}")

        if not config:
            raise ConfigError(f"Build config file is empty: {self.config_path}")
        if not isinstance(config, dict):
            raise ConfigError(f"Build config must be a mapping: {self.config_path}")
        return config

    def get_build(self, name: str) -> Optional[Build]:
        """Get a build by name."""
        for build in self.builds:
            if build.name == name:
                return build
        return None

    def validate(self) -> None:
        """Validate every build."""
        if not self.builds:
            raise ConfigError(f"No builds declared in {self.config_path}")
        for build in self.builds:
            try:
                build.validate()
            except ConfigError as e:
                raise ConfigError(f"{self.config_path.name}: {e}")

    def __repr__(self) -> str:
        return f"BuildConfig(path={self.config_path}, builds={len(self.builds)})"


def get_engine_build_home() -> Path:
    """Directory holding the user settings file."""
    env_home = os.environ.get("ENGINE_BUILD_HOME")
    if env_home:
        return Path(env_home)
    return Path("~/.config/engine_build").expanduser()


class RunnerSettings:
    """User settings: logging, RBE defaults and default paths."""

    def __init__(self, data: Optional[Dict[str, Any]] = None, source: Optional[Path] = None):
        data = data or {}
        self.source = source
        self.logging = data.get("logging", {})
        self.rbe = data.get("rbe", {})
        self.concurrency = int(data.get("concurrency", 0))
        self.engine_src_dir = data.get("engine_src_dir")
        self.env_file = data.get("env_file")

    def get_log_file_path(self) -> Path:
        """Get log file path with date interpolation."""
        default = str(get_engine_build_home() / "logs" / "engine-build-{date}.log")
        log_output = self.logging.get("output", default)
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(log_output).expanduser()

    def get_log_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "structured")

    def should_log_to_console(self) -> bool:
        return self.logging.get("console", False)

    def get_rbe_config(self) -> RbeConfig:
        """
        RBE options from settings.

        Raises:
            ConfigError: If a value is out of range or the strategy is unknown
        """
        try:
            return RbeConfig(
                remote_disabled=bool(self.rbe.get("remote_disabled", False)),
                exec_strategy=RbeExecStrategy(self.rbe.get("exec_strategy", "racing")),
                racing_bias=float(self.rbe.get("racing_bias", 0.95)),
                local_resource_fraction=float(self.rbe.get("local_resource_fraction", 0.2)),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid rbe settings: {e}")

    def get_engine_src_dir(self) -> Optional[Path]:
        if not self.engine_src_dir:
            return None
        return Path(self.engine_src_dir).expanduser()

    def __repr__(self) -> str:
        return f"RunnerSettings(source={self.source})"


def load_settings(settings_path: Optional[Path] = None) -> RunnerSettings:
    """
    Load user settings.

    A missing settings file yields the defaults. If the file names an
    env_file, it is loaded into the process environment (existing
    variables win).

    Args:
        settings_path: Path to settings file. Defaults to
            $ENGINE_BUILD_HOME/config.yaml

    Returns:
        RunnerSettings instance

    Raises:
        ConfigError: If the file exists but is not valid YAML
    """
    if settings_path is None:
        settings_path = get_engine_build_home() / "config.yaml"
    settings_path = Path(settings_path)

    if not settings_path.exists():
        return RunnerSettings()

    try:
        data = yaml.safe_load(settings_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {settings_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file must be a mapping: {settings_path}")

    settings = RunnerSettings(data, source=settings_path)
    if settings.env_file:
        load_dotenv(Path(settings.env_file).expanduser(), override=False)
    return settings


def load_config(config_path: Path) -> BuildConfig:
    """
    Load a build config file.

    Raises:
        ConfigError: If config is invalid or missing
    """
    return BuildConfig(config_path)
