"""
Host platform information.

Classifies the machine running the build: its OS, its CPU architecture
(from an ABI identifier such as "linux_x64"), where the prebuilt
buildtools for it live in the checkout, and how much ninja parallelism to
ask for when building with RBE.
"""

import os
import platform as _platform
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping

from engine_build.errors import UnsupportedHostError

LINUX = "linux"
MACOS = "macos"
WINDOWS = "windows"

# Matches the value used for RBE builds in CI.
RBE_JOBS_PER_CORE = 80
RBE_MAX_JOBS = 1000


class Abi(str, Enum):
    """ABI identifiers the runners know about."""

    ANDROID_ARM = "android_arm"
    ANDROID_ARM64 = "android_arm64"
    ANDROID_IA32 = "android_ia32"
    ANDROID_X64 = "android_x64"
    FUCHSIA_ARM64 = "fuchsia_arm64"
    FUCHSIA_X64 = "fuchsia_x64"
    IOS_ARM64 = "ios_arm64"
    IOS_X64 = "ios_x64"
    LINUX_ARM = "linux_arm"
    LINUX_ARM64 = "linux_arm64"
    LINUX_IA32 = "linux_ia32"
    LINUX_RISCV64 = "linux_riscv64"
    LINUX_X64 = "linux_x64"
    MACOS_ARM64 = "macos_arm64"
    MACOS_X64 = "macos_x64"
    WINDOWS_ARM64 = "windows_arm64"
    WINDOWS_IA32 = "windows_ia32"
    WINDOWS_X64 = "windows_x64"

    @classmethod
    def current(cls) -> "Abi":
        """
        ABI of the running interpreter.

        Raises:
            UnsupportedHostError: If the OS/machine pair has no identifier
        """
        system = {"Linux": "linux", "Darwin": "macos", "Windows": "windows"}.get(
            _platform.system(), _platform.system().lower()
        )
        machine = _platform.machine().lower()
        arch = {
            "x86_64": "x64",
            "amd64": "x64",
            "aarch64": "arm64",
            "arm64": "arm64",
            "i386": "ia32",
            "i686": "ia32",
            "x86": "ia32",
            "riscv64": "riscv64",
        }.get(machine, machine)
        if arch.startswith("armv7"):
            arch = "arm"
        try:
            return cls(f"{system}_{arch}")
        except ValueError:
            raise UnsupportedHostError(
                f'This host platform "{system}_{arch}" is not supported.'
            )


_ARM64_ABIS = {Abi.LINUX_ARM64, Abi.MACOS_ARM64, Abi.WINDOWS_ARM64}
_X64_ABIS = {Abi.LINUX_X64, Abi.MACOS_X64, Abi.WINDOWS_X64}


def _host_os() -> str:
    if sys.platform.startswith("linux"):
        return LINUX
    if sys.platform == "darwin":
        return MACOS
    if sys.platform in ("win32", "cygwin"):
        return WINDOWS
    return sys.platform


def _stdout_supports_ansi() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty()) and os.environ.get("TERM") != "dumb"


@dataclass(frozen=True)
class HostPlatform:
    """
    Facts about the host that the runners depend on.

    Tests build one of these directly; everything else uses local().

    Attributes:
        operating_system: "linux", "macos", "windows" or anything else
        executable: Interpreter used for scripts whose language is "dart"
        number_of_processors: Logical processor count
        environment: Environment of the invoking process
        stdout_supports_ansi: Whether our own stdout renders color codes
    """

    operating_system: str
    executable: str
    number_of_processors: int = 1
    environment: Mapping[str, str] = field(default_factory=dict)
    stdout_supports_ansi: bool = False

    @classmethod
    def local(cls, executable: str = None) -> "HostPlatform":
        return cls(
            operating_system=_host_os(),
            executable=executable or sys.executable,
            number_of_processors=os.cpu_count() or 1,
            environment=dict(os.environ),
            stdout_supports_ansi=_stdout_supports_ansi(),
        )

    @property
    def is_windows(self) -> bool:
        return self.operating_system == WINDOWS


def host_cpu(abi: Abi) -> str:
    """
    Classify a host ABI as "arm64" or "x64".

    Raises:
        UnsupportedHostError: For any other ABI
    """
    try:
        abi = Abi(abi)
    except ValueError:
        raise UnsupportedHostError(f'This host platform "{abi}" is not supported.')
    if abi in _ARM64_ABIS:
        return "arm64"
    if abi in _X64_ABIS:
        return "x64"
    raise UnsupportedHostError(f'This host platform "{abi.value}" is not supported.')


def _os_key(operating_system: str, names: Mapping[str, str]) -> str:
    try:
        return names[operating_system]
    except KeyError:
        raise UnsupportedHostError(
            f'This host OS "{operating_system}" is not supported.'
        )


def buildtools_path(engine_src_dir: Path, operating_system: str, cpu: str) -> Path:
    """
    Directory of the prebuilt host tools, e.g. src/flutter/buildtools/linux-x64.

    Raises:
        UnsupportedHostError: If the OS is not Linux, macOS or Windows
    """
    prefix = _os_key(
        operating_system, {LINUX: "linux", MACOS: "mac", WINDOWS: "windows"}
    )
    return Path(engine_src_dir) / "flutter" / "buildtools" / f"{prefix}-{cpu}"


def binary_suffix(operating_system: str) -> str:
    """Executable suffix: ".exe" on Windows, empty elsewhere."""
    return _os_key(operating_system, {LINUX: "", MACOS: "", WINDOWS: ".exe"})


def reclient_config_name(operating_system: str) -> str:
    """Name of the reclient config file for the host OS."""
    return _os_key(
        operating_system,
        {
            LINUX: "reclient-linux.cfg",
            MACOS: "reclient-mac.cfg",
            WINDOWS: "reclient-win.cfg",
        },
    )


def compute_rbe_concurrency(number_of_processors: int, cpu: str) -> int:
    """
    Ninja -j value for RBE builds when the caller did not pick one.

    Intel hosts are assumed to run two hardware threads per core, so only
    half of the logical processors count.

    Args:
        number_of_processors: Logical processor count
        cpu: "x64" or "arm64"

    Returns:
        Job count in [0, 1000]
    """
    processors = max(number_of_processors, 0)
    cores = processors >> 1 if cpu == "x64" else processors
    return min(RBE_JOBS_PER_CORE * cores, RBE_MAX_JOBS)
