"""
Error classes for engine_build.

Expected failures (a tool exiting non-zero, a missing bootstrap binary, a
build whose drone dimensions do not match the host) are not exceptions:
runners report them as events and return False.

Exceptions are reserved for situations the runners cannot continue from:
- ConfigError: A build config or settings file is missing or malformed
- UnsupportedHostError: The host OS or CPU architecture is not supported
"""


class EngineBuildError(Exception):
    """Base exception for engine_build."""
    pass


class ConfigError(EngineBuildError):
    """
    Configuration error.

    Examples:
    - Build config file not found
    - Invalid YAML/JSON syntax
    - Build entry without a name or ninja config
    - Extra GN argument that is not a flag
    """
    pass


class UnsupportedHostError(EngineBuildError):
    """
    The host platform cannot be classified.

    Raised when the host ABI is not one of the recognized arm64/x64
    identifiers, or the host OS is not Linux, macOS or Windows. There is
    no sensible way to pick buildtools for such a host, so this is fatal.
    """
    pass
