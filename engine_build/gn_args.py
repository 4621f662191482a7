"""
Merging of GN arguments.

A build config declares the flags its gn invocation needs; a caller may
add more on the command line. Caller flags win: a build flag that names
the same option (in either its --foo or --no-foo form) is dropped.
"""

from typing import Iterable, List

from engine_build.errors import ConfigError


def flag_name(arg: str) -> str:
    """
    Option name of a GN flag.

    "--rbe", "--no-rbe" and "--rbe=true" all name "rbe".

    Raises:
        ConfigError: If arg is not a "--" flag
    """
    if not arg.startswith("--") or len(arg) == 2:
        raise ConfigError(f'Extra GN argument "{arg}" is not a flag.')
    name = arg[2:].split("=", 1)[0]
    if name.startswith("no-"):
        name = name[3:]
    return name


def merge_gn_args(build_args: Iterable[str], extra_args: Iterable[str] = ()) -> List[str]:
    """
    Merge build config GN args with caller supplied extra args.

    Args:
        build_args: Arguments from the build config, in order
        extra_args: Caller flags; each must start with "--"

    Returns:
        Build args not overridden, followed by the extra args, without
        duplicates

    Raises:
        ConfigError: If an extra arg is not a flag
    """
    extra_args = list(extra_args)
    overridden = {flag_name(arg) for arg in extra_args}

    merged = []
    for arg in build_args:
        if arg.startswith("--") and len(arg) > 2 and flag_name(arg) in overridden:
            continue
        merged.append(arg)
    merged.extend(extra_args)

    # Keep first occurrence, like a set that remembers insertion order.
    return list(dict.fromkeys(merged))
