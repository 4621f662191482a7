"""
Runners for the parts of a build config.

- build: gn, ninja (with RBE), then generators and tests
- task: the scripts of one generator task
- tests: one test script
"""

from .base import Runner, resolve_interpreter
from .build import BuildRunner, PipelineState
from .task import BuildTaskRunner
from .tests import BuildTestRunner

__all__ = [
    "Runner",
    "resolve_interpreter",
    "BuildRunner",
    "PipelineState",
    "BuildTaskRunner",
    "BuildTestRunner",
]
